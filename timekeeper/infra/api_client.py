"""
HTTP client for the remote timekeeping service.

Every call is bounded by async_timeout so a stalled server surfaces as
RemoteTimeout instead of hanging a command. Responses arrive wrapped as
{"data": {...}}; the client unwraps them and returns domain models.
"""

import asyncio
import logging
from typing import Any, List, Optional

import aiohttp
import async_timeout

from timekeeper.domain.errors import (
    RemoteError,
    RemoteTimeout,
    RemoteUnavailable,
    StateConflict,
    TimerNotFound,
    RateNotFound,
)
from timekeeper.domain.models import (
    BillingRate,
    RateLookup,
    RateMultiplierConfig,
    StartTimerRequest,
    TimeEntry,
    Timer,
)

logger = logging.getLogger(__name__)


def _unwrap(payload: Any, key: Optional[str] = None) -> Any:
    data = payload.get("data", payload) if isinstance(payload, dict) else payload
    if key and isinstance(data, dict) and key in data:
        return data[key]
    return data


class TimerApiClient:
    """
    Talks to /timers, /billing-rates and /case-rate-configurations.

    The session is created lazily unless one is injected; use the client as an
    async context manager or call close() when done.
    """

    def __init__(self, base_url: str, timeout: float = 12.0, token: Optional[str] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings) -> "TimerApiClient":
        return cls(settings.api_base_url, timeout=settings.request_timeout_seconds,
                   token=settings.api_token)

    async def __aenter__(self) -> "TimerApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._session = aiohttp.ClientSession(headers=headers)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, *, json: Any = None,
                       params: Optional[dict] = None, timer_id: Optional[int] = None) -> Any:
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            async with async_timeout.timeout(self.timeout):
                async with session.request(method, url, json=json, params=params) as response:
                    if response.status >= 400:
                        message = await self._error_message(response)
                        raise self._map_error(response.status, message, timer_id)
                    if response.status == 204:
                        return None
                    return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            logger.warning(f"{method} {path} timed out after {self.timeout}s")
            raise RemoteTimeout(f"{method} {path} timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise RemoteUnavailable(f"{method} {path} failed: {e}") from e

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        text = await response.text()
        try:
            body = await response.json(content_type=None)
        except ValueError:
            return text or response.reason or ""
        if isinstance(body, dict):
            return str(body.get("message") or body.get("reason") or body.get("error") or text)
        return text

    @staticmethod
    def _map_error(status: int, message: str, timer_id: Optional[int]) -> Exception:
        if status == 404 or (status == 400 and "not found" in message.lower()):
            if timer_id is not None:
                return TimerNotFound(timer_id, message or None)
            return RateNotFound(message or "Not found")
        if status == 409 or (status == 400 and timer_id is not None):
            return StateConflict(message or "State conflict", timer_id=timer_id)
        if status >= 500:
            return RemoteUnavailable(f"HTTP {status}: {message}")
        return RemoteError(status, message)

    # Timer operations

    async def start_timer(self, user_id: int, request: StartTimerRequest) -> Timer:
        payload = {"userId": user_id, **request.to_wire()}
        data = await self._request("POST", "/timers/start", json=payload)
        return Timer.model_validate(_unwrap(data, "timer"))

    async def pause_timer(self, user_id: int, timer_id: int) -> Timer:
        data = await self._request("POST", f"/timers/{timer_id}/pause",
                                   json={"userId": user_id}, timer_id=timer_id)
        return Timer.model_validate(_unwrap(data, "timer"))

    async def resume_timer(self, user_id: int, timer_id: int) -> Timer:
        data = await self._request("POST", f"/timers/{timer_id}/resume",
                                   json={"userId": user_id}, timer_id=timer_id)
        return Timer.model_validate(_unwrap(data, "timer"))

    async def convert_timer(self, user_id: int, timer_id: int, entry: TimeEntry) -> TimeEntry:
        payload = {"userId": user_id, **entry.to_wire()}
        data = await self._request("POST", f"/timers/{timer_id}/convert",
                                   json=payload, timer_id=timer_id)
        return TimeEntry.model_validate(_unwrap(data, "timeEntry"))

    async def discard_timer(self, user_id: int, timer_id: int) -> None:
        await self._request("DELETE", f"/timers/{timer_id}",
                            params={"userId": str(user_id)}, timer_id=timer_id)

    async def update_description(self, user_id: int, timer_id: int, description: str) -> Timer:
        data = await self._request("PATCH", f"/timers/{timer_id}/description",
                                   json={"userId": user_id, "description": description},
                                   timer_id=timer_id)
        return Timer.model_validate(_unwrap(data, "timer"))

    async def get_active_timers(self, user_id: int) -> List[Timer]:
        data = await self._request("GET", f"/timers/user/{user_id}/active")
        return [Timer.model_validate(t) for t in _unwrap(data, "timers") or []]

    # Billing rates

    async def create_billing_rate(self, rate: BillingRate) -> BillingRate:
        data = await self._request("POST", "/billing-rates", json=rate.to_wire())
        return BillingRate.model_validate(_unwrap(data, "billingRate"))

    async def get_most_specific_rate(self, lookup: RateLookup) -> Optional[BillingRate]:
        try:
            data = await self._request("GET", "/billing-rates/most-specific",
                                       params=lookup.to_params())
        except RateNotFound:
            return None
        rate = _unwrap(data, "billingRate")
        return BillingRate.model_validate(rate) if rate else None

    async def get_active_rates_for_user(self, user_id: int) -> List[BillingRate]:
        data = await self._request("GET", f"/billing-rates/user/{user_id}/active")
        return [BillingRate.model_validate(r) for r in _unwrap(data, "billingRates") or []]

    async def get_case_rate_config(self, case_id: int) -> Optional[RateMultiplierConfig]:
        try:
            data = await self._request("GET", f"/case-rate-configurations/case/{case_id}")
        except RateNotFound:
            return None
        config = _unwrap(data, "configuration")
        return RateMultiplierConfig.model_validate(config) if config else None
