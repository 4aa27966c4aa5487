"""
Domain Models using Pydantic for validation.

Architecture Decision: Why Pydantic?
Timers, rates and entries arrive from a remote service as loosely typed JSON.
Pydantic parses them once at the boundary, so every consumer downstream works with
timezone-aware datetimes and Decimal money instead of sniffing types at runtime.
"""

import datetime as dt
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Annotated, Any, List, Optional

import pytz
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def to_decimal(value: Any) -> Decimal:
    """
    Parse a monetary or multiplier value into a Decimal.

    Accepts ints, strings, Decimals, floats (through their shortest repr so 0.1
    stays 0.1) and the wrapped objects older API versions sent for rates.
    """
    if isinstance(value, dict):
        for key in ("amount", "rateAmount", "value"):
            if key in value:
                return to_decimal(value[key])
        raise ValueError(f"Cannot read a decimal from object with keys {sorted(value)}")
    if isinstance(value, bool):
        raise ValueError("Booleans are not monetary values")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as e:
            raise ValueError(f"Invalid decimal value: {value!r}") from e
    else:
        raise ValueError(f"Unsupported decimal value type: {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"Non-finite decimal value: {value!r}")
    return result


def quantize_money(value: Decimal, places: int = 2) -> Decimal:
    """Round half-up to the currency's minor unit"""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def ensure_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    """Naive timestamps from the server are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


Money = Annotated[Decimal, BeforeValidator(to_decimal)]

# Legacy wire names still sent by older timer/rate endpoints
_LEGACY_KEYS = {
    "legalCaseId": "caseId",
    "pausedDuration": "accumulatedSeconds",
    "rateAmount": "amount",
}


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _rename_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        renamed = dict(data)
        for old, new in _LEGACY_KEYS.items():
            if old in renamed and new not in renamed:
                renamed[new] = renamed.pop(old)
        return renamed

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class TimerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    CONVERTED = "CONVERTED"
    DISCARDED = "DISCARDED"


class Timer(WireModel):
    """
    One in-progress or paused work session against a case.

    accumulated_seconds holds the completed sessions only; the running session
    is measured from start_time, which only exists while the timer runs.
    """
    id: Optional[int] = None
    user_id: int
    case_id: int
    start_time: Optional[dt.datetime] = None
    is_active: bool = True
    accumulated_seconds: int = Field(default=0, ge=0)
    description: Optional[str] = None

    # Rate locked by the server at start (optional)
    hourly_rate: Optional[Money] = None
    apply_multipliers: bool = False
    is_emergency: bool = False
    work_type: Optional[str] = None
    tags: Optional[str] = None

    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @field_validator("start_time", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_session(self) -> "Timer":
        if self.is_active and self.start_time is None:
            raise ValueError("A running timer needs a start_time")
        if not self.is_active and self.start_time is not None:
            # Paused timers keep a stale start on the server; it carries no meaning
            self.start_time = None
        return self

    @property
    def state(self) -> TimerState:
        return TimerState.RUNNING if self.is_active else TimerState.PAUSED


class StartTimerRequest(WireModel):
    case_id: int
    description: Optional[str] = None
    rate: Optional[Money] = None
    apply_multipliers: bool = False
    is_emergency: bool = False
    work_type: Optional[str] = None
    tags: Optional[str] = None


class TimeEntryStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    BILLED = "BILLED"
    INVOICED = "INVOICED"


class TimeEntry(WireModel):
    """A billable record of hours worked."""
    id: Optional[int] = None
    user_id: int
    case_id: int
    timer_id: Optional[int] = None
    date: dt.date
    hours: Money = Field(gt=0)
    rate: Money = Field(ge=0)
    billable: bool = True
    status: TimeEntryStatus = TimeEntryStatus.DRAFT
    description: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    # Rounding for amount; local only, never sent
    currency_places: int = Field(default=2, ge=0, exclude=True)

    @property
    def amount(self) -> Decimal:
        """Revenue amount; non-billable hours are recorded but earn nothing."""
        if not self.billable:
            return quantize_money(Decimal("0"), self.currency_places)
        return quantize_money(self.hours * self.rate, self.currency_places)


class RateType(str, Enum):
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"
    DISCOUNTED = "DISCOUNTED"
    EMERGENCY = "EMERGENCY"
    PRO_BONO = "PRO_BONO"


class RateScope(int, Enum):
    """Ordered from least to most specific."""
    USER = 0
    MATTER_TYPE = 1
    CLIENT = 2
    CASE = 3


class BillingRate(WireModel):
    """
    An hourly rate override for a user, optionally narrowed to a matter type,
    client or case, valid from effective_date through end_date (inclusive).
    """
    id: Optional[int] = None
    user_id: int
    matter_type_id: Optional[int] = None
    client_id: Optional[int] = None
    case_id: Optional[int] = None
    rate_type: RateType = RateType.STANDARD
    amount: Money = Field(ge=0)
    effective_date: dt.date
    end_date: Optional[dt.date] = None
    is_active: bool = True

    @model_validator(mode="after")
    def _check_window(self) -> "BillingRate":
        if self.end_date is not None and self.end_date < self.effective_date:
            raise ValueError("end_date must not be before effective_date")
        return self

    @property
    def scope(self) -> RateScope:
        if self.case_id is not None:
            return RateScope.CASE
        if self.client_id is not None:
            return RateScope.CLIENT
        if self.matter_type_id is not None:
            return RateScope.MATTER_TYPE
        return RateScope.USER

    def is_effective_on(self, on: dt.date) -> bool:
        if not self.is_active or self.effective_date > on:
            return False
        return self.end_date is None or self.end_date >= on


class RateMultiplierConfig(WireModel):
    """Per-case multiplier settings. A missing multiplier means 'not applied'."""
    id: Optional[int] = None
    case_id: Optional[int] = None
    default_rate: Optional[Money] = None
    allow_multipliers: bool = True
    weekend_multiplier: Optional[Money] = Field(default=Decimal("1.50"), ge=1)
    after_hours_multiplier: Optional[Money] = Field(default=Decimal("1.25"), ge=1)
    emergency_multiplier: Optional[Money] = Field(default=Decimal("2.00"), ge=1)
    business_start: dt.time = dt.time(8, 0)
    business_end: dt.time = dt.time(18, 0)
    is_active: bool = True

    def describe(self) -> str:
        base = f"${self.default_rate:.2f}/hr" if self.default_rate is not None else "Base rate"
        if not self.allow_multipliers:
            return f"{base} (fixed rate)"
        parts = []
        for label, value in (
            ("Weekend", self.weekend_multiplier),
            ("After-hours", self.after_hours_multiplier),
            ("Emergency", self.emergency_multiplier),
        ):
            if value is not None:
                parts.append(f"{label} {value:.2f}x")
        if not parts:
            return f"{base} (no multipliers configured)"
        return f"{base} (with multipliers: {', '.join(parts)})"


class RateLookup(BaseModel):
    user_id: int
    case_id: Optional[int] = None
    client_id: Optional[int] = None
    matter_type_id: Optional[int] = None
    as_of: dt.date

    def to_params(self) -> dict:
        params = {"userId": str(self.user_id), "date": self.as_of.isoformat()}
        for key, value in (
            ("legalCaseId", self.case_id),
            ("clientId", self.client_id),
            ("matterTypeId", self.matter_type_id),
        ):
            if value is not None:
                params[key] = str(value)
        return params


class MultiplierContext(BaseModel):
    """When the work happened, and whether it was an emergency."""
    date: dt.date
    hour: int = Field(ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    is_emergency: bool = False

    @classmethod
    def at(cls, moment: dt.datetime, tz: Optional[dt.tzinfo] = None,
           is_emergency: bool = False) -> "MultiplierContext":
        """Date and hour both come from the same instant, in the firm's timezone."""
        local = ensure_utc(moment).astimezone(tz or pytz.UTC)
        return cls(date=local.date(), hour=local.hour, minute=local.minute,
                   is_emergency=is_emergency)

    @property
    def time_of_day(self) -> dt.time:
        return dt.time(self.hour, self.minute)


class CaseContext(BaseModel):
    """What the caller knows about the case a timer is billed to."""
    case_id: int
    client_id: Optional[int] = None
    matter_type_id: Optional[int] = None
    multipliers: Optional[RateMultiplierConfig] = None


class TimerView(BaseModel):
    """Display values for one timer at one tick."""
    timer: Timer
    elapsed_seconds: int
    formatted: str
    stale: bool = False


class StopAllResult(BaseModel):
    discarded: List[int] = Field(default_factory=list)
    failed: List[int] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed
