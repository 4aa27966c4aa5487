"""
Billing Rate Service - rate lookups backed by the local reference-data cache.

Rates and case multiplier configs are fetched from the remote service and kept
in the local cache; resolution runs against the cache so a conversion does not
need a network round-trip per lookup. A lookup the cache cannot answer falls back
to the server's most-specific endpoint.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from timekeeper.domain.errors import InvalidRate
from timekeeper.domain.models import (
    BillingRate,
    MultiplierContext,
    RateLookup,
    RateMultiplierConfig,
)
from timekeeper.infra.repository import BillingRateRepository, RateConfigRepository
from timekeeper.services.rate_multiplier import RateMultiplierCalculator
from timekeeper.services.rate_resolution import RateResolution, RateResolutionEngine

logger = logging.getLogger(__name__)


class BillingRateService:

    def __init__(self, api=None, rate_repo: Optional[BillingRateRepository] = None,
                 config_repo: Optional[RateConfigRepository] = None,
                 engine: Optional[RateResolutionEngine] = None,
                 calculator: Optional[RateMultiplierCalculator] = None):
        self.api = api
        self.rate_repo = rate_repo or BillingRateRepository()
        self.config_repo = config_repo or RateConfigRepository()
        self.engine = engine or RateResolutionEngine()
        self.calculator = calculator or RateMultiplierCalculator()

    async def sync_user_rates(self, user_id: int) -> int:
        """Replace the cached rates for a user with the server's active set"""
        rates = await self.api.get_active_rates_for_user(user_id)
        stored = await self.rate_repo.replace_for_user(user_id, rates)
        logger.info(f"Synced {stored} billing rates for user {user_id}")
        return stored

    async def get_rates(self, user_id: int) -> List[BillingRate]:
        return await self.rate_repo.get_for_user(user_id)

    async def resolve(self, lookup: RateLookup) -> RateResolution:
        """
        Resolve against the cache; on a miss, ask the server for its most specific
        rate and cache what comes back.
        """
        candidates = await self.rate_repo.get_candidates(lookup.user_id, lookup.as_of)
        resolution = self.engine.resolve(candidates, lookup)
        if resolution.found or self.api is None:
            return resolution

        remote = await self.api.get_most_specific_rate(lookup)
        if remote is None:
            return resolution
        logger.info(f"Rate cache miss for user {lookup.user_id}; server returned "
                    f"{remote.scope.name} rate {remote.id}")
        if remote.id is not None:
            await self.rate_repo.upsert(remote)
        # The server's answer still has to match the lookup's scope and window
        return self.engine.resolve([remote], lookup)

    async def resolve_rate(self, lookup: RateLookup) -> Optional[BillingRate]:
        return (await self.resolve(lookup)).rate

    async def create_rate(self, rate: BillingRate) -> BillingRate:
        """
        Validate a new rate against the cached set, then create it remotely.

        Raises:
            InvalidRate: amount invalid for the rate type, or the validity window
                overlaps an active rate with the same scope
        """
        self.engine.validate_structure(rate)
        overlaps = self.engine.find_overlaps(await self.rate_repo.get_for_user(rate.user_id), rate)
        if overlaps:
            raise InvalidRate(
                f"Overlapping billing rate exists for the same period (ids {[r.id for r in overlaps]})"
            )

        created = await self.api.create_billing_rate(rate)
        if created.id is not None:
            await self.rate_repo.upsert(created)
        logger.info(f"Created billing rate {created.id} for user {created.user_id} "
                    f"({created.scope.name}, {created.amount})")
        return created

    async def get_multiplier_config(self, case_id: int) -> Optional[RateMultiplierConfig]:
        """Cached config for a case, fetched from the server on a cache miss"""
        config = await self.config_repo.get_by_case(case_id)
        if config is not None or self.api is None:
            return config

        config = await self.api.get_case_rate_config(case_id)
        if config is not None:
            if config.case_id is None:
                config = config.model_copy(update={"case_id": case_id})
            await self.config_repo.upsert(config)
        return config

    async def effective_rate(self, lookup: RateLookup, config: RateMultiplierConfig,
                             context: MultiplierContext) -> Optional[Decimal]:
        """Resolved base rate with multipliers applied, or None if nothing resolves"""
        rate = await self.resolve_rate(lookup)
        if rate is None:
            return None
        return self.calculator.apply(rate.amount, config, context)
