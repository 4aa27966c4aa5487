"""
Billing rate resolution.

Picks the single most specific rate that is active and in effect on the lookup
date. Specificity follows the scope fields a rate names: a case rate beats a
client rate, which beats a matter-type rate, which beats the user's own rate.
A rate that names a scope field the lookup does not match never applies.
"""

import datetime
import logging
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from timekeeper.domain.errors import InvalidRate
from timekeeper.domain.models import BillingRate, RateLookup, RateScope, RateType

logger = logging.getLogger(__name__)

# (names case, names client, names matter type); compared lexicographically
Rank = Tuple[int, int, int]


class RateResolution(BaseModel):
    rate: Optional[BillingRate] = None
    scope: Optional[RateScope] = None
    ambiguous: bool = False
    tied: List[BillingRate] = Field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.rate is not None


class RateResolutionEngine:
    """
    Stateless; callers supply the candidate rates (from the cache or the API).
    """

    def candidates(self, rates: Iterable[BillingRate], lookup: RateLookup) -> List[BillingRate]:
        """Rates for the lookup's user that are active and in effect on lookup.as_of"""
        return [
            r for r in rates
            if r.user_id == lookup.user_id and r.is_effective_on(lookup.as_of)
        ]

    def specificity(self, rate: BillingRate, lookup: RateLookup) -> Optional[Rank]:
        """Rank of a rate for this lookup, or None if its scope excludes the lookup"""
        rank = []
        for rate_value, lookup_value in (
            (rate.case_id, lookup.case_id),
            (rate.client_id, lookup.client_id),
            (rate.matter_type_id, lookup.matter_type_id),
        ):
            if rate_value is None:
                rank.append(0)
            elif rate_value == lookup_value:
                rank.append(1)
            else:
                return None
        return tuple(rank)

    def resolve(self, rates: Iterable[BillingRate], lookup: RateLookup) -> RateResolution:
        scored = []
        for rate in self.candidates(rates, lookup):
            rank = self.specificity(rate, lookup)
            if rank is not None:
                scored.append((rank, rate))

        if not scored:
            logger.debug(f"No billing rate for user {lookup.user_id} on {lookup.as_of}")
            return RateResolution()

        best_rank = max(rank for rank, _ in scored)
        at_rank = [rate for rank, rate in scored if rank == best_rank]
        latest = max(rate.effective_date for rate in at_rank)
        tied = [rate for rate in at_rank if rate.effective_date == latest]

        # Deterministic pick among equals: highest id, then highest amount
        tied.sort(key=lambda r: (r.id if r.id is not None else -1, r.amount), reverse=True)
        chosen = tied[0]
        ambiguous = len(tied) > 1
        if ambiguous:
            logger.warning(
                f"Ambiguous billing rate for user {lookup.user_id} on {lookup.as_of}: "
                f"{len(tied)} {chosen.scope.name} rates effective {latest} "
                f"(ids {[r.id for r in tied]}); using id {chosen.id}"
            )
        return RateResolution(rate=chosen, scope=chosen.scope, ambiguous=ambiguous,
                              tied=tied if ambiguous else [])

    def most_specific(self, rates: Iterable[BillingRate], lookup: RateLookup) -> Optional[BillingRate]:
        return self.resolve(rates, lookup).rate

    # Validation

    def validate_structure(self, rate: BillingRate) -> None:
        if rate.rate_type == RateType.PRO_BONO:
            return
        if rate.amount <= 0:
            raise InvalidRate(f"Rate amount must be positive for {rate.rate_type.value} rates")

    def find_overlaps(self, existing: Iterable[BillingRate], rate: BillingRate) -> List[BillingRate]:
        """Active rates with the same user and scope whose validity windows intersect rate's"""
        scope = (rate.case_id, rate.client_id, rate.matter_type_id)
        end = rate.end_date or datetime.date.max
        overlaps = []
        for other in existing:
            if not other.is_active or other.user_id != rate.user_id:
                continue
            if rate.id is not None and other.id == rate.id:
                continue
            if (other.case_id, other.client_id, other.matter_type_id) != scope:
                continue
            other_end = other.end_date or datetime.date.max
            if other.effective_date <= end and rate.effective_date <= other_end:
                overlaps.append(other)
        return overlaps
