"""
Repository Pattern Implementation.

Architecture Decision: Why Repository Pattern?
Separates data access logic from business logic. Makes it easy to:
- Swap the local cache for direct API lookups
- Mock data for testing
- Keep SQL out of the rate resolution engine
"""

import datetime
from typing import List, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.domain.models import BillingRate, RateMultiplierConfig, RateType
from timekeeper.infra.db import BillingRateModel, RateMultiplierConfigModel, get_engine


def _rate_to_domain(model: BillingRateModel) -> BillingRate:
    return BillingRate(
        id=model.id,
        user_id=model.user_id,
        matter_type_id=model.matter_type_id,
        client_id=model.client_id,
        case_id=model.case_id,
        rate_type=RateType(model.rate_type),
        amount=model.amount,
        effective_date=model.effective_date,
        end_date=model.end_date,
        is_active=model.is_active,
    )


def _rate_to_model(rate: BillingRate) -> BillingRateModel:
    return BillingRateModel(
        id=rate.id,
        user_id=rate.user_id,
        matter_type_id=rate.matter_type_id,
        client_id=rate.client_id,
        case_id=rate.case_id,
        rate_type=rate.rate_type.value,
        amount=rate.amount,
        effective_date=rate.effective_date,
        end_date=rate.end_date,
        is_active=rate.is_active,
        synced_at=datetime.datetime.now(),
    )


class BillingRateRepository:
    """
    Handles cached BillingRate records.

    Converts between domain models (Pydantic) and ORM models (SQLAlchemy).
    """

    def __init__(self, session: Optional[AsyncSession] = None):
        self.session = session

    async def _get_session(self) -> AsyncSession:
        """Get session - either injected or create new one"""
        if self.session:
            return self.session
        engine = get_engine()
        return engine.get_session()

    async def get_for_user(self, user_id: int) -> List[BillingRate]:
        """Get every cached rate for a user, newest first"""
        session = await self._get_session()
        async with session:
            result = await session.execute(
                select(BillingRateModel)
                .where(BillingRateModel.user_id == user_id)
                .order_by(BillingRateModel.effective_date.desc(), BillingRateModel.id.desc())
            )
            return [_rate_to_domain(m) for m in result.scalars().all()]

    async def get_candidates(self, user_id: int, as_of: datetime.date) -> List[BillingRate]:
        """Get active rates for a user whose validity window contains as_of"""
        session = await self._get_session()
        async with session:
            result = await session.execute(
                select(BillingRateModel).where(
                    BillingRateModel.user_id == user_id,
                    BillingRateModel.is_active == True,  # noqa: E712
                    BillingRateModel.effective_date <= as_of,
                    or_(BillingRateModel.end_date.is_(None), BillingRateModel.end_date >= as_of),
                )
            )
            return [_rate_to_domain(m) for m in result.scalars().all()]

    async def upsert(self, rate: BillingRate) -> BillingRate:
        """Insert or replace a cached rate"""
        if rate.id is None:
            raise ValueError("Only server-confirmed rates (with an id) can be cached")
        session = await self._get_session()
        async with session:
            await session.merge(_rate_to_model(rate))
            await session.commit()
            return rate

    async def replace_for_user(self, user_id: int, rates: List[BillingRate]) -> int:
        """Replace a user's cached rates with a fresh server snapshot. Returns count stored."""
        session = await self._get_session()
        async with session:
            await session.execute(delete(BillingRateModel).where(BillingRateModel.user_id == user_id))
            by_id = {r.id: r for r in rates if r.id is not None and r.user_id == user_id}
            session.add_all([_rate_to_model(r) for r in by_id.values()])
            await session.commit()
            return len(by_id)

class RateConfigRepository:
    """
    Handles cached per-case multiplier configuration.
    """

    def __init__(self, session: Optional[AsyncSession] = None):
        self.session = session

    async def _get_session(self) -> AsyncSession:
        if self.session:
            return self.session
        engine = get_engine()
        return engine.get_session()

    async def get_by_case(self, case_id: int) -> Optional[RateMultiplierConfig]:
        """Get the active configuration for a case"""
        session = await self._get_session()
        async with session:
            result = await session.execute(
                select(RateMultiplierConfigModel).where(
                    RateMultiplierConfigModel.case_id == case_id,
                    RateMultiplierConfigModel.is_active == True,  # noqa: E712
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return RateMultiplierConfig(
                id=model.remote_id,
                case_id=model.case_id,
                default_rate=model.default_rate,
                allow_multipliers=model.allow_multipliers,
                weekend_multiplier=model.weekend_multiplier,
                after_hours_multiplier=model.after_hours_multiplier,
                emergency_multiplier=model.emergency_multiplier,
                business_start=datetime.time.fromisoformat(model.business_start),
                business_end=datetime.time.fromisoformat(model.business_end),
                is_active=model.is_active,
            )

    async def upsert(self, config: RateMultiplierConfig) -> RateMultiplierConfig:
        """Insert or replace the configuration for config.case_id"""
        if config.case_id is None:
            raise ValueError("Multiplier configuration must name a case")
        session = await self._get_session()
        async with session:
            await session.merge(RateMultiplierConfigModel(
                case_id=config.case_id,
                remote_id=config.id,
                default_rate=config.default_rate,
                allow_multipliers=config.allow_multipliers,
                weekend_multiplier=config.weekend_multiplier,
                after_hours_multiplier=config.after_hours_multiplier,
                emergency_multiplier=config.emergency_multiplier,
                business_start=config.business_start.strftime("%H:%M"),
                business_end=config.business_end.strftime("%H:%M"),
                is_active=config.is_active,
                synced_at=datetime.datetime.now(),
            ))
            await session.commit()
            return config
