"""
SQLAlchemy database models and configuration.

Architecture Decision: Why SQLAlchemy?
Billing rates and case multiplier configs are read on every conversion but
change rarely. Keeping a local copy makes rate resolution independent of the
network, while the remote service stays the owner of the data.
- Async engine keeps database access non-blocking next to the timer clock
- Numeric columns keep money as Decimal end to end
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Base class for all models
class Base(DeclarativeBase):
    pass


class BillingRateModel(Base):
    """SQLAlchemy model for cached BillingRate records"""
    __tablename__ = "billing_rates"

    # Server-assigned id; unsaved rates are never cached
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    matter_type_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    client_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    case_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rate_type: Mapped[str] = mapped_column(String(20), nullable=False, default="STANDARD")
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)


class RateMultiplierConfigModel(Base):
    """SQLAlchemy model for cached per-case multiplier configuration"""
    __tablename__ = "case_rate_configurations"

    case_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    remote_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    default_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    allow_multipliers: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    weekend_multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    after_hours_multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    emergency_multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    business_start: Mapped[str] = mapped_column(String(5), default="08:00", nullable=False)
    business_end: Mapped[str] = mapped_column(String(5), default="18:00", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)


class DatabaseEngine:
    """
    Manages database connection and session lifecycle.

    Singleton pattern ensures only one engine exists per application.
    """
    _instance: Optional['DatabaseEngine'] = None

    def __init__(self, db_url: str):
        self.engine = create_async_engine(db_url, echo=False)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    @classmethod
    def get_instance(cls, db_url: Optional[str] = None) -> 'DatabaseEngine':
        """Get or create the database engine instance"""
        if cls._instance is None:
            if db_url is None:
                from timekeeper.infra.config import get_settings
                db_url = get_settings().get_db_url()
            cls._instance = cls(db_url)
        return cls._instance

    @classmethod
    async def reset(cls):
        """Dispose the shared engine (used on shutdown and in tests)"""
        if cls._instance is not None:
            await cls._instance.engine.dispose()
            cls._instance = None

    async def create_tables(self):
        """Create all tables in the database"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def get_session(self) -> AsyncSession:
        """Get a new database session"""
        return self.session_factory()


# Convenience functions
def get_engine(db_url: Optional[str] = None) -> DatabaseEngine:
    """Get the database engine instance"""
    return DatabaseEngine.get_instance(db_url)


async def init_db(db_url: Optional[str] = None):
    """Initialize the database (create tables)"""
    engine = get_engine(db_url)
    await engine.create_tables()
