"""
Configuration management using Pydantic Settings.

Architecture Decision: Why pydantic-settings?
- Type-safe configuration with validation
- Supports multiple sources (YAML, env vars, defaults)
- Easy to test with different configurations
"""

import datetime
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytz
import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from timekeeper.domain.models import Money, RateMultiplierConfig


class BillingPreferences(BaseModel):
    """
    Firm-wide billing defaults.

    These apply when a case has no multiplier configuration of its own and
    when no billing rate resolves for a lookup.
    """
    default_hourly_rate: Optional[Money] = Field(
        default=None,
        description="System fallback rate when no billing rate matches; unset rejects the conversion"
    )
    hours_increment: Optional[Money] = Field(
        default=None,
        description="Billing increment in hours (e.g. 0.1); partial increments round up"
    )
    hours_places: int = Field(default=4, ge=0, le=8)
    currency_places: int = Field(default=2, ge=0, le=4)

    # Multipliers
    allow_multipliers: bool = True
    weekend_multiplier: Optional[Money] = Field(default=Decimal("1.50"), ge=1)
    after_hours_multiplier: Optional[Money] = Field(default=Decimal("1.25"), ge=1)
    emergency_multiplier: Optional[Money] = Field(default=Decimal("2.00"), ge=1)
    business_day_start: datetime.time = datetime.time(8, 0)
    business_day_end: datetime.time = datetime.time(18, 0)

    # Calendar
    holiday_country: Optional[str] = Field(default=None, description="ISO country code, e.g. 'US'")
    holiday_subdivision: Optional[str] = None
    holidays_as_weekend: bool = Field(default=False, description="Bill public holidays at the weekend rate")

    def default_multipliers(self) -> RateMultiplierConfig:
        return RateMultiplierConfig(
            default_rate=self.default_hourly_rate,
            allow_multipliers=self.allow_multipliers,
            weekend_multiplier=self.weekend_multiplier,
            after_hours_multiplier=self.after_hours_multiplier,
            emergency_multiplier=self.emergency_multiplier,
            business_start=self.business_day_start,
            business_end=self.business_day_end,
        )


class Settings(BaseSettings):
    """
    Application settings with multiple sources:
    1. Default values (hardcoded)
    2. YAML config file (billing preferences)
    3. Environment variables (highest priority)
    """
    model_config = SettingsConfigDict(
        env_prefix='TIMEKEEPER_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    app_name: str = "Timekeeper"
    config_dir: Optional[Path] = None
    data_dir: Optional[Path] = None
    config_file: Optional[Path] = None

    # Remote service
    api_base_url: str = "http://localhost:8080/api"
    api_token: Optional[str] = None
    request_timeout_seconds: float = Field(default=12.0, gt=0)

    # Local clock
    tick_interval_seconds: float = Field(default=1.0, gt=0)
    timezone: str = "UTC"

    # Reference-data cache
    database_url: Optional[str] = None

    log_level: str = "INFO"

    billing: BillingPreferences = BillingPreferences()

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._init_paths()
        self._load_yaml_config()

    def _init_paths(self):
        """Initialize default paths based on OS"""
        if self.config_dir is None:
            if os.name == 'nt':  # Windows
                base = Path(os.getenv('APPDATA', Path.home()))
            else:  # Linux/Mac
                base = Path.home() / '.config'
            self.config_dir = base / self.app_name.lower()

        if self.data_dir is None:
            if os.name == 'nt':  # Windows
                base = Path(os.getenv('APPDATA', Path.home()))
            else:  # Linux/Mac
                base = Path.home() / '.local' / 'share'
            self.data_dir = base / self.app_name.lower()

    def _load_yaml_config(self):
        """Load billing preferences from YAML file"""
        config_file = self.config_file
        if config_file is None:
            # First check in workspace config folder
            config_file = Path("config/settings.yaml")
            if not config_file.exists():
                # Then check in user's config directory
                config_file = self.config_dir / "settings.yaml"

        if config_file.exists():
            with open(config_file, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f)
                if config_data:
                    self.billing = BillingPreferences(**config_data)

    def save_preferences(self):
        """Save current billing preferences to YAML file"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        config_file = self.config_file or self.config_dir / "settings.yaml"
        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.billing.model_dump(mode="json"), f,
                           default_flow_style=False)

    def get_db_url(self) -> str:
        """Get database URL, creating default if not set"""
        if self.database_url:
            return self.database_url

        self.data_dir.mkdir(parents=True, exist_ok=True)
        db_path = self.data_dir / 'timekeeper.db'
        return f"sqlite+aiosqlite:///{db_path}"

    def get_timezone(self) -> datetime.tzinfo:
        return pytz.timezone(self.timezone)


def configure_logging(settings: Optional["Settings"] = None) -> None:
    """Set the root log level from settings"""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Reload settings from file"""
    global _settings
    _settings = Settings()
    return _settings
