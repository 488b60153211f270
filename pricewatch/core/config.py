"""
Application configuration management
"""
import json
from typing import Any, Dict, List, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Ensure repository .env values win over stale exported shell variables.
load_dotenv(override=True)

PRICE_REFRESH_JOB = "price-refresh"
ALERT_CHECK_JOB = "alert-check"

# Six-field expressions carry a leading seconds field.
DEFAULT_JOB_SCHEDULES: Dict[str, Dict[str, Dict[str, str]]] = {
    "development": {
        PRICE_REFRESH_JOB: {"cron": "0 * * * * *", "timezone": "UTC"},
        ALERT_CHECK_JOB: {"cron": "*/30 * * * * *", "timezone": "UTC"},
    },
    "production": {
        PRICE_REFRESH_JOB: {"cron": "0 */5 * * * *", "timezone": "UTC"},
        ALERT_CHECK_JOB: {"cron": "0 */2 * * * *", "timezone": "UTC"},
    },
}


class Settings(BaseSettings):
    """Application settings"""
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    ENVIRONMENT: str = "development"  # development | production

    # Database
    DATABASE_URL: str = "sqlite:///./pricewatch.db"

    # Market data (CoinGecko)
    COINGECKO_BASE_URL: str = "https://api.coingecko.com/api/v3"
    COINGECKO_API_KEY: str = ""
    MARKET_DATA_TIMEOUT_SECONDS: int = 10
    MARKET_DATA_MAX_ATTEMPTS: int = 3
    MARKET_DATA_RETRY_DELAY_SECONDS: float = 1.0
    RATE_LIMIT_BASE_DELAY_SECONDS: float = 1.0

    # Identity provider used to validate bearer credentials
    IDENTITY_PROVIDER_URL: str = ""
    IDENTITY_PROVIDER_API_KEY: str = ""
    IDENTITY_PROVIDER_TIMEOUT_SECONDS: int = 10

    # Alert monitoring
    MONITOR_INTERVAL_SECONDS: int = 60
    SCHEDULER_ENABLED: bool = True
    PRICE_REFRESH_CRON: str = ""
    PRICE_REFRESH_TIMEZONE: str = ""
    ALERT_CHECK_CRON: str = ""
    ALERT_CHECK_TIMEZONE: str = ""

    # Symbols refreshed when no active alert references any symbol
    DEFAULT_SYMBOLS: str = "btc,eth,sol,ada,dot"

    # Notification Settings
    EMAIL_ENABLED: bool = False
    EMAIL_HOST: str = "smtp.gmail.com"
    EMAIL_PORT: int = 587
    EMAIL_USER: Optional[str] = None
    EMAIL_PASSWORD: Optional[str] = None
    EMAIL_TO: str = ""

    # Security
    CORS_ORIGINS: str = "http://localhost:8000,http://127.0.0.1:8000"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/pricewatch.log"

    @field_validator('ENVIRONMENT')
    @classmethod
    def validate_environment(cls, v):
        env = str(v or "").strip().lower()
        if env not in DEFAULT_JOB_SCHEDULES:
            raise ValueError('ENVIRONMENT must be "development" or "production"')
        return env

    @field_validator('MARKET_DATA_TIMEOUT_SECONDS', 'IDENTITY_PROVIDER_TIMEOUT_SECONDS', 'MONITOR_INTERVAL_SECONDS')
    @classmethod
    def validate_positive_seconds(cls, v):
        if int(v) <= 0:
            raise ValueError('Must be positive')
        return int(v)

    @field_validator('MARKET_DATA_MAX_ATTEMPTS')
    @classmethod
    def validate_max_attempts(cls, v):
        if int(v) < 1:
            raise ValueError('MARKET_DATA_MAX_ATTEMPTS must be at least 1')
        return int(v)

    @field_validator('MARKET_DATA_RETRY_DELAY_SECONDS', 'RATE_LIMIT_BASE_DELAY_SECONDS')
    @classmethod
    def validate_delays(cls, v):
        if float(v) < 0:
            raise ValueError('Retry delays cannot be negative')
        return float(v)

    @staticmethod
    def _parse_str_list(value: Any) -> List[str]:
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
        if value is None:
            return []
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return []
            if stripped.startswith('[') and stripped.endswith(']'):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in stripped.split(',') if item.strip()]
        return [str(value).strip()] if str(value).strip() else []

    def get_cors_origins(self) -> List[str]:
        origins = self._parse_str_list(self.CORS_ORIGINS)
        return origins or ["http://localhost:8000", "http://127.0.0.1:8000"]

    def get_email_recipients(self) -> List[str]:
        return self._parse_str_list(self.EMAIL_TO)

    def get_default_symbols(self) -> List[str]:
        return [symbol.lower() for symbol in self._parse_str_list(self.DEFAULT_SYMBOLS)]

    def get_job_schedule(self, job_name: str) -> Dict[str, str]:
        """Return the cron expression and timezone for a named job."""
        defaults = DEFAULT_JOB_SCHEDULES[self.ENVIRONMENT].get(job_name)
        if defaults is None:
            raise ValueError(f"Unknown job: {job_name}")

        overrides = {
            PRICE_REFRESH_JOB: (self.PRICE_REFRESH_CRON, self.PRICE_REFRESH_TIMEZONE),
            ALERT_CHECK_JOB: (self.ALERT_CHECK_CRON, self.ALERT_CHECK_TIMEZONE),
        }
        cron, timezone = overrides[job_name]
        return {
            "cron": cron.strip() or defaults["cron"],
            "timezone": timezone.strip() or defaults["timezone"],
        }

# Global settings instance
settings = Settings()
