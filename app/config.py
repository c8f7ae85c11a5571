# config.py
from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import ValidationError
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def patched_database_url(self):
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql://", 1)
        return self.database_url

    database_url: str
    redis_url: Optional[str] = None

    # Bearer tokens are issued by the external auth service and signed with this secret
    auth_jwt_secret: str
    auth_jwt_algorithm: str = "HS256"
    auth_jwt_audience: str = "authenticated"

    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_price_starter: str = ""
    stripe_price_pro: str = ""
    stripe_price_power: str = ""
    stripe_price_credit: str = ""
    app_url: str = "http://localhost:5173"

    detector_backend: str = "replicate"  # "replicate" or "stub"
    replicate_api_token: str = ""
    replicate_model_version: str = ""
    replicate_api_url: str = "https://api.replicate.com/v1/predictions"
    replicate_timeout_seconds: float = 30.0

    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""

    scan_rate_limit_max: int = 10
    scan_rate_limit_window_minutes: int = 1
    signup_rate_limit_max: int = 5
    signup_rate_limit_window_minutes: int = 10
    checkout_rate_limit_max: int = 10
    checkout_rate_limit_window_minutes: int = 10
    rate_limit_retention_hours: int = 24

    cors_origins: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    def validate(self):
        required_vars = [
            'database_url', 'auth_jwt_secret', 'stripe_secret_key', 'stripe_webhook_secret'
        ]
        for var in required_vars:
            if not getattr(self, var, None):
                raise ValueError(f"Missing required config: {var}")
        if self.detector_backend not in ("replicate", "stub"):
            raise ValueError(f"Unknown detector_backend: {self.detector_backend}")
        if self.detector_backend == "replicate" and not self.replicate_api_token:
            logger.warning("REPLICATE_API_TOKEN is empty; every scan will get the fallback score")


try:
    settings = Settings()
    settings.validate()
except ValidationError as ve:
    logger.error("Config validation failed: %s", ve)
    raise
