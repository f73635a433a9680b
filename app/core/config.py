from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from typing import List, Optional
from decimal import Decimal
import json
import ipaddress


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Stryng Storefront API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Identity provider (JWTs are issued upstream, we only verify them)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "https://stryng.in",
        "https://www.stryng.in",
    ]

    # Environment
    ENVIRONMENT: str = "development"
    ENV: Optional[str] = Field(default=None)

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Frontend
    FRONTEND_URL: str = "https://stryng.in"

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Pricing
    GST_RATE: Decimal = Decimal("0.18")
    SHIPPING_RATE_STANDARD: Decimal = Decimal("0")
    SHIPPING_RATE_EXPRESS: Decimal = Decimal("149")
    SHIPPING_RATE_SAME_DAY: Decimal = Decimal("299")

    # Checkout commit retries on transient database failures
    CHECKOUT_COMMIT_MAX_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    CHECKOUT_RETRY_BASE_DELAY: float = Field(default=0.2, ge=0)

    # Admin Security
    ADMIN_ALLOWED_IPS: str = ""  # Must be set via env in production
    TRUST_PROXY_HEADERS: bool = True
    TRUSTED_PROXY_IPS: str = "127.0.0.1,::1"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper().strip()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported LOG_LEVEL: {value}")
        return level

    @classmethod
    def _parse_ip_list(cls, value) -> List[str]:
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return []
            if raw.startswith("["):
                try:
                    parsed = json.loads(raw)
                    if isinstance(parsed, list):
                        return parsed
                except json.JSONDecodeError as exc:
                    raise ValueError("IP lists must be valid JSON or comma-separated IPs") from exc
            return [ip.strip() for ip in raw.split(",")]
        if isinstance(value, list):
            return [str(ip).strip() for ip in value if str(ip).strip()]
        return value

    @field_validator("ADMIN_ALLOWED_IPS", "TRUSTED_PROXY_IPS")
    @classmethod
    def validate_ip_format(cls, value: str) -> str:
        normalized = cls._parse_ip_list(value)
        for ip in normalized:
            try:
                ipaddress.ip_address(ip)
            except ValueError as exc:
                raise ValueError(f"Invalid IP address: {ip}") from exc
        return ",".join(normalized)

    @model_validator(mode="after")
    def validate_production_settings(self):
        if self.ENVIRONMENT != "production":
            return self
        if not self.admin_allowed_ips:
            raise ValueError("ADMIN_ALLOWED_IPS must be set in production")
        normalized_secret = (self.SECRET_KEY or "").strip()
        if len(normalized_secret) < 32 or "your-secret-key-here" in normalized_secret.lower():
            raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
        if self.DATABASE_URL.startswith("sqlite"):
            raise ValueError("DATABASE_URL must point at PostgreSQL in production")
        return self

    @property
    def admin_allowed_ips(self) -> List[str]:
        return self._parse_ip_list(self.ADMIN_ALLOWED_IPS)

    @property
    def trusted_proxy_ips(self) -> List[str]:
        return self._parse_ip_list(self.TRUSTED_PROXY_IPS)

    def is_trusted_proxy(self, ip: str | None) -> bool:
        if not ip:
            return False
        if ip in {"127.0.0.1", "::1"}:
            return True
        return ip in self.trusted_proxy_ips

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
