import logging
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Optional

from contracts_portal.core.roles import parse_role

logger = logging.getLogger(__name__)

RBAC_ENFORCEMENT_MODES = ("enforce", "dry-run")
IDEMPOTENCY_BACKENDS = ("supabase", "memory")


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Used for idempotency, audit and role writes

    # Webhooks
    webhook_secret: Optional[str] = None  # Shared secret for sources without their own
    webhook_secrets: Dict[str, str] = {}  # Per-source secrets, JSON object in env
    webhook_sources: str = "makecom,payments,automation"
    webhook_timestamp_tolerance_seconds: int = 300
    webhook_clock_skew_seconds: int = 30
    webhook_idempotency_ttl_seconds: int = 86400
    idempotency_store_timeout_seconds: float = 2.0
    idempotency_backend: str = "supabase"  # supabase | memory

    # RBAC
    rbac_enforcement: str = "enforce"  # enforce | dry-run (dry-run honoured in development only)
    rbac_fallback_role: str = "guest"  # Role used when profile/role lookup fails
    rbac_audit_enabled: bool = True

    # App
    app_name: str = "contracts-portal-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @field_validator("rbac_fallback_role")
    @classmethod
    def _validate_fallback_role(cls, value: str) -> str:
        role = parse_role(value)
        if role is None:
            raise ValueError(f"rbac_fallback_role must be a defined role, got {value!r}")
        return role.value

    @field_validator("rbac_enforcement")
    @classmethod
    def _validate_enforcement(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in RBAC_ENFORCEMENT_MODES:
            raise ValueError(f"rbac_enforcement must be one of {RBAC_ENFORCEMENT_MODES}")
        return value

    @field_validator("idempotency_backend")
    @classmethod
    def _validate_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in IDEMPOTENCY_BACKENDS:
            raise ValueError(f"idempotency_backend must be one of {IDEMPOTENCY_BACKENDS}")
        return value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def get_webhook_sources(self) -> List[str]:
        return [s.strip().lower() for s in self.webhook_sources.split(",") if s.strip()]

    def secret_for(self, source: str) -> Optional[str]:
        """Secret for a webhook source, falling back to the shared webhook_secret."""
        return self.webhook_secrets.get(source) or self.webhook_secret

    def effective_rbac_enforcement(self) -> str:
        if self.rbac_enforcement == "dry-run" and self.environment != "development":
            logger.warning(
                f"RBAC dry-run requested in {self.environment} environment, forcing enforce mode"
            )
            return "enforce"
        return self.rbac_enforcement

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()


def get_settings() -> Settings:
    return settings
