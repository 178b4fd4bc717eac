"""Incident Hub configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "jwt_secret": "insecure-access-secret-change-me",
    "jwt_refresh_secret": "insecure-refresh-secret-change-me",
}


class IncidentHubSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INCIDENT_HUB_")

    environment: str = "development"

    # Tokens
    jwt_secret: str = "insecure-access-secret-change-me"
    jwt_refresh_secret: str = "insecure-refresh-secret-change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_cookie_name: str = "refreshToken"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/incident_hub.db"

    # API
    api_title: str = "Incident Hub"
    api_version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 5000
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:5173"]
    log_level: str = "INFO"

    # Evidence uploads
    upload_dir: str = "./data/uploads"
    max_upload_bytes: int = 5 * 1024 * 1024
    max_evidence_files: int = 5

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100
    audit_default_page_size: int = 50
    audit_max_page_size: int = 200

    # Exports
    csv_export_limit: int = 5000
    pdf_export_limit: int = 1000

    # Realtime
    realtime_queue_size: int = 1000

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"INCIDENT_HUB_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if self.jwt_secret == self.jwt_refresh_secret:
            raise RuntimeError(
                "INCIDENT_HUB_JWT_SECRET and INCIDENT_HUB_JWT_REFRESH_SECRET must differ"
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default secrets. Set INCIDENT_HUB_JWT_SECRET and "
                "INCIDENT_HUB_JWT_REFRESH_SECRET for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> IncidentHubSettings:
    settings = IncidentHubSettings()
    settings.validate_for_production()
    return settings
