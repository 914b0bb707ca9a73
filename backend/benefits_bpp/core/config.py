"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# config.py is at: backend/benefits_bpp/core/config.py
_current_file = Path(__file__).resolve()
_backend_dir = _current_file.parent.parent.parent
_project_root = _backend_dir.parent
ENV_FILE = _project_root / ".env"
# Fallback: backend/.env
if not ENV_FILE.exists():
    ENV_FILE = _backend_dir / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Benefits BPP"
    app_env: str = Field(default="development", description="Application environment")
    log_level: str = Field(default="INFO", description="Logging level")
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=7000, ge=1, le=65535, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:5173,http://localhost:5174",
        description="Allowed CORS origins in development (comma-separated)"
    )

    # Logging
    log_sqlalchemy: bool = Field(default=False, description="Enable SQLAlchemy query logging")
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"benefits_bpp.services": "DEBUG"})'
    )
    log_format: str = Field(
        default="json",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_file_enabled: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(
        default="logs/benefits_bpp.log",
        description="Path to log file (relative to project root)"
    )
    log_file_retention: int = Field(default=30, ge=1, description="Number of days to keep log files")
    log_sensitive_data: bool = Field(
        default=False,
        description="Enable logging of sensitive data (tokens, Authorization headers) - NOT RECOMMENDED"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./benefits_bpp.db",
        description="SQLAlchemy database URL"
    )
    database_pool_size: int = Field(default=20, ge=1, description="Database pool size")
    database_max_overflow: int = Field(default=10, ge=0, description="Database max overflow")

    # Content provider (benefit catalog)
    content_provider_url: str = Field(default="", description="Base URL of the benefit content provider")
    content_provider_token: str = Field(default="", description="API token for the content provider")
    content_provider_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for content provider HTTP calls (seconds)"
    )
    provider_ui_url: str = Field(default="", description="Provider UI base URL")

    # Network participant identity
    domain: str = Field(default="", description="Protocol domain served by this BPP")
    bpp_id: str = Field(default="", description="Identifier of this BPP on the network")
    bpp_uri: str = Field(default="", description="Callback URI of this BPP")
    protocol_version: str = Field(default="1.1.0", description="Protocol version stamped on responses")
    protocol_ttl: str = Field(default="PT10M", description="Default message TTL (ISO-8601 duration)")
    currency: str = Field(default="INR", description="Currency of catalog prices")
    order_id_prefix: str = Field(default="TLEXP", description="Prefix of generated order identifiers")

    # Catalog provider block
    provider_location_city_name: str = Field(default="Pune")
    provider_location_city_code: str = Field(default="std:020")
    provider_location_state_name: str = Field(default="Maharashtra")
    provider_location_state_code: str = Field(default="MH")

    # Access control
    super_admin_role: str = Field(default="Super Admin", description="Role that can see every benefit")

    # Attachments
    upload_dir: str = Field(default="uploads", description="Directory for decoded application attachments")

    # Eligibility recheck
    eligibility_check_enabled: bool = Field(default=True, description="Run the periodic eligibility recheck")
    eligibility_check_interval_minutes: int = Field(
        default=30,
        ge=1,
        description="Minutes between eligibility recheck sweeps"
    )
    eligibility_check_last_process_hours: int = Field(
        default=24,
        ge=0,
        description="Applications checked more recently than this are skipped"
    )
    eligibility_check_batch_size: int = Field(
        default=10,
        ge=1,
        description="Maximum applications evaluated per sweep"
    )

    @field_validator("content_provider_url", "bpp_uri", "provider_ui_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs"""
        return v.rstrip("/") if v else v

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    def validate_protocol_settings(self) -> None:
        """Fail fast when a setting the protocol adapter needs is blank"""
        required = {
            "CONTENT_PROVIDER_URL": self.content_provider_url,
            "CONTENT_PROVIDER_TOKEN": self.content_provider_token,
            "PROVIDER_UI_URL": self.provider_ui_url,
            "BPP_ID": self.bpp_id,
            "BPP_URI": self.bpp_uri,
            "DOMAIN": self.domain,
        }
        missing = [name for name, value in required.items() if not (value or "").strip()]
        if missing:
            raise ValueError(
                "One or more required environment variables are missing or empty: "
                + ", ".join(missing)
            )

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
