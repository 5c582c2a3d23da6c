"""
Configuration management for the Book Catalog Service.
Supports both environment variables and database-stored import settings.
"""

import os
import secrets
from typing import Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from bookcatalog.db.database import DEFAULT_DATABASE_URL

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class CatalogConfig(BaseModel):
    """Configuration for the catalog service."""

    # Import defaults
    default_currency: str = Field(default="USD", description="Currency used when a row has none")
    skip_duplicates: bool = Field(default=True, description="Leave duplicates out of the actionable list")
    skip_conflicts: bool = Field(default=True, description="Leave conflicts out of the actionable list")
    update_existing: bool = Field(default=False, description="Overwrite existing books/pricing on conflict")
    field_map_file: Optional[str] = Field(default=None, description="JSON file with header and synonym tables")

    # Audit logs and uploads
    write_audit_log: bool = Field(default=True, description="Write a text audit log per bulk import")
    audit_log_dir: str = Field(default="logs", description="Directory for bulk import audit logs")
    upload_dir: Optional[str] = Field(default=None, description="Directory for uploaded spreadsheets")
    max_upload_mb: int = Field(default=16, description="Maximum upload size in megabytes")

    # Application settings
    database_url: str = Field(
        default=DEFAULT_DATABASE_URL,
        description="Database connection URL"
    )
    secret_key: str = Field(
        default_factory=lambda: os.getenv("SECRET_KEY", secrets.token_hex(32)),
        description="Secret key for Flask sessions"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    port: int = Field(default=5000, description="HTTP port")


def get_config_from_env() -> CatalogConfig:
    """Load configuration from environment variables."""
    return CatalogConfig(
        default_currency=os.getenv("DEFAULT_CURRENCY", "USD"),
        skip_duplicates=_env_flag("SKIP_DUPLICATES", "true"),
        skip_conflicts=_env_flag("SKIP_CONFLICTS", "true"),
        update_existing=_env_flag("UPDATE_EXISTING", "false"),
        field_map_file=os.getenv("FIELD_MAP_FILE") or None,
        write_audit_log=_env_flag("WRITE_AUDIT_LOG", "true"),
        audit_log_dir=os.getenv("AUDIT_LOG_DIR", "logs"),
        upload_dir=os.getenv("UPLOAD_DIR") or None,
        max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", "16")),
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        secret_key=os.getenv("SECRET_KEY", secrets.token_hex(32)),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        port=int(os.getenv("PORT", "5000")),
    )


class ConfigManager:
    """
    Manages configuration with fallback from database to environment variables.
    """

    def __init__(self, db_session=None, env_config: Optional[CatalogConfig] = None):
        self.db_session = db_session
        self._env_config = env_config or get_config_from_env()

    def load_from_db(self):
        """Load import settings from database if available."""
        if not self.db_session:
            return None

        from bookcatalog.db.models import ImportSettings
        return self.db_session.query(ImportSettings).first()

    def get_config(self) -> CatalogConfig:
        """
        Get configuration, merging database values with environment variables.
        Database values take precedence over environment variables.
        """
        settings = self.load_from_db()
        if not settings:
            return self._env_config

        overrides = {}
        for name in ("default_currency", "skip_duplicates", "skip_conflicts",
                     "update_existing", "write_audit_log"):
            value = getattr(settings, name)
            if value is not None:
                overrides[name] = value

        return self._env_config.model_copy(update=overrides)

    def save_config(self, config: CatalogConfig) -> None:
        """Save import settings to database."""
        if not self.db_session:
            raise RuntimeError("Database session not available")

        from bookcatalog.db.models import ImportSettings

        settings = self.load_from_db()
        if not settings:
            settings = ImportSettings()
            self.db_session.add(settings)

        settings.default_currency = config.default_currency
        settings.skip_duplicates = config.skip_duplicates
        settings.skip_conflicts = config.skip_conflicts
        settings.update_existing = config.update_existing
        settings.write_audit_log = config.write_audit_log

        self.db_session.commit()
