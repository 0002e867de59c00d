"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re
from datetime import timedelta
from typing import Literal, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="Async SQLAlchemy connection string (postgresql+asyncpg://... or sqlite+aiosqlite://...)",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # JWT
    jwt_secret_key: str = Field(min_length=32, description="Secret key for signing JWTs (minimum 32 characters)")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_access_token_expire_minutes: int = Field(
        default=30,
        description="Access token expiration in minutes",
        gt=0,
    )

    # Export storage
    export_dir: str = Field(
        default="./exports",
        description="Directory for export output files (local backend) and temporary artifacts",
    )
    export_storage_backend: Literal["local", "s3"] = Field(
        default="local",
        description="Artifact storage backend",
    )
    export_public_base_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL used to build local signed download links",
    )
    export_download_url_ttl_minutes: int = Field(
        default=60,
        description="Lifetime of signed download URLs in minutes",
        gt=0,
    )

    # Export lifecycle
    export_retention_hours: int = Field(
        default=72,
        description="Hours a completed artifact stays downloadable",
        gt=0,
    )
    export_dedup_window_minutes: int = Field(
        default=15,
        description="Window in which an identical completed export is reused",
        ge=0,
    )
    export_max_retries: int = Field(
        default=3,
        description="Maximum explicit retries of a failed export",
        ge=0,
    )

    # Admission quotas
    export_max_active_per_user: int = Field(
        default=3,
        description="Maximum pending + processing exports per requester",
        gt=0,
    )
    export_max_active_per_org: int = Field(
        default=10,
        description="Maximum pending + processing exports per organization",
        gt=0,
    )
    export_daily_quota_per_user: int = Field(
        default=20,
        description="Maximum export requests per requester per UTC day",
        gt=0,
    )

    # Export processing
    export_max_records_csv: int = Field(
        default=1_000_000,
        description="Maximum records in a single CSV export",
        gt=0,
    )
    export_max_records_json: int = Field(
        default=500_000,
        description="Maximum records in a single JSON export",
        gt=0,
    )
    export_max_records_excel: int = Field(
        default=100_000,
        description="Maximum records in a single Excel export",
        gt=0,
    )
    export_max_file_size_bytes: int = Field(
        default=100 * 1024 * 1024,
        description="Maximum artifact size in bytes",
        gt=0,
    )
    export_batch_size: int = Field(
        default=1000,
        description="Records fetched from the exporter per batch",
        gt=0,
    )
    export_csv_include_bom: bool = Field(
        default=True,
        description="Prefix CSV artifacts with a UTF-8 byte order mark",
    )
    export_resource_exporters: str = Field(
        default="",
        description="Comma-separated resource exporters, e.g. 'donations=myapp.exporters:DonationExporter'",
    )

    # Worker
    export_worker_enabled: bool = Field(
        default=False,
        description="Run export workers inside the API process",
    )
    export_worker_concurrency: int = Field(
        default=1,
        description="Number of in-process worker loops",
        gt=0,
    )
    export_poll_interval_seconds: float = Field(
        default=5.0,
        description="Seconds between polls for pending exports",
        gt=0,
    )
    export_pending_batch_size: int = Field(
        default=10,
        description="Pending exports fetched per poll",
        gt=0,
    )
    export_progress_min_interval_seconds: float = Field(
        default=1.0,
        description="Minimum seconds between progress writes",
        ge=0,
    )
    export_progress_min_step: int = Field(
        default=1,
        description="Minimum percentage advance between progress writes",
        ge=0,
        le=100,
    )

    # Reaper
    export_reaper_enabled: bool = Field(
        default=False,
        description="Run the expiration reaper inside the API process",
    )
    export_reaper_interval_seconds: int = Field(
        default=300,
        description="Seconds between reaper passes",
        gt=0,
    )
    export_cleanup_after_days: int = Field(
        default=30,
        description="Age in days after which terminal export rows are deleted",
        gt=0,
    )
    export_stale_after_minutes: int = Field(
        default=60,
        description="Minutes without a progress write before a processing export is considered abandoned",
        gt=0,
    )
    export_stale_action: Literal["fail", "requeue"] = Field(
        default="fail",
        description="What the reaper does with abandoned processing exports",
    )

    @model_validator(mode="after")
    def validate_retention_before_cleanup(self) -> Self:
        if self.export_retention_hours >= self.export_cleanup_after_days * 24:
            msg = (
                f"export_retention_hours ({self.export_retention_hours}) must be shorter than "
                f"export_cleanup_after_days ({self.export_cleanup_after_days}) in hours"
            )
            raise ValueError(msg)
        return self

    @property
    def export_resource_exporter_map(self) -> dict[str, str]:
        """Parse the exporter mapping string into ``{resource_type: import_path}``."""
        mapping: dict[str, str] = {}
        for entry in self.export_resource_exporters.split(","):
            entry = entry.strip()
            if not entry:
                continue
            resource_type, sep, target = entry.partition("=")
            if not sep or not resource_type.strip() or not target.strip():
                msg = f"Invalid exporter entry: {entry!r} (expected 'type=module:attr')"
                raise ValueError(msg)
            mapping[resource_type.strip()] = target.strip()
        return mapping

    def max_records_for(self, export_format: str) -> int:
        """Record limit for an export format (``csv``, ``json`` or ``excel``)."""
        return getattr(self, f"export_max_records_{export_format}")

    @property
    def export_retention(self) -> timedelta:
        return timedelta(hours=self.export_retention_hours)

    @property
    def export_dedup_window(self) -> timedelta:
        return timedelta(minutes=self.export_dedup_window_minutes)

    @property
    def export_cleanup_after(self) -> timedelta:
        return timedelta(days=self.export_cleanup_after_days)

    @property
    def export_stale_after(self) -> timedelta:
        return timedelta(minutes=self.export_stale_after_minutes)

    # S3-compatible object storage
    s3_bucket: str | None = Field(
        default=None,
        description="Bucket for export artifacts (s3 backend)",
    )
    s3_prefix: str = Field(
        default="exports/",
        description="Key prefix within the bucket",
    )
    s3_endpoint_url: str | None = Field(
        default=None,
        description="Custom endpoint URL for S3-compatible stores (R2, MinIO)",
    )
    s3_region: str = Field(
        default="us-east-1",
        description="Bucket region",
    )
    s3_access_key_id: str | None = Field(
        default=None,
        description="Access key ID",
    )
    s3_secret_access_key: str | None = Field(
        default=None,
        description="Secret access key",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
