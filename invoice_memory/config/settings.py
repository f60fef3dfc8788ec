"""
Application settings using Pydantic Settings.

Provides type-safe, validated configuration from environment variables
with defaults matching the memory engine's confidence policy.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment enumeration."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format enumeration."""

    JSON = "json"
    CONSOLE = "console"


class StorageSettings(BaseSettings):
    """Knowledge store configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="MEMORY_STORE_",
        extra="ignore",
    )

    path: Path = Field(
        default=Path("./data/memory.db"),
        description="SQLite database file holding all learned memories",
    )
    persist_audit_trail: bool = Field(
        default=True,
        description="Write pipeline audit entries to the audit_logs table",
    )


class ApplySettings(BaseSettings):
    """Settings for the APPLY stage."""

    model_config = SettingsConfigDict(
        env_prefix="APPLY_",
        extra="ignore",
    )

    auto_apply_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.85,
        description="Minimum confidence for writing a correction into the document",
    )
    default_currency: str | None = Field(
        default="EUR",
        description="Currency used when a document carries none (empty disables)",
    )
    vendor_currency_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.75,
        description="Confidence of a currency recovered from vendor memory",
    )
    rawtext_currency_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.70,
        description="Confidence of a currency extracted from raw text",
    )
    payment_terms_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.80,
        description="Confidence of discount terms extracted from raw text",
    )
    single_po_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.60,
        description="Confidence when the only vendor PO is proposed without SKU overlap",
    )
    unknown_sku: str = Field(
        default="UNKNOWN",
        description="Sentinel SKU for line items without one",
    )

    @field_validator("default_currency", mode="before")
    @classmethod
    def empty_currency_is_none(cls, v: Any) -> Any:
        """Treat an empty string as 'no default currency'."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class DecisionSettings(BaseSettings):
    """Settings for the DECIDE stage."""

    model_config = SettingsConfigDict(
        env_prefix="DECISION_",
        extra="ignore",
    )

    auto_accept_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.85,
        description="Score at or above which a document is auto-accepted",
    )
    auto_correct_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.60,
        description="Score below which a document always goes to review",
    )
    escalate_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.40,
        description="Corrections below this confidence force escalation",
    )
    min_vendor_usage: Annotated[int, Field(ge=0)] = Field(
        default=2,
        description="Vendor usage count below which the vendor counts as new",
    )
    conflict_min_resolutions: Annotated[int, Field(ge=1)] = Field(
        default=3,
        description="Resolutions needed before the rejection rate is considered",
    )
    conflict_rejection_rate: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.40,
        description="Rejection rate at which memory signals count as conflicting",
    )
    required_fields: list[str] = Field(
        default_factory=lambda: ["currency"],
        description="Normalized fields that must be present or have a proposal",
    )

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "DecisionSettings":
        """Thresholds must be ordered escalate <= auto-correct <= auto-accept."""
        if not (
            self.escalate_threshold
            <= self.auto_correct_threshold
            <= self.auto_accept_threshold
        ):
            raise ValueError(
                "Decision thresholds must satisfy "
                "escalate <= auto_correct <= auto_accept"
            )
        return self


class DuplicateSettings(BaseSettings):
    """Duplicate guard configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="DUPLICATE_",
        extra="ignore",
    )

    date_window_days: Annotated[int, Field(ge=0, le=365)] = Field(
        default=7,
        description="Maximum invoice date distance for a near-duplicate",
    )
    amount_tolerance: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.01,
        description="Relative gross total tolerance for a near-duplicate",
    )


class DecaySettings(BaseSettings):
    """Confidence decay configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="DECAY_",
        extra="ignore",
    )

    daily_factor: Annotated[float, Field(gt=0.0, le=1.0)] = Field(
        default=0.99,
        description="Multiplicative confidence decay per day without use",
    )
    floor: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.1,
        description="Lowest confidence decay can reach",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    format: LogFormat = Field(
        default=LogFormat.JSON,
        description="Log output format",
    )
    file_path: Path | None = Field(
        default=Path("./logs/invoice_memory.log"),
        description="Log file path (unset to log to stdout only)",
    )
    file_max_size_mb: Annotated[int, Field(ge=1, le=1000)] = Field(
        default=50,
        description="Maximum log file size in MB",
    )
    file_backup_count: Annotated[int, Field(ge=1, le=20)] = Field(
        default=5,
        description="Number of backup log files to keep",
    )
    mask_sensitive_data: bool = Field(
        default=True,
        description="Mask IBANs, card numbers and e-mail addresses in logs",
    )


class Settings(BaseSettings):
    """
    Main application settings aggregating all configuration sections.

    Settings are loaded from environment variables with optional .env file support.
    Each section has its own prefix for environment variable naming.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: str = Field(
        default="invoice-memory",
        description="Application name",
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version",
    )
    app_env: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
    )

    storage: StorageSettings = Field(default_factory=StorageSettings)
    apply: ApplySettings = Field(default_factory=ApplySettings)
    decision: DecisionSettings = Field(default_factory=DecisionSettings)
    duplicates: DuplicateSettings = Field(default_factory=DuplicateSettings)
    decay: DecaySettings = Field(default_factory=DecaySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.app_env == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
