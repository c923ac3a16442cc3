"""
Configuration module for the Vivarium Python Toolkit.

Provides centralized configuration for tenancy, trash retention, QR code
generation and the backing database.
"""

from enum import Enum
from typing import Any, Dict, Optional, Union, get_args, get_origin

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Supported logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class VivariumConfig(BaseModel):
    """Central configuration for the inventory core.

    Configuration can be set programmatically or loaded from environment
    variables using the ``VIVARIUM_`` prefix.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (highest priority)
        2. Environment variables (VIVARIUM_ prefix)
        3. Default values (lowest priority)

    Example:
        >>> config = VivariumConfig(
        ...     database_url="postgresql://lab:secret@db/vivarium",
        ...     qr_base_url="https://cages.example.org",
        ... )

        Loading from environment:

        >>> import os
        >>> os.environ['VIVARIUM_RETENTION_DAYS'] = '10'
        >>> config = VivariumConfig.from_env()

    Environment Variables:
        - VIVARIUM_APPLICATION_NAME
        - VIVARIUM_DATABASE_URL
        - VIVARIUM_RETENTION_DAYS
        - VIVARIUM_QR_BASE_URL
        - VIVARIUM_LOG_LEVEL
    """

    # General settings
    application_name: str = Field(
        "Vivarium", description="Name of the application for audit trails"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )
    log_level: LogLevel = Field(LogLevel.INFO, description="Root logging level")

    # Database settings
    database_url: str = Field(
        "sqlite:///./vivarium.db", description="SQLAlchemy connection string"
    )
    database_echo: bool = Field(False, description="Echo SQL statements to the log")

    # Trash settings
    retention_days: int = Field(
        10, description="Days a soft-deleted record stays in the trash", gt=0
    )
    expiring_soon_days: int = Field(
        3, description="Trash items at or below this many days are flagged", ge=0
    )

    # QR code settings
    qr_base_url: str = Field(
        "http://localhost:5000", description="Base URL embedded in QR code data"
    )
    blank_qr_max_batch: int = Field(
        20, description="Maximum blank QR codes per generation request", gt=0, le=100
    )

    # Listing settings
    default_page_size: int = Field(
        50, description="Default number of rows returned by list calls", gt=0, le=1000
    )

    # Audit settings
    audit_enabled: bool = Field(True, description="Write audit log entries")
    audit_query_limit: int = Field(
        100, description="Default number of audit entries returned", gt=0, le=1000
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "staging", "production", "test"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("qr_base_url")
    @classmethod
    def validate_qr_base_url(cls, v: str) -> str:
        """QR data is built by appending paths, so drop any trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("QR base URL must start with http:// or https://")
        return v.rstrip("/")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_env(cls, prefix: str = "VIVARIUM_") -> "VivariumConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        import os

        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var not in os.environ:
                continue

            value = os.environ[env_var]
            field_type = field_info.annotation

            # Handle Optional types
            if get_origin(field_type) is Union:
                args = get_args(field_type)
                field_type = next((arg for arg in args if arg is not type(None)), str)

            try:
                if field_type == bool:
                    config_dict[field_name] = value.lower() in ("true", "1", "yes", "on")
                elif field_type == int:
                    config_dict[field_name] = int(value)
                elif isinstance(field_type, type) and issubclass(field_type, Enum):
                    config_dict[field_name] = field_type(value.upper())
                else:
                    config_dict[field_name] = value
            except (ValueError, TypeError):
                # Let model validation report the bad value
                config_dict[field_name] = value

        return cls.model_validate(config_dict)


# Global configuration instance
_config: Optional[VivariumConfig] = None


def get_config() -> VivariumConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = VivariumConfig.from_env()

    return _config


def set_config(config: Optional[VivariumConfig]) -> None:
    """
    Set the global configuration instance.

    Passing ``None`` resets it so the next ``get_config`` reloads from the
    environment.
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> VivariumConfig:
    """
    Configure the toolkit with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = VivariumConfig(**kwargs)
    else:
        config_dict = _config.model_dump()
        config_dict.update(kwargs)
        _config = VivariumConfig(**config_dict)

    return _config
