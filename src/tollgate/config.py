"""
Configuration for Tollgate.

Settings live in a small YAML file validated by a Pydantic model, the same
way seed documents are loaded. Every field has a default, so an absent file
means "use the defaults".

Example config.yaml:
    db_path: /var/lib/tollgate/tollgate.db
    store_timeout_seconds: 2.5
    async_aggregation: true
    log_level: INFO
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from rich.console import Console
from rich.logging import RichHandler

from tollgate.errors import ConfigError

LOGGER_NAME = "tollgate"


class TollgateConfig(BaseModel):
    """
    Process-wide settings.

    Attributes:
        db_path: SQLite database file (":memory:" for an ephemeral store)
        store_timeout_seconds: How long a store access may wait on a lock
        async_aggregation: Apply aggregate increments on a background worker
        recent_events_limit: Events listed in usage summaries
        log_level: Level of the "tollgate" logger
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    db_path: Path = Field(default=Path("tollgate.db"), description="SQLite database file")
    store_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=300,
        description="Store lock wait bound in seconds",
    )
    async_aggregation: bool = Field(
        default=False,
        description="Apply aggregate increments asynchronously",
    )
    recent_events_limit: int = Field(
        default=50,
        gt=0,
        le=1000,
        description="Events listed in usage summaries",
    )
    log_level: str = Field(default="WARNING", description="Logging level name")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept only standard level names."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


def load_config(path: Path | str | None = None) -> TollgateConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML file, or None for defaults

    Returns:
        Validated TollgateConfig

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    if path is None:
        return TollgateConfig()

    path = Path(path)
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
        return TollgateConfig.model_validate(data or {})
    except (OSError, yaml.YAMLError, ValidationError) as e:
        raise ConfigError(
            path=str(path),
            message=f"Invalid configuration in {path}: {e}",
        ) from e


def load_config_from_string(content: str) -> TollgateConfig:
    """Load configuration from a YAML string."""
    try:
        data = yaml.safe_load(content)
        return TollgateConfig.model_validate(data or {})
    except (yaml.YAMLError, ValidationError) as e:
        raise ConfigError(path="<string>", message=f"Invalid configuration: {e}") from e


def configure_logging(level: str = "WARNING") -> logging.Logger:
    """
    Attach a Rich handler to the "tollgate" logger.

    Safe to call more than once; the handler is only installed once.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.propagate = False
    return logger
