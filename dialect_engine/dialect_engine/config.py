"""Translation engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dialect_engine.translator._types import (
    PlaceholderStyle,
    PluginOptions,
    TargetDialect,
    Transformations,
    TypeMapping,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables with STARLITE_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="STARLITE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Target engine; unset means statements pass through untouched.
    dialect: TargetDialect | None = None

    # Error log
    error_log_dir: Path = Path("logs")

    # Plugin behaviour
    verbose: bool = False
    strict: bool = False
    require_plugins: bool = False
    placeholder_style: PlaceholderStyle | None = None
    returning_key_column: str = "id"
    custom_type_mappings: dict[str, str] = {}
    # Comma-separated ``Transformations`` field names, e.g. "functions,operators".
    disabled_transformations: str = ""

    # Logging
    structured_logging: bool = False
    log_level: str = "WARNING"

    @field_validator("dialect", mode="before")
    @classmethod
    def normalise_dialect(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("disabled_transformations", mode="before")
    @classmethod
    def check_transformations(cls, v: Any) -> str:
        names = [str(n).strip() for n in v] if isinstance(v, (list, tuple, set)) else str(v or "").split(",")
        names = [n.lower() for n in names if n.strip()]
        unknown = sorted(set(names) - set(Transformations.model_fields))
        if unknown:
            raise ValueError(f"Unknown transformation(s): {', '.join(unknown)}")
        return ",".join(names)

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    def disabled(self) -> list[str]:
        return [name for name in self.disabled_transformations.split(",") if name]

    def plugin_options(self) -> PluginOptions:
        """Build the :class:`PluginOptions` shared by every dialect plugin."""
        return PluginOptions(
            verbose=self.verbose,
            strict=self.strict,
            custom_type_mappings=tuple(
                TypeMapping(source, target) for source, target in self.custom_type_mappings.items()
            ),
            transformations=Transformations(**{name: False for name in self.disabled()}),
            placeholder_style=self.placeholder_style,
            returning_key_column=self.returning_key_column,
        )


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.verbose:
        dialect = settings.dialect.value if settings.dialect else "pass-through"
        logger.info("Loaded translation settings (dialect: %s)", dialect)

    return settings
