from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".console-memories"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("console-memories.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "visitor_cookie_secure",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{CONSOLE_MEMORIES_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from a `CONSOLE_MEMORIES_*` environment variable (or
    `.env`) and documented here with its default.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONSOLE_MEMORIES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the database and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("console-memories.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('console-memories.db'))}",
    )
    db_busy_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long a connection waits on a locked database before failing.",
    )

    # Content limits.
    max_title_length: int = Field(
        default=200,
        ge=1,
        description="Maximum title length after control characters are stripped.",
    )
    max_content_length: int = Field(
        default=100_000,
        ge=1,
        description="Maximum markdown body length after control characters are stripped.",
    )
    slug_max_length: int = Field(
        default=100,
        ge=1,
        description="Maximum length of the title-derived part of a slug.",
    )
    slug_max_attempts: int = Field(
        default=50,
        ge=1,
        le=10_000,
        description="Candidates tried (`slug`, `slug-1`, ...) before a write fails.",
    )

    # Admin and visitor identity.
    admin_token: str | None = Field(
        default=None,
        description="Bearer token required for article writes. Writes are refused when unset.",
    )
    visitor_cookie_name: str = Field(
        default="cm_visitor",
        description="Cookie carrying the anonymous per-browser visitor token.",
    )
    visitor_cookie_max_age_seconds: int = Field(
        default=31_536_000,
        ge=60,
        description="Lifetime of the visitor cookie.",
    )
    visitor_cookie_secure: bool = Field(
        default=False,
        description="Mark the visitor cookie `Secure` (enable behind HTTPS).",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("CONSOLE_MEMORIES_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("CONSOLE_MEMORIES_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("visitor_cookie_name", mode="before")
    @classmethod
    def _normalize_cookie_name(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("CONSOLE_MEMORIES_VISITOR_COOKIE_NAME must be a string.")
        normalized = value.strip()
        if not normalized or any(character in normalized for character in ";=, \t"):
            raise ValueError("CONSOLE_MEMORIES_VISITOR_COOKIE_NAME must be a valid cookie name.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("admin_token", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
