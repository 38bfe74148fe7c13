from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".comment-stance"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "persistence_enabled",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{COMMENT_STANCE_DATA_DIR}}/{relative_path}` when not explicitly set."


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

    Every option is read from `COMMENT_STANCE_*` environment variables (or `.env`).
    Backoff and cache values are in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="COMMENT_STANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the sqlite database and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )

    # Upstream credentials.
    youtube_api_key: str | None = Field(
        default=None,
        description="YouTube Data API key used to list comment threads.",
    )
    gemini_api_key: str | None = Field(
        default=None,
        description=(
            "Gemini API key for remote stance classification. When unset, every comment is "
            "classified by the local heuristic."
        ),
    )
    gemini_model: str = Field(
        default="gemini-2.0-flash",
        description="Gemini model name used for stance classification.",
    )
    remote_timeout_seconds: float = Field(
        default=15.0,
        description="Upper bound for a single remote classification call.",
    )

    # Backoff guardrails.
    classifier_backoff_initial_seconds: float = Field(
        default=300.0,
        description="Initial cooldown after the classifier reports a rate limit.",
    )
    classifier_backoff_max_seconds: float = Field(
        default=7_200.0,
        description="Maximum classifier cooldown.",
    )
    comments_backoff_initial_seconds: float = Field(
        default=60.0,
        description="Initial cooldown after the YouTube Data API reports quota exhaustion.",
    )
    comments_backoff_max_seconds: float = Field(
        default=1_800.0,
        description="Maximum YouTube Data API cooldown.",
    )

    # Caches.
    stance_cache_ttl_seconds: float = Field(
        default=600.0,
        description="TTL for cached per-comment stance results.",
    )
    stance_cache_max_entries: int | None = Field(
        default=None,
        description="Optional size bound for the stance cache. Unbounded when unset.",
    )
    comments_cache_ttl_seconds: float = Field(
        default=900.0,
        description="TTL for cached comment lists per video.",
    )
    cache_sweep_interval_seconds: float = Field(
        default=60.0,
        description="Cadence of the background sweep that drops expired cache entries.",
    )

    # Batch pacing.
    comments_max_results: int = Field(
        default=100,
        ge=1,
        description="Maximum number of top-level comments fetched per video.",
    )
    batch_concurrency: int = Field(
        default=2,
        ge=1,
        description="Maximum comments classified concurrently.",
    )
    batch_dispatch_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Flat delay applied before each classification dispatch.",
    )

    # Persistence.
    persistence_enabled: bool = Field(
        default=True,
        description="Store one sqlite row per analyzed comment.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
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
            raise ValueError("COMMENT_STANCE_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("COMMENT_STANCE_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("gemini_model", mode="before")
    @classmethod
    def _normalize_gemini_model(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("COMMENT_STANCE_GEMINI_MODEL must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("COMMENT_STANCE_GEMINI_MODEL must not be empty.")
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

    @field_validator("youtube_api_key", "gemini_api_key", mode="before")
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


def _validate_backoff_bounds(settings: AppSettings) -> None:
    errors: list[str] = []
    pairs = (
        (
            "CLASSIFIER",
            settings.classifier_backoff_initial_seconds,
            settings.classifier_backoff_max_seconds,
        ),
        (
            "COMMENTS",
            settings.comments_backoff_initial_seconds,
            settings.comments_backoff_max_seconds,
        ),
    )
    for prefix, initial, maximum in pairs:
        if initial <= 0:
            errors.append(f"COMMENT_STANCE_{prefix}_BACKOFF_INITIAL_SECONDS must be positive.")
        if maximum < initial:
            errors.append(
                f"COMMENT_STANCE_{prefix}_BACKOFF_MAX_SECONDS must be >= the initial backoff."
            )

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid backoff configuration:\n{bullets}")


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)
    _validate_backoff_bounds(settings)
    return settings
