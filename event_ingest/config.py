import logging
import os
import tomllib
from pathlib import Path
from typing import Any, ClassVar, FrozenSet

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

_logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS: tuple[str, ...] = (
    "./config/app.toml",
    "/app/config/app.toml",
)

# TOML sections whose keys don't simply become "<SECTION>_<KEY>".
_SECTION_ALIASES: dict[str, str] = {"logging": "LOG"}


def _flatten_sections(raw: dict[str, Any]) -> dict[str, Any]:
    """Turn ``[server] port = 8080`` into ``{"SERVER_PORT": 8080}``.

    Top-level scalar keys are upper-cased and kept as-is.
    """
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, dict):
            prefix = _SECTION_ALIASES.get(key.lower(), key.upper())
            for sub_key, sub_value in value.items():
                flat[f"{prefix}_{sub_key.upper()}"] = sub_value
        else:
            flat[key.upper()] = value
    return flat


def _resolve_config_file(explicit: str | None) -> Path | None:
    if explicit:
        p = Path(explicit)
        return p if p.is_file() else None
    for candidate in DEFAULT_CONFIG_PATHS:
        p = Path(candidate)
        if p.is_file():
            return p
    return None


class SectionedTomlSource(PydanticBaseSettingsSource):
    """Settings source for the sectioned ``app.toml`` file.

    A missing or unreadable file contributes nothing; defaults and environment still apply.
    """

    def __init__(self, settings_cls: type[BaseSettings], path: Path | None) -> None:
        super().__init__(settings_cls)
        self.path = path
        self._data: dict[str, Any] = {}
        if path is None:
            return
        try:
            with path.open("rb") as f:
                self._data = _flatten_sections(tomllib.load(f))
        except (OSError, tomllib.TOMLDecodeError):
            _logger.warning("config.file_unreadable path=%s", path, exc_info=True)
            self._data = {}

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        fields = self.settings_cls.model_fields
        return {k: v for k, v in self._data.items() if k in fields}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Optional TOML file (sections flattened, see SectionedTomlSource)
    CONFIG_FILE: str | None = None

    # Server
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8080
    SERVER_READ_TIMEOUT: int = 30
    SERVER_WRITE_TIMEOUT: int = 30
    SERVER_IDLE_TIMEOUT: int = 120

    # Events
    EVENTS_MAX_PAYLOAD_SIZE: int = 1048576
    EVENTS_VALIDATION_TIMEOUT: int = 5
    EVENTS_MAX_BATCH_SIZE: int = 1000
    EVENTS_GENERATION_INTERVAL: int = 10
    EVENTS_EVENTS_PER_BATCH: int = 5
    # Shared volume first; falls back to the local directory if it can't be created.
    EVENTS_DIR: str = "/shared/events"
    EVENTS_FALLBACK_DIR: str = "./events"
    # text = line-delimited JSON (*.event-ingest.txt), binlog = length-prefixed (*.binlog)
    EVENTS_LOG_FORMAT: str = "text"
    EVENTS_AUTO_GENERATION_ENABLED: bool = True

    # Pipeline coordinator
    PIPELINE_URL: str = "http://pipeline-api:8082/api/v1/pipeline"
    PIPELINE_SHARDS_COUNT: int = 2
    PIPELINE_TIMEOUT_SECONDS: float = 5.0

    # Tracking store (pipeline_tracking table)
    DATABASE_URL: str = "sqlite+aiosqlite:///./pipeline.db"
    DB_AUTO_CREATE: bool = True
    DB_POOL_PRE_PING: bool = True
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    DEBUG: bool = False

    # Observability
    METRICS_ENABLED: bool = True

    _LOG_FORMATS: ClassVar[FrozenSet[str]] = frozenset({"json", "text"})
    _EVENT_LOG_FORMATS: ClassVar[FrozenSet[str]] = frozenset({"text", "binlog"})

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        explicit = None
        init_kwargs = getattr(init_settings, "init_kwargs", None) or {}
        if init_kwargs.get("CONFIG_FILE"):
            explicit = str(init_kwargs["CONFIG_FILE"])
        elif os.getenv("CONFIG_FILE"):
            explicit = os.getenv("CONFIG_FILE")
        toml_settings = SectionedTomlSource(settings_cls, _resolve_config_file(explicit))
        # Earlier sources win: explicit kwargs > env > .env > TOML > defaults.
        return (init_settings, env_settings, dotenv_settings, toml_settings, file_secret_settings)

    @field_validator("LOG_FORMAT")
    @classmethod
    def _check_log_format(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in cls._LOG_FORMATS:
            raise ValueError(f"LOG_FORMAT must be one of {sorted(cls._LOG_FORMATS)}")
        return v

    @field_validator("EVENTS_LOG_FORMAT")
    @classmethod
    def _check_events_log_format(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in cls._EVENT_LOG_FORMATS:
            raise ValueError(f"EVENTS_LOG_FORMAT must be one of {sorted(cls._EVENT_LOG_FORMATS)}")
        return v

    @field_validator("EVENTS_GENERATION_INTERVAL")
    @classmethod
    def _check_interval(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("EVENTS_GENERATION_INTERVAL must be positive")
        return v

    @property
    def batch_size_cap(self) -> int:
        """Upper bound for automatic batch sizes: min(events_per_batch, max_batch_size), at least 1."""
        cap = self.EVENTS_EVENTS_PER_BATCH
        if 0 < self.EVENTS_MAX_BATCH_SIZE < cap:
            cap = self.EVENTS_MAX_BATCH_SIZE
        return max(1, cap)


settings = Settings()


def get_settings() -> Settings:
    """Return the global settings instance.

    Provided as a callable for FastAPI Depends() and test mocking convenience.
    """
    return settings
