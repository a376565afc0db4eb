# === NAVMAP v1 ===
# {
#   "module": "ProdToolkit.StaticData.settings",
#   "purpose": "Pydantic settings models, YAML loading, and environment overrides",
#   "sections": [
#     {"id": "http", "name": "HttpSettings", "anchor": "class-httpsettings", "kind": "class"},
#     {"id": "sources", "name": "SourceSettings", "anchor": "class-sourcesettings", "kind": "class"},
#     {"id": "sync", "name": "SyncSettings", "anchor": "class-syncsettings", "kind": "class"},
#     {"id": "logging", "name": "LoggingSettings", "anchor": "class-loggingsettings", "kind": "class"},
#     {"id": "root", "name": "StaticDataSettings", "anchor": "class-staticdatasettings", "kind": "class"},
#     {"id": "loaders", "name": "load_settings", "anchor": "function-load-settings", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Settings for static data synchronisation.

Settings are grouped into small pydantic models (HTTP behaviour, upstream
source URLs, sync policy, logging) composed into :class:`StaticDataSettings`,
a ``pydantic-settings`` model that also reads ``STATICDATA_*`` environment
variables.  Nested fields use ``__`` as delimiter, for example
``STATICDATA_SYNC__LANGUAGE=de_DE``.  Environment values win over values read
from a settings file, which in turn win over defaults.
"""

from __future__ import annotations

import hashlib
import json
import threading
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import platformdirs
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

APP_NAME = "prodtoolkit-static"
DATA_ROOT = Path(platformdirs.user_data_dir(APP_NAME))
LOG_DIR = Path(platformdirs.user_log_dir(APP_NAME))

DEFAULT_CONSTANT_NAMES: Tuple[str, ...] = (
    "gameModes",
    "gameTypes",
    "queues",
    "seasons",
    "maps",
)


class HttpSettings(BaseModel):
    """HTTP client behaviour shared by every pipeline."""

    timeout_sec: float = Field(default=30.0, gt=0, description="Read timeout for small resources")
    connect_timeout_sec: float = Field(default=5.0, gt=0)
    download_timeout_sec: float = Field(
        default=300.0, gt=0, description="Read timeout while streaming the archive"
    )
    max_retries: int = Field(default=3, ge=1, le=20, description="Attempts per request")
    backoff_factor: float = Field(default=0.5, ge=0.0, le=60.0)
    max_connections: int = Field(default=20, ge=1, le=256)
    chunk_size: int = Field(default=1 << 20, ge=1024, description="Streaming chunk size in bytes")
    user_agent: Optional[str] = Field(
        default=None, description="Override the default User-Agent header"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}


class SourceSettings(BaseModel):
    """Upstream locations for every artifact class."""

    versions_url: str = "https://ddragon.leagueoflegends.com/api/versions.json"
    archive_url_template: str = "https://ddragon.leagueoflegends.com/cdn/dragontail-{version}.tgz"
    constants_url_template: str = "https://static.developer.riotgames.com/docs/lol/{name}.json"
    constant_names: Tuple[str, ...] = DEFAULT_CONSTANT_NAMES
    item_bin_url_template: str = (
        "https://raw.communitydragon.org/{patch}/game/items.cdtb.bin.json"
    )
    champion_image_url_template: str = (
        "https://ddragon.leagueoflegends.com/cdn/img/champion/centered/{identifier}_0.jpg"
    )

    @field_validator("constant_names")
    @classmethod
    def validate_constant_names(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        """Reject empty, duplicate, or path-like constant names."""

        if not value:
            raise ValueError("constant_names cannot be empty")
        if len(set(value)) != len(value):
            raise ValueError("constant_names must be unique")
        for name in value:
            if not name.strip() or "/" in name or "\\" in name or name.startswith("."):
                raise ValueError(f"invalid constant name: {name!r}")
        return value

    model_config = {"validate_assignment": True, "extra": "forbid"}


class SyncSettings(BaseModel):
    """Destination layout and fallback policy."""

    destination_root: Path = Field(default_factory=lambda: DATA_ROOT / "frontend")
    staging_dir: Optional[Path] = Field(
        default=None, description="Where the archive is downloaded (defaults to destination_root)"
    )
    language: str = Field(default="en_US", pattern=r"^[a-z]{2}_[A-Z]{2}$")
    confirm_timeout_sec: float = Field(default=10.0, gt=0)
    confirm_default: bool = True
    max_version_regressions: int = Field(default=5, ge=0, le=100)
    image_workers: int = Field(default=8, ge=1, le=64)
    constants_workers: int = Field(default=6, ge=1, le=32)

    @field_validator("destination_root", "staging_dir", mode="before")
    @classmethod
    def normalize_path(cls, v: Any) -> Any:
        """Normalize to absolute path."""
        if v is None:
            return None
        if isinstance(v, (str, Path)):
            return Path(v).expanduser().resolve()
        raise ValueError("path must be string or Path")

    model_config = {"validate_assignment": True, "extra": "forbid"}


class LoggingSettings(BaseModel):
    """Console and JSON-lines log file behaviour."""

    level: str = "INFO"
    max_log_size_mb: float = Field(default=5.0, gt=0)
    retention_days: int = Field(default=30, ge=1)
    directory: Optional[Path] = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return upper

    model_config = {"validate_assignment": True, "extra": "forbid"}


class StaticDataSettings(BaseSettings):
    """Root settings object combining every section."""

    http: HttpSettings = Field(default_factory=HttpSettings)
    sources: SourceSettings = Field(default_factory=SourceSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="STATICDATA_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def config_hash(self) -> str:
        """Compute a deterministic hash of all settings for provenance tracking."""

        payload = self.model_dump(mode="json")
        config_str = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(config_str.encode("utf-8")).hexdigest()[:16]


_SETTINGS_LOCK = threading.RLock()
_SETTINGS_CACHE: Optional[StaticDataSettings] = None


def get_settings() -> StaticDataSettings:
    """Return memoised settings built from defaults and the environment."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        if _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = build_settings({})
        return _SETTINGS_CACHE


def invalidate_settings_cache() -> None:
    """Invalidate the cached default settings."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


def build_settings(raw: Mapping[str, object]) -> StaticDataSettings:
    """Validate ``raw`` into settings, layering environment overrides on top."""

    if not isinstance(raw, Mapping):
        raise ConfigurationError("Settings must be a mapping")
    try:
        return StaticDataSettings(**dict(raw))
    except ValidationError as exc:
        messages = []
        for error in exc.errors():
            location = " -> ".join(str(part) for part in error.get("loc", ()))
            messages.append(f"{location or '<root>'}: {error.get('msg')}")
        raise ConfigurationError("Invalid settings:\n  " + "\n  ".join(messages)) from exc


def load_raw_settings(path: Path) -> Mapping[str, object]:
    """Read a YAML or JSON settings file into a mapping."""

    resolved = path.expanduser()
    if not resolved.exists():
        raise ConfigurationError(f"Settings file not found: {resolved}")
    text = resolved.read_text(encoding="utf-8")
    try:
        if resolved.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Unable to parse settings file {resolved}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Settings file {resolved} must contain a mapping")
    return data


def load_settings(path: Optional[Path] = None) -> StaticDataSettings:
    """Load settings from ``path`` (YAML or JSON), or defaults when omitted."""

    if path is None:
        return get_settings()
    return build_settings(load_raw_settings(path))


__all__ = [
    "APP_NAME",
    "DATA_ROOT",
    "LOG_DIR",
    "DEFAULT_CONSTANT_NAMES",
    "HttpSettings",
    "SourceSettings",
    "SyncSettings",
    "LoggingSettings",
    "StaticDataSettings",
    "get_settings",
    "invalidate_settings_cache",
    "build_settings",
    "load_raw_settings",
    "load_settings",
]
