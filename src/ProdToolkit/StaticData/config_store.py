"""Configuration snapshot and the store that owns it.

The sync core only ever sees an immutable :class:`SyncConfiguration`
snapshot.  Persisting the last successfully synchronised version is delegated
to a :class:`ConfigStore`, the external owner of that state.  The bundled
:class:`JsonConfigStore` keeps the snapshot in a small JSON document using the
host's wire names (``gameVersion`` and ``last-downloaded-version``).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError

LOGGER = logging.getLogger("ProdToolkit.StaticData.config_store")

GAME_VERSION_KEY = "gameVersion"
LAST_DOWNLOADED_KEY = "last-downloaded-version"


class SyncConfiguration(BaseModel):
    """Immutable configuration snapshot handed to a sync run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    desired_version: Optional[str] = Field(default=None, alias=GAME_VERSION_KEY)
    last_synced_version: Optional[str] = Field(default=None, alias=LAST_DOWNLOADED_KEY)

    @field_validator("desired_version", "last_synced_version", mode="before")
    @classmethod
    def blank_as_missing(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("version must be a string")
        stripped = value.strip()
        return stripped or None

    def to_wire(self) -> Dict[str, str]:
        """Return the snapshot using the host's key names, omitting unset values."""

        return self.model_dump(by_alias=True, exclude_none=True)


class ConfigStore(Protocol):
    """Owner of the persisted sync configuration."""

    def snapshot(self) -> SyncConfiguration:
        """Return the current configuration snapshot."""

    def set_last_synced_version(self, version: str) -> None:
        """Record ``version`` as the last successfully synchronised version."""


def write_json_atomic(path: Path, payload: object) -> Path:
    """Atomically persist ``payload`` as JSON to ``path``."""

    resolved = path.expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=str(resolved.parent), delete=False
    ) as handle:
        temp_path = Path(handle.name)
        try:
            json.dump(payload, handle, indent=2, sort_keys=True)
            handle.flush()
            try:
                os.fsync(handle.fileno())
            except (AttributeError, OSError):
                pass
        except BaseException:
            handle.close()
            temp_path.unlink(missing_ok=True)
            raise
    temp_path.replace(resolved)
    return resolved


class JsonConfigStore:
    """Config store backed by a JSON document on disk.

    Unknown keys in the document are preserved on update so the store can
    share a file with other host settings.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, object]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Config store {self.path} is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ConfigurationError(f"Config store {self.path} must contain a JSON object")
        return payload

    def snapshot(self) -> SyncConfiguration:
        with self._lock:
            payload = self._read()
        try:
            return SyncConfiguration.model_validate(payload)
        except ValidationError as exc:
            raise ConfigurationError(f"Config store {self.path} is invalid: {exc}") from exc

    def set_last_synced_version(self, version: str) -> None:
        with self._lock:
            payload = self._read()
            payload[LAST_DOWNLOADED_KEY] = version
            write_json_atomic(self.path, payload)
        LOGGER.info(
            "last synced version updated",
            extra={"stage": "persist", "version": version, "store": str(self.path)},
        )

    def set_desired_version(self, version: Optional[str]) -> None:
        """Pin (or unpin with ``None``) the version future runs should target."""

        with self._lock:
            payload = self._read()
            if version:
                payload[GAME_VERSION_KEY] = version
            else:
                payload.pop(GAME_VERSION_KEY, None)
            write_json_atomic(self.path, payload)


__all__ = [
    "GAME_VERSION_KEY",
    "LAST_DOWNLOADED_KEY",
    "SyncConfiguration",
    "ConfigStore",
    "JsonConfigStore",
    "write_json_atomic",
]
