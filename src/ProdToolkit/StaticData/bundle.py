"""Assemble the static data bundle served to consumers once a sync is ready."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigurationError
from .layout import StaticDataLayout


class StaticBundle(BaseModel):
    """Constants and per-language metadata of one synchronised version."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str
    seasons: Any
    queues: Any
    maps: Any
    game_modes: Any = Field(alias="gameModes")
    game_types: Any = Field(alias="gameTypes")
    perks: Any
    champions: List[Any]
    items: List[Any]
    item_bin: List[Any] = Field(alias="itemBin")

    def to_payload(self) -> Dict[str, Any]:
        """Return the bundle keyed the way consumers expect (``gameModes``, ``itemBin``...)."""
        return self.model_dump(by_alias=True)

    def summary(self) -> Dict[str, int]:
        def _size(value: Any) -> int:
            if isinstance(value, (list, dict)):
                return len(value)
            return 1

        return {
            "seasons": _size(self.seasons),
            "queues": _size(self.queues),
            "maps": _size(self.maps),
            "gameModes": _size(self.game_modes),
            "gameTypes": _size(self.game_types),
            "perks": _size(self.perks),
            "champions": len(self.champions),
            "items": len(self.items),
            "itemBin": len(self.item_bin),
        }


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"static data file missing: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"static data file unreadable: {path}: {exc}") from exc


def _values_of(payload: Any, path: Path) -> List[Any]:
    container = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(container, dict):
        raise ConfigurationError(f"static data file {path} has no 'data' mapping")
    return list(container.values())


def load_static_bundle(layout: StaticDataLayout, version: str) -> StaticBundle:
    """Read the materialised files under ``layout`` into a :class:`StaticBundle`.

    Raises:
        ConfigurationError: If a file is missing or malformed.
    """

    champion_path = layout.language_file("champion.json")
    item_path = layout.language_file("item.json")
    item_bin = _read_json(layout.item_bin_path)
    if not isinstance(item_bin, dict):
        raise ConfigurationError(f"static data file {layout.item_bin_path} must hold an object")
    return StaticBundle(
        version=version,
        seasons=_read_json(layout.constant_path("seasons")),
        queues=_read_json(layout.constant_path("queues")),
        maps=_read_json(layout.language_file("map.json")),
        game_modes=_read_json(layout.constant_path("gameModes")),
        game_types=_read_json(layout.constant_path("gameTypes")),
        perks=_read_json(layout.language_file("runesReforged.json")),
        champions=_values_of(_read_json(champion_path), champion_path),
        items=_values_of(_read_json(item_path), item_path),
        item_bin=list(item_bin.values()),
    )


__all__ = ["StaticBundle", "load_static_bundle"]
