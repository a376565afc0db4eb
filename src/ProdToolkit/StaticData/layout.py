"""Filesystem layout of a synchronised destination root."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

LANGUAGE_FILES: Tuple[str, ...] = ("map.json", "runesReforged.json", "champion.json", "item.json")
VERSIONED_IMAGE_DIRS: Tuple[str, ...] = ("img/champion", "img/item", "img/profileicon")
SHARED_IMAGE_DIRS: Tuple[str, ...] = ("img/champion", "img/perk-images/Styles")
LOCK_FILENAME = ".staticdata.lock"


@dataclass(frozen=True, slots=True)
class StaticDataLayout:
    """Paths materialised under ``root`` by a sync run.

    Examples:
        >>> layout = StaticDataLayout(Path("/srv/frontend"), "en_US")
        >>> layout.language_file("champion.json").as_posix()
        '/srv/frontend/data/en_US/champion.json'
    """

    root: Path
    language: str = "en_US"

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def constants_dir(self) -> Path:
        return self.data_dir / "constants"

    @property
    def item_bin_path(self) -> Path:
        return self.data_dir / "item.bin.json"

    @property
    def language_dir(self) -> Path:
        return self.data_dir / self.language

    @property
    def champion_centered_dir(self) -> Path:
        return self.root / "img" / "champion" / "centered"

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILENAME

    def constant_path(self, name: str) -> Path:
        return self.constants_dir / f"{name}.json"

    def language_file(self, filename: str) -> Path:
        return self.language_dir / filename

    def version_dir(self, version: str) -> Path:
        """Directory the archive's version-scoped members extract into."""
        return self.root / version

    def archive_members(self, version: str) -> Tuple[str, ...]:
        """Allow-list of archive member prefixes extracted for ``version``."""

        members = [f"{version}/{directory}" for directory in VERSIONED_IMAGE_DIRS]
        members.extend(f"{version}/data/{self.language}/{name}" for name in LANGUAGE_FILES)
        members.extend(SHARED_IMAGE_DIRS)
        return tuple(members)


__all__ = [
    "LANGUAGE_FILES",
    "VERSIONED_IMAGE_DIRS",
    "SHARED_IMAGE_DIRS",
    "LOCK_FILENAME",
    "StaticDataLayout",
]
