"""Target version resolution.

The version to synchronise is either pinned in the configuration snapshot or
picked from the upstream versions list (newest first) at a cursor.  The
cursor only ever moves towards older versions within a run; the fallback
controller advances it after a failed attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence, Tuple

import httpx

from .config_store import SyncConfiguration
from .errors import ResolutionError
from .net import fetch_json
from .settings import HttpSettings, SourceSettings

LOGGER = logging.getLogger("ProdToolkit.StaticData.versions")

JsonFetcher = Callable[[str], Any]


@dataclass(slots=True)
class VersionCandidate:
    """Known upstream versions (newest first) and the monotonic cursor into them."""

    versions: Tuple[str, ...] = ()
    cursor: int = 0
    _listed: bool = field(default=False, repr=False)

    def record(self, versions: Sequence[str]) -> None:
        """Remember the most recently fetched versions list."""
        self.versions = tuple(versions)
        self._listed = True

    def advance(self) -> int:
        """Step one version older and return the new cursor."""
        self.cursor += 1
        return self.cursor

    @property
    def listed(self) -> bool:
        """Whether a versions list was ever recorded."""
        return self._listed

    @property
    def current(self) -> Optional[str]:
        if 0 <= self.cursor < len(self.versions):
            return self.versions[self.cursor]
        return None

    def has_older(self) -> bool:
        """Whether another, older entry may exist after the cursor.

        Before the list was ever fetched successfully the answer is unknown,
        and optimistically ``True``.
        """
        if not self._listed:
            return True
        return self.cursor + 1 < len(self.versions)


def patch_of(version: str) -> str:
    """Return the ``major.minor`` prefix of ``version``.

    Examples:
        >>> patch_of("14.1.1")
        '14.1'
        >>> patch_of("14")
        '14'
    """
    parts = version.split(".")
    return ".".join(parts[:2])


class VersionResolver:
    """Determine which version a run targets."""

    def __init__(
        self,
        sources: Optional[SourceSettings] = None,
        http: Optional[HttpSettings] = None,
        *,
        fetch: Optional[JsonFetcher] = None,
    ) -> None:
        self.sources = sources or SourceSettings()
        self.http = http or HttpSettings()
        self._fetch = fetch or (lambda url: fetch_json(url, http=self.http, stage="resolve"))
        self.available_versions: Tuple[str, ...] = ()

    def fetch_versions(self, *, cursor: int = 0) -> Tuple[str, ...]:
        """Fetch the upstream versions list, newest first."""

        url = self.sources.versions_url
        try:
            payload = self._fetch(url)
        except (httpx.HTTPError, ValueError) as exc:
            raise ResolutionError(
                f"versions list unavailable from {url}: {exc}",
                cursor=cursor,
                list_available=False,
            ) from exc
        if not isinstance(payload, list):
            raise ResolutionError(
                f"versions list from {url} is not a JSON array",
                cursor=cursor,
                list_available=False,
            )
        versions = tuple(item for item in payload if isinstance(item, str) and item.strip())
        self.available_versions = versions
        return versions

    def resolve(self, config: SyncConfiguration, cursor: int = 0) -> str:
        """Return the version to synchronise.

        A pinned ``desired_version`` is returned as-is without any network
        access and the cursor is ignored.  Otherwise the element at ``cursor``
        of the upstream list is returned.

        Raises:
            ResolutionError: If the list cannot be fetched or has no entry at
                ``cursor``.
        """
        if config.desired_version:
            LOGGER.debug(
                "using pinned version",
                extra={"stage": "resolve", "version": config.desired_version},
            )
            return config.desired_version

        if cursor < 0:
            raise ValueError("cursor must be non-negative")
        versions = self.fetch_versions(cursor=cursor)
        if cursor >= len(versions):
            raise ResolutionError(
                f"no version at index {cursor}; only {len(versions)} available",
                cursor=cursor,
                exhausted=True,
            )
        version = versions[cursor]
        LOGGER.info(
            "resolved version",
            extra={"stage": "resolve", "version": version, "cursor": cursor},
        )
        return version


__all__ = ["VersionCandidate", "VersionResolver", "patch_of"]
