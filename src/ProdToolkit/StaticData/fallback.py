"""Fallback policy applied when a sync attempt fails.

Two recovery paths exist.  With no previously synchronised version on record
the run regresses to the next-older upstream version and starts again from
resolution.  With a previous version on record the run stops and readiness is
signalled against the stale data already on disk.  When both are possible the
stale path wins: a version that is known to have been fully synchronised is
preferred over an untried older upstream release.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from .config_store import SyncConfiguration
from .errors import ResolutionError, StaticDataError
from .versions import VersionCandidate

LOGGER = logging.getLogger("ProdToolkit.StaticData.fallback")


class FallbackAction(str, enum.Enum):
    RETRY_OLDER = "retry-older"
    ACCEPT_STALE = "accept-stale"
    FATAL = "fatal"


@dataclass(frozen=True)
class FallbackDecision:
    """What the orchestrator should do after a failed attempt.

    Attributes:
        action: The chosen recovery path.
        version: Stale version to release for ``ACCEPT_STALE``; ``None``
            otherwise.
        cursor: Cursor the next attempt resolves at for ``RETRY_OLDER``.
        reason: Human readable explanation, also used in logs.
    """

    action: FallbackAction
    reason: str
    version: Optional[str] = None
    cursor: Optional[int] = None


class FallbackController:
    """Decide between retrying an older version, accepting stale data, or giving up.

    A known versions list bounds regression by its length alone.
    ``max_version_regressions`` caps the blind regressions made while the list
    has never been fetched.
    """

    def __init__(self, config: SyncConfiguration, *, max_version_regressions: int = 5) -> None:
        if max_version_regressions < 0:
            raise ValueError("max_version_regressions must be non-negative")
        self.config = config
        self.max_version_regressions = max_version_regressions
        self.regressions = 0

    def on_pipeline_error(
        self, error: StaticDataError, candidate: VersionCandidate
    ) -> FallbackDecision:
        """Return the decision for ``error``; advances ``candidate`` when retrying."""

        stale = self.config.last_synced_version
        if stale:
            decision = FallbackDecision(
                action=FallbackAction.ACCEPT_STALE,
                version=stale,
                reason=f"proceeding with stale data from version {stale}: {error}",
            )
            LOGGER.warning(
                "sync failed, proceeding with stale data",
                extra={
                    "stage": "fallback",
                    "action": decision.action.value,
                    "stale_version": stale,
                    "error": str(error),
                },
            )
            return decision

        if self.config.desired_version:
            return self._fatal(
                f"pinned version {self.config.desired_version} failed and no previous "
                f"version is recorded: {error}",
                error,
            )
        if isinstance(error, ResolutionError) and error.exhausted:
            return self._fatal(f"no older version available: {error}", error)
        if not candidate.has_older():
            return self._fatal(
                f"no version older than index {candidate.cursor} available: {error}", error
            )
        if not candidate.listed and self.regressions >= self.max_version_regressions:
            return self._fatal(
                f"gave up after {self.regressions} older versions: {error}", error
            )

        self.regressions += 1
        cursor = candidate.advance()
        decision = FallbackDecision(
            action=FallbackAction.RETRY_OLDER,
            cursor=cursor,
            reason=f"retrying with the version at index {cursor}: {error}",
        )
        LOGGER.warning(
            "sync failed, retrying with an older version",
            extra={
                "stage": "fallback",
                "action": decision.action.value,
                "cursor": cursor,
                "regressions": self.regressions,
                "error": str(error),
            },
        )
        return decision

    def _fatal(self, reason: str, error: StaticDataError) -> FallbackDecision:
        LOGGER.error(
            "sync failed, no fallback available",
            extra={"stage": "fallback", "action": FallbackAction.FATAL.value, "error": str(error)},
        )
        return FallbackDecision(action=FallbackAction.FATAL, reason=reason)


__all__ = ["FallbackAction", "FallbackDecision", "FallbackController"]
