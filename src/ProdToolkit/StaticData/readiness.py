# === NAVMAP v1 ===
# {
#   "module": "ProdToolkit.StaticData.readiness",
#   "purpose": "Fan-in barrier over pipeline completion with a one-shot ready signal",
#   "sections": [
#     {"id": "pipeline", "name": "Pipeline", "anchor": "class-pipeline", "kind": "class"},
#     {"id": "status", "name": "PipelineStatus", "anchor": "class-pipelinestatus", "kind": "class"},
#     {"id": "gate", "name": "ReadinessGate", "anchor": "class-readinessgate", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Readiness gate.

Three pipelines (archive, constants, images) report completion through
idempotent marks.  Completion is tracked as a bitset compared against a fixed
target.  Once every bit is set the gate persists the resolved version through
the configuration owner and becomes *ready*; ready handlers fire exactly once,
including handlers registered after the fact, which fire immediately on the
registering thread.

Handler exceptions are logged and do not stop the remaining handlers.  When
the persist callback fails the gate records a
:class:`~ProdToolkit.StaticData.errors.ConfigurationError` in
:attr:`ReadinessGate.persist_error` and still fires, with ``persisted`` false.

The skip and accept-stale paths bypass the marks with :meth:`ReadinessGate.release`,
which by default signals readiness without persisting anything.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Dict, List, Optional

from .errors import ConfigurationError

LOGGER = logging.getLogger("ProdToolkit.StaticData.readiness")

ReadyHandler = Callable[[str], None]
VersionPersister = Callable[[str], None]


class Pipeline(enum.IntFlag):
    ARCHIVE = 1
    CONSTANTS = 2
    IMAGES = 4


ALL_PIPELINES = Pipeline.ARCHIVE | Pipeline.CONSTANTS | Pipeline.IMAGES


class PipelineStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ReadinessGate:
    """Aggregate pipeline completion into a single ready signal.

    Args:
        persist: Called with the resolved version when the gate becomes ready
            through the three completion marks.
    """

    def __init__(self, persist: Optional[VersionPersister] = None) -> None:
        self._persist = persist
        self._lock = threading.RLock()
        self._completed = Pipeline(0)
        self._statuses: Dict[Pipeline, PipelineStatus] = {
            pipeline: PipelineStatus.PENDING for pipeline in Pipeline
        }
        self._handlers: List[ReadyHandler] = []
        self._ready = threading.Event()
        self._version: Optional[str] = None
        self._persisted = False
        self._persist_error: Optional[ConfigurationError] = None

    @property
    def version(self) -> Optional[str]:
        """Version the gate was bound to or released with."""
        return self._version

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def persisted(self) -> bool:
        """Whether the ready version was written back to the configuration owner."""
        return self._persisted

    @property
    def persist_error(self) -> Optional[ConfigurationError]:
        """Why persisting the ready version failed, if it did."""
        return self._persist_error

    def status(self, pipeline: Pipeline) -> PipelineStatus:
        with self._lock:
            return self._statuses[pipeline]

    def bind(self, version: str) -> None:
        """Associate the gate with the version the running attempt targets."""
        with self._lock:
            if self._ready.is_set():
                raise RuntimeError("cannot rebind a gate that already fired")
            self._version = version

    def reset(self) -> None:
        """Clear marks after a failed attempt so the next attempt starts afresh.

        Registered handlers are kept.  A gate that already fired cannot be reset.
        """
        with self._lock:
            if self._ready.is_set():
                raise RuntimeError("cannot reset a gate that already fired")
            self._completed = Pipeline(0)
            self._statuses = {pipeline: PipelineStatus.PENDING for pipeline in Pipeline}
            self._version = None

    def mark_running(self, pipeline: Pipeline) -> None:
        with self._lock:
            if self._statuses[pipeline] is PipelineStatus.PENDING:
                self._statuses[pipeline] = PipelineStatus.RUNNING

    def mark_failed(self, pipeline: Pipeline) -> None:
        with self._lock:
            if self._statuses[pipeline] is not PipelineStatus.SUCCEEDED:
                self._statuses[pipeline] = PipelineStatus.FAILED

    def mark_archive_done(self) -> None:
        self._mark(Pipeline.ARCHIVE)

    def mark_constants_done(self) -> None:
        self._mark(Pipeline.CONSTANTS)

    def mark_images_done(self) -> None:
        self._mark(Pipeline.IMAGES)

    def _mark(self, pipeline: Pipeline) -> None:
        with self._lock:
            if self._completed & pipeline:
                return
            self._completed |= pipeline
            self._statuses[pipeline] = PipelineStatus.SUCCEEDED
            if self._completed != ALL_PIPELINES:
                return
            version = self._version
            if version is None:
                raise RuntimeError("gate completed without a bound version")
            self._persisted = self._write_version(version)
            handlers = self._fire()
        self._dispatch(handlers, version)

    def release(self, version: str, *, persist: bool = False) -> bool:
        """Signal readiness for ``version`` regardless of the completion marks.

        The version is persisted only when ``persist`` is set.  Returns
        ``False`` when the gate had already fired.
        """
        with self._lock:
            if self._ready.is_set():
                return False
            self._version = version
            self._persisted = self._write_version(version) if persist else False
            handlers = self._fire()
        self._dispatch(handlers, version)
        return True

    def renew(self) -> "ReadinessGate":
        """Return an unfired gate that persists through the same callback."""
        return ReadinessGate(persist=self._persist)

    def register_ready_handler(self, handler: ReadyHandler) -> None:
        """Register ``handler``; it fires once, immediately if already ready."""
        with self._lock:
            if not self._ready.is_set():
                self._handlers.append(handler)
                return
            version = self._version
        self._dispatch([handler], version)  # type: ignore[arg-type]

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until ready; may be awaited any number of times."""
        return self._ready.wait(timeout)

    def _write_version(self, version: str) -> bool:
        # A store failure leaves the gate ready but unpersisted.
        if self._persist is None:
            return True
        try:
            self._persist(version)
        except Exception as exc:  # noqa: BLE001 - any store failure
            self._persist_error = ConfigurationError(
                f"failed to persist synced version {version}: {exc}"
            )
            LOGGER.error(
                "could not persist synced version",
                exc_info=True,
                extra={"stage": "persist", "version": version, "error": str(exc)},
            )
            return False
        return True

    def _fire(self) -> List[ReadyHandler]:
        handlers, self._handlers = self._handlers, []
        self._ready.set()
        LOGGER.info(
            "static data ready",
            extra={"stage": "ready", "version": self._version, "persisted": self._persisted},
        )
        return handlers

    @staticmethod
    def _dispatch(handlers: List[ReadyHandler], version: str) -> None:
        for handler in handlers:
            try:
                handler(version)
            except Exception:  # noqa: BLE001 - one handler must not starve the others
                LOGGER.exception(
                    "ready handler failed",
                    extra={"stage": "ready", "version": version, "handler": repr(handler)},
                )


__all__ = [
    "Pipeline",
    "ALL_PIPELINES",
    "PipelineStatus",
    "ReadinessGate",
    "ReadyHandler",
    "VersionPersister",
]
