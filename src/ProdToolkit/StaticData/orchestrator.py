# === NAVMAP v1 ===
# {
#   "module": "ProdToolkit.StaticData.orchestrator",
#   "purpose": "Run one static data sync: resolve, confirm, download, signal readiness",
#   "sections": [
#     {"id": "state", "name": "SyncState", "anchor": "class-syncstate", "kind": "class"},
#     {"id": "outcome", "name": "SyncOutcome", "anchor": "class-syncoutcome", "kind": "class"},
#     {"id": "confirm", "name": "confirm_with_timeout", "anchor": "function-confirm-with-timeout", "kind": "function"},
#     {"id": "lock", "name": "destination_lock", "anchor": "function-destination-lock", "kind": "function"},
#     {"id": "sync", "name": "StaticDataSync", "anchor": "class-staticdatasync", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Static data sync orchestration.

A run moves through ``RESOLVING -> CONFIRMING -> DOWNLOADING`` and ends in
one of three terminal states:

``READY``
    Every pipeline succeeded and the version was persisted, or the resolved
    version was already synchronised and nothing had to be downloaded.
``DEGRADED``
    Readiness was signalled against previously synchronised data, either
    because an update was declined or because the fallback controller chose
    to accept stale data after a failure.
``FAILED``
    No fallback remained; :class:`SyncAbortedError` is raised.

Within an attempt the constants pipeline runs on a worker thread alongside
the archive pipeline.  Image sync starts only after the archive pipeline
finished, because the entity identifiers come from the extracted archive.
Both branches are joined before the attempt is judged.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from filelock import FileLock, Timeout

from .archive import ArchiveOutcome, ArchivePipeline
from .config_store import ConfigStore, SyncConfiguration
from .constants import ConstantsOutcome, ConstantsPipeline
from .errors import (
    ConfigurationError,
    ImageError,
    PipelineError,
    ResolutionError,
    StaticDataError,
    SyncAbortedError,
    SyncInProgressError,
)
from .fallback import FallbackAction, FallbackController
from .images import ImageSyncPipeline, ImagesOutcome, load_entity_identifiers
from .layout import StaticDataLayout
from .logging_config import generate_run_id
from .progress import ProgressSink
from .readiness import Pipeline, ReadinessGate, ReadyHandler
from .settings import StaticDataSettings, get_settings
from .versions import VersionCandidate, VersionResolver

LOGGER = logging.getLogger("ProdToolkit.StaticData.orchestrator")

UpdatePrompt = Callable[[Optional[str], str], bool]
"""Asked ``(previous_version, candidate_version)``; ``True`` installs the update."""


class SyncState(str, enum.Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    CONFIRMING = "confirming"
    DOWNLOADING = "downloading"
    READY = "ready"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncOutcome:
    """Result of a sync run that reached readiness."""

    state: SyncState
    version: str
    persisted: bool
    attempts: int
    elapsed_sec: float
    reason: Optional[str] = None
    archive: Optional[ArchiveOutcome] = None
    constants: Optional[ConstantsOutcome] = None
    images: Optional[ImagesOutcome] = None

    @property
    def stale(self) -> bool:
        return self.state is SyncState.DEGRADED


@dataclass
class _Attempt:
    archive: Optional[ArchiveOutcome] = None
    constants: Optional[ConstantsOutcome] = None
    images: Optional[ImagesOutcome] = None


def confirm_with_timeout(
    prompt: UpdatePrompt,
    previous: Optional[str],
    candidate: str,
    *,
    timeout: float,
    default: bool,
) -> bool:
    """Ask ``prompt`` on a daemon thread and fall back to ``default`` after ``timeout``.

    An answer arriving after the timeout is ignored.  Exceptions raised by the
    prompt are re-raised on the calling thread.
    """

    answer: List[bool] = []
    failure: List[BaseException] = []

    def _ask() -> None:
        try:
            answer.append(bool(prompt(previous, candidate)))
        except BaseException as exc:  # noqa: BLE001 - re-raised on the caller's thread
            failure.append(exc)

    thread = threading.Thread(target=_ask, name="staticdata-confirm", daemon=True)
    thread.start()
    thread.join(timeout)
    if failure:
        raise failure[0]
    if not answer:
        LOGGER.info(
            "update confirmation timed out, using default",
            extra={"stage": "confirm", "default": default, "timeout_sec": timeout},
        )
        return default
    return answer[0]


@contextlib.contextmanager
def destination_lock(path: Path) -> Iterator[Path]:
    """Hold the destination root lock for the duration of a run.

    Raises:
        SyncInProgressError: If another run already holds the lock.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(path))
    try:
        lock.acquire(timeout=0)
    except Timeout as exc:
        raise SyncInProgressError(f"another sync holds {path}") from exc
    try:
        yield path
    finally:
        lock.release()


class StaticDataSync:
    """Drive one sync run against a destination root.

    Args:
        store: Owner of the configuration snapshot and of the persisted
            last-synced version.
        settings: Settings to use; defaults to :func:`get_settings`.
        gate: Readiness gate for the first run; a fresh gate persisting
            through ``store`` is created when omitted.  Every later call to
            :meth:`run` signals a renewed gate, with the handlers registered
            through :meth:`register_ready_handler` attached again.
        prompt: Optional update confirmation, asked only when a previously
            synchronised version exists and differs from the resolved one.
        progress: Optional sink for archive download progress.
        resolver, archive, constants, images: Pipeline overrides, mainly for
            tests.
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        settings: Optional[StaticDataSettings] = None,
        gate: Optional[ReadinessGate] = None,
        prompt: Optional[UpdatePrompt] = None,
        progress: Optional[ProgressSink] = None,
        resolver: Optional[VersionResolver] = None,
        archive: Optional[ArchivePipeline] = None,
        constants: Optional[ConstantsPipeline] = None,
        images: Optional[ImageSyncPipeline] = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        sync = self.settings.sync
        self.layout = StaticDataLayout(sync.destination_root, sync.language)
        self.gate = gate or ReadinessGate(persist=store.set_last_synced_version)
        self._handlers: List[ReadyHandler] = []
        self.prompt = prompt
        self.tree_lock = threading.Lock()
        self.resolver = resolver or VersionResolver(self.settings.sources, self.settings.http)
        self.archive = archive or ArchivePipeline(
            self.layout,
            sources=self.settings.sources,
            http=self.settings.http,
            staging_dir=sync.staging_dir,
            progress=progress,
            tree_lock=self.tree_lock,
        )
        self.constants = constants or ConstantsPipeline(
            self.layout,
            sources=self.settings.sources,
            http=self.settings.http,
            max_workers=sync.constants_workers,
            tree_lock=self.tree_lock,
        )
        self.images = images or ImageSyncPipeline(
            sources=self.settings.sources,
            http=self.settings.http,
            max_workers=sync.image_workers,
        )
        self.state = SyncState.IDLE
        self.candidate = VersionCandidate()
        self.run_id: Optional[str] = None

    def register_ready_handler(self, handler: ReadyHandler) -> None:
        """Register ``handler`` for this run and every later run of this object."""
        self._handlers.append(handler)
        self.gate.register_ready_handler(handler)

    def _renew_gate(self) -> None:
        self.gate = self.gate.renew()
        for handler in self._handlers:
            self.gate.register_ready_handler(handler)

    def _transition(self, state: SyncState, **fields: object) -> None:
        self.state = state
        LOGGER.debug(
            "sync state",
            extra={"stage": "sync", "run_id": self.run_id, "state": state.value, **fields},
        )

    def run(self) -> SyncOutcome:
        """Run the sync to readiness.

        Raises:
            SyncInProgressError: If another run holds the destination root.
            SyncAbortedError: If the run failed and no fallback remained.
        """
        with destination_lock(self.layout.lock_path):
            return self._run_locked()

    def _run_locked(self) -> SyncOutcome:
        started = time.monotonic()
        config = self.store.snapshot()
        fallback = FallbackController(
            config, max_version_regressions=self.settings.sync.max_version_regressions
        )
        if self.run_id is not None:
            self._renew_gate()
        self.candidate = VersionCandidate()
        self.run_id = generate_run_id()
        attempts = 0
        LOGGER.info(
            "static data sync started",
            extra={
                "stage": "sync",
                "run_id": self.run_id,
                "destination": str(self.layout.root),
                "pinned_version": config.desired_version,
                "last_synced_version": config.last_synced_version,
                "config_hash": self.settings.config_hash(),
            },
        )

        while True:
            attempts += 1
            try:
                version = self._resolve(config)
                if version == config.last_synced_version:
                    LOGGER.info(
                        "static data already up to date",
                        extra={"stage": "sync", "version": version},
                    )
                    return self._finish(
                        SyncState.READY, version, started, attempts, reason="up to date"
                    )

                previous = config.last_synced_version
                if previous is not None and not self._confirm(previous, version):
                    LOGGER.warning(
                        "update declined, proceeding with stale data",
                        extra={"stage": "confirm", "version": previous, "declined": version},
                    )
                    return self._finish(
                        SyncState.DEGRADED,
                        previous,
                        started,
                        attempts,
                        reason=f"update to {version} declined",
                    )

                attempt = self._download(version)
            except (ResolutionError, PipelineError) as exc:
                decision = fallback.on_pipeline_error(exc, self.candidate)
                if decision.action is FallbackAction.RETRY_OLDER:
                    self.gate.reset()
                    continue
                if decision.action is FallbackAction.ACCEPT_STALE:
                    if decision.version is None:
                        raise StaticDataError("stale fallback chosen without a version") from exc
                    return self._finish(
                        SyncState.DEGRADED,
                        decision.version,
                        started,
                        attempts,
                        reason=decision.reason,
                    )
                self._transition(SyncState.FAILED)
                raise SyncAbortedError(decision.reason) from exc

            persist_error = self.gate.persist_error
            if persist_error is not None:
                LOGGER.warning(
                    "static data ready but the synced version was not recorded",
                    extra={"stage": "persist", "run_id": self.run_id, "version": version},
                )
            self._transition(SyncState.READY, version=version)
            return SyncOutcome(
                state=SyncState.READY,
                version=version,
                persisted=self.gate.persisted,
                attempts=attempts,
                elapsed_sec=round(time.monotonic() - started, 3),
                archive=attempt.archive,
                constants=attempt.constants,
                images=attempt.images,
                reason=str(persist_error) if persist_error is not None else None,
            )

    def _resolve(self, config: SyncConfiguration) -> str:
        self._transition(SyncState.RESOLVING, cursor=self.candidate.cursor)
        try:
            return self.resolver.resolve(config, self.candidate.cursor)
        finally:
            if self.resolver.available_versions:
                self.candidate.record(self.resolver.available_versions)

    def _confirm(self, previous: str, version: str) -> bool:
        if self.prompt is None:
            return True
        self._transition(SyncState.CONFIRMING, version=version, previous=previous)
        return confirm_with_timeout(
            self.prompt,
            previous,
            version,
            timeout=self.settings.sync.confirm_timeout_sec,
            default=self.settings.sync.confirm_default,
        )

    def _finish(
        self,
        state: SyncState,
        version: str,
        started: float,
        attempts: int,
        *,
        reason: str,
    ) -> SyncOutcome:
        self._transition(state, version=version)
        self.gate.release(version)
        return SyncOutcome(
            state=state,
            version=version,
            persisted=False,
            attempts=attempts,
            elapsed_sec=round(time.monotonic() - started, 3),
            reason=reason,
        )

    def _download(self, version: str) -> _Attempt:
        """Run the three pipelines for ``version`` and mark the gate.

        Raises:
            PipelineError: The archive error when the archive branch failed,
                otherwise the constants or image error.
        """
        self._transition(SyncState.DOWNLOADING, version=version)
        self.gate.bind(version)
        attempt = _Attempt()
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="staticdata-sync") as executor:
            self.gate.mark_running(Pipeline.CONSTANTS)
            constants_future: Future[ConstantsOutcome] = executor.submit(
                self.constants.run, version
            )
            archive_error: Optional[StaticDataError] = None
            try:
                attempt.archive = self._run_archive(version)
                attempt.images = self._run_images(version)
            except PipelineError as exc:
                archive_error = exc
            constants_error: Optional[StaticDataError] = None
            try:
                attempt.constants = constants_future.result()
                self.gate.mark_constants_done()
            except PipelineError as exc:
                self.gate.mark_failed(Pipeline.CONSTANTS)
                constants_error = exc

        if archive_error is not None:
            raise archive_error
        if constants_error is not None:
            raise constants_error
        return attempt

    def _run_archive(self, version: str) -> ArchiveOutcome:
        self.gate.mark_running(Pipeline.ARCHIVE)
        try:
            outcome = self.archive.run(version, self.layout.root)
        except PipelineError:
            self.gate.mark_failed(Pipeline.ARCHIVE)
            raise
        self.gate.mark_archive_done()
        return outcome

    def _run_images(self, version: str) -> ImagesOutcome:
        self.gate.mark_running(Pipeline.IMAGES)
        try:
            try:
                identifiers = load_entity_identifiers(self.layout.language_file("champion.json"))
            except ConfigurationError as exc:
                raise ImageError(f"entity identifiers unavailable: {exc}", version=version) from exc
            outcome = self.images.run(identifiers, self.layout.champion_centered_dir)
        except PipelineError as exc:
            self.gate.mark_failed(Pipeline.IMAGES)
            if exc.version is None:
                exc.version = version
            raise
        self.gate.mark_images_done()
        return outcome


def run_sync(
    store: ConfigStore,
    *,
    settings: Optional[StaticDataSettings] = None,
    on_ready: Optional[ReadyHandler] = None,
    prompt: Optional[UpdatePrompt] = None,
    progress: Optional[ProgressSink] = None,
) -> SyncOutcome:
    """Convenience wrapper building a :class:`StaticDataSync` and running it once."""

    sync = StaticDataSync(store, settings=settings, prompt=prompt, progress=progress)
    if on_ready is not None:
        sync.register_ready_handler(on_ready)
    return sync.run()


__all__ = [
    "SyncState",
    "SyncOutcome",
    "UpdatePrompt",
    "StaticDataSync",
    "confirm_with_timeout",
    "destination_lock",
    "run_sync",
]
