"""Tests for the readiness gate."""

import itertools
import logging
import threading

import pytest

from ProdToolkit.StaticData.errors import ConfigurationError
from ProdToolkit.StaticData.readiness import Pipeline, PipelineStatus, ReadinessGate

MARKS = ("mark_archive_done", "mark_constants_done", "mark_images_done")


class TestReadyHandlerFiresOnce:
    """The ready handler fires exactly once, whatever the order of events."""

    @pytest.mark.parametrize("order", list(itertools.permutations(MARKS)))
    @pytest.mark.parametrize("register_at", [0, 1, 2, 3])
    def test_any_order(self, order, register_at):
        persisted = []
        fired = []
        gate = ReadinessGate(persist=persisted.append)
        gate.bind("14.1.1")

        for index, mark in enumerate(order):
            if index == register_at:
                gate.register_ready_handler(fired.append)
            getattr(gate, mark)()
        if register_at == len(order):
            gate.register_ready_handler(fired.append)

        assert fired == ["14.1.1"]
        assert persisted == ["14.1.1"]
        assert gate.is_ready

    def test_repeated_marks_are_idempotent(self):
        fired = []
        persisted = []
        gate = ReadinessGate(persist=persisted.append)
        gate.bind("14.1.1")
        gate.register_ready_handler(fired.append)

        for _ in range(3):
            for mark in MARKS:
                getattr(gate, mark)()

        assert fired == ["14.1.1"]
        assert persisted == ["14.1.1"]

    def test_not_ready_until_all_marks(self):
        fired = []
        gate = ReadinessGate()
        gate.bind("14.1.1")
        gate.register_ready_handler(fired.append)
        gate.mark_archive_done()
        gate.mark_images_done()

        assert fired == []
        assert not gate.is_ready
        assert gate.status(Pipeline.CONSTANTS) is PipelineStatus.PENDING

    def test_every_registered_handler_fires(self):
        first, second = [], []
        gate = ReadinessGate()
        gate.bind("1.0")
        gate.register_ready_handler(first.append)
        gate.register_ready_handler(second.append)
        for mark in MARKS:
            getattr(gate, mark)()
        assert first == ["1.0"]
        assert second == ["1.0"]


class TestRelease:
    def test_release_does_not_persist_by_default(self):
        persisted = []
        fired = []
        gate = ReadinessGate(persist=persisted.append)
        gate.register_ready_handler(fired.append)

        assert gate.release("13.9.1") is True

        assert fired == ["13.9.1"]
        assert persisted == []
        assert gate.persisted is False

    def test_release_with_persist(self):
        persisted = []
        gate = ReadinessGate(persist=persisted.append)
        gate.release("13.9.1", persist=True)
        assert persisted == ["13.9.1"]
        assert gate.persisted is True

    def test_release_after_ready_is_ignored(self):
        fired = []
        gate = ReadinessGate()
        gate.register_ready_handler(fired.append)
        gate.release("1")
        assert gate.release("2") is False
        for mark in MARKS:
            getattr(gate, mark)()
        assert fired == ["1"]
        assert gate.version == "1"


class TestStatuses:
    def test_succeeded_never_transitions(self):
        gate = ReadinessGate()
        gate.mark_running(Pipeline.ARCHIVE)
        assert gate.status(Pipeline.ARCHIVE) is PipelineStatus.RUNNING
        gate.mark_archive_done()
        gate.mark_failed(Pipeline.ARCHIVE)
        gate.mark_running(Pipeline.ARCHIVE)
        assert gate.status(Pipeline.ARCHIVE) is PipelineStatus.SUCCEEDED

    def test_reset_clears_marks(self):
        gate = ReadinessGate()
        gate.bind("14.1.1")
        gate.mark_archive_done()
        gate.mark_failed(Pipeline.IMAGES)
        gate.reset()

        assert gate.version is None
        assert all(gate.status(p) is PipelineStatus.PENDING for p in Pipeline)

    def test_reset_after_ready_is_rejected(self):
        gate = ReadinessGate()
        gate.release("1")
        with pytest.raises(RuntimeError):
            gate.reset()
        with pytest.raises(RuntimeError):
            gate.bind("2")

    def test_completion_without_version_is_rejected(self):
        gate = ReadinessGate()
        gate.mark_archive_done()
        gate.mark_constants_done()
        with pytest.raises(RuntimeError):
            gate.mark_images_done()


def test_wait_unblocks_on_ready():
    gate = ReadinessGate()
    gate.bind("14.1.1")
    assert gate.wait(timeout=0.01) is False

    def _complete():
        for mark in MARKS:
            getattr(gate, mark)()

    worker = threading.Thread(target=_complete)
    worker.start()
    assert gate.wait(timeout=5)
    worker.join()
    assert gate.wait(timeout=0)


def test_concurrent_marks_fire_once():
    fired = []
    gate = ReadinessGate()
    gate.bind("14.1.1")
    gate.register_ready_handler(fired.append)
    barrier = threading.Barrier(len(MARKS) * 4)

    def _mark(name):
        barrier.wait()
        getattr(gate, name)()

    threads = [threading.Thread(target=_mark, args=(name,)) for name in MARKS * 4]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert fired == ["14.1.1"]


class TestFailureIsolation:
    def test_raising_handler_does_not_starve_later_handlers(self, caplog):
        fired = []

        def _broken(version):
            raise ValueError("boom")

        gate = ReadinessGate()
        gate.bind("14.1.1")
        gate.register_ready_handler(_broken)
        gate.register_ready_handler(fired.append)

        with caplog.at_level(logging.ERROR, logger="ProdToolkit.StaticData.readiness"):
            for mark in MARKS:
                getattr(gate, mark)()

        assert fired == ["14.1.1"]
        assert gate.is_ready
        assert any(record.getMessage() == "ready handler failed" for record in caplog.records)

    def test_late_raising_handler_is_contained(self):
        gate = ReadinessGate()
        gate.release("14.1.1")

        def _broken(version):
            raise ValueError("boom")

        gate.register_ready_handler(_broken)
        assert gate.is_ready

    def test_persist_failure_still_fires_unpersisted(self):
        fired = []

        def _read_only(version):
            raise PermissionError("store is read-only")

        gate = ReadinessGate(persist=_read_only)
        gate.bind("14.1.1")
        gate.register_ready_handler(fired.append)
        for mark in MARKS:
            getattr(gate, mark)()

        assert fired == ["14.1.1"]
        assert gate.is_ready
        assert gate.persisted is False
        assert isinstance(gate.persist_error, ConfigurationError)
        assert "read-only" in str(gate.persist_error)

    def test_release_with_failing_persist(self):
        def _read_only(version):
            raise OSError("disk full")

        gate = ReadinessGate(persist=_read_only)
        assert gate.release("14.1.1", persist=True) is True
        assert gate.persisted is False
        assert isinstance(gate.persist_error, ConfigurationError)


def test_renewed_gate_is_fresh_and_keeps_persister():
    persisted = []
    gate = ReadinessGate(persist=persisted.append)
    gate.release("14.1.1")

    renewed = gate.renew()
    renewed.bind("14.2.1")
    for mark in MARKS:
        getattr(renewed, mark)()

    assert renewed is not gate
    assert renewed.version == "14.2.1"
    assert persisted == ["14.2.1"]
    assert gate.version == "14.1.1"
