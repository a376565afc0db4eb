"""Tests for the fallback policy."""

import logging

import pytest

from ProdToolkit.StaticData.config_store import SyncConfiguration
from ProdToolkit.StaticData.errors import (
    ArchiveError,
    ArchiveStage,
    ConstantsError,
    ImageError,
    ResolutionError,
)
from ProdToolkit.StaticData.fallback import FallbackAction, FallbackController
from ProdToolkit.StaticData.versions import VersionCandidate

ERRORS = [
    ArchiveError("boom", stage=ArchiveStage.DOWNLOADING, version="14.1.1"),
    ConstantsError("boom", failed=("queues",), version="14.1.1"),
    ImageError("boom", failed_identifier="Ahri", version="14.1.1"),
    ResolutionError("list down", list_available=False),
]


def _candidate(versions=("14.1.1", "13.24.1", "13.23.1"), cursor=0):
    candidate = VersionCandidate(cursor=cursor)
    candidate.record(versions)
    return candidate


@pytest.mark.parametrize("error", ERRORS)
def test_previous_version_is_accepted_as_stale(error, caplog):
    controller = FallbackController(SyncConfiguration(last_synced_version="13.9.1"))
    candidate = _candidate()

    with caplog.at_level(logging.WARNING, logger="ProdToolkit.StaticData.fallback"):
        decision = controller.on_pipeline_error(error, candidate)

    assert decision.action is FallbackAction.ACCEPT_STALE
    assert decision.version == "13.9.1"
    assert candidate.cursor == 0
    assert any("stale data" in record.getMessage() for record in caplog.records)


def test_stale_wins_over_older_upstream_candidate():
    controller = FallbackController(SyncConfiguration(last_synced_version="13.9.1"))
    decision = controller.on_pipeline_error(ERRORS[0], _candidate())
    assert decision.action is FallbackAction.ACCEPT_STALE


@pytest.mark.parametrize("error", ERRORS)
def test_no_previous_version_retries_older(error, caplog):
    controller = FallbackController(SyncConfiguration())
    candidate = _candidate()

    with caplog.at_level(logging.WARNING, logger="ProdToolkit.StaticData.fallback"):
        decision = controller.on_pipeline_error(error, candidate)

    assert decision.action is FallbackAction.RETRY_OLDER
    assert decision.cursor == 1
    assert candidate.cursor == 1
    assert any("older version" in record.getMessage() for record in caplog.records)


def test_unknown_list_still_retries():
    controller = FallbackController(SyncConfiguration())
    candidate = VersionCandidate()

    decision = controller.on_pipeline_error(ERRORS[3], candidate)

    assert decision.action is FallbackAction.RETRY_OLDER
    assert candidate.cursor == 1


def test_exhausted_list_is_fatal():
    controller = FallbackController(SyncConfiguration())
    candidate = _candidate(cursor=2)

    decision = controller.on_pipeline_error(ERRORS[0], candidate)

    assert decision.action is FallbackAction.FATAL
    assert candidate.cursor == 2


def test_exhausted_resolution_error_is_fatal():
    controller = FallbackController(SyncConfiguration())
    error = ResolutionError("no version at index 3", cursor=3, exhausted=True)

    decision = controller.on_pipeline_error(error, VersionCandidate(cursor=3))
    assert decision.action is FallbackAction.FATAL


def test_pinned_version_cannot_regress():
    controller = FallbackController(SyncConfiguration(desired_version="14.1.1"))
    decision = controller.on_pipeline_error(ERRORS[0], _candidate())

    assert decision.action is FallbackAction.FATAL
    assert "pinned" in decision.reason


def test_known_list_bounds_regressions_by_length():
    controller = FallbackController(SyncConfiguration(), max_version_regressions=2)
    candidate = _candidate(versions=tuple(f"14.{n}.1" for n in range(10, 0, -1)))

    actions = []
    while not actions or actions[-1] is FallbackAction.RETRY_OLDER:
        actions.append(controller.on_pipeline_error(ERRORS[1], candidate).action)

    assert actions.count(FallbackAction.RETRY_OLDER) == 9
    assert actions[-1] is FallbackAction.FATAL
    assert candidate.cursor == 9


def test_unknown_list_regressions_are_capped():
    controller = FallbackController(SyncConfiguration(), max_version_regressions=2)
    candidate = VersionCandidate()
    error = ResolutionError("list down", list_available=False)

    actions = [controller.on_pipeline_error(error, candidate).action for _ in range(3)]

    assert actions == [FallbackAction.RETRY_OLDER, FallbackAction.RETRY_OLDER, FallbackAction.FATAL]
    assert candidate.cursor == 2
    assert not candidate.listed


def test_cursor_is_monotonic():
    controller = FallbackController(SyncConfiguration())
    candidate = _candidate()
    cursors = []
    while controller.on_pipeline_error(ERRORS[2], candidate).action is FallbackAction.RETRY_OLDER:
        cursors.append(candidate.cursor)
    assert cursors == [1, 2]


def test_negative_bound_rejected():
    with pytest.raises(ValueError):
        FallbackController(SyncConfiguration(), max_version_regressions=-1)
