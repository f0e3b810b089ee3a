"""Unit tests for calculation state tracking."""

from datetime import datetime, timedelta

import pytest

from leaguerank.db.models import RankingCalculation
from leaguerank.rankings.errors import CalculationNotFoundError, CalculationStateImmutableError
from leaguerank.rankings.tracker import CalculationTracker, find_stalled_calculations


@pytest.fixture
def tracker(session_factory):
    return CalculationTracker(session_factory)


def test_create_starts_pending(tracker):
    calc_id = tracker.create("full", "admin:ops", parameters={"k_base": 36.0})
    state = tracker.get(calc_id)

    assert state.status == "pending"
    assert state.mode == "full"
    assert state.triggered_by == "admin:ops"
    assert state.progress["percentComplete"] == 0
    assert state.parameters == {"k_base": 36.0}
    assert state.completed_at is None


def test_create_rejects_unknown_mode(tracker):
    with pytest.raises(ValueError):
        tracker.create("partial", "cli")


def test_full_lifecycle(tracker):
    calc_id = tracker.create("incremental", "cli")
    tracker.mark_running(calc_id)
    tracker.update_progress(calc_id, current_step="Replaying rounds", percent_complete=42.123,
                            rounds_processed=3, total_rounds=7)

    running = tracker.get(calc_id)
    assert running.status == "running"
    assert running.progress["currentStep"] == "Replaying rounds"
    assert running.progress["percentComplete"] == 42.1
    assert running.progress["roundsProcessed"] == 3
    assert running.progress["totalRounds"] == 7

    tracker.mark_completed(calc_id, rounds_remaining=0)
    done = tracker.get(calc_id)
    assert done.status == "completed"
    assert done.progress["percentComplete"] == 100
    assert done.progress["roundsRemaining"] == 0
    # Earlier progress fields are kept
    assert done.progress["totalRounds"] == 7
    assert done.completed_at is not None
    assert done.is_terminal


def test_mark_failed_captures_message_and_stack(tracker):
    calc_id = tracker.create("full", "cli")
    tracker.mark_running(calc_id)
    try:
        raise RuntimeError("season s9 does not exist")
    except RuntimeError as exc:
        tracker.mark_failed(calc_id, exc)

    state = tracker.get(calc_id)
    assert state.status == "failed"
    assert state.error["message"] == "season s9 does not exist"
    assert "RuntimeError" in state.error["stack"]
    assert "test_mark_failed_captures_message_and_stack" in state.error["stack"]
    datetime.fromisoformat(state.error["timestamp"])


@pytest.mark.parametrize("finish", ["completed", "failed"])
def test_terminal_state_is_immutable(tracker, finish):
    calc_id = tracker.create("full", "cli")
    if finish == "completed":
        tracker.mark_completed(calc_id)
    else:
        tracker.mark_failed(calc_id, ValueError("boom"))

    with pytest.raises(CalculationStateImmutableError):
        tracker.update_progress(calc_id, percent_complete=50)
    with pytest.raises(CalculationStateImmutableError):
        tracker.mark_running(calc_id)
    with pytest.raises(CalculationStateImmutableError):
        tracker.mark_failed(calc_id, ValueError("again"))


def test_update_rejects_unknown_fields(tracker):
    calc_id = tracker.create("full", "cli")
    with pytest.raises(ValueError):
        tracker.update(calc_id, mode="incremental")


def test_unknown_calculation(tracker):
    with pytest.raises(CalculationNotFoundError):
        tracker.get("nope")
    with pytest.raises(CalculationNotFoundError):
        tracker.mark_running("nope")


def test_list_recent_newest_first(tracker, session_factory):
    first = tracker.create("full", "cli")
    second = tracker.create("incremental", "cli")
    with session_factory() as session:
        session.get(RankingCalculation, first).started_at = datetime.utcnow() - timedelta(hours=1)
        session.commit()

    assert [c.id for c in tracker.list_recent(limit=10)] == [second, first]
    assert len(tracker.list_recent(limit=1)) == 1


def test_find_stalled_calculations(tracker, session_factory):
    stalled = tracker.create("full", "cli")
    tracker.mark_running(stalled)
    fresh = tracker.create("incremental", "cli")
    finished = tracker.create("incremental", "cli")
    tracker.mark_completed(finished)

    with session_factory() as session:
        for calc_id in (stalled, finished):
            session.get(RankingCalculation, calc_id).started_at = datetime.utcnow() - timedelta(hours=3)
        session.commit()

    with session_factory() as session:
        found = find_stalled_calculations(session, timedelta(minutes=30))
        assert [c.id for c in found] == [stalled]
        assert fresh not in {c.id for c in found}
