from datetime import date, datetime, time, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from familyboard.dt_utils import local_date, local_zone
from familyboard.errors import ChildNotFoundError, LedgerReadError
from familyboard.ledger import read_snapshot
from familyboard.models import Child, ChildTask, Parent, Task
from familyboard.streak import compute_streak, current_streak

TODAY = date(2025, 3, 10)


def completed_on(session: Session, child: Child, task: Task, day: date, hour: int = 12):
    local_noon = datetime.combine(day, time(hour), local_zone())
    completed_at = local_noon.astimezone(timezone.utc).replace(tzinfo=None)
    session.add(
        ChildTask(
            child_id=child.id,
            task_id=task.id,
            due_date=day,
            is_completed=True,
            completed_at=completed_at,
            points_awarded=task.points_reward,
        )
    )
    session.commit()


@pytest.fixture
def task(session: Session, parent: Parent) -> Task:
    task = Task(parent_id=parent.id, label="Faire le lit", points_reward=5)
    session.add(task)
    session.commit()
    session.refresh(task)
    return task


@pytest.mark.parametrize("n", [0, 1, 4, 10])
def test_consecutive_days_ending_today(n):
    days = {TODAY - timedelta(days=i) for i in range(n + 1)}
    assert compute_streak(days, TODAY) == n + 1


def test_gap_yesterday_stops_streak():
    days = {TODAY, TODAY - timedelta(days=2), TODAY - timedelta(days=3)}
    assert compute_streak(days, TODAY) == 1


def test_no_completion_today_means_no_streak():
    days = {TODAY - timedelta(days=1), TODAY - timedelta(days=2)}
    assert compute_streak(days, TODAY) == 0


def test_empty_completions():
    assert compute_streak([], TODAY) == 0


def test_duplicate_days_count_once():
    assert compute_streak([TODAY, TODAY, TODAY - timedelta(days=1)], TODAY) == 2


def test_local_date_uses_configured_timezone():
    # 23:30 UTC on March 9th is already March 10th in Paris.
    assert local_date(datetime(2025, 3, 9, 23, 30)) == date(2025, 3, 10)


def test_current_streak_from_store(session, child, task):
    for offset in range(3):
        completed_on(session, child, task, TODAY - timedelta(days=offset))
    completed_on(session, child, task, TODAY - timedelta(days=5))
    assert current_streak(session, child.id, today=TODAY) == 3


def test_streak_is_bounded_by_window(session, child, task):
    for offset in range(10):
        completed_on(session, child, task, TODAY - timedelta(days=offset))
    assert current_streak(session, child.id, today=TODAY, window_days=7) == 7
    assert current_streak(session, child.id, today=TODAY, window_days=30) == 10


def test_snapshot_orders_newest_first_and_skips_pending(session, child, task):
    completed_on(session, child, task, TODAY - timedelta(days=2))
    completed_on(session, child, task, TODAY)
    session.add(ChildTask(child_id=child.id, task_id=task.id, due_date=TODAY - timedelta(days=1)))
    session.commit()

    snapshot = read_snapshot(session, child.id, today=TODAY)

    assert [c.due_date for c in snapshot.completions] == [TODAY, TODAY - timedelta(days=2)]
    assert snapshot.balance == 0
    assert snapshot.claimed_reward_ids == set()


def test_snapshot_empty_is_not_an_error(session, child):
    snapshot = read_snapshot(session, child.id, today=TODAY)
    assert snapshot.completions == []


def test_snapshot_rejects_unknown_child_and_bad_window(session, child):
    with pytest.raises(ChildNotFoundError):
        read_snapshot(session, 999, today=TODAY)
    with pytest.raises(ValueError):
        read_snapshot(session, child.id, days=0, today=TODAY)


def test_snapshot_store_failure_is_not_a_partial_result(session, child):
    failure = OperationalError("SELECT", {}, Exception("disk I/O error"))
    with patch.object(session, "exec", side_effect=failure):
        with pytest.raises(LedgerReadError):
            read_snapshot(session, child.id, today=TODAY)
