"""Read side of a child's points ledger.

The PointsHistory rows are the authoritative record of every point change.
``Child.points`` is a cached aggregate that is only written in the same
transaction as the ledger row that explains it (see ``points.apply_points``).
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from . import config
from .dt_utils import local_today, one_month_before, utc_bounds_for_days
from .errors import ChildNotFoundError, LedgerReadError
from .models import Child, ChildTask, ClaimedReward, PointsHistory

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    due_date: date
    completed_at: datetime


@dataclass
class LedgerSnapshot:
    child_id: int
    balance: int
    today: date
    window_days: int
    completions: list[Completion] = field(default_factory=list)
    claimed_reward_ids: set[int] = field(default_factory=set)


def read_snapshot(
    session: Session,
    child_id: int,
    days: int = config.STREAK_WINDOW_DAYS,
    today: Optional[date] = None,
) -> LedgerSnapshot:
    """Completions of the last ``days`` local days (today included), newest first.

    Completions older than the window are not returned, so anything derived
    from the snapshot (the streak in particular) is bounded by ``days``.
    Either the whole snapshot is returned or ``LedgerReadError`` is raised.
    """
    if not isinstance(days, int) or days < 1:
        raise ValueError("days must be a positive integer")
    today = today or local_today()
    lower, upper = utc_bounds_for_days(today - timedelta(days=days - 1), today)
    try:
        child = session.get(Child, child_id)
        if not child:
            raise ChildNotFoundError(f"child {child_id} does not exist")
        rows = session.exec(
            select(ChildTask.due_date, ChildTask.completed_at)
            .where(
                ChildTask.child_id == child_id,
                ChildTask.is_completed == True,  # noqa: E712
                ChildTask.completed_at.is_not(None),
                ChildTask.completed_at >= lower,
                ChildTask.completed_at <= upper,
            )
            .order_by(ChildTask.completed_at.desc())
        ).all()
        claimed = session.exec(
            select(ClaimedReward.reward_id).where(ClaimedReward.child_id == child_id)
        ).all()
    except SQLAlchemyError as exc:
        logger.exception("Ledger read failed for child %s", child_id)
        raise LedgerReadError(str(exc)) from exc
    return LedgerSnapshot(
        child_id=child_id,
        balance=child.points,
        today=today,
        window_days=days,
        completions=[Completion(due_date=d, completed_at=c) for d, c in rows],
        claimed_reward_ids=set(claimed),
    )


def append_entry(
    session: Session,
    child: Child,
    points: int,
    reason: str,
    task_id: Optional[int] = None,
    reward_id: Optional[int] = None,
) -> PointsHistory:
    entry = PointsHistory(
        parent_id=child.parent_id,
        child_id=child.id,
        points=points,
        reason=reason,
        task_id=task_id,
        reward_id=reward_id,
    )
    session.add(entry)
    return entry


def ledger_balance(session: Session, child_id: int) -> int:
    total = session.exec(
        select(func.coalesce(func.sum(PointsHistory.points), 0)).where(
            PointsHistory.child_id == child_id
        )
    ).one()
    return int(total or 0)


def rebuild_balance(session: Session, child_id: int) -> int:
    """Overwrite the cached ``Child.points`` with the ledger total."""
    child = session.get(Child, child_id)
    if not child:
        raise ChildNotFoundError(f"child {child_id} does not exist")
    total = ledger_balance(session, child_id)
    if child.points != total:
        logger.warning(
            "Balance drift for child %s: cached %s, ledger %s", child_id, child.points, total
        )
    child.points = total
    session.add(child)
    session.commit()
    return total


def history(session: Session, child_id: int, limit: Optional[int] = None) -> list[PointsHistory]:
    statement = (
        select(PointsHistory)
        .where(PointsHistory.child_id == child_id)
        .order_by(PointsHistory.created_at.desc(), PointsHistory.id.desc())
    )
    if limit:
        statement = statement.limit(limit)
    return list(session.exec(statement).all())


LEADERBOARD_PERIODS = ("day", "week", "month")


@dataclass
class LeaderboardEntry:
    child_id: int
    name: str
    avatar_url: Optional[str]
    points: int


def period_start(period: str, today: date) -> date:
    if period == "day":
        return today - timedelta(days=1)
    if period == "week":
        return today - timedelta(weeks=1)
    if period == "month":
        return one_month_before(today)
    raise ValueError(f"period must be one of {', '.join(LEADERBOARD_PERIODS)}")


def leaderboard(
    session: Session, parent_id: int, period: str = "week", today: Optional[date] = None
) -> list[LeaderboardEntry]:
    """Points earned net of spending per child over the period, highest first.

    The period runs from the start of the local day one day, week or month
    back up to the end of today. Children without entries score 0.
    """
    today = today or local_today()
    lower, upper = utc_bounds_for_days(period_start(period, today), today)
    total = func.coalesce(func.sum(PointsHistory.points), 0).label("total")
    rows = session.exec(
        select(Child.id, Child.name, Child.avatar_url, total)
        .outerjoin(
            PointsHistory,
            and_(
                PointsHistory.child_id == Child.id,
                PointsHistory.created_at >= lower,
                PointsHistory.created_at <= upper,
            ),
        )
        .where(Child.parent_id == parent_id)
        .group_by(Child.id, Child.name, Child.avatar_url)
        .order_by(total.desc(), Child.id)
    ).all()
    return [
        LeaderboardEntry(child_id=child_id, name=name, avatar_url=avatar_url, points=int(points))
        for child_id, name, avatar_url, points in rows
    ]
