from datetime import date, timedelta
from typing import Iterable, Optional

from sqlmodel import Session

from . import config
from .dt_utils import local_date, local_today, local_zone
from .ledger import read_snapshot


def compute_streak(completion_days: Iterable[date], today: date) -> int:
    """Consecutive days ending at ``today`` that have at least one completion.

    No completion today means no streak, even if yesterday had one.
    """
    days = set(completion_days)
    streak = 0
    current = today
    while current in days:
        streak += 1
        current -= timedelta(days=1)
    return streak


def current_streak(
    session: Session,
    child_id: int,
    today: Optional[date] = None,
    window_days: Optional[int] = None,
) -> int:
    # Capped at the window size: older completions are not read.
    tz = local_zone()
    today = today or local_today(tz)
    snapshot = read_snapshot(
        session, child_id, days=window_days or config.STREAK_WINDOW_DAYS, today=today
    )
    return compute_streak(
        (local_date(completion.completed_at, tz) for completion in snapshot.completions),
        today,
    )
