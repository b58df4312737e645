import logging
import random
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import config
from .dt_utils import local_today
from .errors import RiddleOutcome
from .models import Child, DailyRiddle, Riddle
from .points import apply_points

logger = logging.getLogger(__name__)


@dataclass
class RiddleResult:
    outcome: RiddleOutcome
    points: int = 0
    hint: Optional[str] = None


def todays_riddle(
    session: Session, child: Child, today: Optional[date] = None
) -> Optional[tuple[DailyRiddle, Riddle]]:
    today = today or local_today()
    return session.exec(
        select(DailyRiddle, Riddle)
        .join(Riddle, Riddle.id == DailyRiddle.riddle_id)
        .where(DailyRiddle.child_id == child.id, DailyRiddle.day == today)
    ).first()


def daily_riddle(
    session: Session,
    child: Child,
    today: Optional[date] = None,
    rng: Optional[random.Random] = None,
) -> Optional[tuple[DailyRiddle, Riddle]]:
    """The child's riddle of the day, drawn at random from the parent's riddles."""
    today = today or local_today()
    existing = todays_riddle(session, child, today)
    if existing:
        return existing
    riddles = session.exec(
        select(Riddle).where(Riddle.parent_id == child.parent_id).order_by(Riddle.id)
    ).all()
    if not riddles:
        return None
    riddle = (rng or random.Random()).choice(riddles)
    daily = DailyRiddle(child_id=child.id, riddle_id=riddle.id, day=today)
    session.add(daily)
    try:
        session.commit()
    except IntegrityError:
        # Another request drew today's riddle first.
        session.rollback()
        return todays_riddle(session, child, today)
    session.refresh(daily)
    return daily, riddle


def answers_match(given: str, expected: str) -> bool:
    return given.strip().lower() == expected.strip().lower()


def submit_answer(
    session: Session, child: Child, answer: str, today: Optional[date] = None
) -> RiddleResult:
    current = todays_riddle(session, child, today)
    if not current:
        return RiddleResult(RiddleOutcome.no_riddle)
    daily, riddle = current
    if daily.is_solved:
        return RiddleResult(RiddleOutcome.already_solved)
    if not answer.strip() or not answers_match(answer, riddle.answer):
        return RiddleResult(RiddleOutcome.incorrect)
    result = session.exec(
        update(DailyRiddle)
        .where(DailyRiddle.id == daily.id, DailyRiddle.is_solved == False)  # noqa: E712
        .values(is_solved=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        return RiddleResult(RiddleOutcome.already_solved)
    apply_points(session, child, riddle.points, "Riddle solved", commit=False)
    session.commit()
    session.refresh(child)
    return RiddleResult(RiddleOutcome.correct, points=riddle.points)


def purchase_hint(session: Session, child: Child, today: Optional[date] = None) -> RiddleResult:
    """Reveal today's hint for ``HINT_COST`` points; an unlocked hint stays free."""
    current = todays_riddle(session, child, today)
    if not current:
        return RiddleResult(RiddleOutcome.no_riddle)
    daily, riddle = current
    if not riddle.hint:
        return RiddleResult(RiddleOutcome.no_hint)
    if daily.hint_purchased:
        return RiddleResult(RiddleOutcome.hint_unlocked, hint=riddle.hint)
    cost = config.HINT_COST
    if not apply_points(
        session,
        child,
        -cost,
        "Riddle hint purchased",
        require_funds=True,
        commit=False,
    ):
        session.rollback()
        return RiddleResult(RiddleOutcome.insufficient_points)
    daily.hint_purchased = True
    session.add(daily)
    session.commit()
    session.refresh(child)
    return RiddleResult(RiddleOutcome.hint_unlocked, points=-cost, hint=riddle.hint)
