"""Point balance changes.

Every change is a single SQL increment on ``child.points`` plus one ledger
row, flushed in the same transaction. Decrements that must not overdraw use
a conditional ``UPDATE ... WHERE points >= amount`` so two concurrent
requests cannot both spend the same points.
"""

import logging
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session

from .errors import PointsConflictError
from .ledger import append_entry
from .models import Child, Rule, RuleViolation

logger = logging.getLogger(__name__)

# Attempts at clamping a penalty when the balance moves underneath us.
PENALTY_ATTEMPTS = 3


def apply_points(
    session: Session,
    child: Child,
    delta: int,
    reason: str,
    task_id: Optional[int] = None,
    reward_id: Optional[int] = None,
    require_funds: bool = False,
    commit: bool = True,
) -> bool:
    """Add ``delta`` to the child's balance and append the matching ledger row.

    Returns False, and changes nothing, when ``require_funds`` is set and the
    balance does not cover a negative ``delta``. With ``commit=False`` the
    caller owns the transaction and must commit or roll back.
    """
    statement = (
        update(Child)
        .where(Child.id == child.id)
        .values(points=Child.points + delta)
        .execution_options(synchronize_session=False)
    )
    if require_funds and delta < 0:
        statement = statement.where(Child.points >= -delta)
    result = session.exec(statement)
    session.expire(child, ["points"])
    if result.rowcount == 0:
        logger.warning("Child %s cannot cover %s points (%s)", child.id, -delta, reason)
        return False
    append_entry(session, child, delta, reason, task_id=task_id, reward_id=reward_id)
    if commit:
        session.commit()
        session.refresh(child)
    logger.info("Child %s %+d points: %s", child.id, delta, reason)
    return True


def apply_rule_violation(session: Session, child: Child, rule: Rule) -> RuleViolation:
    """Deduct a rule's penalty, never taking the balance below zero."""
    deducted = 0
    for _ in range(PENALTY_ATTEMPTS):
        session.refresh(child)
        deducted = min(rule.points_penalty, max(child.points, 0))
        if deducted == 0 or apply_points(
            session,
            child,
            -deducted,
            f"Rule broken: {rule.label}",
            require_funds=True,
            commit=False,
        ):
            break
    else:
        session.rollback()
        raise PointsConflictError(f"balance of child {child.id} kept changing during penalty")
    violation = RuleViolation(child_id=child.id, rule_id=rule.id, points_deducted=deducted)
    session.add(violation)
    session.commit()
    session.refresh(violation)
    session.refresh(child)
    return violation
