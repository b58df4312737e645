import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlmodel import Session, select

from .errors import PiggyBankOutcome
from .models import Child, PiggyBankTransaction, PiggyBankTransactionType
from .points import apply_points

logger = logging.getLogger(__name__)


@dataclass
class PiggyBankStats:
    total_savings: int
    total_spending: int
    total_donations: int
    current_balance: int
    transaction_count: int


def transactions(session: Session, child: Child) -> list[PiggyBankTransaction]:
    return list(
        session.exec(
            select(PiggyBankTransaction)
            .where(PiggyBankTransaction.child_id == child.id)
            .order_by(PiggyBankTransaction.created_at.desc(), PiggyBankTransaction.id.desc())
        ).all()
    )


def stats(session: Session, child: Child) -> PiggyBankStats:
    rows = transactions(session, child)
    totals = {kind: 0 for kind in PiggyBankTransactionType}
    for tx in rows:
        totals[tx.type] += tx.points
    savings = totals[PiggyBankTransactionType.savings]
    spending = totals[PiggyBankTransactionType.spending]
    donations = totals[PiggyBankTransactionType.donation]
    return PiggyBankStats(
        total_savings=savings,
        total_spending=spending,
        total_donations=donations,
        current_balance=savings - spending - donations,
        transaction_count=len(rows),
    )


def _move_savings(session: Session, child: Child, delta: int) -> int:
    statement = (
        update(Child)
        .where(Child.id == child.id)
        .values(savings=Child.savings + delta)
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        statement = statement.where(Child.savings >= -delta)
    result = session.exec(statement)
    session.expire(child, ["savings"])
    return result.rowcount


def deposit(session: Session, child: Child, amount: int) -> PiggyBankOutcome:
    if amount <= 0:
        return PiggyBankOutcome.invalid_amount
    if not apply_points(
        session, child, -amount, "Piggy bank deposit", require_funds=True, commit=False
    ):
        session.rollback()
        return PiggyBankOutcome.invalid_amount
    _move_savings(session, child, amount)
    session.add(
        PiggyBankTransaction(
            child_id=child.id, type=PiggyBankTransactionType.savings, points=amount
        )
    )
    session.commit()
    session.refresh(child)
    return PiggyBankOutcome.ok


def withdraw(session: Session, child: Child, amount: int) -> PiggyBankOutcome:
    """Move ``amount`` saved points back to the balance, never more than is saved."""
    if amount <= 0:
        return PiggyBankOutcome.invalid_amount
    if not _move_savings(session, child, -amount):
        session.rollback()
        logger.warning("Child %s cannot withdraw %s saved points", child.id, amount)
        return PiggyBankOutcome.invalid_amount
    session.add(
        PiggyBankTransaction(
            child_id=child.id, type=PiggyBankTransactionType.spending, points=amount
        )
    )
    apply_points(session, child, amount, "Piggy bank withdrawal", commit=False)
    session.commit()
    session.refresh(child)
    return PiggyBankOutcome.ok
