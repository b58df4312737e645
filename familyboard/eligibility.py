"""Reward eligibility, progress towards the next reward, and claiming."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Collection, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .errors import ClaimOutcome
from .models import Child, ClaimedReward, Reward
from .points import apply_points

logger = logging.getLogger(__name__)


@dataclass
class RewardEligibility:
    reward_id: int
    label: str
    cost: int
    claimed: bool
    affordable: bool


@dataclass
class RewardStats:
    total: int
    claimed: int
    available: int
    affordable: int
    total_spent: int


@dataclass
class RewardProgress:
    progress: float
    points_needed: int
    next_reward: Optional[RewardEligibility] = None


@dataclass
class Eligibility:
    balance: int
    rewards: list[RewardEligibility] = field(default_factory=list)
    stats: Optional[RewardStats] = None
    progress: Optional[RewardProgress] = None


@dataclass
class ClaimResult:
    outcome: ClaimOutcome
    balance: int
    claim: Optional[ClaimedReward] = None


def reward_states(
    balance: int, catalog: Sequence[Reward], claimed_ids: Collection[int]
) -> list[RewardEligibility]:
    states = []
    for reward in catalog:
        claimed = reward.id in claimed_ids
        states.append(
            RewardEligibility(
                reward_id=reward.id,
                label=reward.label,
                cost=reward.cost,
                claimed=claimed,
                affordable=not claimed and balance >= reward.cost,
            )
        )
    return states


def reward_stats(states: Sequence[RewardEligibility]) -> RewardStats:
    claimed = [s for s in states if s.claimed]
    return RewardStats(
        total=len(states),
        claimed=len(claimed),
        available=len(states) - len(claimed),
        affordable=sum(1 for s in states if s.affordable),
        total_spent=sum(s.cost for s in claimed),
    )


def progress_to_next_reward(balance: int, states: Sequence[RewardEligibility]) -> RewardProgress:
    """Progress towards the cheapest reward still to claim.

    ``min`` keeps the first of equally cheap rewards, so ties follow catalog
    order and repeated calls on the same data name the same reward.
    """
    unclaimed = [s for s in states if not s.claimed]
    if not unclaimed:
        return RewardProgress(progress=100.0, points_needed=0, next_reward=None)
    affordable = [s for s in unclaimed if s.affordable]
    if affordable:
        cheapest = min(affordable, key=lambda s: s.cost)
        return RewardProgress(progress=100.0, points_needed=0, next_reward=cheapest)
    cheapest = min(unclaimed, key=lambda s: s.cost)
    if cheapest.cost <= 0:
        progress = 100.0
    else:
        progress = max(0.0, min(100.0, balance / cheapest.cost * 100))
    return RewardProgress(
        progress=progress,
        points_needed=max(0, cheapest.cost - balance),
        next_reward=cheapest,
    )


def evaluate(balance: int, catalog: Sequence[Reward], claimed_ids: Collection[int]) -> Eligibility:
    states = reward_states(balance, catalog, claimed_ids)
    return Eligibility(
        balance=balance,
        rewards=states,
        stats=reward_stats(states),
        progress=progress_to_next_reward(balance, states),
    )


def reward_catalog(session: Session, parent_id: int) -> list[Reward]:
    return list(
        session.exec(select(Reward).where(Reward.parent_id == parent_id).order_by(Reward.id)).all()
    )


def claim_reward(session: Session, child: Child, reward_id: int) -> ClaimResult:
    """Exchange points for a reward.

    The duplicate check, the conditional deduction, the claim row and the
    ledger row commit together; every rejection leaves the balance untouched.
    """
    reward = session.exec(
        select(Reward).where(Reward.id == reward_id, Reward.parent_id == child.parent_id)
    ).first()
    if not reward:
        return ClaimResult(ClaimOutcome.reward_not_found, child.points)
    existing = session.exec(
        select(ClaimedReward).where(
            ClaimedReward.child_id == child.id, ClaimedReward.reward_id == reward.id
        )
    ).first()
    if existing:
        logger.warning("Child %s already claimed reward %s", child.id, reward.id)
        return ClaimResult(ClaimOutcome.already_claimed, child.points)
    if not apply_points(
        session,
        child,
        -reward.cost,
        f"Reward claimed: {reward.label}",
        reward_id=reward.id,
        require_funds=True,
        commit=False,
    ):
        session.rollback()
        return ClaimResult(ClaimOutcome.insufficient_points, child.points)
    claim = ClaimedReward(child_id=child.id, reward_id=reward.id, cost=reward.cost)
    session.add(claim)
    try:
        session.commit()
    except IntegrityError:
        # Lost a race with a concurrent claim of the same reward.
        session.rollback()
        return ClaimResult(ClaimOutcome.already_claimed, child.points)
    session.refresh(claim)
    session.refresh(child)
    logger.info("Child %s claimed reward %s for %s points", child.id, reward.id, reward.cost)
    return ClaimResult(ClaimOutcome.claimed, child.points, claim)


def set_claim_validation(
    session: Session, claim: ClaimedReward, parent_id: int, validated: bool
) -> ClaimedReward:
    claim.is_validated = validated
    claim.validated_at = datetime.utcnow() if validated else None
    claim.validated_by = parent_id if validated else None
    session.add(claim)
    session.commit()
    session.refresh(claim)
    return claim
