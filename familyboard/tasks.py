import logging
import math
import random
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .dt_utils import local_today
from .errors import CompletionOutcome
from .models import Child, ChildTask, Task, TaskCategory
from .points import apply_points

logger = logging.getLogger(__name__)

DAILY_TASK_LIMIT = 15
DEFAULT_AGE_MIN = 3
DEFAULT_AGE_MAX = 18


@dataclass
class CompletionResult:
    outcome: CompletionOutcome
    points_awarded: int = 0
    child_task: Optional[ChildTask] = None


def age_appropriate_tasks(session: Session, child: Child) -> list[Task]:
    # Catalog rows without an age range count as suitable for 3 to 18.
    return list(
        session.exec(
            select(Task)
            .where(
                Task.parent_id == child.parent_id,
                func.coalesce(Task.age_min, DEFAULT_AGE_MIN) <= child.age,
                func.coalesce(Task.age_max, DEFAULT_AGE_MAX) >= child.age,
            )
            .order_by(Task.points_reward.desc(), Task.id)
        ).all()
    )


def pick_balanced(tasks: list[Task], limit: int, rng: random.Random) -> list[Task]:
    """Up to ``limit`` tasks spread evenly over the categories, then topped up."""
    per_category = math.ceil(limit / len(TaskCategory))
    selected: list[Task] = []
    for category in TaskCategory:
        in_category = [t for t in tasks if t.category == category]
        rng.shuffle(in_category)
        selected.extend(in_category[:per_category])
    if len(selected) < limit:
        chosen = {t.id for t in selected}
        remaining = [t for t in tasks if t.id not in chosen]
        rng.shuffle(remaining)
        selected.extend(remaining[: limit - len(selected)])
    return selected[:limit]


def tasks_for_day(session: Session, child: Child, day: date) -> list[tuple[ChildTask, Task]]:
    return list(
        session.exec(
            select(ChildTask, Task)
            .join(Task, Task.id == ChildTask.task_id)
            .where(ChildTask.child_id == child.id, ChildTask.due_date == day)
            .order_by(ChildTask.id)
        ).all()
    )


def assign_daily_tasks(
    session: Session,
    child: Child,
    today: Optional[date] = None,
    limit: int = DAILY_TASK_LIMIT,
    rng: Optional[random.Random] = None,
) -> list[tuple[ChildTask, Task]]:
    """Today's assignments, drawing them from the catalog on the first call of the day."""
    today = today or local_today()
    existing = tasks_for_day(session, child, today)
    if existing:
        return existing
    if not child.age or child.age < 1:
        logger.info("Child %s has no valid age, no tasks assigned", child.id)
        return []
    candidates = age_appropriate_tasks(session, child)
    if not candidates:
        logger.info("No age-appropriate tasks for child %s (age %s)", child.id, child.age)
        return []
    for task in pick_balanced(candidates, limit, rng or random.Random()):
        session.add(ChildTask(child_id=child.id, task_id=task.id, due_date=today))
    try:
        session.commit()
    except IntegrityError:
        # Another request assigned today's tasks first.
        session.rollback()
        logger.info("Tasks for child %s on %s were assigned concurrently", child.id, today)
    return tasks_for_day(session, child, today)


def complete_task(session: Session, child: Child, child_task_id: int) -> CompletionResult:
    """Mark an assignment done and award its points, at most once."""
    row = session.exec(
        select(ChildTask, Task)
        .join(Task, Task.id == ChildTask.task_id)
        .where(ChildTask.id == child_task_id, ChildTask.child_id == child.id)
    ).first()
    if not row:
        return CompletionResult(CompletionOutcome.not_found)
    child_task, task = row
    result = session.exec(
        update(ChildTask)
        .where(ChildTask.id == child_task.id, ChildTask.is_completed == False)  # noqa: E712
        .values(
            is_completed=True,
            completed_at=datetime.utcnow(),
            points_awarded=task.points_reward,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        logger.warning("Child task %s already completed", child_task.id)
        return CompletionResult(CompletionOutcome.already_completed, child_task=child_task)
    apply_points(
        session,
        child,
        task.points_reward,
        f"Task completed: {task.label}",
        task_id=task.id,
        commit=False,
    )
    session.commit()
    session.refresh(child_task)
    session.refresh(child)
    return CompletionResult(
        CompletionOutcome.completed, points_awarded=task.points_reward, child_task=child_task
    )
