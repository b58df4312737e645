from datetime import datetime, date
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class TaskCategory(str, Enum):
    quotidien = "quotidien"
    scolaire = "scolaire"
    maison = "maison"
    personnel = "personnel"


class PiggyBankTransactionType(str, Enum):
    savings = "savings"
    spending = "spending"
    donation = "donation"


class Parent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    display_name: str
    hashed_password: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Child(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="parent.id", index=True)
    name: str
    age: Optional[int] = None
    # Cached aggregate of the child's PointsHistory rows.
    points: int = Field(default=0)
    # Cached aggregate of the child's PiggyBankTransaction rows.
    savings: int = Field(default=0)
    avatar_url: Optional[str] = None
    custom_color: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="parent.id", index=True)
    label: str
    points_reward: int
    is_daily: bool = Field(default=True)
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    category: TaskCategory = Field(default=TaskCategory.quotidien)


class ChildTask(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("child_id", "task_id", "due_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    task_id: int = Field(foreign_key="task.id")
    due_date: date
    is_completed: bool = Field(default=False)
    completed_at: Optional[datetime] = None
    points_awarded: Optional[int] = None


class Reward(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="parent.id", index=True)
    label: str
    cost: int


class ClaimedReward(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("child_id", "reward_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    reward_id: int = Field(foreign_key="reward.id")
    cost: int
    claimed_at: datetime = Field(default_factory=datetime.utcnow)
    is_validated: bool = Field(default=False)
    validated_at: Optional[datetime] = None
    validated_by: Optional[int] = Field(default=None, foreign_key="parent.id")


class Rule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="parent.id", index=True)
    label: str
    points_penalty: int


class RuleViolation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    rule_id: int = Field(foreign_key="rule.id")
    points_deducted: int
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PointsHistory(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="parent.id")
    child_id: int = Field(foreign_key="child.id", index=True)
    points: int
    reason: str
    task_id: Optional[int] = Field(default=None, foreign_key="task.id")
    reward_id: Optional[int] = Field(default=None, foreign_key="reward.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Riddle(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="parent.id", index=True)
    question: str
    answer: str
    hint: Optional[str] = None
    points: int = Field(default=10)


class DailyRiddle(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("child_id", "day"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    riddle_id: int = Field(foreign_key="riddle.id")
    day: date
    is_solved: bool = Field(default=False)
    hint_purchased: bool = Field(default=False)


class Mood(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    mood: str
    note: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PiggyBankTransaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    type: PiggyBankTransactionType
    points: int
    created_at: datetime = Field(default_factory=datetime.utcnow)


class AnalysisCacheEntry(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime


__all__ = [
    "Parent",
    "Child",
    "Task",
    "ChildTask",
    "Reward",
    "ClaimedReward",
    "Rule",
    "RuleViolation",
    "PointsHistory",
    "Riddle",
    "DailyRiddle",
    "Mood",
    "PiggyBankTransaction",
    "AnalysisCacheEntry",
    "TaskCategory",
    "PiggyBankTransactionType",
]
