import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session, select
from starlette.middleware.sessions import SessionMiddleware

from . import config, generation, piggy_bank
from .auth import hash_password, login_parent, logout_parent, require_parent, verify_password
from .cache import AnalysisCache, analysis_key
from .db import get_session, init_db
from .dt_utils import local_today
from .eligibility import claim_reward, evaluate, reward_catalog, set_claim_validation
from .errors import (
    OUTCOME_MESSAGES,
    ClaimOutcome,
    CompletionOutcome,
    FamilyBoardError,
    PiggyBankOutcome,
    RiddleOutcome,
)
from .ledger import history, leaderboard, read_snapshot, rebuild_balance
from .models import (
    Child,
    ClaimedReward,
    Mood,
    Parent,
    Reward,
    Riddle,
    Rule,
    RuleViolation,
    Task,
    TaskCategory,
)
from .points import apply_rule_violation
from .riddles import daily_riddle, purchase_hint, submit_answer
from .streak import current_streak
from .tasks import assign_daily_tasks, complete_task

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="Family board", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=config.SESSION_SECRET,
    session_cookie="familysession",
)

OUTCOME_STATUS = {
    ClaimOutcome.claimed: 200,
    ClaimOutcome.already_claimed: 409,
    ClaimOutcome.insufficient_points: 400,
    ClaimOutcome.reward_not_found: 404,
    CompletionOutcome.completed: 200,
    CompletionOutcome.already_completed: 409,
    CompletionOutcome.not_found: 404,
    RiddleOutcome.correct: 200,
    RiddleOutcome.incorrect: 200,
    RiddleOutcome.already_solved: 409,
    RiddleOutcome.no_riddle: 404,
    RiddleOutcome.insufficient_points: 400,
    RiddleOutcome.hint_unlocked: 200,
    RiddleOutcome.no_hint: 404,
    PiggyBankOutcome.ok: 200,
    PiggyBankOutcome.invalid_amount: 400,
}


@app.exception_handler(FamilyBoardError)
async def family_board_error_handler(request: Request, exc: FamilyBoardError):
    return JSONResponse({"error": exc.public_message}, status_code=exc.status_code)


def outcome_response(outcome, **extra) -> JSONResponse:
    body = {"outcome": outcome.value, "message": OUTCOME_MESSAGES[outcome]}
    body.update(extra)
    return JSONResponse(body, status_code=OUTCOME_STATUS[outcome])


def parent_payload(parent: Parent) -> dict:
    return parent.model_dump(mode="json", exclude={"hashed_password"})


def get_child(session: Session, parent_id: int, child_id: int) -> Child:
    child = session.exec(
        select(Child).where(Child.id == child_id, Child.parent_id == parent_id)
    ).first()
    if not child:
        raise HTTPException(status_code=404, detail="Child not found")
    return child


def get_owned(session: Session, model, parent_id: int, item_id: int):
    item = session.exec(
        select(model).where(model.id == item_id, model.parent_id == parent_id)
    ).first()
    if not item:
        raise HTTPException(status_code=404, detail=f"{model.__name__} not found")
    return item


def get_claim(session: Session, parent_id: int, claim_id: int) -> ClaimedReward:
    claim = session.exec(
        select(ClaimedReward)
        .join(Child, Child.id == ClaimedReward.child_id)
        .where(ClaimedReward.id == claim_id, Child.parent_id == parent_id)
    ).first()
    if not claim:
        raise HTTPException(status_code=404, detail="Claim not found")
    return claim


# Parent account


@app.post("/register", status_code=201)
async def register(
    request: Request,
    display_name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    session: Session = Depends(get_session),
):
    email = email.strip().lower()
    existing = session.exec(select(Parent).where(Parent.email == email)).first()
    if existing:
        raise HTTPException(status_code=409, detail="Account already exists")
    parent = Parent(
        email=email,
        display_name=display_name,
        hashed_password=hash_password(password),
    )
    session.add(parent)
    session.commit()
    session.refresh(parent)
    login_parent(request, parent)
    logger.info("Registered parent %s", parent.id)
    return {"parent": parent_payload(parent)}


@app.post("/login")
async def login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    session: Session = Depends(get_session),
):
    parent = session.exec(select(Parent).where(Parent.email == email.strip().lower())).first()
    if not parent or not verify_password(password, parent.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    login_parent(request, parent)
    return {"parent": parent_payload(parent)}


@app.post("/logout")
def logout(request: Request):
    logout_parent(request)
    return {"status": "ok"}


# Catalogs


@app.get("/children")
def list_children(
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    children = session.exec(
        select(Child).where(Child.parent_id == parent.id).order_by(Child.id)
    ).all()
    return {"children": children}


@app.post("/children", status_code=201)
async def create_child(
    name: str = Form(...),
    age: Optional[int] = Form(None),
    avatar_url: Optional[str] = Form(None),
    custom_color: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = Child(
        parent_id=parent.id,
        name=name,
        age=age,
        avatar_url=avatar_url,
        custom_color=custom_color,
    )
    session.add(child)
    session.commit()
    session.refresh(child)
    return {"child": child}


@app.get("/children/{child_id}")
def child_detail(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    return {"child": get_child(session, parent.id, child_id)}


@app.get("/tasks")
def list_tasks(
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    tasks = session.exec(select(Task).where(Task.parent_id == parent.id).order_by(Task.id)).all()
    return {"tasks": tasks}


@app.post("/tasks", status_code=201)
async def create_task(
    label: str = Form(...),
    points_reward: int = Form(...),
    category: TaskCategory = Form(TaskCategory.quotidien),
    is_daily: bool = Form(True),
    age_min: Optional[int] = Form(None),
    age_max: Optional[int] = Form(None),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    if age_min is not None and age_max is not None and age_min > age_max:
        raise HTTPException(status_code=400, detail="age_min must not exceed age_max")
    task = Task(
        parent_id=parent.id,
        label=label,
        points_reward=points_reward,
        category=category,
        is_daily=is_daily,
        age_min=age_min,
        age_max=age_max,
    )
    session.add(task)
    session.commit()
    session.refresh(task)
    return {"task": task}


@app.get("/rules")
def list_rules(
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    rules = session.exec(select(Rule).where(Rule.parent_id == parent.id).order_by(Rule.id)).all()
    return {"rules": rules}


@app.post("/rules", status_code=201)
async def create_rule(
    label: str = Form(...),
    points_penalty: int = Form(...),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    if points_penalty < 0:
        raise HTTPException(status_code=400, detail="points_penalty must not be negative")
    rule = Rule(parent_id=parent.id, label=label, points_penalty=points_penalty)
    session.add(rule)
    session.commit()
    session.refresh(rule)
    return {"rule": rule}


@app.get("/rewards")
def list_rewards(
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    return {"rewards": reward_catalog(session, parent.id)}


@app.post("/rewards", status_code=201)
async def create_reward(
    label: str = Form(...),
    cost: int = Form(...),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    if cost < 0:
        raise HTTPException(status_code=400, detail="cost must not be negative")
    reward = Reward(parent_id=parent.id, label=label, cost=cost)
    session.add(reward)
    session.commit()
    session.refresh(reward)
    return {"reward": reward}


@app.get("/riddles")
def list_riddles(
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    riddles = session.exec(
        select(Riddle).where(Riddle.parent_id == parent.id).order_by(Riddle.id)
    ).all()
    return {"riddles": riddles}


@app.post("/riddles", status_code=201)
async def create_riddle(
    question: str = Form(...),
    answer: str = Form(...),
    hint: Optional[str] = Form(None),
    points: int = Form(10),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    riddle = Riddle(parent_id=parent.id, question=question, answer=answer, hint=hint, points=points)
    session.add(riddle)
    session.commit()
    session.refresh(riddle)
    return {"riddle": riddle}


# Child activity


@app.get("/children/{child_id}/tasks/today")
def todays_tasks(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    rows = assign_daily_tasks(session, child)
    completed = sum(1 for child_task, _ in rows if child_task.is_completed)
    return {
        "date": local_today().isoformat(),
        "tasks": [
            {
                "id": child_task.id,
                "task_id": task.id,
                "label": task.label,
                "category": task.category,
                "points_reward": task.points_reward,
                "is_completed": child_task.is_completed,
                "completed_at": child_task.completed_at,
            }
            for child_task, task in rows
        ],
        "completed": completed,
        "total": len(rows),
        "progress": completed / len(rows) * 100 if rows else 0,
    }


@app.post("/children/{child_id}/tasks/{child_task_id}/complete")
async def complete_child_task(
    child_id: int,
    child_task_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    result = complete_task(session, child, child_task_id)
    return outcome_response(
        result.outcome, points_awarded=result.points_awarded, balance=child.points
    )


@app.get("/children/{child_id}/streak")
def child_streak(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    return {
        "streak": current_streak(session, child.id),
        "window_days": config.STREAK_WINDOW_DAYS,
    }


@app.get("/children/{child_id}/rewards")
def child_rewards(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    snapshot = read_snapshot(session, child.id)
    eligibility = evaluate(
        snapshot.balance, reward_catalog(session, parent.id), snapshot.claimed_reward_ids
    )
    claims = session.exec(
        select(ClaimedReward)
        .where(ClaimedReward.child_id == child.id)
        .order_by(ClaimedReward.claimed_at.desc())
    ).all()
    return {"eligibility": eligibility, "claims": claims}


@app.post("/children/{child_id}/rewards/{reward_id}/claim")
async def claim_child_reward(
    child_id: int,
    reward_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    result = claim_reward(session, child, reward_id)
    return outcome_response(
        result.outcome,
        balance=result.balance,
        claim_id=result.claim.id if result.claim else None,
    )


@app.post("/claims/{claim_id}/validate")
async def validate_claim(
    claim_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    claim = set_claim_validation(session, get_claim(session, parent.id, claim_id), parent.id, True)
    return {"claim": claim}


@app.post("/claims/{claim_id}/unvalidate")
async def unvalidate_claim(
    claim_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    claim = set_claim_validation(session, get_claim(session, parent.id, claim_id), parent.id, False)
    return {"claim": claim}


@app.get("/children/{child_id}/points")
def child_points(
    child_id: int,
    limit: Optional[int] = None,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    return {"balance": child.points, "history": history(session, child.id, limit)}


@app.post("/children/{child_id}/points/reconcile")
async def reconcile_points(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    return {"balance": rebuild_balance(session, child.id)}


@app.get("/children/{child_id}/violations")
def list_violations(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    violations = session.exec(
        select(RuleViolation)
        .where(RuleViolation.child_id == child.id)
        .order_by(RuleViolation.created_at.desc())
    ).all()
    return {"violations": violations}


@app.post("/children/{child_id}/violations", status_code=201)
async def record_violation(
    child_id: int,
    rule_id: int = Form(...),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    rule = get_owned(session, Rule, parent.id, rule_id)
    violation = apply_rule_violation(session, child, rule)
    return {"violation": violation, "balance": child.points}


@app.get("/children/{child_id}/riddle")
def child_riddle(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    current = daily_riddle(session, child)
    if not current:
        return {"riddle": None}
    daily, riddle = current
    return {
        "riddle": {
            "id": riddle.id,
            "question": riddle.question,
            "points": riddle.points,
            "is_solved": daily.is_solved,
            "hint": riddle.hint if daily.hint_purchased else None,
        }
    }


@app.post("/children/{child_id}/riddle/answer")
async def answer_riddle(
    child_id: int,
    answer: str = Form(...),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    result = submit_answer(session, child, answer)
    return outcome_response(result.outcome, points=result.points, balance=child.points)


@app.post("/children/{child_id}/riddle/hint")
async def riddle_hint(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    result = purchase_hint(session, child)
    return outcome_response(result.outcome, hint=result.hint, balance=child.points)


@app.get("/children/{child_id}/piggy-bank")
def child_piggy_bank(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    return {
        "stats": piggy_bank.stats(session, child),
        "transactions": piggy_bank.transactions(session, child),
    }


@app.post("/children/{child_id}/piggy-bank/deposit")
async def piggy_bank_deposit(
    child_id: int,
    amount: int = Form(...),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    outcome = piggy_bank.deposit(session, child, amount)
    return outcome_response(outcome, balance=child.points)


@app.post("/children/{child_id}/piggy-bank/withdraw")
async def piggy_bank_withdraw(
    child_id: int,
    amount: int = Form(...),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    outcome = piggy_bank.withdraw(session, child, amount)
    return outcome_response(outcome, balance=child.points)


@app.get("/children/{child_id}/moods")
def list_moods(
    child_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    moods = session.exec(
        select(Mood).where(Mood.child_id == child.id).order_by(Mood.created_at.desc(), Mood.id.desc())
    ).all()
    return {"moods": moods}


@app.post("/children/{child_id}/moods", status_code=201)
async def record_mood(
    child_id: int,
    mood: str = Form(...),
    note: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    entry = Mood(child_id=child.id, mood=mood, note=note)
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return {"mood": entry}


def progress_summary(session: Session, child: Child) -> str:
    snapshot = read_snapshot(session, child.id)
    violations = session.exec(
        select(RuleViolation).where(RuleViolation.child_id == child.id)
    ).all()
    moods = session.exec(
        select(Mood).where(Mood.child_id == child.id).order_by(Mood.created_at.desc()).limit(7)
    ).all()
    lines = [
        f"Prénom: {child.name}",
        f"Âge: {child.age if child.age else 'inconnu'}",
        f"Points: {snapshot.balance}",
        f"Série de jours actifs: {current_streak(session, child.id)}",
        f"Tâches terminées sur {snapshot.window_days} jours: {len(snapshot.completions)}",
        f"Récompenses obtenues: {len(snapshot.claimed_reward_ids)}",
        f"Règles enfreintes: {len(violations)}",
        f"Humeurs récentes: {', '.join(m.mood for m in moods) or 'aucune'}",
    ]
    return "\n".join(lines)


@app.get("/children/{child_id}/analysis")
async def child_analysis(
    child_id: int,
    refresh: bool = False,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    child = get_child(session, parent.id, child_id)
    cache = AnalysisCache(session)
    cache.sweep_expired()
    key = analysis_key(parent.id, child.id)
    cached, fresh = cache.get(key)
    if cached and fresh and not refresh:
        return {"analysis": cached["analysis"], "cached": True}
    text = await generation.analyze_progress(progress_summary(session, child))
    cache.put(key, {"analysis": text}, timedelta(hours=config.ANALYSIS_TTL_HOURS))
    return {"analysis": text, "cached": False}


# Generative endpoints


class RiddleRequest(BaseModel):
    difficulty: str = "facile"


class SuggestionRequest(BaseModel):
    type: str


@app.post("/api/riddle")
async def api_generate_riddle(payload: Optional[RiddleRequest] = None):
    difficulty = payload.difficulty if payload else "facile"
    try:
        riddle = await generation.generate_riddle(difficulty)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    return riddle


@app.post("/api/suggestions")
async def api_generate_suggestions(payload: SuggestionRequest):
    try:
        return await generation.generate_suggestions(payload.type)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)


@app.post("/api/task-suggestion")
async def api_generate_task():
    return await generation.generate_task()


@app.get("/leaderboard")
def points_leaderboard(
    period: str = "week",
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    try:
        entries = leaderboard(session, parent.id, period)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    return {"period": period, "leaderboard": entries}


@app.get("/health")
def health():
    return {"status": "ok"}


def run():
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())
