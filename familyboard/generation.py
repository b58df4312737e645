"""Gemini text generation and parsing of its replies.

The model answers in free text. Anything we use from it goes through a
strict parse step: a reply that does not fit raises
``MalformedResponseError`` and no partial result is kept.
"""

import json
import logging
import re
from typing import Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from . import config
from .errors import MalformedResponseError, MissingConfigurationError, UpstreamUnavailableError
from .models import TaskCategory

logger = logging.getLogger(__name__)

DIFFICULTIES = ("facile", "moyen", "difficile")
SUGGESTION_TYPES = ("task", "rule", "reward")

RIDDLE_PROMPT = """Génère une devinette {difficulty} pour un enfant.
La devinette doit être amusante et éducative.
Format de réponse attendu (en JSON):
{{
  "question": "La question de la devinette",
  "answer": "La réponse à la devinette juste le mot",
  "hint": "Un indice pour aider l'enfant à trouver la réponse"
}}"""

_AUDIENCE = "pour 2 enfants de 8 et 13 ans."
SUGGESTION_PROMPTS = {
    "task": "Propose cinq exemples de tâches adaptées à un tableau familial. "
    "Donne uniquement la liste, une suggestion par ligne, " + _AUDIENCE,
    "rule": "Propose cinq exemples de règles de comportement pour des enfants. "
    "Donne uniquement la liste, une suggestion par ligne, " + _AUDIENCE,
    "reward": "Propose cinq exemples de récompenses pour un système de points familial. "
    "Donne uniquement la liste, une suggestion par ligne, " + _AUDIENCE,
}

TASK_PROMPT = (
    "Génère une tâche adaptée à la vie de famille. Réponds uniquement en JSON au format "
    '{"label":"...","points_reward":30,"is_daily":true,"age_min":3,"age_max":12,'
    '"category":"maison"}. La catégorie est quotidien, scolaire, maison ou personnel.'
)

ANALYSIS_PROMPT = """Tu es un conseiller bienveillant pour les parents.
Analyse la progression de l'enfant ci-dessous et propose en quelques phrases
des encouragements et deux pistes concrètes d'amélioration.

{summary}"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_LIST_MARKER = re.compile(r"^[-*•\d.)\s]+")


class GeneratedRiddle(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    hint: str = Field(min_length=1)


class GeneratedTask(BaseModel):
    label: str = Field(min_length=1)
    points_reward: int = Field(ge=0)
    is_daily: bool
    age_min: int = Field(ge=0)
    age_max: int = Field(ge=0)
    category: TaskCategory


def _first_json_object(text: str) -> str:
    match = _JSON_OBJECT.search(text or "")
    if not match:
        logger.warning("No JSON object in generated text")
        raise MalformedResponseError("no JSON object in response")
    return match.group(0)


def parse_riddle(text: str) -> GeneratedRiddle:
    try:
        return GeneratedRiddle.model_validate_json(_first_json_object(text))
    except ValidationError as exc:
        logger.warning("Generated riddle rejected: %s", exc.errors())
        raise MalformedResponseError("riddle does not match the expected shape") from exc


def parse_task_suggestion(text: str) -> GeneratedTask:
    try:
        return GeneratedTask.model_validate_json(_first_json_object(text))
    except ValidationError as exc:
        logger.warning("Generated task rejected: %s", exc.errors())
        raise MalformedResponseError("task does not match the expected shape") from exc


def parse_suggestions(text: str) -> list[str]:
    """One suggestion per line, list markers stripped, blank lines dropped."""
    suggestions = []
    for line in (text or "").split("\n"):
        cleaned = _LIST_MARKER.sub("", line).strip()
        if cleaned:
            suggestions.append(cleaned)
    return suggestions


def _reply_text(data: dict) -> str:
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"] or ""
    except (KeyError, IndexError, TypeError):
        return ""


async def generate_text(prompt: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    """Send ``prompt`` to Gemini and return the text of the first candidate.

    Raises MissingConfigurationError before any request when no API key is
    configured, UpstreamUnavailableError on transport errors and non-2xx
    replies, MalformedResponseError when the body is not JSON.
    """
    api_key = config.gemini_api_key()
    if not api_key:
        raise MissingConfigurationError("GEMINI_API_KEY is not set")
    url = f"{config.GEMINI_API_BASE}/models/{config.GEMINI_MODEL}:generateContent"
    payload = {"contents": [{"parts": [{"text": prompt}]}]}
    try:
        async with httpx.AsyncClient(timeout=config.GEMINI_TIMEOUT, transport=transport) as client:
            response = await client.post(url, params={"key": api_key}, json=payload)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.exception("Gemini request failed")
        raise UpstreamUnavailableError(str(exc)) from exc
    try:
        data = response.json()
    except json.JSONDecodeError as exc:
        logger.warning("Gemini replied with a non-JSON body")
        raise MalformedResponseError("response body is not JSON") from exc
    return _reply_text(data)


async def generate_riddle(difficulty: str = "facile") -> GeneratedRiddle:
    if difficulty not in DIFFICULTIES:
        raise ValueError(f"difficulty must be one of {', '.join(DIFFICULTIES)}")
    text = await generate_text(RIDDLE_PROMPT.format(difficulty=difficulty))
    return parse_riddle(text)


async def generate_suggestions(kind: str) -> list[str]:
    if kind not in SUGGESTION_PROMPTS:
        raise ValueError(f"type must be one of {', '.join(SUGGESTION_TYPES)}")
    suggestions = parse_suggestions(await generate_text(SUGGESTION_PROMPTS[kind]))
    if not suggestions:
        raise MalformedResponseError("no suggestions in response")
    return suggestions


async def generate_task() -> GeneratedTask:
    return parse_task_suggestion(await generate_text(TASK_PROMPT))


async def analyze_progress(summary: str) -> str:
    text = (await generate_text(ANALYSIS_PROMPT.format(summary=summary))).strip()
    if not text:
        raise MalformedResponseError("empty analysis")
    return text
