from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from conftest import create_child, register_parent
from familyboard import config
from familyboard.errors import LedgerReadError, MissingConfigurationError
from familyboard.main import app, run
from familyboard.models import AnalysisCacheEntry, PointsHistory


def test_requires_login(client):
    assert client.get("/children").status_code == 401


def test_register_login_logout(client):
    register_parent(client, "Maman@Example.com")
    client.post("/logout")
    assert client.get("/children").status_code == 401

    bad = client.post("/login", data={"email": "maman@example.com", "password": "nope"})
    assert bad.status_code == 401
    ok = client.post("/login", data={"email": "maman@example.com", "password": "pw"})
    assert ok.status_code == 200
    assert "hashed_password" not in ok.json()["parent"]
    assert client.get("/children").status_code == 200


def test_duplicate_registration(client):
    register_parent(client)
    resp = client.post(
        "/register",
        data={"display_name": "Again", "email": "parent@example.com", "password": "pw"},
    )
    assert resp.status_code == 409


def test_children_are_scoped_to_their_parent(client):
    register_parent(client, "a@example.com")
    child = create_child(client)
    client.post("/logout")
    register_parent(client, "b@example.com")
    assert client.get(f"/children/{child['id']}").status_code == 404


def test_task_completion_streak_and_rewards_flow(client, session: Session):
    register_parent(client)
    child = create_child(client, age=9)
    client.post("/tasks", data={"label": "Faire le lit", "points_reward": 40, "category": "quotidien"})
    client.post("/rewards", data={"label": "A", "cost": 20})
    client.post("/rewards", data={"label": "B", "cost": 50})

    today = client.get(f"/children/{child['id']}/tasks/today").json()
    assert today["total"] == 1
    child_task_id = today["tasks"][0]["id"]

    done = client.post(f"/children/{child['id']}/tasks/{child_task_id}/complete")
    assert done.status_code == 200
    assert done.json()["balance"] == 40
    again = client.post(f"/children/{child['id']}/tasks/{child_task_id}/complete")
    assert again.status_code == 409
    assert again.json()["outcome"] == "already_completed"

    assert client.get(f"/children/{child['id']}/streak").json()["streak"] == 1

    rewards = client.get(f"/children/{child['id']}/rewards").json()["eligibility"]
    assert [r["affordable"] for r in rewards["rewards"]] == [True, False]
    assert rewards["progress"]["next_reward"]["label"] == "A"
    assert rewards["progress"]["progress"] == 100

    reward_a = rewards["rewards"][0]["reward_id"]
    claimed = client.post(f"/children/{child['id']}/rewards/{reward_a}/claim")
    assert claimed.status_code == 200
    assert claimed.json()["balance"] == 20

    duplicate = client.post(f"/children/{child['id']}/rewards/{reward_a}/claim")
    assert duplicate.status_code == 409
    assert duplicate.json()["balance"] == 20

    reward_b = rewards["rewards"][1]["reward_id"]
    broke = client.post(f"/children/{child['id']}/rewards/{reward_b}/claim")
    assert broke.status_code == 400
    assert broke.json()["outcome"] == "insufficient_points"

    after = client.get(f"/children/{child['id']}/rewards").json()["eligibility"]
    assert after["progress"]["next_reward"]["label"] == "B"
    assert after["progress"]["progress"] == 40
    assert after["progress"]["points_needed"] == 30

    points = client.get(f"/children/{child['id']}/points").json()
    assert points["balance"] == 20
    assert [e["points"] for e in points["history"]] == [-20, 40]
    total = sum(e.points for e in session.exec(select(PointsHistory)).all())
    assert total == 20


def test_claim_validation(client):
    register_parent(client)
    child = create_child(client)
    client.post("/rewards", data={"label": "Gratuit", "cost": 0})
    reward_id = client.get("/rewards").json()["rewards"][0]["id"]
    claim_id = client.post(f"/children/{child['id']}/rewards/{reward_id}/claim").json()["claim_id"]

    validated = client.post(f"/claims/{claim_id}/validate").json()["claim"]
    assert validated["is_validated"] is True
    assert validated["validated_by"] is not None
    reverted = client.post(f"/claims/{claim_id}/unvalidate").json()["claim"]
    assert reverted["is_validated"] is False


def test_violation_and_piggy_bank(client):
    register_parent(client)
    child = create_child(client)
    client.post("/tasks", data={"label": "Devoirs", "points_reward": 30, "category": "scolaire"})
    child_task_id = client.get(f"/children/{child['id']}/tasks/today").json()["tasks"][0]["id"]
    client.post(f"/children/{child['id']}/tasks/{child_task_id}/complete")

    rule = client.post("/rules", data={"label": "Pas d'écran à table", "points_penalty": 5}).json()["rule"]
    violation = client.post(f"/children/{child['id']}/violations", data={"rule_id": rule["id"]})
    assert violation.status_code == 201
    assert violation.json()["balance"] == 25

    deposit = client.post(f"/children/{child['id']}/piggy-bank/deposit", data={"amount": 20})
    assert deposit.json()["balance"] == 5
    too_much = client.post(f"/children/{child['id']}/piggy-bank/withdraw", data={"amount": 50})
    assert too_much.status_code == 400
    piggy = client.get(f"/children/{child['id']}/piggy-bank").json()
    assert piggy["stats"]["current_balance"] == 20


def test_riddle_flow(client):
    register_parent(client)
    child = create_child(client)
    assert client.get(f"/children/{child['id']}/riddle").json()["riddle"] is None

    client.post(
        "/riddles",
        data={"question": "Je suis jaune et je brille", "answer": "Soleil", "hint": "Le jour", "points": 12},
    )
    riddle = client.get(f"/children/{child['id']}/riddle").json()["riddle"]
    assert "answer" not in riddle
    assert riddle["hint"] is None

    hint = client.post(f"/children/{child['id']}/riddle/hint")
    assert hint.status_code == 400

    answer = client.post(f"/children/{child['id']}/riddle/answer", data={"answer": "soleil"})
    assert answer.json()["outcome"] == "correct"
    assert answer.json()["balance"] == 12


def test_moods(client):
    register_parent(client)
    child = create_child(client)
    client.post(f"/children/{child['id']}/moods", data={"mood": "content"})
    client.post(f"/children/{child['id']}/moods", data={"mood": "fatigué", "note": "long day"})
    moods = client.get(f"/children/{child['id']}/moods").json()["moods"]
    assert [m["mood"] for m in moods] == ["fatigué", "content"]


def test_generate_suggestions_endpoint(client):
    reply = "1. Faire le lit\n2. Ranger\n"
    with patch("familyboard.generation.generate_text", AsyncMock(return_value=reply)):
        resp = client.post("/api/suggestions", json={"type": "task"})
    assert resp.status_code == 200
    assert resp.json() == ["Faire le lit", "Ranger"]


def test_generate_suggestions_rejects_unknown_type(client):
    resp = client.post("/api/suggestions", json={"type": "chore"})
    assert resp.status_code == 400


def test_generate_riddle_endpoint(client):
    reply = 'Voici : {"question": "Q", "answer": "A", "hint": "H"}'
    with patch("familyboard.generation.generate_text", AsyncMock(return_value=reply)):
        resp = client.post("/api/riddle", json={"difficulty": "moyen"})
    assert resp.status_code == 200
    assert resp.json() == {"question": "Q", "answer": "A", "hint": "H"}


def test_generate_riddle_malformed_reply(client):
    with patch("familyboard.generation.generate_text", AsyncMock(return_value="pas de JSON")):
        resp = client.post("/api/riddle", json={})
    assert resp.status_code == 502
    assert "pas de JSON" not in resp.text


def test_generate_riddle_without_api_key(client):
    resp = client.post("/api/riddle", json={"difficulty": "facile"})
    assert resp.status_code == 500
    assert resp.json() == {"error": MissingConfigurationError.public_message}


def test_generate_riddle_get_not_allowed(client):
    assert client.get("/api/riddle").status_code == 405


def test_analysis_is_cached(client, session: Session):
    register_parent(client)
    child = create_child(client)
    mock = AsyncMock(return_value="Très bonne semaine !")
    with patch("familyboard.generation.generate_text", mock):
        first = client.get(f"/children/{child['id']}/analysis").json()
        second = client.get(f"/children/{child['id']}/analysis").json()
        forced = client.get(f"/children/{child['id']}/analysis", params={"refresh": "true"}).json()
    assert first == {"analysis": "Très bonne semaine !", "cached": False}
    assert second["cached"] is True
    assert forced["cached"] is False
    assert mock.await_count == 2
    assert len(session.exec(select(AnalysisCacheEntry)).all()) == 1


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_rewards_report_a_ledger_outage(client):
    register_parent(client)
    child = create_child(client)
    failure = OperationalError("SELECT", {}, Exception("database is locked"))
    with patch("familyboard.ledger.select", side_effect=failure):
        resp = client.get(f"/children/{child['id']}/rewards")
    assert resp.status_code == 502
    assert resp.json() == {"error": LedgerReadError.public_message}


def test_hint_for_riddle_without_one(client):
    register_parent(client)
    child = create_child(client)
    client.post("/riddles", data={"question": "Devine", "answer": "Rien"})
    client.get(f"/children/{child['id']}/riddle")
    resp = client.post(f"/children/{child['id']}/riddle/hint")
    assert resp.status_code == 404
    assert resp.json()["outcome"] == "no_hint"
    assert resp.json()["balance"] == 0


def test_leaderboard(client):
    register_parent(client)
    lea = create_child(client, "Léa", 8)
    tom = create_child(client, "Tom", 12)
    client.post("/tasks", data={"label": "Devoirs", "points_reward": 30, "category": "scolaire"})
    child_task_id = client.get(f"/children/{tom['id']}/tasks/today").json()["tasks"][0]["id"]
    client.post(f"/children/{tom['id']}/tasks/{child_task_id}/complete")

    resp = client.get("/leaderboard", params={"period": "day"})
    assert resp.status_code == 200
    board = resp.json()["leaderboard"]
    assert [(e["child_id"], e["points"]) for e in board] == [(tom["id"], 30), (lea["id"], 0)]

    assert client.get("/leaderboard", params={"period": "year"}).status_code == 400


def test_run_serves_the_app():
    with patch("familyboard.main.uvicorn.run") as serve:
        run()
    serve.assert_called_once_with(
        app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower()
    )
