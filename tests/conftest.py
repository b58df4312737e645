import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("TIMEZONE", "Europe/Paris")
os.environ.pop("GEMINI_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from familyboard import db
from familyboard import models  # ensure models are registered with metadata
from familyboard.main import app
from familyboard.models import Child, Parent, Reward


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

def override_get_session():
    with Session(test_engine) as session:
        yield session


def reset_database():
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)


db.engine = test_engine
app.dependency_overrides[db.get_session] = override_get_session


@pytest.fixture(autouse=True)
def setup_db():
    reset_database()
    yield


@pytest.fixture
def client():
    reset_database()
    return TestClient(app)


@pytest.fixture
def session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def parent(session: Session) -> Parent:
    parent = Parent(email="parent@example.com", display_name="Parent", hashed_password="x")
    session.add(parent)
    session.commit()
    session.refresh(parent)
    return parent


@pytest.fixture
def child(session: Session, parent: Parent) -> Child:
    child = Child(parent_id=parent.id, name="Léa", age=8)
    session.add(child)
    session.commit()
    session.refresh(child)
    return child


def add_reward(session: Session, parent: Parent, label: str, cost: int) -> Reward:
    reward = Reward(parent_id=parent.id, label=label, cost=cost)
    session.add(reward)
    session.commit()
    session.refresh(reward)
    return reward


def register_parent(client, email="parent@example.com"):
    resp = client.post(
        "/register",
        data={"display_name": "Parent", "email": email, "password": "pw"},
    )
    assert resp.status_code == 201
    return resp.json()["parent"]


def create_child(client, name="Léa", age=8):
    resp = client.post("/children", data={"name": name, "age": age})
    assert resp.status_code == 201
    return resp.json()["child"]
