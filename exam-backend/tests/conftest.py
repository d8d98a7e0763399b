import os

os.environ["DATABASE_URL"] = "sqlite://"

import random
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from auth.security import create_access_token
from database.database import Base, SessionLocal, engine as db_engine
from database.models import Exam, Objective, Question
from routers.deps import build_engine, get_clock
from session_api import app

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

NETWORK_EXAM = 1
SCENARIO_EXAM = 2
PLAN_EXAM = 3

FUNDAMENTALS = 10
SECURITY = 11
PLAN_OBJECTIVE = 30


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, days: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, days=days)
        return self.now


def _question(qid, exam_id, objective_id, correct, active=True):
    return Question(
        id=qid,
        exam_id=exam_id,
        objective_id=objective_id,
        question_text=f"Question {qid}?",
        question_type="multiple" if len(correct) > 1 else "single",
        options=["Option A", "Option B", "Option C", "Option D"],
        correct_answers=correct,
        explanation=f"Explanation for {qid}",
        is_active=active,
    )


def _seed(db):
    db.add_all([
        Exam(id=NETWORK_EXAM, code="NET-101", name="Networking Essentials",
             passing_score=70, question_count=4, duration_minutes=30, is_active=True),
        Exam(id=SCENARIO_EXAM, code="SCN-3", name="Scenario Exam",
             passing_score=70, question_count=None, duration_minutes=1, is_active=True),
        Exam(id=PLAN_EXAM, code="PLN-5", name="Planning Exam",
             passing_score=75, question_count=None, duration_minutes=None, is_active=True),
    ])
    db.add_all([
        Objective(id=FUNDAMENTALS, exam_id=NETWORK_EXAM, title="Networking Fundamentals", weight=60),
        Objective(id=SECURITY, exam_id=NETWORK_EXAM, title="Network Security", weight=40),
        Objective(id=20, exam_id=SCENARIO_EXAM, title="Scenario Objective"),
        Objective(id=PLAN_OBJECTIVE, exam_id=PLAN_EXAM, title="Plan Objective"),
    ])
    db.flush()
    db.add_all([
        _question(101, NETWORK_EXAM, FUNDAMENTALS, [0]),
        _question(102, NETWORK_EXAM, FUNDAMENTALS, [1]),
        _question(103, NETWORK_EXAM, FUNDAMENTALS, [2]),
        _question(104, NETWORK_EXAM, SECURITY, [3]),
        _question(105, NETWORK_EXAM, SECURITY, [0, 1]),
        _question(106, NETWORK_EXAM, SECURITY, [2]),
        _question(107, NETWORK_EXAM, SECURITY, [0], active=False),
        _question(201, SCENARIO_EXAM, 20, [0]),
        _question(202, SCENARIO_EXAM, 20, [1, 2]),
        _question(203, SCENARIO_EXAM, None, [0]),
    ] + [_question(qid, PLAN_EXAM, PLAN_OBJECTIVE, [0]) for qid in range(301, 306)])
    db.commit()


@pytest.fixture
def db():
    Base.metadata.create_all(bind=db_engine)
    session = SessionLocal()
    _seed(session)
    yield session
    session.close()
    Base.metadata.drop_all(bind=db_engine)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(db, clock):
    return build_engine(db, clock=clock, rng=random.Random(7))


@pytest.fixture
def client(db, clock):
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user_id: str = USER_ID) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture
def headers():
    return auth_headers(USER_ID)


@pytest.fixture
def other_headers():
    return auth_headers(OTHER_USER_ID)
