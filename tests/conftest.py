import copy
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EVENTS_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "testing"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from examcore.core.auth import create_token
from examcore.core.database import get_db, init_db
from examcore.jobs import queue as jobs_queue
from examcore.main import app
from examcore.models.content import QuestionType
from examcore.services import composition, groups, questions, sharing, subjects

TEACHER = "teacher-1"
OTHER_TEACHER = "teacher-2"

SAMPLES = {
    QuestionType.MULTIPLE_CHOICE: {
        "question": "Capital of France?",
        "options": [
            {"id": "a", "text": "Paris", "is_correct": True},
            {"id": "b", "text": "Berlin"},
            {"id": "c", "text": "Rome"},
        ],
    },
    QuestionType.FREE_TEXT: {"question": "Name a prime number.", "expected_length": "word", "sample_answer": "7"},
    QuestionType.FILE_UPLOAD: {"question": "Upload your report.", "allowed_types": ["pdf"], "max_file_size_mb": 1},
    QuestionType.KPRIM: {
        "question": "Which statements are true?",
        "statements": [
            {"id": "s1", "text": "Water boils at 100C at sea level", "is_true": True},
            {"id": "s2", "text": "The sun orbits the earth", "is_true": False},
            {"id": "s3", "text": "2 + 2 = 4", "is_true": True},
            {"id": "s4", "text": "Bats are birds", "is_true": False},
        ],
    },
    QuestionType.CLOZE: {
        "question": "Complete the sentence.",
        "text": "The capital of Germany is {{b1}} and of Italy is {{b2}}.",
        "blanks": [
            {"id": "b1", "correct_answers": ["Berlin"]},
            {"id": "b2", "correct_answers": ["Rome", "Roma"]},
        ],
    },
    QuestionType.MATCHING: {
        "question": "Match countries to capitals.",
        "pairs": [
            {"id": "p1", "left": "France", "right": "Paris"},
            {"id": "p2", "left": "Spain", "right": "Madrid"},
            {"id": "p3", "left": "Peru", "right": "Lima"},
        ],
    },
    QuestionType.ESSAY: {"question": "Discuss.", "min_words": 10, "max_words": 200, "rubric": "Structure and argument"},
}


def sample(qtype):
    return copy.deepcopy(SAMPLES[qtype])


class FakeJob:
    def __init__(self, job_id):
        self.id = job_id

    def get_id(self):
        return self.id


class FakeQueue:
    def __init__(self):
        self.calls = []

    def enqueue(self, func, *args, **kwargs):
        self.calls.append((func, args, kwargs))
        return FakeJob(f"job-{len(self.calls)}")


class Factory:
    """Builds questions and exams through the services."""

    def __init__(self, db):
        self.db = db

    def question(self, qtype=QuestionType.MULTIPLE_CHOICE, points=2, owner_id=TEACHER, **kwargs):
        return questions.create_question(
            self.db, owner_id, type=qtype, title=kwargs.pop("title", f"{qtype.value} question"),
            content=kwargs.pop("content", sample(qtype)), points=points, **kwargs,
        )

    def subject(self, name="Geography", owner_id=TEACHER):
        return subjects.create_subject(self.db, owner_id, name)

    def group(self, members=(), owner_id=TEACHER, name="Science staff"):
        """Group owned by owner_id; each of members has accepted an invitation."""
        group = groups.create_group(self.db, owner_id, name=name).group
        for teacher_id in members:
            invitation = groups.send_invitation(self.db, owner_id, group.id, teacher_id)
            groups.accept_invitation(self.db, teacher_id, invitation.id)
        return group

    def shared_question(self, with_teacher=OTHER_TEACHER, qtype=QuestionType.MULTIPLE_CHOICE, **kwargs):
        q = self.question(qtype, **kwargs)
        group = self.group(members=[with_teacher], owner_id=q.owner_id)
        sharing.share_question(self.db, q.owner_id, q.id, [group.id])
        return q

    def exam(self, owner_id=TEACHER, **kwargs):
        return composition.create_exam(self.db, owner_id, title=kwargs.pop("title", "Midterm"), **kwargs)

    def active_exam(self, qs, sections=None, owner_id=TEACHER, **kwargs):
        exam = self.exam(owner_id=owner_id, **kwargs)
        if sections is None:
            composition.assign_questions(self.db, owner_id, exam.id, [q.id for q in qs])
        else:
            composition.save_composition(self.db, owner_id, exam.id, sections)
        return composition.activate(self.db, owner_id, exam.id)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture(autouse=True)
def fake_queue(monkeypatch):
    queue = FakeQueue()
    monkeypatch.setattr(jobs_queue, "queue", queue)
    return queue


@pytest.fixture
def client(engine):
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_header(user_id=TEACHER, roles=("teacher",)):
    return {"Authorization": f"Bearer {create_token(user_id, list(roles))}"}


@pytest.fixture
def teacher_headers():
    return auth_header()
