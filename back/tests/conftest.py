"""
Shared fixtures for command assistant tests

- In-memory SQLite (StaticPool) with a seeded kanban project
- Deterministic "today"
- Fake LLM client / task generator (no network)
"""

from datetime import date, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from models.project_base import Project, ProjectMember, Task, User
from services.command.project_context import ProjectContextService

# 2025-06-11 is a Wednesday
TODAY = date(2025, 6, 11)


class FakeLLMClient:
    """Returns queued JSON objects in order and records every call"""

    def __init__(self, responses: Optional[List[Optional[Dict[str, Any]]]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def chat_json(self, messages, temperature: float = 0.1):
        self.calls.append({"messages": list(messages), "temperature": temperature})
        if not self.responses:
            return None
        return self.responses.pop(0)


class FakeTaskGenerator:
    """Returns fixed drafts (or raises) without calling an LLM"""

    def __init__(self, drafts=None, error: Optional[Exception] = None):
        self.drafts = drafts or []
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def generate_tasks(self, project, count, context):
        self.calls.append({"project_id": project.id, "count": count, "context": context})
        if self.error is not None:
            raise self.error
        return self.drafts[:count]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db):
    """
    Kanban project "Launch Board" owned by Alice, with Bob and Carol as members.

    Tasks (ids are assigned in insertion order):
        1 "Write API docs"       todo        medium  Bob    due TODAY-3 (overdue)
        2 "Fix login bug"        inprogress  high    Carol  due TODAY+2
        3 "Design landing page"  review      low     -      -
        4 "Deploy staging"       done        urgent  Alice  due TODAY-5 (done, not overdue)
        5 "Update README"        todo        high    -      due TODAY-1 (overdue)
        6 "Other project task"   (belongs to Dave's project)
    """
    alice = User(name="Alice Owner", email="alice@example.com")
    bob = User(name="Bob Builder", email="bob@example.com")
    carol = User(name="Carol Chen", email="carol@example.com")
    dave = User(name="Dave Stranger", email="dave@example.com")
    db.add_all([alice, bob, carol, dave])
    db.flush()

    project = Project(name="Launch Board", user_id=alice.id, meta={"methodology": "kanban"})
    other = Project(name="Side Project", user_id=dave.id, meta={"methodology": "waterfall"})
    db.add_all([project, other])
    db.flush()

    db.add_all([
        ProjectMember(project_id=project.id, user_id=bob.id, role="member"),
        ProjectMember(project_id=project.id, user_id=carol.id, role="member"),
    ])

    tasks = [
        Task(project_id=project.id, title="Write API docs", status="todo", priority="medium",
             assignee_id=bob.id, end_date=TODAY - timedelta(days=3)),
        Task(project_id=project.id, title="Fix login bug", status="inprogress", priority="high",
             assignee_id=carol.id, end_date=TODAY + timedelta(days=2)),
        Task(project_id=project.id, title="Design landing page", status="review", priority="low"),
        Task(project_id=project.id, title="Deploy staging", status="done", priority="urgent",
             assignee_id=alice.id, end_date=TODAY - timedelta(days=5)),
        Task(project_id=project.id, title="Update README", status="todo", priority="high",
             end_date=TODAY - timedelta(days=1)),
    ]
    db.add_all(tasks)
    db.flush()
    foreign_task = Task(project_id=other.id, title="Other project task", status="todo", priority="medium")
    db.add(foreign_task)
    db.commit()

    return SimpleNamespace(
        alice=alice, bob=bob, carol=carol, dave=dave,
        project=project, other=other, tasks=tasks, foreign_task=foreign_task,
    )


@pytest.fixture
def context(db, seeded):
    """Context acting as Bob, with today fixed"""
    return ProjectContextService(db, current_user_id=seeded.bob.id, today=lambda: TODAY)


@pytest.fixture
def project_tasks(db, seeded):
    """Helper returning the current task rows of the seeded project keyed by id"""
    def _load():
        db.expire_all()
        return {task.id: task for task in db.query(Task).filter(Task.project_id == seeded.project.id).all()}
    return _load


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def fake_llm():
    """Factory: fake_llm([{...}, None]) -> FakeLLMClient"""
    return FakeLLMClient


@pytest.fixture
def fake_generator():
    """Factory: fake_generator(drafts=[...], error=...) -> FakeTaskGenerator"""
    return FakeTaskGenerator
