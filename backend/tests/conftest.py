import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Must happen before portal.db.session builds its engine.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from portal.db.base import Base
from portal.db import session as session_module
from portal.main import create_app
from portal.routers import exams as exams_router

# Import models so that they are registered in Base.metadata before create_all.
from portal.models.exam_result import ExamResultRecord  # noqa: F401

from fakes import FakeGradingSource, FakePersister, FakeQuestionSource, make_engine


# Configure test DB (SQLite in-memory) at import time so all tests importing
# portal.db.session.SessionLocal will get the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def exam_sources():
    """Fake collaborators shared by every engine the router builds in a test."""
    return {
        "questions": FakeQuestionSource(),
        "grading": FakeGradingSource(),
        "persister": FakePersister(),
    }


@pytest.fixture()
def client(monkeypatch, exam_sources):
    def _factory(student_id: str):
        return make_engine(
            student_id=student_id,
            question_source=exam_sources["questions"],
            grading_source=exam_sources["grading"],
            persister=exam_sources["persister"],
            tick_seconds=1.0,
        )

    monkeypatch.setattr(exams_router, "registry", exams_router.ExamEngineRegistry(factory=_factory))

    app = create_app()
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def student_headers():
    return {"X-Student-Id": "student-1"}
