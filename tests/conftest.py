"""
Test fixtures for Classroom Tutor.

Provides app, client, teacher_client, student_client and db fixtures with
file-based SQLite. The LLM gateway is replaced by a MagicMock so route tests
never reach the network; gateway unit tests drive a fake OpenAI client.
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

TEACHER_PASSWORD = "TeacherPass1"
STUDENT_PASSWORD = "StudentPass1"


@pytest.fixture
def openai_client():
    """Stand-in for openai.OpenAI(); set .chat.completions.create per test."""
    return MagicMock()


@pytest.fixture
def completion_client(openai_client):
    from ai_resilience import CompletionClient
    return CompletionClient(api_key="sk-test", model="gpt-4", openai_client=openai_client)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def llm_gateway(completion_client, sleeps):
    """Real gateway over the fake OpenAI client; sleeps are recorded, not taken."""
    from llm_gateway import LLMGateway
    return LLMGateway(completion_client, max_attempts=3, retry_base_delay=3.0, sleep=sleeps.append)


@pytest.fixture
def gateway():
    """Mock gateway injected into the app for route tests."""
    return MagicMock()


@pytest.fixture
def app(tmp_path, gateway):
    """Create app with file-based SQLite for testing."""
    from app import create_app
    from werkzeug.security import generate_password_hash

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "LLM_GATEWAY": gateway,
    })

    with app.app_context():
        from database import init_db, run_migrations, get_db

        init_db()
        run_migrations()

        now = datetime.now().isoformat()
        db = get_db()
        db.execute(
            "INSERT INTO users (id, username, password_hash, role, created_at) VALUES (1, 'frizzle', ?, 'teacher', ?)",
            (generate_password_hash(TEACHER_PASSWORD), now),
        )
        db.execute(
            "INSERT INTO users (id, username, password_hash, role, created_at) VALUES (2, 'arnold', ?, 'student', ?)",
            (generate_password_hash(STUDENT_PASSWORD), now),
        )
        db.execute(
            "INSERT INTO courses (id, teacher_id, name, description, subject, grade_level, "
            "standard_type, course_code, created_at) "
            "VALUES (1, 1, 'Room 3 Math', 'Third grade math', 'Mathematics', '3', 'commonCore', 'ABC123', ?)",
            (now,),
        )
        db.execute(
            "INSERT INTO enrollments (course_id, student_id, joined_at) VALUES (1, 2, ?)", (now,),
        )
        db.commit()

        yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def teacher_client(app):
    """Test client logged in as the teacher who owns course 1."""
    client = app.test_client()
    with client:
        client.post("/api/login", json={"username": "frizzle", "password": TEACHER_PASSWORD})
        yield client


@pytest.fixture
def student_client(app):
    """Test client logged in as a student enrolled in course 1."""
    client = app.test_client()
    with client:
        client.post("/api/login", json={"username": "arnold", "password": STUDENT_PASSWORD})
        yield client


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()
