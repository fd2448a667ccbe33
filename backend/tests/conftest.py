import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Point the app at a throwaway database before `training_portal` is imported.
_DB_DIR = Path(tempfile.mkdtemp(prefix="portal-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ.setdefault("LOGIN_RATE_LIMIT_PER_MIN", "10000")

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from training_portal.database import engine  # noqa: E402
from training_portal.main import app  # noqa: E402
from training_portal import repositories  # noqa: E402
from training_portal.models import Role  # noqa: E402


@pytest.fixture(scope="session")
def client():
    return TestClient(app)


def _signup(client, full_name=None):
    name = f"user_{uuid.uuid4().hex[:10]}"
    r = client.post('/auth/register', json={
        'username': name,
        'email': f'{name}@example.com',
        'password': 'pass123',
        'full_name': full_name or name.title(),
    })
    assert r.status_code == 200, r.text
    body = r.json()
    return {
        'id': body['user']['id'],
        'username': name,
        'headers': {'Authorization': f"Bearer {body['access_token']}"},
    }


@pytest.fixture
def trainee(client):
    return _signup(client)


@pytest.fixture
def make_trainee(client):
    return lambda full_name=None: _signup(client, full_name)


@pytest.fixture
def admin(client):
    user = _signup(client, "Course Admin")
    with Session(engine) as session:
        repo = repositories.UserRepository(session)
        repo.set_role(repo.get(user['id']), Role.ADMIN)
    return user


@pytest.fixture
def quiz_payload():
    return {
        'title': 'Server Basics',
        'description': 'Rack and stack fundamentals',
        'time_limit': 15,
        'questions': [
            {
                'question_text': 'Which unit measures rack height?',
                'options': [
                    {'key': 'a', 'option_text': 'U'},
                    {'key': 'b', 'option_text': 'Inch'},
                    {'key': 'c', 'option_text': 'Slot'},
                ],
                'correct_option_key': 'a',
            },
            {
                'question_text': 'Which component stores firmware settings?',
                'options': [
                    {'key': 'x', 'option_text': 'GPU'},
                    {'key': 'y', 'option_text': 'BIOS chip'},
                ],
                'correct_option_key': 'y',
            },
        ],
    }
