import uuid

import pytest
from sqlmodel import Session

from training_portal import main as portal_main
from training_portal import repositories
from training_portal.config import settings
from training_portal.database import engine
from training_portal.errors import ValidationFailed
from training_portal.services import AuthService
from training_portal.utils.rate_limit import InMemoryRateLimiter


def _creds():
    name = f"auth_{uuid.uuid4().hex[:10]}"
    return {'username': name, 'email': f'{name}@example.com', 'password': 'pass123', 'full_name': 'Auth Tester'}


def test_register_login_and_me(client):
    creds = _creds()
    r = client.post('/auth/register', json=creds)
    assert r.status_code == 200
    assert r.json()['user']['role'] == 'trainee'
    login = client.post('/auth/login', json={'username': creds['username'], 'password': 'pass123'})
    assert login.status_code == 200
    token = login.json()['access_token']
    me = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    assert me.json()['username'] == creds['username']
    assert me.json()['role'] == 'trainee'


def test_login_with_email(client):
    creds = _creds()
    client.post('/auth/register', json=creds)
    r = client.post('/auth/login', json={'username': creds['email'], 'password': 'pass123'})
    assert r.status_code == 200


def test_duplicate_username_and_email_conflict(client):
    creds = _creds()
    assert client.post('/auth/register', json=creds).status_code == 200
    again = client.post('/auth/register', json=creds)
    assert again.status_code == 409
    assert again.json()['detail'] == 'Username already taken'
    same_email = dict(creds, username=creds['username'] + '_2')
    r = client.post('/auth/register', json=same_email)
    assert r.status_code == 409
    assert 'already registered' in r.json()['detail']


def test_bad_password_rejected(client):
    creds = _creds()
    client.post('/auth/register', json=creds)
    r = client.post('/auth/login', json={'username': creds['username'], 'password': 'wrong'})
    assert r.status_code == 401


def test_role_mismatch_rejected(client):
    creds = _creds()
    client.post('/auth/register', json=creds)
    r = client.post('/auth/login', json={'username': creds['username'], 'password': 'pass123', 'role': 'admin'})
    assert r.status_code == 401
    assert r.json()['detail'] == 'Invalid credentials for admin role'
    ok = client.post('/auth/login', json={'username': creds['username'], 'password': 'pass123', 'role': 'trainee'})
    assert ok.status_code == 200


def test_missing_or_bad_token(client):
    r = client.get('/quizzes')
    assert r.status_code in (401, 403)
    r2 = client.get('/quizzes', headers={'Authorization': 'Bearer not-a-token'})
    assert r2.status_code == 401


def test_trainee_cannot_author(client, trainee, quiz_payload):
    r = client.post('/quizzes', json=quiz_payload, headers=trainee['headers'])
    assert r.status_code == 403
    r2 = client.get('/analytics', headers=trainee['headers'])
    assert r2.status_code == 403


def test_admin_can_change_roles(client, admin, trainee):
    r = client.put(f"/users/{trainee['id']}/role", json={'role': 'admin'}, headers=admin['headers'])
    assert r.status_code == 200
    assert r.json()['role'] == 'admin'
    # the stored role is authoritative, so the existing token now carries admin rights
    assert client.get('/analytics', headers=trainee['headers']).status_code == 200
    missing = client.put('/users/nope/role', json={'role': 'admin'}, headers=admin['headers'])
    assert missing.status_code == 404


def test_login_rate_limit(client, monkeypatch):
    monkeypatch.setattr(portal_main, '_login_rate_limiter', InMemoryRateLimiter())
    monkeypatch.setattr(settings, 'LOGIN_RATE_LIMIT_PER_MIN', 1)
    payload = {'username': 'nobody', 'password': 'x'}
    first = client.post('/auth/login', json=payload)
    assert first.status_code == 401
    second = client.post('/auth/login', json=payload)
    assert second.status_code == 429
    assert 'Retry-After' in second.headers


def test_request_id_header_exists(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert 'X-Request-ID' in r.headers
    echoed = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert echoed.headers['X-Request-ID'] == 'abc123'


def test_concurrent_signup_unique_violation_is_conflict(client, monkeypatch):
    creds = _creds()
    assert client.post('/auth/register', json=creds).status_code == 200
    # simulate a second sign-up that passed the existence checks before the first committed
    monkeypatch.setattr(repositories.UserRepository, 'get_by_username', lambda self, name: None)
    monkeypatch.setattr(repositories.UserRepository, 'get_by_email', lambda self, email: None)
    again = client.post('/auth/register', json=creds)
    assert again.status_code == 409
    assert again.json()['detail'] == 'Username already taken'
    monkeypatch.undo()
    # the failed insert was rolled back, so the account still works
    r = client.post('/auth/login', json={'username': creds['username'], 'password': 'pass123'})
    assert r.status_code == 200


def test_username_cannot_take_another_accounts_email(client):
    owner = _creds()
    assert client.post('/auth/register', json=owner).status_code == 200
    squatter = dict(_creds(), username=owner['email'])
    r = client.post('/auth/register', json=squatter)
    assert r.status_code == 422
    login = client.post('/auth/login', json={'username': owner['email'], 'password': 'pass123'})
    assert login.status_code == 200
    assert login.json()['user']['username'] == owner['username']


def test_register_service_rejects_at_sign_in_username():
    creds = _creds()
    with Session(engine) as session:
        with pytest.raises(ValidationFailed):
            AuthService(session).register(
                'someone@example.com', creds['email'], creds['password'], creds['full_name'],
            )
