import pytest
from werkzeug.security import generate_password_hash

from app.apc import create_app
from app.apc.auth import _login_attempts
from app.apc.db import session_scope
from app.apc.models import ROLE_ADMIN, ROLE_TECNICO, AuditEvent, Base, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("LOGIN_RATE_LIMIT", "3")
    _login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add_all(
            [
                User(email="admin@example.com", password_hash=generate_password_hash("pw"), rol=ROLE_ADMIN, is_active=True),
                User(email="tecnico@example.com", password_hash=generate_password_hash("pw"), rol=ROLE_TECNICO, is_active=True),
                User(email="baja@example.com", password_hash=generate_password_hash("pw"), rol=ROLE_TECNICO, is_active=False),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_and_ping(client):
    assert client.get("/healthz").data == b"ok"
    r = client.get("/api/ping")
    assert r.json == {"message": "pong"}


def test_api_requires_login(client):
    r = client.get("/api/tickets")
    assert r.status_code == 401
    assert r.json["message"] == "No autorizado"


def test_login_json_and_me(client):
    r = client.post("/auth/login", json={"email": "ADMIN@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["rol"] == ROLE_ADMIN
    assert r.json["csrf_token"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "admin@example.com"


def test_login_form_post(client):
    r = client.post("/auth/login", data={"email": "tecnico@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["rol"] == ROLE_TECNICO


def test_login_invalid_credentials_is_audited(app, client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["message"] == "Credenciales inválidas."

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
    assert "auth.login_failed" in actions


def test_inactive_user_cannot_login(client):
    r = client.post("/auth/login", json={"email": "baja@example.com", "password": "pw"})
    assert r.status_code == 401


def test_login_rate_limit(client):
    for _ in range(3):
        client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"})
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 429


def test_logout_clears_session(client):
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.post("/auth/logout")
    assert r.json == {"ok": True}
    assert client.get("/auth/me").status_code == 401


def test_register_creates_tecnico(client):
    r = client.post("/auth/register", json={"email": "nuevo@example.com", "name": "Nuevo", "password": "secreto"})
    assert r.status_code == 201
    assert r.json["rol"] == ROLE_TECNICO

    r = client.post("/auth/register", json={"email": "nuevo@example.com", "password": "secreto"})
    assert r.status_code == 409
    assert r.json["message"] == "El correo ya está registrado."


def test_register_short_password(client):
    r = client.post("/auth/register", json={"email": "corto@example.com", "password": "123"})
    assert r.status_code == 400


def test_login_and_register_reject_non_string_fields(client):
    r = client.post("/auth/login", json={"email": 123, "password": ["pw"]})
    assert r.status_code == 401
    assert r.json["message"] == "Credenciales inválidas."

    r = client.post("/auth/register", json={"email": 5, "password": "secreto"})
    assert r.status_code == 400
    assert r.json["message"] == "Correo electrónico inválido."


def test_mutation_without_csrf_token_rejected(client):
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.post("/api/geografia/paises", json={"nombre": "Chile"})
    assert r.status_code == 400
    assert r.json["message"] == "Token CSRF ausente o inválido."


def test_unknown_route_is_json_404(client):
    r = client.get("/api/no-existe")
    assert r.status_code == 404
    assert r.json["message"] == "Recurso no encontrado."
