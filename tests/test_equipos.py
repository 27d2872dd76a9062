"""Tests for the equipment inventory and loans."""
import pytest
from werkzeug.security import generate_password_hash

from app.apc import create_app
from app.apc.auth import _login_attempts
from app.apc.db import session_scope
from app.apc.models import ROLE_TECNICO, Base, User
from app.apc.modules.empresas.models import ContactoEmpresa, Empresa
from app.apc.modules.equipos.models import EquipoEnPrestamo, EquipoInventario


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    _login_attempts.clear()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add(User(id="user-tec", email="tecnico@example.com", password_hash=generate_password_hash("pw"), rol=ROLE_TECNICO))
        s.add(Empresa(id="emp-1", nombre="Acme SpA", rut="76.123.456-7"))
        s.flush()
        s.add(
            ContactoEmpresa(
                id="cont-1", nombre_completo="María González", email="maria@acme.cl", telefono="+56911112222", empresa_id="emp-1"
            )
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client):
    r = client.post("/auth/login", json={"email": "tecnico@example.com", "password": "pw"})
    assert r.status_code == 200
    client.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]


def _create_equipo(client, identificador="NB-001", **extra):
    payload = {
        "nombre_descriptivo": "Notebook Dell Latitude",
        "identificador_unico": identificador,
        "tipo_equipo": "NOTEBOOK",
        "marca": "Dell",
        "fecha_adquisicion": "2024-05-10",
    }
    payload.update(extra)
    r = client.post("/api/equipos", json=payload)
    assert r.status_code == 201, r.json
    return r.json


def _create_prestamo(client, equipo_id, **extra):
    payload = {
        "equipo_id": equipo_id,
        "prestado_a_contacto_id": "cont-1",
        "persona_responsable_en_sitio": "Pedro Rojas",
        "fecha_devolucion_estimada": "2030-01-15T18:00:00",
    }
    payload.update(extra)
    return client.post("/api/equipos-en-prestamo", json=payload)


def test_equipos_require_login(client):
    assert client.get("/api/equipos").status_code == 401
    assert client.get("/api/equipos-en-prestamo").status_code == 401


def test_create_equipo(client):
    _login(client)
    equipo = _create_equipo(client, empresa_id="emp-1")
    assert equipo["estado_equipo"] == "DISPONIBLE"
    assert equipo["fecha_adquisicion"] == "2024-05-10"
    assert equipo["empresa"]["nombre"] == "Acme SpA"

    assert [e["id"] for e in client.get("/api/equipos").json] == [equipo["id"]]
    assert client.get("/api/equipos?estado=PRESTADO").json == []
    assert client.get("/api/equipos?estado=ROTO").status_code == 400


def test_create_equipo_validation(client):
    _login(client)
    r = client.post("/api/equipos", json={"nombre_descriptivo": "NB", "tipo_equipo": "TOSTADORA"})
    assert r.status_code == 400
    errors = r.json["errors"]
    assert "El nombre descriptivo es requerido y debe tener al menos 3 caracteres." in errors
    assert "El identificador único es requerido y debe tener al menos 3 caracteres." in errors
    assert "Tipo de equipo inválido." in errors


def test_duplicate_identificador_conflicts(client):
    _login(client)
    _create_equipo(client, "NB-001")
    other = _create_equipo(client, "NB-002")

    r = client.post(
        "/api/equipos", json={"nombre_descriptivo": "Otro", "identificador_unico": "NB-001", "tipo_equipo": "NOTEBOOK"}
    )
    assert r.status_code == 409
    assert r.json["message"] == "El identificador único ya existe."

    r = client.put(f"/api/equipos/{other['id']}", json={"identificador_unico": "NB-001"})
    assert r.status_code == 409


def test_equipo_cannot_be_its_own_component(client):
    _login(client)
    equipo = _create_equipo(client)
    r = client.put(f"/api/equipos/{equipo['id']}", json={"parent_equipo_id": equipo["id"]})
    assert r.status_code == 400


def test_loan_and_return_flow(app, client):
    _login(client)
    equipo = _create_equipo(client)

    r = _create_prestamo(client, equipo["id"])
    assert r.status_code == 201
    prestamo = r.json
    assert prestamo["estado_prestamo"] == "PRESTADO"
    assert prestamo["equipo"]["estado_equipo"] == "PRESTADO"
    assert prestamo["entregado_por"]["email"] == "tecnico@example.com"
    assert prestamo["prestado_a_contacto"]["nombre_completo"] == "María González"

    # Second loan of the same equipo is refused
    r = _create_prestamo(client, equipo["id"])
    assert r.status_code == 400
    assert "no está disponible" in r.json["message"]

    r = client.put(f"/api/equipos-en-prestamo/{prestamo['id']}", json={"estado_prestamo": "DEVUELTO"})
    assert r.status_code == 200
    assert r.json["fecha_devolucion_real"] is not None
    assert r.json["recibido_por"]["email"] == "tecnico@example.com"

    with session_scope(app) as s:
        assert s.get(EquipoInventario, equipo["id"]).estado_equipo == "DISPONIBLE"


def test_finalizar_perdido_marks_equipo_lost(app, client):
    _login(client)
    equipo = _create_equipo(client)
    prestamo_id = _create_prestamo(client, equipo["id"]).json["id"]

    r = client.post(f"/api/equipos-en-prestamo/{prestamo_id}/finalizar", json={"estado": "EXTRAVIADO"})
    assert r.status_code == 400

    r = client.post(
        f"/api/equipos-en-prestamo/{prestamo_id}/finalizar",
        json={"estado_prestamo": "PERDIDO_POR_CLIENTE", "notas_devolucion": "Cliente reporta robo."},
    )
    assert r.status_code == 200
    assert r.json["estado_prestamo"] == "PERDIDO_POR_CLIENTE"
    assert r.json["notas_devolucion"] == "Cliente reporta robo."
    assert r.json["equipo"]["estado_equipo"] == "PERDIDO_ROBADO"

    r = client.post(f"/api/equipos-en-prestamo/{prestamo_id}/finalizar", json={"estado": "DEVUELTO"})
    assert r.status_code == 400
    assert r.json["message"] == "El préstamo ya ha sido finalizado."


def test_prestamo_validation_and_unknown_refs(client):
    _login(client)
    r = client.post("/api/equipos-en-prestamo", json={"persona_responsable_en_sitio": "Yo"})
    assert r.status_code == 400
    assert "El equipo es requerido." in r.json["errors"]
    assert "La fecha de devolución estimada es requerida." in r.json["errors"]

    equipo = _create_equipo(client)
    r = _create_prestamo(client, equipo["id"], prestado_a_contacto_id="cont-x")
    assert r.status_code == 404
    r = _create_prestamo(client, equipo["id"], ticket_id="ticket-x")
    assert r.status_code == 404
    assert r.json["message"] == "Ticket no encontrado."


def test_delete_equipo_with_prestamos_refused(app, client):
    _login(client)
    equipo = _create_equipo(client)
    prestamo_id = _create_prestamo(client, equipo["id"]).json["id"]

    r = client.delete(f"/api/equipos/{equipo['id']}")
    assert r.status_code == 400
    assert r.json["message"] == "No se puede eliminar el equipo porque tiene registros de préstamos asociados."

    # Deleting the active loan frees the equipo, then the equipo can go
    assert client.delete(f"/api/equipos-en-prestamo/{prestamo_id}").status_code == 200
    assert client.get(f"/api/equipos/{equipo['id']}").json["estado_equipo"] == "DISPONIBLE"
    assert client.delete(f"/api/equipos/{equipo['id']}").status_code == 200

    with session_scope(app) as s:
        assert s.query(EquipoInventario).count() == 0
        assert s.query(EquipoEnPrestamo).count() == 0


def test_prestamo_not_found(client):
    _login(client)
    r = client.get("/api/equipos-en-prestamo/no-existe")
    assert r.status_code == 404
    assert r.json["message"] == "Registro de préstamo no encontrado."
