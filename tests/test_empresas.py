"""Tests for empresas, sucursales, ubicaciones and contactos."""
import pytest
from werkzeug.security import generate_password_hash

from app.apc import create_app
from app.apc.auth import _login_attempts
from app.apc.db import session_scope
from app.apc.models import ROLE_ADMIN, ROLE_TECNICO, Base, User
from app.apc.modules.empresas.models import UBICACION_INACTIVA, Ubicacion
from app.apc.modules.geografia.models import Comuna, Direccion, Pais, Provincia, Region


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    _login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add_all(
            [
                User(email="admin@example.com", password_hash=generate_password_hash("pw"), rol=ROLE_ADMIN),
                User(email="tecnico@example.com", password_hash=generate_password_hash("pw"), rol=ROLE_TECNICO),
            ]
        )
        pais = Pais(nombre="Chile")
        region = Region(nombre="Metropolitana", pais=pais)
        provincia = Provincia(nombre="Santiago", region=region)
        s.add(Comuna(id="comuna-1", nombre="Providencia", provincia=provincia))
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com"):
    r = client.post("/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200
    client.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]


def _direccion(calle="Los Leones"):
    return {"calle": calle, "numero": "100", "comuna_id": "comuna-1"}


def _create_empresa(client, **overrides):
    payload = {"nombre": "Acme SpA", "rut": "76.123.456-7", "email": "contacto@acme.cl", "direccion": _direccion()}
    payload.update(overrides)
    return client.post("/api/empresas", json=payload)


def _create_sucursal(client, empresa_id=None, nombre="Sucursal Centro"):
    return client.post("/api/sucursales", json={"nombre": nombre, "empresa_id": empresa_id, "direccion": _direccion("Huérfanos")})


def test_empresa_create_and_detail(client):
    _login(client)
    r = _create_empresa(client)
    assert r.status_code == 201
    empresa_id = r.json["id"]
    assert r.json["direccion"]["comuna"]["nombre"] == "Providencia"

    r = client.get(f"/api/empresas/{empresa_id}")
    assert r.status_code == 200
    assert r.json["sucursales"] == []
    assert r.json["contactos"] == []


def test_empresa_duplicate_rut_conflicts(client):
    _login(client)
    assert _create_empresa(client).status_code == 201
    r = _create_empresa(client, nombre="Otra Empresa")
    assert r.status_code == 409
    assert r.json["message"] == "Error al crear empresa: El RUT ya existe."


def test_empresa_validation_errors(client):
    _login(client)
    r = _create_empresa(client, nombre="A", rut="123", email="no-es-correo")
    assert r.status_code == 400
    assert "El nombre debe tener al menos 3 caracteres." in r.json["errors"]
    assert "El RUT debe tener al menos 8 caracteres." in r.json["errors"]
    assert "Correo electrónico inválido." in r.json["errors"]


def test_empresa_mutations_require_admin(client):
    _login(client, "tecnico@example.com")
    r = _create_empresa(client)
    assert r.status_code == 403
    assert client.get("/api/empresas").status_code == 200


def test_empresa_update_detaches_direccion(client):
    _login(client)
    empresa_id = _create_empresa(client).json["id"]

    r = client.put(f"/api/empresas/{empresa_id}", json={"telefono": "+56 2 2345 6789", "direccion": {"calle": "Apoquindo"}})
    assert r.status_code == 200
    assert r.json["telefono"] == "+56 2 2345 6789"
    assert r.json["direccion"]["calle"] == "Apoquindo"

    r = client.put(f"/api/empresas/{empresa_id}", json={"direccion": None})
    assert r.json["direccion"] is None


def test_empresa_update_new_direccion_requires_all_fields(app, client):
    _login(client)
    empresa_id = _create_empresa(client, direccion=None).json["id"]

    r = client.put(f"/api/empresas/{empresa_id}", json={"direccion": {"comuna_id": "comuna-1"}})
    assert r.status_code == 400
    assert "La calle es requerida." in r.json["errors"]
    assert "El número es requerido." in r.json["errors"]
    with session_scope(app) as s:
        assert s.query(Direccion).count() == 0

    r = client.put(f"/api/empresas/{empresa_id}", json={"direccion": _direccion("Apoquindo")})
    assert r.status_code == 200
    assert r.json["direccion"]["calle"] == "Apoquindo"
    assert r.json["direccion"]["numero"] == "100"


def test_empresa_with_sucursal_cannot_be_deleted(client):
    _login(client)
    empresa_id = _create_empresa(client).json["id"]
    r = _create_sucursal(client, empresa_id)
    assert r.status_code == 201
    sucursal_id = r.json["id"]
    assert r.json["empresa"]["nombre"] == "Acme SpA"

    r = client.delete(f"/api/empresas/{empresa_id}")
    assert r.status_code == 400

    assert client.delete(f"/api/sucursales/{sucursal_id}").status_code == 200
    assert client.delete(f"/api/empresas/{empresa_id}").status_code == 200
    assert client.get(f"/api/empresas/{empresa_id}").status_code == 404


def test_sucursales_filter_by_empresa(client):
    _login(client)
    empresa_id = _create_empresa(client).json["id"]
    _create_sucursal(client, empresa_id, "Sucursal Norte")
    _create_sucursal(client, None, "Sucursal Independiente")

    r = client.get("/api/sucursales", query_string={"empresaId": empresa_id})
    assert [x["nombre"] for x in r.json] == ["Sucursal Norte"]
    assert len(client.get("/api/sucursales").json) == 2


def test_sucursal_requires_direccion(client):
    _login(client)
    r = client.post("/api/sucursales", json={"nombre": "Sin Dirección"})
    assert r.status_code == 400
    assert "La dirección es requerida." in r.json["errors"]


def test_ubicaciones_without_sucursal_returns_empty_list(client):
    _login(client)
    r = client.get("/api/ubicaciones")
    assert r.status_code == 200
    assert r.json == []


def test_ubicacion_delete_deactivates(app, client):
    _login(client)
    sucursal_id = _create_sucursal(client).json["id"]

    r = client.post("/api/ubicaciones", json={"nombre_referencial": "Sala de servidores", "sucursal_id": sucursal_id})
    assert r.status_code == 201
    ubicacion_id = r.json["id"]
    assert r.json["estado"] == "ACTIVA"

    r = client.get("/api/ubicaciones", query_string={"sucursalId": sucursal_id})
    assert [u["id"] for u in r.json] == [ubicacion_id]

    r = client.delete(f"/api/ubicaciones/{ubicacion_id}")
    assert r.status_code == 200
    assert r.json["estado"] == UBICACION_INACTIVA

    # Row is kept, only hidden from the active listing
    with session_scope(app) as s:
        assert s.get(Ubicacion, ubicacion_id).estado == UBICACION_INACTIVA
    assert client.get("/api/ubicaciones", query_string={"sucursal_id": sucursal_id}).json == []


def test_sucursal_with_ubicaciones_cannot_be_deleted(client):
    _login(client)
    sucursal_id = _create_sucursal(client).json["id"]
    client.post("/api/ubicaciones", json={"nombre_referencial": "Bodega", "sucursal_id": sucursal_id})
    r = client.delete(f"/api/sucursales/{sucursal_id}")
    assert r.status_code == 400


def test_contacto_crud(client):
    _login(client)
    empresa_id = _create_empresa(client).json["id"]
    payload = {
        "nombre_completo": "María González",
        "email": "Maria@Acme.cl",
        "telefono": "+56911112222",
        "cargo": "Jefa TI",
        "empresa_id": empresa_id,
    }
    r = client.post("/api/contactos", json=payload)
    assert r.status_code == 201
    contacto_id = r.json["id"]
    assert r.json["email"] == "maria@acme.cl"

    r = client.post("/api/contactos", json=payload)
    assert r.status_code == 409
    assert r.json["message"] == "Error al crear contacto: El correo electrónico ya existe."

    r = client.put(f"/api/contactos/{contacto_id}", json={"cargo": "Gerente TI"})
    assert r.json["cargo"] == "Gerente TI"

    r = client.get("/api/contactos", query_string={"empresa_id": empresa_id})
    assert [c["id"] for c in r.json] == [contacto_id]

    assert client.delete(f"/api/contactos/{contacto_id}").status_code == 200
    assert client.get(f"/api/contactos/{contacto_id}").status_code == 404


def test_empresa_delete_removes_contactos_and_direccion(app, client):
    _login(client)
    r = _create_empresa(client)
    empresa_id, direccion_id = r.json["id"], r.json["direccion_id"]
    client.post(
        "/api/contactos",
        json={"nombre_completo": "Pedro Soto", "email": "pedro@acme.cl", "telefono": "+56933334444", "empresa_id": empresa_id},
    )

    assert client.delete(f"/api/empresas/{empresa_id}").status_code == 200
    assert client.get("/api/contactos").json == []
    with session_scope(app) as s:
        assert s.get(Direccion, direccion_id) is None
