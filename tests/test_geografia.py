"""Tests for the geografia module (countries → comunas, direcciones, location search)."""
import pytest
from werkzeug.security import generate_password_hash

from app.apc import create_app
from app.apc.auth import _login_attempts
from app.apc.db import session_scope
from app.apc.models import ROLE_ADMIN, ROLE_TECNICO, Base, User
from app.apc.modules.empresas.models import Sucursal
from app.apc.modules.geografia.models import Comuna, Direccion, Pais, Provincia, Region


@pytest.fixture()
def client(tmp_path, monkeypatch):
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
        pais = Pais(id="pais-cl", nombre="Chile")
        region = Region(id="region-rm", nombre="Metropolitana", pais=pais)
        provincia = Provincia(id="prov-stgo", nombre="Santiago", region=region)
        s.add_all(
            [
                Comuna(id="comuna-prov", nombre="Providencia", provincia=provincia),
                Comuna(id="comuna-nunoa", nombre="Ñuñoa", provincia=provincia),
                Comuna(id="comuna-lc", nombre="Las Condes", provincia=provincia),
            ]
        )
        s.flush()
        direccion = Direccion(id="dir-1", calle="Av. Providencia", numero="1234", comuna_id="comuna-prov")
        s.add(direccion)
        s.flush()
        s.add(Sucursal(id="suc-1", nombre="Casa Matriz Providencia", direccion_id="dir-1"))

    return app.test_client()


def _login(client, email="admin@example.com"):
    r = client.post("/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200
    client.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]


def test_paises_list_requires_login(client):
    assert client.get("/api/geografia/paises").status_code == 401


def test_paises_list_and_create(client):
    _login(client)
    r = client.get("/api/geografia/paises")
    assert [p["nombre"] for p in r.json] == ["Chile"]

    r = client.post("/api/geografia/paises", json={"nombre": "Argentina"})
    assert r.status_code == 201
    assert r.json["nombre"] == "Argentina"


def test_pais_duplicate_name_conflicts(client):
    _login(client)
    r = client.post("/api/geografia/paises", json={"nombre": "chile"})
    assert r.status_code == 409


def test_tecnico_cannot_create_geography(client):
    _login(client, "tecnico@example.com")
    r = client.post("/api/geografia/regiones", json={"nombre": "Valparaíso", "pais_id": "pais-cl"})
    assert r.status_code == 403

    # Read access is fine
    assert client.get("/api/geografia/regiones").status_code == 200


def test_region_create_validates_parent(client):
    _login(client)
    r = client.post("/api/geografia/regiones", json={"nombre": "Valparaíso"})
    assert r.status_code == 400
    assert r.json["message"].startswith("Error de validación:")

    r = client.post("/api/geografia/regiones", json={"nombre": "Valparaíso", "pais_id": "no-existe"})
    assert r.status_code == 404


def test_region_provincia_comuna_chain(client):
    _login(client)
    r = client.post("/api/geografia/regiones", json={"nombre": "Valparaíso", "pais_id": "pais-cl"})
    assert r.status_code == 201
    region_id = r.json["id"]
    assert r.json["pais"]["nombre"] == "Chile"

    r = client.post("/api/geografia/provincias", json={"nombre": "Valparaíso", "region_id": region_id})
    assert r.status_code == 201
    provincia_id = r.json["id"]

    r = client.post("/api/geografia/comunas", json={"nombre": "Viña del Mar", "provincia_id": provincia_id})
    assert r.status_code == 201

    r = client.get(f"/api/geografia/regiones/{region_id}/comunas")
    assert [c["nombre"] for c in r.json] == ["Viña del Mar"]

    r = client.get("/api/geografia/provincias", query_string={"region_id": region_id})
    assert [p["id"] for p in r.json] == [provincia_id]


def test_comuna_update(client):
    _login(client)
    r = client.put("/api/geografia/comunas/comuna-lc", json={"nombre": "Las Condes Oriente"})
    assert r.status_code == 200
    assert r.json["nombre"] == "Las Condes Oriente"

    r = client.get("/api/geografia/comunas/comuna-lc")
    assert r.json["provincia"]["nombre"] == "Santiago"


def test_comunas_search_requires_term(client):
    _login(client)
    r = client.get("/api/geografia/comunas")
    assert r.status_code == 400
    assert r.json["message"] == "El parámetro 'search' es requerido."

    r = client.get("/api/geografia/comunas", query_string={"search": "   "})
    assert r.status_code == 400


def test_comunas_search_is_case_insensitive(client):
    _login(client)
    r = client.get("/api/geografia/comunas", query_string={"search": "PROV"})
    assert r.status_code == 200
    assert [c["nombre"] for c in r.json] == ["Providencia"]


def test_comunas_picker_without_query_lists_all(client):
    _login(client)
    r = client.get("/api/comunas")
    assert [c["nombre"] for c in r.json] == ["Las Condes", "Providencia", "Ñuñoa"]

    r = client.get("/api/comunas", query_string={"query": "las"})
    assert [c["nombre"] for c in r.json] == ["Las Condes"]


def test_location_search(client):
    _login(client)
    r = client.get("/api/search/locations", query_string={"q": "p"})
    assert r.json == {"sucursales": [], "comunas": []}

    r = client.get("/api/search/locations", query_string={"q": "provi"})
    assert [x["nombre"] for x in r.json["sucursales"]] == ["Casa Matriz Providencia"]
    assert [c["nombre"] for c in r.json["comunas"]] == ["Providencia"]
    assert r.json["sucursales"][0]["direccion"]["calle"] == "Av. Providencia"


def test_direccion_crud(client):
    _login(client)
    r = client.post("/api/direcciones", json={"calle": "Irarrázaval", "numero": "500", "comuna_id": "comuna-nunoa"})
    assert r.status_code == 201
    direccion_id = r.json["id"]
    assert r.json["comuna"]["nombre"] == "Ñuñoa"

    r = client.put(f"/api/direcciones/{direccion_id}", json={"depto": "12B", "comuna_id": "comuna-prov"})
    assert r.status_code == 200
    assert r.json["depto"] == "12B"
    assert r.json["comuna"]["nombre"] == "Providencia"

    r = client.delete(f"/api/direcciones/{direccion_id}")
    assert r.status_code == 200
    assert client.get(f"/api/direcciones/{direccion_id}").status_code == 404


def test_direccion_in_use_cannot_be_deleted(client):
    _login(client)
    r = client.delete("/api/direcciones/dir-1")
    assert r.status_code == 400


def test_direccion_requires_fields(client):
    _login(client)
    r = client.post("/api/direcciones", json={"calle": "Sin número"})
    assert r.status_code == 400
    assert "El número es requerido." in r.json["errors"]
    assert "La comuna es requerida." in r.json["errors"]
