"""Tests for the bulk ticket import endpoint and its CSV parser."""
import io
from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.apc import create_app
from app.apc.auth import _login_attempts
from app.apc.db import session_scope
from app.apc.models import ROLE_ADMIN, ROLE_TECNICO, AuditEvent, Base, User
from app.apc.modules.empresas.models import Empresa, Sucursal
from app.apc.modules.geografia.models import Comuna, Direccion, Pais, Provincia, Region
from app.apc.modules.tickets.models import AccionTicket, Ticket
from app.apc.modules.tickets.parsers.csv import normalize_header, parse_ticket_import_csv


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
                User(id="user-admin", email="admin@example.com", password_hash=generate_password_hash("pw"), rol=ROLE_ADMIN),
                User(id="user-tec", email="tecnico@example.com", password_hash=generate_password_hash("pw"), rol=ROLE_TECNICO),
            ]
        )
        pais = Pais(nombre="Chile")
        region = Region(nombre="Metropolitana", pais=pais)
        provincia = Provincia(nombre="Santiago", region=region)
        s.add(Comuna(id="comuna-1", nombre="Providencia", provincia=provincia))
        s.flush()
        s.add(Direccion(id="dir-1", calle="Los Leones", numero="100", comuna_id="comuna-1"))
        s.add(Empresa(id="emp-1", nombre="Acme SpA", rut="76.123.456-7"))
        s.flush()
        s.add(Sucursal(id="suc-1", nombre="Casa Matriz", direccion_id="dir-1", empresa_id="emp-1"))
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com"):
    r = client.post("/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200
    client.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]


def _ticket_record(numero="T-1", **overrides):
    record = {
        "tipoRegistro": "ticket",
        "numeroTicketAsociado": numero,
        "titulo": "Sin acceso a VPN",
        "tipoIncidente": "Red",
        "prioridad": "alta",
        "estado": "abierto",
        "solicitanteNombre": "Juan Pérez",
        "empresaClienteNombre": "acme spa",
        "tecnicoAsignadoEmail": "TECNICO@example.com",
        "ubicacionNombre": "Casa Matriz",
        "fechaCreacion": "2025-03-01T09:30:00",
    }
    record.update(overrides)
    return record


def _accion_record(numero="T-1", **overrides):
    record = {
        "tipoRegistro": "ACCION",
        "numeroTicketAsociado": numero,
        "accionDescripcion": "Se reinicia el concentrador VPN.",
        "accionFecha": "2025-03-01T10:00:00",
        "accionUsuarioEmail": "tecnico@example.com",
        "accionCategoria": "Remoto",
    }
    record.update(overrides)
    return record


def _count(app, model):
    with session_scope(app) as s:
        return s.query(model).count()


def test_import_json_success(app, client):
    _login(client)
    records = [_ticket_record("T-1"), _accion_record("T-1"), _ticket_record("T-2", titulo="Correo rebota")]
    r = client.post("/api/admin/importar-tickets", json=records)
    assert r.status_code == 200
    assert r.json == {
        "message": "Importación completada con éxito.",
        "successfulCount": 3,
        "failedCount": 0,
        "errors": [],
    }

    with session_scope(app) as s:
        tickets = s.query(Ticket).order_by(Ticket.numero_caso).all()
        assert [t.numero_caso for t in tickets] == [1, 2]
        assert tickets[0].prioridad == "ALTA"
        assert tickets[0].empresa_id == "emp-1"
        assert tickets[0].sucursal_id == "suc-1"
        assert tickets[0].tecnico_asignado_id == "user-tec"
        assert tickets[0].creado_por_usuario_id == "user-admin"
        assert len(tickets[0].acciones) == 1
        assert s.query(AuditEvent).filter(AuditEvent.action == "ticket.import").count() == 1


def test_import_repeated_names_resolve_to_oldest_row(app, client):
    with session_scope(app) as s:
        s.add(Sucursal(id="suc-0", nombre="CASA MATRIZ", direccion_id="dir-1", created_at=datetime(2100, 1, 1)))

    _login(client)
    r = client.post("/api/admin/importar-tickets", json=[_ticket_record("T-1", ubicacionNombre="casa matriz")])
    assert r.status_code == 200

    with session_scope(app) as s:
        assert s.query(Ticket).one().sucursal_id == "suc-1"


def test_import_continues_numbering(client):
    _login(client)
    client.post("/api/admin/importar-tickets", json=[_ticket_record("T-1")])
    client.post("/api/admin/importar-tickets", json=[_ticket_record("T-9")])
    assert [t["numero_caso"] for t in client.get("/api/tickets").json] == [2, 1]


def test_import_errors_cancel_everything(app, client):
    _login(client)
    records = [
        _ticket_record("T-1"),
        _ticket_record("T-2", empresaClienteNombre="Desconocida Ltda", prioridad="CRITICA"),
        _accion_record("T-3"),
        _accion_record("T-1", accionDescripcion=""),
    ]
    r = client.post("/api/admin/importar-tickets", json=records)
    assert r.status_code == 400
    body = r.json
    assert body["message"] == "La importación fue cancelada debido a errores en los datos."
    assert body["successfulCount"] == 0
    assert body["failedCount"] == 4

    by_row = {}
    for e in body["errors"]:
        by_row.setdefault(e["row"], []).append(e["error"])
    assert 2 not in by_row
    assert any(m.startswith("Empresa no encontrada") for m in by_row[3])
    assert any(m.startswith("Prioridad inválida") for m in by_row[3])
    assert any("sin fila TICKET" in m for m in by_row[4])
    assert "Falta el campo requerido accion_descripcion." in by_row[5]

    assert _count(app, Ticket) == 0
    assert _count(app, AccionTicket) == 0


def test_import_rejects_duplicate_ticket_rows(app, client):
    _login(client)
    r = client.post("/api/admin/importar-tickets", json=[_ticket_record("T-1"), _ticket_record("T-1")])
    assert r.status_code == 400
    assert r.json["errors"][0]["row"] == 3
    assert _count(app, Ticket) == 0


def test_import_requires_admin(client):
    _login(client, "tecnico@example.com")
    r = client.post("/api/admin/importar-tickets", json=[_ticket_record()])
    assert r.status_code == 403
    assert r.json["message"] == "Acceso denegado."


def test_import_bad_bodies(client):
    _login(client)
    r = client.post("/api/admin/importar-tickets", data="{no es json", content_type="application/json")
    assert r.status_code == 400
    assert r.json["message"] == "Error al parsear JSON."

    r = client.post("/api/admin/importar-tickets", json=[])
    assert r.status_code == 400
    assert r.json["message"] == "No se proporcionaron registros."

    r = client.post("/api/admin/importar-tickets", json={"tipo_registro": "TICKET"})
    assert r.status_code == 400
    assert r.json["message"] == "No se proporcionaron registros."


def test_import_csv_upload(app, client):
    _login(client)
    csv_text = (
        "tipo_registro,numero_ticket_asociado,titulo,tipo_incidente,solicitante_nombre,"
        "empresa_cliente_nombre,tecnico_asignado_email,ubicacion_nombre,accion_descripcion,accion_usuario_email\n"
        "TICKET,A1,Pantalla azul,Software,Ana Soto,Acme SpA,tecnico@example.com,Casa Matriz,,\n"
        "ACCION,A1,,,,,,,Se actualiza el driver de video.,tecnico@example.com\n"
    )
    r = client.post(
        "/api/admin/importar-tickets",
        data={"csv_file": (io.BytesIO(csv_text.encode("utf-8")), "tickets.csv")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["successfulCount"] == 2
    assert _count(app, Ticket) == 1
    assert _count(app, AccionTicket) == 1


def test_import_csv_missing_columns(client):
    _login(client)
    r = client.post(
        "/api/admin/importar-tickets",
        data={"csv_file": (io.BytesIO(b"titulo,estado\nX,ABIERTO\n"), "tickets.csv")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert "tipo_registro" in r.json["message"]


class TestNormalizeHeader:
    def test_camel_case(self):
        assert normalize_header("descripcionDetallada") == "descripcion_detallada"

    def test_spaces_and_case(self):
        assert normalize_header("  Tipo Registro ") == "tipo_registro"

    def test_snake_case_unchanged(self):
        assert normalize_header("numero_ticket_asociado") == "numero_ticket_asociado"

    def test_none(self):
        assert normalize_header(None) == ""


class TestParseTicketImportCsv:
    def test_parses_rows_with_line_numbers(self):
        data = (
            "tipoRegistro,numeroTicketAsociado,titulo,prioridad\n"
            "ticket,1,Impresora,baja\n"
            ",,,\n"
            "accion,1,,\n"
        ).encode("utf-8")
        rows, errors = parse_ticket_import_csv(data)
        assert errors == []
        assert [r.row_number for r in rows] == [2, 4]
        assert rows[0].data["tipo_registro"] == "TICKET"
        assert rows[0].data["prioridad"] == "BAJA"
        assert rows[1].data["tipo_registro"] == "ACCION"

    def test_invalid_tipo_is_row_error(self):
        rows, errors = parse_ticket_import_csv(b"tipo_registro,numero_ticket_asociado\nOTRO,1\n")
        assert rows == []
        assert len(errors) == 1
        assert errors[0].row_number == 2

    def test_handles_bom(self):
        rows, errors = parse_ticket_import_csv("\ufefftipo_registro,numero_ticket_asociado\nTICKET,7\n".encode("utf-8"))
        assert errors == []
        assert rows[0].data["numero_ticket_asociado"] == "7"

    def test_empty_file_raises(self):
        with pytest.raises(ValueError):
            parse_ticket_import_csv(b"")

    def test_missing_required_columns_raises(self):
        with pytest.raises(ValueError):
            parse_ticket_import_csv(b"titulo\nX\n")
