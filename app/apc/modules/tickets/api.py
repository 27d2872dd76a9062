from __future__ import annotations

import json

from flask import Blueprint, current_app, jsonify, request

from app.apc.db import db_session
from app.apc.errors import integrity_guard
from app.apc.models import ROLE_ADMIN
from app.apc.modules.tickets.importer import import_ticket_rows, rows_from_records
from app.apc.modules.tickets.parsers.csv import parse_ticket_import_csv
from app.apc.modules.tickets.serializers import accion_to_dict, ticket_to_dict
from app.apc.modules.tickets.service import (
    add_accion,
    create_ticket,
    delete_accion,
    delete_ticket,
    get_acciones,
    get_ticket,
    get_tickets,
    update_accion,
    update_ticket,
)
from app.apc.rbac import current_user, require_login, require_role
from app.apc.utils import json_payload, query_arg

bp = Blueprint("tickets", __name__)


@bp.get("/tickets")
@require_login
def tickets_list():
    tickets = get_tickets(db_session(), estado=query_arg("estado") or None)
    return jsonify([ticket_to_dict(t) for t in tickets])


@bp.post("/tickets")
@require_login
def tickets_create():
    s = db_session()
    with integrity_guard(s, unique="Error al crear ticket: El número de caso ya existe."):
        ticket = create_ticket(s, json_payload(), current_user())
        s.commit()
    return jsonify(ticket_to_dict(ticket, include_acciones=True)), 201


@bp.get("/tickets/<ticket_id>")
@require_login
def tickets_detail(ticket_id: str):
    return jsonify(ticket_to_dict(get_ticket(db_session(), ticket_id), include_acciones=True))


@bp.put("/tickets/<ticket_id>")
@require_login
def tickets_update(ticket_id: str):
    s = db_session()
    ticket = update_ticket(s, get_ticket(s, ticket_id), json_payload(), current_user())
    s.commit()
    return jsonify(ticket_to_dict(ticket, include_acciones=True))


@bp.delete("/tickets/<ticket_id>")
@require_login
def tickets_delete(ticket_id: str):
    s = db_session()
    delete_ticket(s, get_ticket(s, ticket_id), current_user())
    s.commit()
    return jsonify({"message": "Ticket eliminado correctamente."})


# ---------- Acciones ----------
@bp.get("/tickets/<ticket_id>/accion")
@require_login
def acciones_list(ticket_id: str):
    return jsonify([accion_to_dict(a) for a in get_acciones(db_session(), ticket_id)])


@bp.post("/tickets/<ticket_id>/accion")
@require_login
def acciones_create(ticket_id: str):
    s = db_session()
    accion = add_accion(s, ticket_id, json_payload(), current_user())
    s.commit()
    return jsonify({"message": "Acción agregada con éxito.", "accion": accion_to_dict(accion)}), 201


@bp.put("/tickets/<ticket_id>/accion/<accion_id>")
@require_login
def acciones_update(ticket_id: str, accion_id: str):
    s = db_session()
    accion = update_accion(s, ticket_id, accion_id, json_payload(), current_user())
    s.commit()
    return jsonify(accion_to_dict(accion))


@bp.delete("/tickets/<ticket_id>/accion/<accion_id>")
@require_login
def acciones_delete(ticket_id: str, accion_id: str):
    s = db_session()
    delete_accion(s, ticket_id, accion_id, current_user())
    s.commit()
    return jsonify({"message": "Acción eliminada correctamente."})


# ---------- Bulk import ----------
@bp.post("/admin/importar-tickets")
@require_role(ROLE_ADMIN, message="Acceso denegado.")
def tickets_import():
    s = db_session()

    f = request.files.get("csv_file")
    if f is not None:
        try:
            rows, parse_errors = parse_ticket_import_csv(f.read())
        except ValueError as e:
            return jsonify({"message": str(e)}), 400
        total = len(rows) + len(parse_errors)
    else:
        try:
            records = json.loads(request.get_data(as_text=True) or "")
        except ValueError:
            return jsonify({"message": "Error al parsear JSON."}), 400
        if not isinstance(records, list) or not records:
            return jsonify({"message": "No se proporcionaron registros."}), 400
        rows, parse_errors = rows_from_records(records)
        total = len(records)

    if not rows and not parse_errors:
        return jsonify({"message": "No se proporcionaron registros."}), 400

    result = import_ticket_rows(s, rows, current_user(), total_rows=total, prior_errors=parse_errors)
    if not result.ok:
        s.rollback()
        return jsonify(result.to_dict()), 400
    s.commit()
    current_app.logger.info("Ticket import committed: %s record(s)", result.successful_count)
    return jsonify(result.to_dict()), 200
