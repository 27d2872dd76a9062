from __future__ import annotations

from flask import Blueprint, jsonify

from app.apc.db import db_session
from app.apc.errors import integrity_guard
from app.apc.modules.equipos.serializers import equipo_to_dict, prestamo_to_dict
from app.apc.modules.equipos.service import (
    IDENTIFICADOR_DUPLICADO,
    create_equipo,
    create_prestamo,
    delete_equipo,
    delete_prestamo,
    finalizar_prestamo,
    get_equipo,
    get_equipos,
    get_prestamo,
    get_prestamos,
    update_equipo,
    update_prestamo,
)
from app.apc.rbac import current_user, require_login
from app.apc.utils import clean_str, json_payload, query_arg

bp = Blueprint("equipos", __name__)


# ---------- Inventario ----------
@bp.get("/equipos")
@require_login
def equipos_list():
    equipos = get_equipos(db_session(), estado=query_arg("estado") or None)
    return jsonify([equipo_to_dict(e) for e in equipos])


@bp.post("/equipos")
@require_login
def equipos_create():
    s = db_session()
    with integrity_guard(s, unique=IDENTIFICADOR_DUPLICADO):
        equipo = create_equipo(s, json_payload(), current_user())
        s.commit()
    return jsonify(equipo_to_dict(equipo)), 201


@bp.get("/equipos/<equipo_id>")
@require_login
def equipos_detail(equipo_id: str):
    return jsonify(equipo_to_dict(get_equipo(db_session(), equipo_id)))


@bp.put("/equipos/<equipo_id>")
@require_login
def equipos_update(equipo_id: str):
    s = db_session()
    with integrity_guard(s, unique=IDENTIFICADOR_DUPLICADO):
        equipo = update_equipo(s, get_equipo(s, equipo_id), json_payload(), current_user())
        s.commit()
    return jsonify(equipo_to_dict(equipo))


@bp.delete("/equipos/<equipo_id>")
@require_login
def equipos_delete(equipo_id: str):
    s = db_session()
    delete_equipo(s, get_equipo(s, equipo_id), current_user())
    s.commit()
    return jsonify({"message": "Equipo de inventario eliminado exitosamente."})


# ---------- Préstamos ----------
@bp.get("/equipos-en-prestamo")
@require_login
def prestamos_list():
    prestamos = get_prestamos(db_session(), estado=query_arg("estado") or None)
    return jsonify([prestamo_to_dict(p) for p in prestamos])


@bp.post("/equipos-en-prestamo")
@require_login
def prestamos_create():
    s = db_session()
    prestamo = create_prestamo(s, json_payload(), current_user())
    s.commit()
    return jsonify(prestamo_to_dict(prestamo)), 201


@bp.get("/equipos-en-prestamo/<prestamo_id>")
@require_login
def prestamos_detail(prestamo_id: str):
    return jsonify(prestamo_to_dict(get_prestamo(db_session(), prestamo_id)))


@bp.put("/equipos-en-prestamo/<prestamo_id>")
@require_login
def prestamos_update(prestamo_id: str):
    s = db_session()
    prestamo = update_prestamo(s, get_prestamo(s, prestamo_id), json_payload(), current_user())
    s.commit()
    return jsonify(prestamo_to_dict(prestamo))


@bp.post("/equipos-en-prestamo/<prestamo_id>/finalizar")
@require_login
def prestamos_finalizar(prestamo_id: str):
    s = db_session()
    payload = json_payload()
    prestamo = finalizar_prestamo(
        s,
        get_prestamo(s, prestamo_id),
        clean_str(payload.get("estado_prestamo") or payload.get("estado")),
        current_user(),
        notas_devolucion=clean_str(payload.get("notas_devolucion")),
    )
    s.commit()
    return jsonify(prestamo_to_dict(prestamo))


@bp.delete("/equipos-en-prestamo/<prestamo_id>")
@require_login
def prestamos_delete(prestamo_id: str):
    s = db_session()
    delete_prestamo(s, get_prestamo(s, prestamo_id), current_user())
    s.commit()
    return jsonify({"message": "Registro de préstamo eliminado exitosamente."})
