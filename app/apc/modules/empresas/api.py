from __future__ import annotations

from flask import Blueprint, jsonify

from app.apc.db import db_session
from app.apc.errors import integrity_guard
from app.apc.models import ROLE_ADMIN
from app.apc.modules.empresas.serializers import (
    contacto_to_dict,
    empresa_to_dict,
    sucursal_to_dict,
    ubicacion_to_dict,
)
from app.apc.modules.empresas.service import (
    create_contacto,
    create_empresa,
    create_sucursal,
    create_ubicacion,
    deactivate_ubicacion,
    delete_contacto,
    delete_empresa,
    delete_sucursal,
    get_contacto,
    get_contactos,
    get_empresa,
    get_empresas,
    get_sucursal,
    get_sucursales,
    get_ubicacion,
    get_ubicaciones_by_sucursal,
    update_contacto,
    update_empresa,
    update_sucursal,
    update_ubicacion,
)
from app.apc.rbac import current_user, require_login, require_role
from app.apc.utils import json_payload, query_arg

bp = Blueprint("empresas", __name__)


# ---------- Empresas ----------
@bp.get("/empresas")
@require_login
def empresas_list():
    return jsonify([empresa_to_dict(e) for e in get_empresas(db_session())])


@bp.post("/empresas")
@require_role(ROLE_ADMIN)
def empresas_create():
    s = db_session()
    with integrity_guard(s, unique="Error al crear empresa: El RUT ya existe."):
        empresa = create_empresa(s, json_payload(), current_user())
        s.commit()
    return jsonify(empresa_to_dict(empresa)), 201


@bp.get("/empresas/<empresa_id>")
@require_login
def empresas_detail(empresa_id: str):
    return jsonify(empresa_to_dict(get_empresa(db_session(), empresa_id), include_relations=True))


@bp.put("/empresas/<empresa_id>")
@require_role(ROLE_ADMIN)
def empresas_update(empresa_id: str):
    s = db_session()
    with integrity_guard(s, unique="Error al actualizar empresa: El RUT ya existe."):
        empresa = update_empresa(s, get_empresa(s, empresa_id), json_payload(), current_user())
        s.commit()
    return jsonify(empresa_to_dict(empresa))


@bp.delete("/empresas/<empresa_id>")
@require_role(ROLE_ADMIN)
def empresas_delete(empresa_id: str):
    s = db_session()
    delete_empresa(s, get_empresa(s, empresa_id), current_user())
    s.commit()
    return jsonify({"message": "Empresa eliminada correctamente."})


# ---------- Sucursales ----------
@bp.get("/sucursales")
@require_login
def sucursales_list():
    sucursales = get_sucursales(db_session(), empresa_id=query_arg("empresa_id", "empresaId") or None)
    return jsonify([sucursal_to_dict(x) for x in sucursales])


@bp.post("/sucursales")
@require_role(ROLE_ADMIN)
def sucursales_create():
    s = db_session()
    sucursal = create_sucursal(s, json_payload(), current_user())
    s.commit()
    return jsonify(sucursal_to_dict(sucursal)), 201


@bp.get("/sucursales/<sucursal_id>")
@require_login
def sucursales_detail(sucursal_id: str):
    return jsonify(sucursal_to_dict(get_sucursal(db_session(), sucursal_id)))


@bp.put("/sucursales/<sucursal_id>")
@require_role(ROLE_ADMIN)
def sucursales_update(sucursal_id: str):
    s = db_session()
    sucursal = update_sucursal(s, get_sucursal(s, sucursal_id), json_payload(), current_user())
    s.commit()
    return jsonify(sucursal_to_dict(sucursal))


@bp.delete("/sucursales/<sucursal_id>")
@require_role(ROLE_ADMIN)
def sucursales_delete(sucursal_id: str):
    s = db_session()
    delete_sucursal(s, get_sucursal(s, sucursal_id), current_user())
    s.commit()
    return jsonify({"message": "Sucursal eliminada correctamente."})


# ---------- Ubicaciones ----------
@bp.get("/ubicaciones")
@require_login
def ubicaciones_list():
    sucursal_id = query_arg("sucursal_id", "sucursalId")
    if not sucursal_id:
        return jsonify([])
    include_inactive = query_arg("incluir_inactivas") in ("1", "true")
    ubicaciones = get_ubicaciones_by_sucursal(db_session(), sucursal_id, include_inactive=include_inactive)
    return jsonify([ubicacion_to_dict(u) for u in ubicaciones])


@bp.post("/ubicaciones")
@require_login
def ubicaciones_create():
    s = db_session()
    ubicacion = create_ubicacion(s, json_payload(), current_user())
    s.commit()
    return jsonify(ubicacion_to_dict(ubicacion)), 201


@bp.get("/ubicaciones/<ubicacion_id>")
@require_login
def ubicaciones_detail(ubicacion_id: str):
    return jsonify(ubicacion_to_dict(get_ubicacion(db_session(), ubicacion_id)))


@bp.put("/ubicaciones/<ubicacion_id>")
@require_login
def ubicaciones_update(ubicacion_id: str):
    s = db_session()
    ubicacion = update_ubicacion(s, get_ubicacion(s, ubicacion_id), json_payload(), current_user())
    s.commit()
    return jsonify(ubicacion_to_dict(ubicacion))


@bp.delete("/ubicaciones/<ubicacion_id>")
@require_login
def ubicaciones_deactivate(ubicacion_id: str):
    s = db_session()
    ubicacion = deactivate_ubicacion(s, get_ubicacion(s, ubicacion_id), current_user())
    s.commit()
    return jsonify(ubicacion_to_dict(ubicacion))


# ---------- Contactos ----------
@bp.get("/contactos")
@require_login
def contactos_list():
    contactos = get_contactos(db_session(), empresa_id=query_arg("empresa_id", "empresaId") or None)
    return jsonify([contacto_to_dict(c) for c in contactos])


@bp.post("/contactos")
@require_login
def contactos_create():
    s = db_session()
    with integrity_guard(s, unique="Error al crear contacto: El correo electrónico ya existe."):
        contacto = create_contacto(s, json_payload(), current_user())
        s.commit()
    return jsonify(contacto_to_dict(contacto)), 201


@bp.get("/contactos/<contacto_id>")
@require_login
def contactos_detail(contacto_id: str):
    return jsonify(contacto_to_dict(get_contacto(db_session(), contacto_id)))


@bp.put("/contactos/<contacto_id>")
@require_login
def contactos_update(contacto_id: str):
    s = db_session()
    with integrity_guard(s, unique="Error al actualizar contacto: El correo electrónico ya existe."):
        contacto = update_contacto(s, get_contacto(s, contacto_id), json_payload(), current_user())
        s.commit()
    return jsonify(contacto_to_dict(contacto))


@bp.delete("/contactos/<contacto_id>")
@require_login
def contactos_delete(contacto_id: str):
    s = db_session()
    delete_contacto(s, get_contacto(s, contacto_id), current_user())
    s.commit()
    return jsonify({"message": "Contacto eliminado correctamente."})
