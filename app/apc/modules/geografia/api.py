from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.apc.db import db_session
from app.apc.models import ROLE_ADMIN
from app.apc.modules.geografia.serializers import (
    comuna_to_dict,
    direccion_to_dict,
    pais_to_dict,
    provincia_to_dict,
    region_to_dict,
)
from app.apc.modules.geografia.service import (
    add_direccion,
    create_comuna,
    create_pais,
    create_provincia,
    create_region,
    delete_direccion,
    get_comuna,
    get_comunas_by_region,
    get_direccion,
    get_direcciones,
    get_pais,
    get_paises,
    get_provincia,
    get_provincias,
    get_region,
    get_regiones,
    list_comunas,
    search_comunas,
    search_locations,
    update_comuna,
    update_direccion,
    update_pais,
    update_provincia,
    update_region,
)
from app.apc.rbac import current_user, require_login, require_role
from app.apc.utils import json_payload, query_arg

bp = Blueprint("geografia", __name__)


# ---------- Paises ----------
@bp.get("/geografia/paises")
@require_login
def paises_list():
    return jsonify([pais_to_dict(p) for p in get_paises(db_session())])


@bp.post("/geografia/paises")
@require_role(ROLE_ADMIN)
def paises_create():
    s = db_session()
    pais = create_pais(s, json_payload(), current_user())
    s.commit()
    return jsonify(pais_to_dict(pais)), 201


@bp.get("/geografia/paises/<pais_id>")
@require_login
def paises_detail(pais_id: str):
    return jsonify(pais_to_dict(get_pais(db_session(), pais_id)))


@bp.put("/geografia/paises/<pais_id>")
@require_role(ROLE_ADMIN)
def paises_update(pais_id: str):
    s = db_session()
    pais = update_pais(s, get_pais(s, pais_id), json_payload(), current_user())
    s.commit()
    return jsonify(pais_to_dict(pais))


# ---------- Regiones ----------
@bp.get("/geografia/regiones")
@require_login
def regiones_list():
    regiones = get_regiones(db_session(), pais_id=query_arg("pais_id", "paisId") or None)
    return jsonify([region_to_dict(r) for r in regiones])


@bp.post("/geografia/regiones")
@require_role(ROLE_ADMIN)
def regiones_create():
    s = db_session()
    region = create_region(s, json_payload(), current_user())
    s.commit()
    return jsonify(region_to_dict(region)), 201


@bp.get("/geografia/regiones/<region_id>")
@require_login
def regiones_detail(region_id: str):
    return jsonify(region_to_dict(get_region(db_session(), region_id)))


@bp.put("/geografia/regiones/<region_id>")
@require_role(ROLE_ADMIN)
def regiones_update(region_id: str):
    s = db_session()
    region = update_region(s, get_region(s, region_id), json_payload(), current_user())
    s.commit()
    return jsonify(region_to_dict(region))


@bp.get("/geografia/regiones/<region_id>/comunas")
@require_login
def regiones_comunas(region_id: str):
    s = db_session()
    get_region(s, region_id)
    return jsonify([comuna_to_dict(c) for c in get_comunas_by_region(s, region_id)])


# ---------- Provincias ----------
@bp.get("/geografia/provincias")
@require_login
def provincias_list():
    provincias = get_provincias(db_session(), region_id=query_arg("region_id", "regionId") or None)
    return jsonify([provincia_to_dict(p) for p in provincias])


@bp.post("/geografia/provincias")
@require_role(ROLE_ADMIN)
def provincias_create():
    s = db_session()
    provincia = create_provincia(s, json_payload(), current_user())
    s.commit()
    return jsonify(provincia_to_dict(provincia)), 201


@bp.get("/geografia/provincias/<provincia_id>")
@require_login
def provincias_detail(provincia_id: str):
    return jsonify(provincia_to_dict(get_provincia(db_session(), provincia_id)))


@bp.put("/geografia/provincias/<provincia_id>")
@require_role(ROLE_ADMIN)
def provincias_update(provincia_id: str):
    s = db_session()
    provincia = update_provincia(s, get_provincia(s, provincia_id), json_payload(), current_user())
    s.commit()
    return jsonify(provincia_to_dict(provincia))


# ---------- Comunas ----------
@bp.get("/geografia/comunas")
@require_login
def comunas_search():
    term = query_arg("search")
    if not term:
        return jsonify({"message": "El parámetro 'search' es requerido."}), 400
    return jsonify([comuna_to_dict(c) for c in search_comunas(db_session(), term)])


@bp.post("/geografia/comunas")
@require_role(ROLE_ADMIN)
def comunas_create():
    s = db_session()
    comuna = create_comuna(s, json_payload(), current_user())
    s.commit()
    return jsonify(comuna_to_dict(comuna)), 201


@bp.get("/geografia/comunas/<comuna_id>")
@require_login
def comunas_detail(comuna_id: str):
    return jsonify(comuna_to_dict(get_comuna(db_session(), comuna_id)))


@bp.put("/geografia/comunas/<comuna_id>")
@require_role(ROLE_ADMIN)
def comunas_update(comuna_id: str):
    s = db_session()
    comuna = update_comuna(s, get_comuna(s, comuna_id), json_payload(), current_user())
    s.commit()
    return jsonify(comuna_to_dict(comuna))


@bp.get("/comunas")
@require_login
def comunas_picker():
    comunas = list_comunas(db_session(), query_arg("query", "q"))
    return jsonify([comuna_to_dict(c) for c in comunas])


# ---------- Search ----------
@bp.get("/search/locations")
@require_login
def locations_search():
    from app.apc.modules.empresas.serializers import sucursal_summary_to_dict

    found = search_locations(db_session(), request.args.get("q"))
    return jsonify(
        {
            "sucursales": [sucursal_summary_to_dict(x) for x in found["sucursales"]],
            "comunas": [comuna_to_dict(c) for c in found["comunas"]],
        }
    )


# ---------- Direcciones ----------
@bp.get("/direcciones")
@require_login
def direcciones_list():
    return jsonify([direccion_to_dict(d) for d in get_direcciones(db_session())])


@bp.post("/direcciones")
@require_login
def direcciones_create():
    s = db_session()
    direccion = add_direccion(s, json_payload(), current_user())
    s.commit()
    return jsonify(direccion_to_dict(direccion)), 201


@bp.get("/direcciones/<direccion_id>")
@require_login
def direcciones_detail(direccion_id: str):
    return jsonify(direccion_to_dict(get_direccion(db_session(), direccion_id)))


@bp.put("/direcciones/<direccion_id>")
@require_login
def direcciones_update(direccion_id: str):
    s = db_session()
    direccion = update_direccion(s, get_direccion(s, direccion_id), json_payload(), current_user())
    s.commit()
    return jsonify(direccion_to_dict(direccion))


@bp.delete("/direcciones/<direccion_id>")
@require_login
def direcciones_delete(direccion_id: str):
    s = db_session()
    delete_direccion(s, get_direccion(s, direccion_id), current_user())
    s.commit()
    return jsonify({"message": "Dirección eliminada correctamente."})
