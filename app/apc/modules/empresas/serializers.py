from __future__ import annotations

from app.apc.modules.empresas.models import ContactoEmpresa, Empresa, Sucursal, Ubicacion
from app.apc.modules.geografia.serializers import direccion_to_dict
from app.apc.utils import iso


def empresa_summary_to_dict(e: Empresa | None) -> dict | None:
    if e is None:
        return None
    return {"id": e.id, "nombre": e.nombre, "rut": e.rut}


def empresa_to_dict(e: Empresa, *, include_relations: bool = False) -> dict:
    d = {
        "id": e.id,
        "nombre": e.nombre,
        "rut": e.rut,
        "telefono": e.telefono,
        "email": e.email,
        "direccion_id": e.direccion_id,
        "direccion": direccion_to_dict(e.direccion),
        "created_at": iso(e.created_at),
        "updated_at": iso(e.updated_at),
    }
    if include_relations:
        d["sucursales"] = [sucursal_to_dict(x, include_empresa=False) for x in e.sucursales]
        d["contactos"] = [contacto_to_dict(c, include_empresa=False) for c in e.contactos]
    return d


def sucursal_summary_to_dict(x: Sucursal | None) -> dict | None:
    """Compact shape used by the location search and ticket listings."""
    if x is None:
        return None
    return {
        "id": x.id,
        "nombre": x.nombre,
        "empresa": {"nombre": x.empresa.nombre} if x.empresa else None,
        "direccion": direccion_to_dict(x.direccion),
    }


def sucursal_to_dict(x: Sucursal, *, include_empresa: bool = True) -> dict:
    d = {
        "id": x.id,
        "nombre": x.nombre,
        "telefono": x.telefono,
        "email": x.email,
        "empresa_id": x.empresa_id,
        "direccion_id": x.direccion_id,
        "direccion": direccion_to_dict(x.direccion),
        "created_at": iso(x.created_at),
        "updated_at": iso(x.updated_at),
    }
    if include_empresa:
        d["empresa"] = empresa_summary_to_dict(x.empresa)
    return d


def ubicacion_to_dict(u: Ubicacion) -> dict:
    return {
        "id": u.id,
        "nombre_referencial": u.nombre_referencial,
        "sucursal_id": u.sucursal_id,
        "notas": u.notas,
        "estado": u.estado,
        "created_at": iso(u.created_at),
        "updated_at": iso(u.updated_at),
    }


def contacto_to_dict(c: ContactoEmpresa, *, include_empresa: bool = True) -> dict:
    d = {
        "id": c.id,
        "nombre_completo": c.nombre_completo,
        "email": c.email,
        "telefono": c.telefono,
        "cargo": c.cargo,
        "empresa_id": c.empresa_id,
        "ubicacion_id": c.ubicacion_id,
        "ubicacion": ubicacion_to_dict(c.ubicacion) if c.ubicacion else None,
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
    if include_empresa:
        d["empresa"] = empresa_summary_to_dict(c.empresa)
    return d
