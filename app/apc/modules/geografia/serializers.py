from __future__ import annotations

from app.apc.modules.geografia.models import Comuna, Direccion, Pais, Provincia, Region
from app.apc.utils import iso


def pais_to_dict(p: Pais) -> dict:
    return {
        "id": p.id,
        "nombre": p.nombre,
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }


def region_to_dict(r: Region, *, include_pais: bool = True) -> dict:
    d = {
        "id": r.id,
        "nombre": r.nombre,
        "pais_id": r.pais_id,
        "created_at": iso(r.created_at),
        "updated_at": iso(r.updated_at),
    }
    if include_pais:
        d["pais"] = pais_to_dict(r.pais) if r.pais else None
    return d


def provincia_to_dict(p: Provincia, *, include_region: bool = True) -> dict:
    d = {
        "id": p.id,
        "nombre": p.nombre,
        "region_id": p.region_id,
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }
    if include_region:
        d["region"] = region_to_dict(p.region) if p.region else None
    return d


def comuna_to_dict(c: Comuna, *, include_provincia: bool = True) -> dict:
    d = {
        "id": c.id,
        "nombre": c.nombre,
        "provincia_id": c.provincia_id,
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
    if include_provincia:
        d["provincia"] = provincia_to_dict(c.provincia) if c.provincia else None
    return d


def direccion_to_dict(d: Direccion | None) -> dict | None:
    if d is None:
        return None
    return {
        "id": d.id,
        "calle": d.calle,
        "numero": d.numero,
        "depto": d.depto,
        "comuna_id": d.comuna_id,
        "comuna": comuna_to_dict(d.comuna) if d.comuna else None,
    }
