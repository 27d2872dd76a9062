from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from app.apc.audit import record_event
from app.apc.errors import ConflictError, DependencyError, NotFoundError, ValidationFailed
from app.apc.modules.geografia.models import Comuna, Direccion, Pais, Provincia, Region
from app.apc.utils import clean_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.apc.models import User

logger = logging.getLogger(__name__)

COMUNA_SEARCH_LIMIT = 10
COMUNA_DEFAULT_LIMIT = 20
LOCATION_SEARCH_LIMIT = 5
LOCATION_SEARCH_MIN_CHARS = 2


# ---------- Validation ----------
def validate_nombre_payload(payload: dict, *, parent_field: str | None = None, partial: bool = False) -> list[str]:
    """Validate a geography level payload (nombre + optional parent id). Returns list of errors."""
    errors = []
    if not partial or "nombre" in payload:
        if not clean_str(payload.get("nombre")):
            errors.append("El nombre es requerido.")
    if parent_field and (not partial or parent_field in payload):
        if not clean_str(payload.get(parent_field)):
            errors.append(f"El campo {parent_field} es requerido.")
    return errors


def validate_direccion_payload(payload: dict | None, *, partial: bool = False) -> list[str]:
    """Validate a direccion payload (calle, numero, depto?, comuna_id). Returns list of errors."""
    if not isinstance(payload, dict):
        return ["La dirección es requerida."]
    errors = []
    if not partial or "calle" in payload:
        if not clean_str(payload.get("calle")):
            errors.append("La calle es requerida.")
    if not partial or "numero" in payload:
        if not clean_str(payload.get("numero")):
            errors.append("El número es requerido.")
    if not partial or "comuna_id" in payload:
        if not clean_str(payload.get("comuna_id")):
            errors.append("La comuna es requerida.")
    return errors


# ---------- Lookups ----------
def _get_or_404(s: "Session", model, obj_id: str | None, message: str):
    obj = s.get(model, obj_id) if obj_id else None
    if obj is None:
        raise NotFoundError(message)
    return obj


def get_pais(s: "Session", pais_id: str) -> Pais:
    return _get_or_404(s, Pais, pais_id, "País no encontrado.")


def get_region(s: "Session", region_id: str) -> Region:
    return _get_or_404(s, Region, region_id, "Región no encontrada.")


def get_provincia(s: "Session", provincia_id: str) -> Provincia:
    return _get_or_404(s, Provincia, provincia_id, "Provincia no encontrada.")


def get_comuna(s: "Session", comuna_id: str) -> Comuna:
    return _get_or_404(s, Comuna, comuna_id, "Comuna no encontrada.")


def get_direccion(s: "Session", direccion_id: str) -> Direccion:
    return _get_or_404(s, Direccion, direccion_id, "Dirección no encontrada.")


def get_paises(s: "Session") -> list[Pais]:
    return list(s.scalars(select(Pais).order_by(Pais.nombre.asc())))


def get_regiones(s: "Session", pais_id: str | None = None) -> list[Region]:
    q = select(Region)
    if pais_id:
        q = q.where(Region.pais_id == pais_id)
    return list(s.scalars(q.order_by(Region.nombre.asc())))


def get_provincias(s: "Session", region_id: str | None = None) -> list[Provincia]:
    q = select(Provincia)
    if region_id:
        q = q.where(Provincia.region_id == region_id)
    return list(s.scalars(q.order_by(Provincia.nombre.asc())))


def get_comunas_by_region(s: "Session", region_id: str | None) -> list[Comuna]:
    if not region_id:
        return []
    q = (
        select(Comuna)
        .join(Provincia, Comuna.provincia_id == Provincia.id)
        .where(Provincia.region_id == region_id)
        .order_by(Comuna.nombre.asc())
    )
    return list(s.scalars(q))


def search_comunas(s: "Session", term: str | None, limit: int = COMUNA_SEARCH_LIMIT) -> list[Comuna]:
    """Case-insensitive substring search on comuna nombre. The term must be non-empty."""
    term = (term or "").strip()
    if not term:
        raise ValidationFailed(["El término de búsqueda es requerido."])
    q = (
        select(Comuna)
        .where(Comuna.nombre.ilike(f"%{term}%"))
        .order_by(Comuna.nombre.asc())
        .limit(limit)
    )
    return list(s.scalars(q))


def list_comunas(s: "Session", query: str | None = None) -> list[Comuna]:
    """Comuna picker: search when a query is given, otherwise the first comunas by name."""
    if (query or "").strip():
        return search_comunas(s, query, limit=COMUNA_SEARCH_LIMIT)
    q = select(Comuna).order_by(Comuna.nombre.asc()).limit(COMUNA_DEFAULT_LIMIT)
    return list(s.scalars(q))


def search_locations(s: "Session", query: str | None) -> dict:
    """
    Search sucursales and comunas by name for the ticket form.
    Queries shorter than 2 characters return empty lists.
    """
    from app.apc.modules.empresas.models import Sucursal

    term = (query or "").strip()
    if len(term) < LOCATION_SEARCH_MIN_CHARS:
        return {"sucursales": [], "comunas": []}

    like = f"%{term}%"
    sucursales = list(
        s.scalars(
            select(Sucursal).where(Sucursal.nombre.ilike(like)).order_by(Sucursal.nombre.asc()).limit(LOCATION_SEARCH_LIMIT)
        )
    )
    comunas = list(
        s.scalars(select(Comuna).where(Comuna.nombre.ilike(like)).order_by(Comuna.nombre.asc()).limit(LOCATION_SEARCH_LIMIT))
    )
    return {"sucursales": sucursales, "comunas": comunas}


# ---------- Geography levels (create / update) ----------
def _ensure_unique_pais(s: "Session", nombre: str, exclude_id: str | None = None) -> None:
    q = select(func.count()).select_from(Pais).where(func.lower(Pais.nombre) == nombre.lower())
    if exclude_id:
        q = q.where(Pais.id != exclude_id)
    if s.scalar(q):
        raise ConflictError(f"Ya existe un país con el nombre {nombre!r}.")


def create_pais(s: "Session", payload: dict, user: "User") -> Pais:
    errors = validate_nombre_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    nombre = clean_str(payload.get("nombre")) or ""
    _ensure_unique_pais(s, nombre)
    pais = Pais(nombre=nombre)
    s.add(pais)
    s.flush()
    record_event(s, actor=user, action="pais.create", entity_type="Pais", entity_id=pais.id, metadata={"nombre": nombre})
    return pais


def update_pais(s: "Session", pais: Pais, payload: dict, user: "User") -> Pais:
    errors = validate_nombre_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)
    changes = {}
    new_nombre = clean_str(payload.get("nombre"))
    if new_nombre and new_nombre != pais.nombre:
        _ensure_unique_pais(s, new_nombre, exclude_id=pais.id)
        changes["nombre"] = {"old": pais.nombre, "new": new_nombre}
        pais.nombre = new_nombre
    s.flush()
    record_event(s, actor=user, action="pais.edit", entity_type="Pais", entity_id=pais.id, metadata={"changes": changes})
    return pais


def _create_level(s: "Session", payload: dict, user: "User", *, model, parent_field: str, parent_getter, entity: str):
    errors = validate_nombre_payload(payload, parent_field=parent_field)
    if errors:
        raise ValidationFailed(errors)
    parent = parent_getter(s, clean_str(payload.get(parent_field)))
    obj = model(nombre=clean_str(payload.get("nombre")), **{parent_field: parent.id})
    s.add(obj)
    s.flush()
    record_event(
        s,
        actor=user,
        action=f"{entity.lower()}.create",
        entity_type=entity,
        entity_id=obj.id,
        metadata={"nombre": obj.nombre, parent_field: parent.id},
    )
    return obj


def _update_level(s: "Session", obj, payload: dict, user: "User", *, parent_field: str, parent_getter, entity: str):
    errors = validate_nombre_payload(payload, parent_field=parent_field, partial=True)
    if errors:
        raise ValidationFailed(errors)
    changes = {}
    new_nombre = clean_str(payload.get("nombre"))
    if new_nombre and new_nombre != obj.nombre:
        changes["nombre"] = {"old": obj.nombre, "new": new_nombre}
        obj.nombre = new_nombre
    new_parent_id = clean_str(payload.get(parent_field))
    if new_parent_id and new_parent_id != getattr(obj, parent_field):
        parent = parent_getter(s, new_parent_id)
        changes[parent_field] = {"old": getattr(obj, parent_field), "new": parent.id}
        setattr(obj, parent_field, parent.id)
    s.flush()
    s.refresh(obj)
    record_event(
        s,
        actor=user,
        action=f"{entity.lower()}.edit",
        entity_type=entity,
        entity_id=obj.id,
        metadata={"changes": changes},
    )
    return obj


def create_region(s: "Session", payload: dict, user: "User") -> Region:
    return _create_level(s, payload, user, model=Region, parent_field="pais_id", parent_getter=get_pais, entity="Region")


def update_region(s: "Session", region: Region, payload: dict, user: "User") -> Region:
    return _update_level(s, region, payload, user, parent_field="pais_id", parent_getter=get_pais, entity="Region")


def create_provincia(s: "Session", payload: dict, user: "User") -> Provincia:
    return _create_level(
        s, payload, user, model=Provincia, parent_field="region_id", parent_getter=get_region, entity="Provincia"
    )


def update_provincia(s: "Session", provincia: Provincia, payload: dict, user: "User") -> Provincia:
    return _update_level(s, provincia, payload, user, parent_field="region_id", parent_getter=get_region, entity="Provincia")


def create_comuna(s: "Session", payload: dict, user: "User") -> Comuna:
    return _create_level(
        s, payload, user, model=Comuna, parent_field="provincia_id", parent_getter=get_provincia, entity="Comuna"
    )


def update_comuna(s: "Session", comuna: Comuna, payload: dict, user: "User") -> Comuna:
    return _update_level(
        s, comuna, payload, user, parent_field="provincia_id", parent_getter=get_provincia, entity="Comuna"
    )


# ---------- Direcciones ----------
def get_direcciones(s: "Session") -> list[Direccion]:
    return list(s.scalars(select(Direccion).order_by(Direccion.calle.asc(), Direccion.numero.asc())))


def build_direccion(s: "Session", data: dict) -> Direccion:
    """
    Create (and flush) a Direccion from an already-validated payload.
    Used by empresas/sucursales/tickets inside their own transaction.
    """
    comuna = get_comuna(s, clean_str(data.get("comuna_id")))
    direccion = Direccion(
        calle=clean_str(data.get("calle")) or "",
        numero=clean_str(data.get("numero")) or "",
        depto=clean_str(data.get("depto")),
        comuna_id=comuna.id,
    )
    s.add(direccion)
    s.flush()
    return direccion


def apply_direccion_changes(s: "Session", direccion: Direccion, data: dict) -> dict:
    """Apply a partial direccion payload; returns the change log."""
    changes = {}
    for field in ("calle", "numero"):
        if field in data:
            new_value = clean_str(data.get(field))
            if new_value and new_value != getattr(direccion, field):
                changes[field] = {"old": getattr(direccion, field), "new": new_value}
                setattr(direccion, field, new_value)
    if "depto" in data:
        new_depto = clean_str(data.get("depto"))
        if new_depto != direccion.depto:
            changes["depto"] = {"old": direccion.depto, "new": new_depto}
            direccion.depto = new_depto
    new_comuna_id = clean_str(data.get("comuna_id"))
    if new_comuna_id and new_comuna_id != direccion.comuna_id:
        comuna = get_comuna(s, new_comuna_id)
        changes["comuna_id"] = {"old": direccion.comuna_id, "new": comuna.id}
        direccion.comuna_id = comuna.id
        direccion.comuna = comuna
    return changes


def add_direccion(s: "Session", payload: dict, user: "User") -> Direccion:
    errors = validate_direccion_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    direccion = build_direccion(s, payload)
    record_event(
        s,
        actor=user,
        action="direccion.create",
        entity_type="Direccion",
        entity_id=direccion.id,
        metadata={"calle": direccion.calle, "numero": direccion.numero, "comuna_id": direccion.comuna_id},
    )
    return direccion


def update_direccion(s: "Session", direccion: Direccion, payload: dict, user: "User") -> Direccion:
    errors = validate_direccion_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)
    changes = apply_direccion_changes(s, direccion, payload)
    s.flush()
    s.refresh(direccion)
    record_event(
        s,
        actor=user,
        action="direccion.edit",
        entity_type="Direccion",
        entity_id=direccion.id,
        metadata={"changes": changes},
    )
    return direccion


def delete_direccion(s: "Session", direccion: Direccion, user: "User") -> None:
    """Delete an address that no empresa or sucursal uses anymore."""
    from app.apc.modules.empresas.models import Empresa, Sucursal

    in_use = s.scalar(select(func.count()).select_from(Empresa).where(Empresa.direccion_id == direccion.id)) or 0
    in_use += s.scalar(select(func.count()).select_from(Sucursal).where(Sucursal.direccion_id == direccion.id)) or 0
    if in_use:
        raise DependencyError("No se puede eliminar la dirección porque está asociada a empresas o sucursales.")

    record_event(
        s,
        actor=user,
        action="direccion.delete",
        entity_type="Direccion",
        entity_id=direccion.id,
        metadata={"calle": direccion.calle, "numero": direccion.numero},
    )
    s.delete(direccion)
    s.flush()
    logger.info("Direccion %s deleted by %s", direccion.id, user.email)
