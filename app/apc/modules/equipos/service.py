from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from app.apc.audit import record_event
from app.apc.errors import ApiError, ConflictError, DependencyError, NotFoundError, ValidationFailed
from app.apc.models import User
from app.apc.modules.empresas.service import get_contacto, get_empresa, get_ubicacion
from app.apc.modules.equipos.models import (
    EQUIPO_DISPONIBLE,
    EQUIPO_PERDIDO_ROBADO,
    EQUIPO_PRESTADO,
    ESTADOS_EQUIPO,
    ESTADOS_PRESTAMO,
    PRESTAMO_DEVUELTO,
    PRESTAMO_PERDIDO,
    PRESTAMO_PRESTADO,
    TIPOS_EQUIPO,
    EquipoEnPrestamo,
    EquipoInventario,
)
from app.apc.utils import clean_str, parse_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MIN_TEXTO = 3
IDENTIFICADOR_DUPLICADO = "El identificador único ya existe."

# Loan end state -> equipo estado
_ESTADO_EQUIPO_AL_FINALIZAR = {
    PRESTAMO_DEVUELTO: EQUIPO_DISPONIBLE,
    PRESTAMO_PERDIDO: EQUIPO_PERDIDO_ROBADO,
}


def _check_fecha(errors: list[str], payload: dict, field: str, label: str, *, required: bool = False) -> None:
    try:
        value = parse_datetime(payload.get(field))
    except (TypeError, ValueError):
        errors.append(f"{label} inválida.")
        return
    if value is None and required:
        errors.append(f"{label} es requerida.")


# ---------- Validation ----------
def validate_equipo_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "nombre_descriptivo" in payload:
        if len(clean_str(payload.get("nombre_descriptivo")) or "") < MIN_TEXTO:
            errors.append("El nombre descriptivo es requerido y debe tener al menos 3 caracteres.")
    if not partial or "identificador_unico" in payload:
        if len(clean_str(payload.get("identificador_unico")) or "") < MIN_TEXTO:
            errors.append("El identificador único es requerido y debe tener al menos 3 caracteres.")
    tipo = clean_str(payload.get("tipo_equipo"))
    if (not partial and not tipo) or (tipo and tipo not in TIPOS_EQUIPO):
        errors.append("Tipo de equipo inválido.")
    estado = clean_str(payload.get("estado_equipo"))
    if estado and estado not in ESTADOS_EQUIPO:
        errors.append("Estado de equipo inválido.")
    _check_fecha(errors, payload, "fecha_adquisicion", "Fecha de adquisición")
    return errors


def validate_prestamo_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial:
        if not clean_str(payload.get("equipo_id")):
            errors.append("El equipo es requerido.")
        if not clean_str(payload.get("prestado_a_contacto_id")):
            errors.append("El contacto es requerido.")
    if not partial or "persona_responsable_en_sitio" in payload:
        if len(clean_str(payload.get("persona_responsable_en_sitio")) or "") < MIN_TEXTO:
            errors.append("La persona responsable en sitio es requerida y debe tener al menos 3 caracteres.")
    _check_fecha(errors, payload, "fecha_devolucion_estimada", "La fecha de devolución estimada", required=not partial)
    _check_fecha(errors, payload, "fecha_devolucion_real", "La fecha de devolución real")
    estado = clean_str(payload.get("estado_prestamo"))
    if estado and estado not in ESTADOS_PRESTAMO:
        errors.append("Estado de préstamo inválido.")
    return errors


# ---------- Equipos ----------
def get_equipos(s: "Session", *, estado: str | None = None) -> list[EquipoInventario]:
    q = select(EquipoInventario)
    if estado:
        if estado not in ESTADOS_EQUIPO:
            raise ValidationFailed(["Estado de equipo inválido."])
        q = q.where(EquipoInventario.estado_equipo == estado)
    return list(s.scalars(q.order_by(EquipoInventario.nombre_descriptivo.asc())))


def get_equipo(s: "Session", equipo_id: str | None) -> EquipoInventario:
    equipo = s.get(EquipoInventario, equipo_id) if equipo_id else None
    if equipo is None:
        raise NotFoundError("Equipo no encontrado.")
    return equipo


def _ensure_unique_identificador(s: "Session", identificador: str, exclude_id: str | None = None) -> None:
    q = select(func.count()).select_from(EquipoInventario).where(EquipoInventario.identificador_unico == identificador)
    if exclude_id:
        q = q.where(EquipoInventario.id != exclude_id)
    if s.scalar(q):
        raise ConflictError(IDENTIFICADOR_DUPLICADO)


def _resolve_refs(s: "Session", payload: dict) -> dict:
    refs = {}
    if "ubicacion_actual_id" in payload:
        ubicacion_id = clean_str(payload.get("ubicacion_actual_id"))
        refs["ubicacion_actual_id"] = get_ubicacion(s, ubicacion_id).id if ubicacion_id else None
    if "empresa_id" in payload:
        empresa_id = clean_str(payload.get("empresa_id"))
        refs["empresa_id"] = get_empresa(s, empresa_id).id if empresa_id else None
    if "parent_equipo_id" in payload:
        parent_id = clean_str(payload.get("parent_equipo_id"))
        refs["parent_equipo_id"] = get_equipo(s, parent_id).id if parent_id else None
    return refs


def _fecha_adquisicion(payload: dict):
    value = parse_datetime(payload.get("fecha_adquisicion"))
    return value.date() if value else None


def create_equipo(s: "Session", payload: dict, user: User) -> EquipoInventario:
    errors = validate_equipo_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    identificador = clean_str(payload.get("identificador_unico")) or ""
    _ensure_unique_identificador(s, identificador)

    equipo = EquipoInventario(
        nombre_descriptivo=clean_str(payload.get("nombre_descriptivo")) or "",
        identificador_unico=identificador,
        tipo_equipo=clean_str(payload.get("tipo_equipo")) or "",
        marca=clean_str(payload.get("marca")),
        modelo=clean_str(payload.get("modelo")),
        descripcion_adicional=clean_str(payload.get("descripcion_adicional")),
        estado_equipo=clean_str(payload.get("estado_equipo")) or EQUIPO_DISPONIBLE,
        fecha_adquisicion=_fecha_adquisicion(payload),
        proveedor=clean_str(payload.get("proveedor")),
        notas_generales=clean_str(payload.get("notas_generales")),
        **_resolve_refs(s, payload),
    )
    s.add(equipo)
    s.flush()
    s.refresh(equipo)
    record_event(
        s,
        actor=user,
        action="equipo.create",
        entity_type="EquipoInventario",
        entity_id=equipo.id,
        metadata={"identificador_unico": equipo.identificador_unico, "tipo_equipo": equipo.tipo_equipo},
    )
    logger.info("Equipo %s (%s) created by %s", equipo.identificador_unico, equipo.id, user.email)
    return equipo


def update_equipo(s: "Session", equipo: EquipoInventario, payload: dict, user: User) -> EquipoInventario:
    errors = validate_equipo_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)

    changes: dict = {}
    new_values: dict = {}
    for field in ("nombre_descriptivo", "marca", "modelo", "descripcion_adicional", "proveedor", "notas_generales"):
        if field in payload:
            new_values[field] = clean_str(payload.get(field))
    for field in ("tipo_equipo", "estado_equipo"):
        if clean_str(payload.get(field)):
            new_values[field] = clean_str(payload.get(field))
    if "identificador_unico" in payload:
        identificador = clean_str(payload.get("identificador_unico")) or ""
        if identificador != equipo.identificador_unico:
            _ensure_unique_identificador(s, identificador, exclude_id=equipo.id)
        new_values["identificador_unico"] = identificador
    if "fecha_adquisicion" in payload:
        new_values["fecha_adquisicion"] = _fecha_adquisicion(payload)
    new_values.update(_resolve_refs(s, payload))
    if new_values.get("parent_equipo_id") == equipo.id:
        raise ValidationFailed(["Un equipo no puede ser componente de sí mismo."])

    for field, new_value in new_values.items():
        old_value = getattr(equipo, field)
        if new_value != old_value:
            changes[field] = {"old": old_value, "new": new_value}
            setattr(equipo, field, new_value)

    s.flush()
    s.refresh(equipo)
    record_event(
        s,
        actor=user,
        action="equipo.edit",
        entity_type="EquipoInventario",
        entity_id=equipo.id,
        metadata={"identificador_unico": equipo.identificador_unico, "changes": changes},
    )
    return equipo


def delete_equipo(s: "Session", equipo: EquipoInventario, user: User) -> None:
    prestamos = s.scalar(
        select(func.count()).select_from(EquipoEnPrestamo).where(EquipoEnPrestamo.equipo_id == equipo.id)
    )
    if prestamos:
        raise DependencyError("No se puede eliminar el equipo porque tiene registros de préstamos asociados.")
    record_event(
        s,
        actor=user,
        action="equipo.delete",
        entity_type="EquipoInventario",
        entity_id=equipo.id,
        metadata={"identificador_unico": equipo.identificador_unico},
    )
    s.delete(equipo)
    s.flush()


# ---------- Préstamos ----------
def get_prestamos(s: "Session", *, estado: str | None = None) -> list[EquipoEnPrestamo]:
    q = select(EquipoEnPrestamo)
    if estado:
        q = q.where(EquipoEnPrestamo.estado_prestamo == estado)
    return list(s.scalars(q.order_by(EquipoEnPrestamo.fecha_prestamo.desc())))


def get_prestamo(s: "Session", prestamo_id: str | None) -> EquipoEnPrestamo:
    prestamo = s.get(EquipoEnPrestamo, prestamo_id) if prestamo_id else None
    if prestamo is None:
        raise NotFoundError("Registro de préstamo no encontrado.")
    return prestamo


def _get_ticket_id(s: "Session", ticket_id: str | None) -> str | None:
    if not ticket_id:
        return None
    from app.apc.modules.tickets.service import get_ticket

    return get_ticket(s, ticket_id).id


def create_prestamo(s: "Session", payload: dict, user: User) -> EquipoEnPrestamo:
    """Lend an available equipo: the loan starts PRESTADO and the equipo becomes PRESTADO."""
    errors = validate_prestamo_payload(payload)
    if errors:
        raise ValidationFailed(errors)

    equipo = get_equipo(s, clean_str(payload.get("equipo_id")))
    if equipo.estado_equipo != EQUIPO_DISPONIBLE:
        raise ApiError(f"El equipo no está disponible para préstamo (estado actual: {equipo.estado_equipo}).")
    contacto = get_contacto(s, clean_str(payload.get("prestado_a_contacto_id")))

    prestamo = EquipoEnPrestamo(
        equipo_id=equipo.id,
        prestado_a_contacto_id=contacto.id,
        persona_responsable_en_sitio=clean_str(payload.get("persona_responsable_en_sitio")) or "",
        fecha_prestamo=datetime.utcnow(),
        fecha_devolucion_estimada=parse_datetime(payload.get("fecha_devolucion_estimada")),
        estado_prestamo=PRESTAMO_PRESTADO,
        ticket_id=_get_ticket_id(s, clean_str(payload.get("ticket_id"))),
        notas_prestamo=clean_str(payload.get("notas_prestamo")),
        entregado_por_usuario_id=user.id,
    )
    s.add(prestamo)
    equipo.estado_equipo = EQUIPO_PRESTADO
    s.flush()
    s.refresh(prestamo)
    record_event(
        s,
        actor=user,
        action="prestamo.create",
        entity_type="EquipoEnPrestamo",
        entity_id=prestamo.id,
        metadata={"equipo_id": equipo.id, "contacto_id": contacto.id, "ticket_id": prestamo.ticket_id},
    )
    logger.info("Equipo %s lent to %s by %s", equipo.identificador_unico, contacto.email, user.email)
    return prestamo


def update_prestamo(s: "Session", prestamo: EquipoEnPrestamo, payload: dict, user: User) -> EquipoEnPrestamo:
    """Partial update. Moving to DEVUELTO stamps fecha_devolucion_real and frees the equipo."""
    errors = validate_prestamo_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)

    estado_anterior = prestamo.estado_prestamo
    changes: dict = {}
    new_values: dict = {}
    for field in ("persona_responsable_en_sitio", "notas_prestamo", "notas_devolucion"):
        if field in payload:
            new_values[field] = clean_str(payload.get(field))
    for field in ("fecha_devolucion_estimada", "fecha_devolucion_real"):
        if field in payload:
            new_values[field] = parse_datetime(payload.get(field))
    if clean_str(payload.get("estado_prestamo")):
        new_values["estado_prestamo"] = clean_str(payload.get("estado_prestamo"))
    if "prestado_a_contacto_id" in payload:
        new_values["prestado_a_contacto_id"] = get_contacto(s, clean_str(payload.get("prestado_a_contacto_id"))).id
    if "ticket_id" in payload:
        new_values["ticket_id"] = _get_ticket_id(s, clean_str(payload.get("ticket_id")))

    for field, new_value in new_values.items():
        old_value = getattr(prestamo, field)
        if new_value != old_value:
            changes[field] = {"old": old_value, "new": new_value}
            setattr(prestamo, field, new_value)

    if prestamo.estado_prestamo == PRESTAMO_DEVUELTO and estado_anterior != PRESTAMO_DEVUELTO:
        if prestamo.fecha_devolucion_real is None:
            prestamo.fecha_devolucion_real = datetime.utcnow()
        prestamo.recibido_por_usuario_id = user.id
        prestamo.equipo.estado_equipo = EQUIPO_DISPONIBLE

    s.flush()
    s.refresh(prestamo)
    record_event(
        s,
        actor=user,
        action="prestamo.edit",
        entity_type="EquipoEnPrestamo",
        entity_id=prestamo.id,
        metadata={"equipo_id": prestamo.equipo_id, "changes": changes},
    )
    return prestamo


def finalizar_prestamo(
    s: "Session",
    prestamo: EquipoEnPrestamo,
    estado_final: str | None,
    user: User,
    notas_devolucion: str | None = None,
) -> EquipoEnPrestamo:
    """Close a loan as DEVUELTO (equipo DISPONIBLE) or PERDIDO_POR_CLIENTE (equipo PERDIDO_ROBADO)."""
    if estado_final not in _ESTADO_EQUIPO_AL_FINALIZAR:
        raise ApiError("Estado final inválido para finalizar préstamo. Use DEVUELTO o PERDIDO_POR_CLIENTE.")
    if prestamo.estado_prestamo in _ESTADO_EQUIPO_AL_FINALIZAR:
        raise ApiError("El préstamo ya ha sido finalizado.")

    prestamo.estado_prestamo = estado_final
    prestamo.fecha_devolucion_real = datetime.utcnow()
    prestamo.notas_devolucion = notas_devolucion
    prestamo.recibido_por_usuario_id = user.id
    prestamo.equipo.estado_equipo = _ESTADO_EQUIPO_AL_FINALIZAR[estado_final]
    s.flush()
    s.refresh(prestamo)
    record_event(
        s,
        actor=user,
        action="prestamo.finalizar",
        entity_type="EquipoEnPrestamo",
        entity_id=prestamo.id,
        metadata={"equipo_id": prestamo.equipo_id, "estado_prestamo": estado_final},
    )
    return prestamo


def delete_prestamo(s: "Session", prestamo: EquipoEnPrestamo, user: User) -> None:
    """Delete a loan record. An active loan frees its equipo."""
    if prestamo.estado_prestamo == PRESTAMO_PRESTADO and prestamo.equipo.estado_equipo == EQUIPO_PRESTADO:
        prestamo.equipo.estado_equipo = EQUIPO_DISPONIBLE
    record_event(
        s,
        actor=user,
        action="prestamo.delete",
        entity_type="EquipoEnPrestamo",
        entity_id=prestamo.id,
        metadata={"equipo_id": prestamo.equipo_id, "estado_prestamo": prestamo.estado_prestamo},
    )
    s.delete(prestamo)
    s.flush()
