from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from app.apc.audit import record_event
from app.apc.errors import DependencyError, NotFoundError, ValidationFailed
from app.apc.models import User
from app.apc.modules.empresas.service import build_sucursal, get_contacto, get_empresa, get_sucursal
from app.apc.modules.geografia.service import validate_direccion_payload
from app.apc.modules.tickets.models import (
    ESTADO_ABIERTO,
    ESTADOS_SOLUCIONADOS,
    ESTADOS_TICKET,
    PRIORIDAD_DEFAULT,
    PRIORIDADES,
    AccionTicket,
    Ticket,
)
from app.apc.utils import clean_str, is_valid_email, parse_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MIN_ACCION_DESCRIPCION = 10


# ---------- Validation ----------
def _check_enum(errors: list[str], value: str | None, valid: tuple[str, ...], message: str) -> None:
    if value and value not in valid:
        errors.append(f"{message}. Debe ser uno de: {', '.join(valid)}")


def _check_fecha(errors: list[str], payload: dict, field: str, label: str) -> None:
    try:
        parse_datetime(payload.get(field))
    except (TypeError, ValueError):
        errors.append(f"{label} inválida.")


def validate_nueva_sucursal_payload(payload: dict | None) -> list[str]:
    """nueva_sucursal: {nombre, comuna_id, direccion: {calle, numero, depto?}}."""
    if not isinstance(payload, dict):
        return ["Los datos de la nueva sucursal son inválidos."]
    errors = []
    if not clean_str(payload.get("nombre")):
        errors.append("El nombre de la nueva sucursal es requerido.")
    direccion = payload.get("direccion")
    if not isinstance(direccion, dict):
        errors.append("La dirección de la nueva sucursal es requerida.")
    else:
        errors.extend(validate_direccion_payload({**direccion, "comuna_id": payload.get("comuna_id")}))
    return errors


def validate_ticket_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate ticket creation/update payload. Returns list of errors."""
    errors: list[str] = []
    required = (
        ("titulo", "El título es requerido."),
        ("tipo_incidente", "El tipo de incidente es requerido."),
        ("solicitante_nombre", "El nombre del solicitante es requerido."),
    )
    for field, message in required:
        if (not partial or field in payload) and not clean_str(payload.get(field)):
            errors.append(message)

    _check_enum(errors, clean_str(payload.get("prioridad")), PRIORIDADES, "Prioridad inválida")
    _check_enum(errors, clean_str(payload.get("estado")), ESTADOS_TICKET, "Estado inválido")

    correo = clean_str(payload.get("solicitante_correo"))
    if correo and not is_valid_email(correo):
        errors.append("Correo electrónico del solicitante inválido.")

    _check_fecha(errors, payload, "fecha_solucion_estimada", "Fecha de solución estimada")
    if partial:
        _check_fecha(errors, payload, "fecha_solucion_real", "Fecha de solución real")
    else:
        if payload.get("nueva_sucursal"):
            errors.extend(validate_nueva_sucursal_payload(payload.get("nueva_sucursal")))
        elif not clean_str(payload.get("sucursal_id")):
            errors.append("Debe seleccionar una sucursal existente o crear una nueva.")
    return errors


def validate_accion_payload(payload: dict) -> list[str]:
    descripcion = clean_str(payload.get("descripcion"))
    if not descripcion:
        return ["La descripción es requerida."]
    if len(descripcion) < MIN_ACCION_DESCRIPCION:
        return [f"La descripción debe tener al menos {MIN_ACCION_DESCRIPCION} caracteres."]
    return []


# ---------- Lookups ----------
def get_tickets(s: "Session", *, estado: str | None = None) -> list[Ticket]:
    q = select(Ticket)
    if estado:
        q = q.where(Ticket.estado == estado)
    return list(s.scalars(q.order_by(Ticket.numero_caso.desc())))


def get_ticket(s: "Session", ticket_id: str | None) -> Ticket:
    ticket = s.get(Ticket, ticket_id) if ticket_id else None
    if ticket is None:
        raise NotFoundError("Ticket no encontrado.")
    return ticket


def _get_user(s: "Session", user_id: str | None, message: str) -> User:
    user = s.get(User, user_id) if user_id else None
    if user is None:
        raise NotFoundError(message)
    return user


def next_numero_caso(s: "Session") -> int:
    return (s.scalar(select(func.max(Ticket.numero_caso))) or 0) + 1


# ---------- Tickets ----------
def create_ticket(s: "Session", payload: dict, user: User) -> Ticket:
    """
    Create a ticket in the caller's transaction:
    optional nueva_sucursal (direccion + sucursal), the ticket with the next
    numero_caso, and an optional initial accion. The caller commits once.
    """
    errors = validate_ticket_payload(payload)
    if errors:
        raise ValidationFailed(errors)

    empresa_id = clean_str(payload.get("empresa_id"))
    nueva = payload.get("nueva_sucursal")
    if nueva:
        sucursal = build_sucursal(
            s,
            nombre=clean_str(nueva.get("nombre")) or "",
            direccion_data={**nueva["direccion"], "comuna_id": nueva.get("comuna_id")},
            empresa_id=empresa_id,
        )
    else:
        sucursal = get_sucursal(s, clean_str(payload.get("sucursal_id")))

    if empresa_id:
        get_empresa(s, empresa_id)
    contacto_id = clean_str(payload.get("contacto_id"))
    if contacto_id:
        get_contacto(s, contacto_id)
    tecnico_id = clean_str(payload.get("tecnico_asignado_id"))
    if tecnico_id:
        _get_user(s, tecnico_id, "Técnico no encontrado.")

    ticket = Ticket(
        numero_caso=next_numero_caso(s),
        titulo=clean_str(payload.get("titulo")) or "",
        descripcion_detallada=clean_str(payload.get("descripcion_detallada")),
        tipo_incidente=clean_str(payload.get("tipo_incidente")) or "",
        prioridad=clean_str(payload.get("prioridad")) or PRIORIDAD_DEFAULT,
        estado=clean_str(payload.get("estado")) or ESTADO_ABIERTO,
        solicitante_nombre=clean_str(payload.get("solicitante_nombre")) or "",
        solicitante_telefono=clean_str(payload.get("solicitante_telefono")),
        solicitante_correo=clean_str(payload.get("solicitante_correo")),
        equipo_afectado=clean_str(payload.get("equipo_afectado")),
        empresa_id=empresa_id,
        sucursal_id=sucursal.id,
        contacto_id=contacto_id,
        tecnico_asignado_id=tecnico_id,
        creado_por_usuario_id=user.id,
        fecha_creacion=datetime.utcnow(),
        fecha_solucion_estimada=parse_datetime(payload.get("fecha_solucion_estimada")),
    )
    s.add(ticket)
    s.flush()

    accion_inicial = clean_str(payload.get("accion_inicial"))
    if accion_inicial:
        s.add(AccionTicket(ticket_id=ticket.id, usuario_id=user.id, descripcion=accion_inicial))
        s.flush()

    s.refresh(ticket)
    record_event(
        s,
        actor=user,
        action="ticket.create",
        entity_type="Ticket",
        entity_id=ticket.id,
        metadata={
            "numero_caso": ticket.numero_caso,
            "sucursal_id": sucursal.id,
            "nueva_sucursal": bool(nueva),
            "accion_inicial": bool(accion_inicial),
        },
    )
    logger.info("Ticket #%s (%s) created by %s", ticket.numero_caso, ticket.id, user.email)
    return ticket


def update_ticket(s: "Session", ticket: Ticket, payload: dict, user: User) -> Ticket:
    """Partial update. Moving to RESUELTO/CERRADO stamps fecha_solucion_real when unset."""
    errors = validate_ticket_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)

    changes: dict = {}

    def _set(field: str, new_value) -> None:
        old_value = getattr(ticket, field)
        if new_value != old_value:
            changes[field] = {"old": old_value, "new": new_value}
            setattr(ticket, field, new_value)

    for field in (
        "titulo",
        "descripcion_detallada",
        "tipo_incidente",
        "prioridad",
        "estado",
        "solicitante_nombre",
        "solicitante_telefono",
        "solicitante_correo",
        "equipo_afectado",
    ):
        if field in payload:
            value = clean_str(payload.get(field))
            if field in ("prioridad", "estado") and not value:
                continue
            _set(field, value)

    if "empresa_id" in payload:
        empresa_id = clean_str(payload.get("empresa_id"))
        if empresa_id:
            get_empresa(s, empresa_id)
        _set("empresa_id", empresa_id)
    if "sucursal_id" in payload:
        sucursal_id = clean_str(payload.get("sucursal_id"))
        if sucursal_id:
            get_sucursal(s, sucursal_id)
        _set("sucursal_id", sucursal_id)
    if "contacto_id" in payload:
        contacto_id = clean_str(payload.get("contacto_id"))
        if contacto_id:
            get_contacto(s, contacto_id)
        _set("contacto_id", contacto_id)
    if "tecnico_asignado_id" in payload:
        tecnico_id = clean_str(payload.get("tecnico_asignado_id"))
        if tecnico_id:
            _get_user(s, tecnico_id, "Técnico no encontrado.")
        _set("tecnico_asignado_id", tecnico_id)
    for field in ("fecha_solucion_estimada", "fecha_solucion_real"):
        if field in payload:
            _set(field, parse_datetime(payload.get(field)))

    if ticket.estado in ESTADOS_SOLUCIONADOS and ticket.fecha_solucion_real is None:
        _set("fecha_solucion_real", datetime.utcnow())

    s.flush()
    s.refresh(ticket)
    record_event(
        s,
        actor=user,
        action="ticket.edit",
        entity_type="Ticket",
        entity_id=ticket.id,
        metadata={"numero_caso": ticket.numero_caso, "changes": changes},
    )
    return ticket


def delete_ticket(s: "Session", ticket: Ticket, user: User) -> None:
    """Delete a ticket and its acciones; refused while equipment loans reference it."""
    from app.apc.modules.equipos.models import EquipoEnPrestamo

    prestamos = s.scalar(select(func.count()).select_from(EquipoEnPrestamo).where(EquipoEnPrestamo.ticket_id == ticket.id))
    if prestamos:
        raise DependencyError("No se puede eliminar el ticket porque tiene préstamos asociados.")
    record_event(
        s,
        actor=user,
        action="ticket.delete",
        entity_type="Ticket",
        entity_id=ticket.id,
        metadata={"numero_caso": ticket.numero_caso, "titulo": ticket.titulo},
    )
    s.delete(ticket)
    s.flush()


# ---------- Acciones ----------
def get_acciones(s: "Session", ticket_id: str) -> list[AccionTicket]:
    get_ticket(s, ticket_id)
    return list(
        s.scalars(
            select(AccionTicket).where(AccionTicket.ticket_id == ticket_id).order_by(AccionTicket.fecha_accion.desc())
        )
    )


def get_accion(s: "Session", ticket_id: str, accion_id: str) -> AccionTicket:
    accion = s.get(AccionTicket, accion_id)
    if accion is None or accion.ticket_id != ticket_id:
        raise NotFoundError(f"No se encontró la acción con ID {accion_id}.")
    return accion


def add_accion(s: "Session", ticket_id: str, payload: dict, user: User) -> AccionTicket:
    ticket = get_ticket(s, ticket_id)
    errors = validate_accion_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    accion = AccionTicket(
        ticket_id=ticket.id,
        usuario_id=user.id,
        descripcion=clean_str(payload.get("descripcion")) or "",
        categoria=clean_str(payload.get("categoria")),
        fecha_accion=datetime.utcnow(),
    )
    s.add(accion)
    s.flush()
    s.refresh(accion)
    record_event(
        s,
        actor=user,
        action="ticket.accion.create",
        entity_type="AccionTicket",
        entity_id=accion.id,
        metadata={"ticket_id": ticket.id, "numero_caso": ticket.numero_caso},
    )
    return accion


def update_accion(s: "Session", ticket_id: str, accion_id: str, payload: dict, user: User) -> AccionTicket:
    accion = get_accion(s, ticket_id, accion_id)
    errors = validate_accion_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    changes: dict = {}
    descripcion = clean_str(payload.get("descripcion"))
    if descripcion != accion.descripcion:
        changes["descripcion"] = {"old": accion.descripcion, "new": descripcion}
        accion.descripcion = descripcion or ""
    if "categoria" in payload:
        categoria = clean_str(payload.get("categoria"))
        if categoria != accion.categoria:
            changes["categoria"] = {"old": accion.categoria, "new": categoria}
            accion.categoria = categoria
    s.flush()
    record_event(
        s,
        actor=user,
        action="ticket.accion.edit",
        entity_type="AccionTicket",
        entity_id=accion.id,
        metadata={"ticket_id": ticket_id, "changes": changes},
    )
    return accion


def delete_accion(s: "Session", ticket_id: str, accion_id: str, user: User) -> None:
    accion = get_accion(s, ticket_id, accion_id)
    record_event(
        s,
        actor=user,
        action="ticket.accion.delete",
        entity_type="AccionTicket",
        entity_id=accion.id,
        metadata={"ticket_id": ticket_id},
    )
    s.delete(accion)
    s.flush()
