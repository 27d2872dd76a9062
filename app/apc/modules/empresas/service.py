from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from app.apc.audit import record_event
from app.apc.errors import ConflictError, DependencyError, NotFoundError, ValidationFailed
from app.apc.modules.empresas.models import (
    UBICACION_ACTIVA,
    UBICACION_INACTIVA,
    VALID_UBICACION_ESTADOS,
    ContactoEmpresa,
    Empresa,
    Sucursal,
    Ubicacion,
)
from app.apc.modules.geografia.models import Direccion
from app.apc.modules.geografia.service import (
    apply_direccion_changes,
    build_direccion,
    validate_direccion_payload,
)
from app.apc.utils import clean_str, is_valid_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.apc.models import User

logger = logging.getLogger(__name__)

MIN_NOMBRE = 3
MIN_RUT = 8
MIN_TELEFONO = 7


def _count(s: "Session", model, *criteria) -> int:
    return s.scalar(select(func.count()).select_from(model).where(*criteria)) or 0


def _track(changes: dict, obj, field: str, new_value) -> None:
    old_value = getattr(obj, field)
    if new_value != old_value:
        changes[field] = {"old": old_value, "new": new_value}
        setattr(obj, field, new_value)


def _delete_orphan_direccion(s: "Session", direccion_id: str | None) -> None:
    if not direccion_id:
        return
    if _count(s, Empresa, Empresa.direccion_id == direccion_id) or _count(s, Sucursal, Sucursal.direccion_id == direccion_id):
        return
    direccion = s.get(Direccion, direccion_id)
    if direccion is not None:
        s.delete(direccion)


# ---------- Validation ----------
def _check_min(errors: list[str], payload: dict, field: str, minimum: int, message: str, *, required: bool) -> None:
    value = clean_str(payload.get(field))
    if value is None:
        if required:
            errors.append(message)
        return
    if len(value) < minimum:
        errors.append(message)


def _check_email(errors: list[str], payload: dict, field: str = "email", *, required: bool = False) -> None:
    value = clean_str(payload.get(field))
    if value is None:
        if required:
            errors.append("El correo electrónico es requerido.")
        return
    if not is_valid_email(value):
        errors.append("Correo electrónico inválido.")


def validate_empresa_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate empresa creation/update payload. Returns list of errors."""
    errors: list[str] = []
    if not partial or "nombre" in payload:
        _check_min(errors, payload, "nombre", MIN_NOMBRE, "El nombre debe tener al menos 3 caracteres.", required=True)
    if not partial or "rut" in payload:
        _check_min(errors, payload, "rut", MIN_RUT, "El RUT debe tener al menos 8 caracteres.", required=True)
    _check_email(errors, payload)
    direccion = payload.get("direccion")
    if direccion is not None:
        errors.extend(validate_direccion_payload(direccion, partial=partial))
    return errors


def validate_sucursal_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate sucursal payload. The direccion is required on create."""
    errors: list[str] = []
    if not partial or "nombre" in payload:
        _check_min(errors, payload, "nombre", MIN_NOMBRE, "El nombre debe tener al menos 3 caracteres.", required=True)
    _check_min(errors, payload, "telefono", MIN_TELEFONO, "El teléfono debe tener al menos 7 caracteres.", required=False)
    _check_email(errors, payload)
    if not partial:
        errors.extend(validate_direccion_payload(payload.get("direccion")))
    elif payload.get("direccion") is not None:
        errors.extend(validate_direccion_payload(payload.get("direccion"), partial=True))
    return errors


def validate_ubicacion_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    _check_min(
        errors,
        payload,
        "nombre_referencial",
        MIN_NOMBRE,
        "El nombre referencial debe tener al menos 3 caracteres.",
        required=False,
    )
    if not partial or "sucursal_id" in payload:
        if not clean_str(payload.get("sucursal_id")):
            errors.append("La sucursal es requerida.")
    estado = clean_str(payload.get("estado"))
    if estado and estado not in VALID_UBICACION_ESTADOS:
        errors.append(f"Estado inválido. Debe ser uno de: {', '.join(VALID_UBICACION_ESTADOS)}")
    return errors


def validate_contacto_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "nombre_completo" in payload:
        _check_min(
            errors,
            payload,
            "nombre_completo",
            MIN_NOMBRE,
            "El nombre completo debe tener al menos 3 caracteres.",
            required=True,
        )
    if not partial or "email" in payload:
        _check_email(errors, payload, required=True)
    if not partial or "telefono" in payload:
        _check_min(errors, payload, "telefono", MIN_TELEFONO, "El teléfono debe tener al menos 7 caracteres.", required=True)
    return errors


# ---------- Empresas ----------
def get_empresas(s: "Session") -> list[Empresa]:
    return list(s.scalars(select(Empresa).order_by(Empresa.nombre.asc())))


def get_empresa(s: "Session", empresa_id: str | None) -> Empresa:
    empresa = s.get(Empresa, empresa_id) if empresa_id else None
    if empresa is None:
        raise NotFoundError("Empresa no encontrada.")
    return empresa


def _ensure_unique_rut(s: "Session", rut: str, message: str, exclude_id: str | None = None) -> None:
    criteria = [Empresa.rut == rut]
    if exclude_id:
        criteria.append(Empresa.id != exclude_id)
    if _count(s, Empresa, *criteria):
        raise ConflictError(message)


def create_empresa(s: "Session", payload: dict, user: "User") -> Empresa:
    """Create an empresa, with its direccion when one is given, in the caller's transaction."""
    errors = validate_empresa_payload(payload)
    if errors:
        raise ValidationFailed(errors)

    rut = clean_str(payload.get("rut")) or ""
    _ensure_unique_rut(s, rut, "Error al crear empresa: El RUT ya existe.")

    direccion = build_direccion(s, payload["direccion"]) if payload.get("direccion") else None
    empresa = Empresa(
        nombre=clean_str(payload.get("nombre")) or "",
        rut=rut,
        telefono=clean_str(payload.get("telefono")),
        email=clean_str(payload.get("email")),
        direccion_id=direccion.id if direccion else None,
    )
    s.add(empresa)
    s.flush()
    s.refresh(empresa)

    record_event(
        s,
        actor=user,
        action="empresa.create",
        entity_type="Empresa",
        entity_id=empresa.id,
        metadata={"nombre": empresa.nombre, "rut": empresa.rut},
    )
    logger.info("Empresa %s (%s) created by %s", empresa.nombre, empresa.id, user.email)
    return empresa


def update_empresa(s: "Session", empresa: Empresa, payload: dict, user: "User") -> Empresa:
    """
    Partial update. A "direccion" object edits (or creates) the address;
    "direccion": null detaches it.
    """
    errors = validate_empresa_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)

    changes: dict = {}
    if "nombre" in payload:
        _track(changes, empresa, "nombre", clean_str(payload.get("nombre")))
    if "rut" in payload:
        new_rut = clean_str(payload.get("rut"))
        if new_rut != empresa.rut:
            _ensure_unique_rut(s, new_rut or "", "Error al actualizar empresa: El RUT ya existe.", exclude_id=empresa.id)
        _track(changes, empresa, "rut", new_rut)
    for field in ("telefono", "email"):
        if field in payload:
            _track(changes, empresa, field, clean_str(payload.get(field)))

    if "direccion" in payload:
        data = payload.get("direccion")
        if data is None:
            if empresa.direccion_id:
                changes["direccion_id"] = {"old": empresa.direccion_id, "new": None}
                empresa.direccion_id = None
        elif empresa.direccion is not None:
            dir_changes = apply_direccion_changes(s, empresa.direccion, data)
            if dir_changes:
                changes["direccion"] = dir_changes
        else:
            # A new address needs every required field, not just the edited ones
            dir_errors = validate_direccion_payload(data)
            if dir_errors:
                raise ValidationFailed(dir_errors)
            direccion = build_direccion(s, data)
            changes["direccion_id"] = {"old": None, "new": direccion.id}
            empresa.direccion_id = direccion.id

    s.flush()
    s.refresh(empresa)
    record_event(
        s,
        actor=user,
        action="empresa.edit",
        entity_type="Empresa",
        entity_id=empresa.id,
        metadata={"nombre": empresa.nombre, "changes": changes},
    )
    return empresa


def delete_empresa(s: "Session", empresa: Empresa, user: "User") -> None:
    """Delete an empresa without sucursales or tickets; its contactos go with it."""
    from app.apc.modules.tickets.models import Ticket

    if _count(s, Sucursal, Sucursal.empresa_id == empresa.id) or _count(s, Ticket, Ticket.empresa_id == empresa.id):
        raise DependencyError("No se puede eliminar la empresa porque tiene sucursales o tickets asociados.")

    contactos = list(s.scalars(select(ContactoEmpresa).where(ContactoEmpresa.empresa_id == empresa.id)))
    for contacto in contactos:
        _ensure_contacto_unreferenced(s, contacto)
        s.delete(contacto)

    direccion_id = empresa.direccion_id
    record_event(
        s,
        actor=user,
        action="empresa.delete",
        entity_type="Empresa",
        entity_id=empresa.id,
        metadata={"nombre": empresa.nombre, "rut": empresa.rut, "contactos_eliminados": len(contactos)},
    )
    s.delete(empresa)
    s.flush()
    _delete_orphan_direccion(s, direccion_id)
    s.flush()


# ---------- Sucursales ----------
def get_sucursales(s: "Session", empresa_id: str | None = None) -> list[Sucursal]:
    q = select(Sucursal)
    if empresa_id:
        q = q.where(Sucursal.empresa_id == empresa_id)
    return list(s.scalars(q.order_by(Sucursal.nombre.asc())))


def get_sucursal(s: "Session", sucursal_id: str | None) -> Sucursal:
    sucursal = s.get(Sucursal, sucursal_id) if sucursal_id else None
    if sucursal is None:
        raise NotFoundError("Sucursal no encontrada.")
    return sucursal


def build_sucursal(
    s: "Session",
    *,
    nombre: str,
    direccion_data: dict,
    empresa_id: str | None = None,
    telefono: str | None = None,
    email: str | None = None,
) -> Sucursal:
    """Create direccion + sucursal (flushed, not committed). Shared with ticket creation."""
    if empresa_id:
        get_empresa(s, empresa_id)
    direccion = build_direccion(s, direccion_data)
    sucursal = Sucursal(
        nombre=nombre,
        telefono=telefono,
        email=email,
        empresa_id=empresa_id,
        direccion_id=direccion.id,
    )
    s.add(sucursal)
    s.flush()
    s.refresh(sucursal)
    return sucursal


def create_sucursal(s: "Session", payload: dict, user: "User") -> Sucursal:
    errors = validate_sucursal_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    sucursal = build_sucursal(
        s,
        nombre=clean_str(payload.get("nombre")) or "",
        direccion_data=payload["direccion"],
        empresa_id=clean_str(payload.get("empresa_id")),
        telefono=clean_str(payload.get("telefono")),
        email=clean_str(payload.get("email")),
    )
    record_event(
        s,
        actor=user,
        action="sucursal.create",
        entity_type="Sucursal",
        entity_id=sucursal.id,
        metadata={"nombre": sucursal.nombre, "empresa_id": sucursal.empresa_id},
    )
    return sucursal


def update_sucursal(s: "Session", sucursal: Sucursal, payload: dict, user: "User") -> Sucursal:
    errors = validate_sucursal_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)

    changes: dict = {}
    if "nombre" in payload:
        _track(changes, sucursal, "nombre", clean_str(payload.get("nombre")))
    for field in ("telefono", "email"):
        if field in payload:
            _track(changes, sucursal, field, clean_str(payload.get(field)))
    if "empresa_id" in payload:
        new_empresa_id = clean_str(payload.get("empresa_id"))
        if new_empresa_id:
            get_empresa(s, new_empresa_id)
        _track(changes, sucursal, "empresa_id", new_empresa_id)
    if payload.get("direccion"):
        dir_changes = apply_direccion_changes(s, sucursal.direccion, payload["direccion"])
        if dir_changes:
            changes["direccion"] = dir_changes

    s.flush()
    s.refresh(sucursal)
    record_event(
        s,
        actor=user,
        action="sucursal.edit",
        entity_type="Sucursal",
        entity_id=sucursal.id,
        metadata={"nombre": sucursal.nombre, "changes": changes},
    )
    return sucursal


def delete_sucursal(s: "Session", sucursal: Sucursal, user: "User") -> None:
    """Delete a sucursal without ubicaciones or tickets, plus its now-unused direccion."""
    from app.apc.modules.tickets.models import Ticket

    if _count(s, Ubicacion, Ubicacion.sucursal_id == sucursal.id) or _count(s, Ticket, Ticket.sucursal_id == sucursal.id):
        raise DependencyError("No se puede eliminar la sucursal porque tiene ubicaciones o tickets asociados.")

    direccion_id = sucursal.direccion_id
    record_event(
        s,
        actor=user,
        action="sucursal.delete",
        entity_type="Sucursal",
        entity_id=sucursal.id,
        metadata={"nombre": sucursal.nombre},
    )
    s.delete(sucursal)
    s.flush()
    _delete_orphan_direccion(s, direccion_id)
    s.flush()


# ---------- Ubicaciones ----------
def get_ubicaciones(s: "Session") -> list[Ubicacion]:
    return list(s.scalars(select(Ubicacion).order_by(Ubicacion.nombre_referencial.asc())))


def get_ubicaciones_by_sucursal(s: "Session", sucursal_id: str, *, include_inactive: bool = False) -> list[Ubicacion]:
    q = select(Ubicacion).where(Ubicacion.sucursal_id == sucursal_id)
    if not include_inactive:
        q = q.where(Ubicacion.estado == UBICACION_ACTIVA)
    return list(s.scalars(q.order_by(Ubicacion.nombre_referencial.asc())))


def get_ubicacion(s: "Session", ubicacion_id: str | None) -> Ubicacion:
    ubicacion = s.get(Ubicacion, ubicacion_id) if ubicacion_id else None
    if ubicacion is None:
        raise NotFoundError("Ubicación no encontrada.")
    return ubicacion


def create_ubicacion(s: "Session", payload: dict, user: "User") -> Ubicacion:
    errors = validate_ubicacion_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    sucursal = get_sucursal(s, clean_str(payload.get("sucursal_id")))
    ubicacion = Ubicacion(
        nombre_referencial=clean_str(payload.get("nombre_referencial")),
        sucursal_id=sucursal.id,
        notas=clean_str(payload.get("notas")),
        estado=UBICACION_ACTIVA,
    )
    s.add(ubicacion)
    s.flush()
    record_event(
        s,
        actor=user,
        action="ubicacion.create",
        entity_type="Ubicacion",
        entity_id=ubicacion.id,
        metadata={"nombre_referencial": ubicacion.nombre_referencial, "sucursal_id": sucursal.id},
    )
    return ubicacion


def update_ubicacion(s: "Session", ubicacion: Ubicacion, payload: dict, user: "User") -> Ubicacion:
    errors = validate_ubicacion_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)
    changes: dict = {}
    for field in ("nombre_referencial", "notas"):
        if field in payload:
            _track(changes, ubicacion, field, clean_str(payload.get(field)))
    if "sucursal_id" in payload:
        sucursal = get_sucursal(s, clean_str(payload.get("sucursal_id")))
        _track(changes, ubicacion, "sucursal_id", sucursal.id)
    if clean_str(payload.get("estado")):
        _track(changes, ubicacion, "estado", clean_str(payload.get("estado")))
    s.flush()
    s.refresh(ubicacion)
    record_event(
        s,
        actor=user,
        action="ubicacion.edit",
        entity_type="Ubicacion",
        entity_id=ubicacion.id,
        metadata={"changes": changes},
    )
    return ubicacion


def deactivate_ubicacion(s: "Session", ubicacion: Ubicacion, user: "User") -> Ubicacion:
    """Soft delete: flip estado to INACTIVA and keep the row."""
    old_estado = ubicacion.estado
    ubicacion.estado = UBICACION_INACTIVA
    s.flush()
    record_event(
        s,
        actor=user,
        action="ubicacion.deactivate",
        entity_type="Ubicacion",
        entity_id=ubicacion.id,
        metadata={"estado": {"old": old_estado, "new": UBICACION_INACTIVA}},
    )
    return ubicacion


def delete_ubicacion(s: "Session", ubicacion: Ubicacion, user: "User") -> None:
    """Hard delete, refused while contactos or equipos point at the ubicacion."""
    from app.apc.modules.equipos.models import EquipoInventario

    if _count(s, ContactoEmpresa, ContactoEmpresa.ubicacion_id == ubicacion.id) or _count(
        s, EquipoInventario, EquipoInventario.ubicacion_actual_id == ubicacion.id
    ):
        raise DependencyError("No se puede eliminar la ubicación porque tiene contactos o equipos asociados.")
    record_event(s, actor=user, action="ubicacion.delete", entity_type="Ubicacion", entity_id=ubicacion.id)
    s.delete(ubicacion)
    s.flush()


# ---------- Contactos ----------
def get_contactos(s: "Session", empresa_id: str | None = None) -> list[ContactoEmpresa]:
    q = select(ContactoEmpresa)
    if empresa_id:
        q = q.where(ContactoEmpresa.empresa_id == empresa_id)
    return list(s.scalars(q.order_by(ContactoEmpresa.nombre_completo.asc())))


def get_contacto(s: "Session", contacto_id: str | None) -> ContactoEmpresa:
    contacto = s.get(ContactoEmpresa, contacto_id) if contacto_id else None
    if contacto is None:
        raise NotFoundError("Contacto no encontrado.")
    return contacto


def _ensure_unique_contacto_email(s: "Session", email: str, message: str, exclude_id: str | None = None) -> None:
    criteria = [func.lower(ContactoEmpresa.email) == email.lower()]
    if exclude_id:
        criteria.append(ContactoEmpresa.id != exclude_id)
    if _count(s, ContactoEmpresa, *criteria):
        raise ConflictError(message)


def create_contacto(s: "Session", payload: dict, user: "User") -> ContactoEmpresa:
    errors = validate_contacto_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    email = (clean_str(payload.get("email")) or "").lower()
    _ensure_unique_contacto_email(s, email, "Error al crear contacto: El correo electrónico ya existe.")

    empresa_id = clean_str(payload.get("empresa_id"))
    ubicacion_id = clean_str(payload.get("ubicacion_id"))
    if empresa_id:
        get_empresa(s, empresa_id)
    if ubicacion_id:
        get_ubicacion(s, ubicacion_id)

    contacto = ContactoEmpresa(
        nombre_completo=clean_str(payload.get("nombre_completo")) or "",
        email=email,
        telefono=clean_str(payload.get("telefono")) or "",
        cargo=clean_str(payload.get("cargo")),
        empresa_id=empresa_id,
        ubicacion_id=ubicacion_id,
    )
    s.add(contacto)
    s.flush()
    s.refresh(contacto)
    record_event(
        s,
        actor=user,
        action="contacto.create",
        entity_type="ContactoEmpresa",
        entity_id=contacto.id,
        metadata={"nombre_completo": contacto.nombre_completo, "empresa_id": empresa_id},
    )
    return contacto


def update_contacto(s: "Session", contacto: ContactoEmpresa, payload: dict, user: "User") -> ContactoEmpresa:
    errors = validate_contacto_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)
    changes: dict = {}
    if "nombre_completo" in payload:
        _track(changes, contacto, "nombre_completo", clean_str(payload.get("nombre_completo")))
    if "email" in payload:
        new_email = (clean_str(payload.get("email")) or "").lower()
        if new_email != contacto.email:
            _ensure_unique_contacto_email(
                s, new_email, "Error al actualizar contacto: El correo electrónico ya existe.", exclude_id=contacto.id
            )
        _track(changes, contacto, "email", new_email)
    for field in ("telefono", "cargo"):
        if field in payload:
            _track(changes, contacto, field, clean_str(payload.get(field)))
    if "empresa_id" in payload:
        new_empresa_id = clean_str(payload.get("empresa_id"))
        if new_empresa_id:
            get_empresa(s, new_empresa_id)
        _track(changes, contacto, "empresa_id", new_empresa_id)
    if "ubicacion_id" in payload:
        new_ubicacion_id = clean_str(payload.get("ubicacion_id"))
        if new_ubicacion_id:
            get_ubicacion(s, new_ubicacion_id)
        _track(changes, contacto, "ubicacion_id", new_ubicacion_id)
    s.flush()
    s.refresh(contacto)
    record_event(
        s,
        actor=user,
        action="contacto.edit",
        entity_type="ContactoEmpresa",
        entity_id=contacto.id,
        metadata={"changes": changes},
    )
    return contacto


def _ensure_contacto_unreferenced(s: "Session", contacto: ContactoEmpresa) -> None:
    from app.apc.modules.equipos.models import EquipoEnPrestamo
    from app.apc.modules.tickets.models import Ticket

    if _count(s, EquipoEnPrestamo, EquipoEnPrestamo.prestado_a_contacto_id == contacto.id) or _count(
        s, Ticket, Ticket.contacto_id == contacto.id
    ):
        raise DependencyError(
            f"No se puede eliminar el contacto {contacto.nombre_completo!r} porque tiene préstamos o tickets asociados."
        )


def delete_contacto(s: "Session", contacto: ContactoEmpresa, user: "User") -> None:
    _ensure_contacto_unreferenced(s, contacto)
    record_event(
        s,
        actor=user,
        action="contacto.delete",
        entity_type="ContactoEmpresa",
        entity_id=contacto.id,
        metadata={"nombre_completo": contacto.nombre_completo},
    )
    s.delete(contacto)
    s.flush()
