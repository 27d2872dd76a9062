"""
Bulk ticket import.

Rows come either from a JSON array or from parsers.csv. TICKET rows and the
ACCION rows that follow them are grouped by numero_ticket_asociado. Every row
is checked before anything is written, so a single bad row cancels the whole
import.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.apc.audit import record_event
from app.apc.models import User
from app.apc.modules.empresas.models import Empresa, Sucursal
from app.apc.modules.tickets.models import ESTADO_ABIERTO, ESTADOS_TICKET, PRIORIDAD_DEFAULT, PRIORIDADES, AccionTicket, Ticket
from app.apc.modules.tickets.parsers.csv import (
    IMPORT_FIELDS,
    TIPO_ACCION,
    TIPO_TICKET,
    CsvRowError,
    ImportRow,
    normalize_header,
)
from app.apc.modules.tickets.service import next_numero_caso
from app.apc.utils import clean_str, parse_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

FIRST_DATA_ROW = 2  # row 1 is the CSV header


@dataclass
class ImportResult:
    total_rows: int
    successful_count: int = 0
    errors: list[CsvRowError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        if self.ok:
            return {
                "message": "Importación completada con éxito.",
                "successfulCount": self.successful_count,
                "failedCount": 0,
                "errors": [],
            }
        return {
            "message": "La importación fue cancelada debido a errores en los datos.",
            "successfulCount": 0,
            "failedCount": self.total_rows,
            "errors": [{"row": e.row_number, "error": e.message, "data": e.data} for e in self.errors],
        }


@dataclass
class _Group:
    ticket: ImportRow | None = None
    acciones: list[ImportRow] = field(default_factory=list)


def rows_from_records(records: list[Any]) -> tuple[list[ImportRow], list[CsvRowError]]:
    """Number JSON records like CSV lines and normalize their keys."""
    rows: list[ImportRow] = []
    errors: list[CsvRowError] = []
    for idx, record in enumerate(records, start=FIRST_DATA_ROW):
        if not isinstance(record, dict):
            errors.append(CsvRowError(idx, "Registro inválido: se esperaba un objeto."))
            continue
        normalized = {normalize_header(k): v for k, v in record.items()}
        data = {name: clean_str(normalized.get(name)) or "" for name in IMPORT_FIELDS}
        for key in ("tipo_registro", "prioridad", "estado"):
            data[key] = data[key].upper()
        rows.append(ImportRow(idx, data))
    return rows, errors


def _name_map(s: "Session", id_col, name_col, created_col) -> dict[str, str]:
    """Lowercased name -> id. On repeated names the oldest row wins."""
    mapping: dict[str, str] = {}
    for id_, name in s.execute(select(id_col, name_col).order_by(created_col.asc(), id_col.asc())):
        mapping.setdefault(name.lower(), id_)
    return mapping


def _lookup_maps(s: "Session") -> tuple[dict[str, str], dict[str, str], dict[str, str]]:
    empresas = _name_map(s, Empresa.id, Empresa.nombre, Empresa.created_at)
    sucursales = _name_map(s, Sucursal.id, Sucursal.nombre, Sucursal.created_at)
    usuarios = _name_map(s, User.id, User.email, User.created_at)
    return empresas, sucursales, usuarios


def _fecha(value: str, label: str, errors: list[str]) -> datetime | None:
    try:
        return parse_datetime(value)
    except ValueError:
        errors.append(f"{label} inválida: {value!r}")
        return None


def _check_ticket_row(data: dict, empresas: dict, sucursales: dict, usuarios: dict) -> tuple[dict, list[str]]:
    errors: list[str] = []
    for key, label in (
        ("titulo", "titulo"),
        ("tipo_incidente", "tipo_incidente"),
        ("solicitante_nombre", "solicitante_nombre"),
    ):
        if not data.get(key):
            errors.append(f"Falta el campo requerido {label}.")

    prioridad = data.get("prioridad") or PRIORIDAD_DEFAULT
    if prioridad not in PRIORIDADES:
        errors.append(f"Prioridad inválida: {prioridad!r}")
    estado = data.get("estado") or ESTADO_ABIERTO
    if estado not in ESTADOS_TICKET:
        errors.append(f"Estado inválido: {estado!r}")

    empresa_id = empresas.get((data.get("empresa_cliente_nombre") or "").lower())
    if not empresa_id:
        errors.append(f"Empresa no encontrada: \"{data.get('empresa_cliente_nombre')}\"")
    sucursal_id = sucursales.get((data.get("ubicacion_nombre") or "").lower())
    if not sucursal_id:
        errors.append(f"Sucursal no encontrada: \"{data.get('ubicacion_nombre')}\"")
    tecnico_id = usuarios.get((data.get("tecnico_asignado_email") or "").lower())
    if not tecnico_id:
        errors.append(f"Técnico no encontrado: \"{data.get('tecnico_asignado_email')}\"")

    fecha_creacion = _fecha(data.get("fecha_creacion") or "", "fecha_creacion", errors)
    fecha_solucion_real = _fecha(data.get("fecha_solucion_real") or "", "fecha_solucion_real", errors)

    values = {
        "titulo": data.get("titulo"),
        "descripcion_detallada": data.get("descripcion_detallada") or None,
        "tipo_incidente": data.get("tipo_incidente"),
        "prioridad": prioridad,
        "estado": estado,
        "solicitante_nombre": data.get("solicitante_nombre"),
        "solicitante_telefono": data.get("solicitante_telefono") or None,
        "solicitante_correo": data.get("solicitante_correo") or None,
        "equipo_afectado": data.get("equipo_afectado") or None,
        "empresa_id": empresa_id,
        "sucursal_id": sucursal_id,
        "tecnico_asignado_id": tecnico_id,
        "fecha_creacion": fecha_creacion or datetime.utcnow(),
        "fecha_solucion_real": fecha_solucion_real,
    }
    return values, errors


def _check_accion_row(data: dict, usuarios: dict) -> tuple[dict, list[str]]:
    errors: list[str] = []
    if not data.get("accion_descripcion"):
        errors.append("Falta el campo requerido accion_descripcion.")
    usuario_id = usuarios.get((data.get("accion_usuario_email") or "").lower())
    if not usuario_id:
        errors.append(f"Usuario para acción no encontrado: \"{data.get('accion_usuario_email')}\"")
    fecha_accion = _fecha(data.get("accion_fecha") or "", "accion_fecha", errors)
    values = {
        "descripcion": data.get("accion_descripcion"),
        "categoria": data.get("accion_categoria") or None,
        "usuario_id": usuario_id,
        "fecha_accion": fecha_accion or datetime.utcnow(),
    }
    return values, errors


def import_ticket_rows(
    s: "Session",
    rows: list[ImportRow],
    user: User,
    *,
    total_rows: int | None = None,
    prior_errors: list[CsvRowError] | None = None,
) -> ImportResult:
    """
    Validate every row, then insert tickets and acciones in the caller's
    transaction. Nothing is written when any row fails; the caller commits
    only when result.ok.
    """
    result = ImportResult(total_rows=total_rows if total_rows is not None else len(rows))
    result.errors.extend(prior_errors or [])

    groups: dict[str, _Group] = {}
    for row in rows:
        key = row.data.get("numero_ticket_asociado") or ""
        tipo = row.data.get("tipo_registro") or ""
        if tipo not in (TIPO_TICKET, TIPO_ACCION):
            result.errors.append(CsvRowError(row.row_number, f"tipo_registro inválido: {tipo!r}", row.data))
            continue
        if not key:
            result.errors.append(CsvRowError(row.row_number, "Falta numero_ticket_asociado.", row.data))
            continue
        group = groups.setdefault(key, _Group())
        if tipo == TIPO_TICKET:
            if group.ticket is not None:
                result.errors.append(
                    CsvRowError(row.row_number, f"Fila TICKET duplicada para el número {key!r}.", row.data)
                )
                continue
            group.ticket = row
        else:
            group.acciones.append(row)

    empresas, sucursales, usuarios = _lookup_maps(s)
    planned: list[tuple[dict, list[dict]]] = []
    for key, group in groups.items():
        ticket_values = None
        if group.ticket is None:
            for accion in group.acciones:
                result.errors.append(
                    CsvRowError(accion.row_number, f"Acción sin fila TICKET para el número {key!r}.", accion.data)
                )
        else:
            ticket_values, ticket_errors = _check_ticket_row(group.ticket.data, empresas, sucursales, usuarios)
            for message in ticket_errors:
                result.errors.append(CsvRowError(group.ticket.row_number, message, group.ticket.data))

        acciones_values = []
        for accion in group.acciones if group.ticket is not None else ():
            values, accion_errors = _check_accion_row(accion.data, usuarios)
            for message in accion_errors:
                result.errors.append(CsvRowError(accion.row_number, message, accion.data))
            acciones_values.append(values)

        if ticket_values is not None:
            planned.append((ticket_values, acciones_values))

    if result.errors:
        result.errors.sort(key=lambda e: e.row_number)
        logger.warning("Ticket import rejected: %s error(s) in %s row(s)", len(result.errors), result.total_rows)
        return result

    numero_caso = next_numero_caso(s)
    for ticket_values, acciones_values in planned:
        ticket = Ticket(numero_caso=numero_caso, creado_por_usuario_id=user.id, **ticket_values)
        s.add(ticket)
        s.flush()
        numero_caso += 1
        result.successful_count += 1
        for values in acciones_values:
            s.add(AccionTicket(ticket_id=ticket.id, **values))
            result.successful_count += 1
    s.flush()

    record_event(
        s,
        actor=user,
        action="ticket.import",
        entity_type="Ticket",
        metadata={
            "rows": result.total_rows,
            "tickets": len(planned),
            "registros": result.successful_count,
        },
    )
    logger.info("Ticket import by %s: %s record(s) created", user.email, result.successful_count)
    return result