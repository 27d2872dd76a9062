from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field

TIPO_TICKET = "TICKET"
TIPO_ACCION = "ACCION"
VALID_TIPOS_REGISTRO = (TIPO_TICKET, TIPO_ACCION)

# Import row keys, in export column order.
IMPORT_FIELDS = (
    "tipo_registro",
    "numero_ticket_asociado",
    "titulo",
    "descripcion_detallada",
    "tipo_incidente",
    "prioridad",
    "estado",
    "solicitante_nombre",
    "solicitante_telefono",
    "solicitante_correo",
    "empresa_cliente_nombre",
    "tecnico_asignado_email",
    "ubicacion_nombre",
    "fecha_creacion",
    "fecha_solucion_real",
    "equipo_afectado",
    "accion_descripcion",
    "accion_fecha",
    "accion_usuario_email",
    "accion_categoria",
)


@dataclass(frozen=True)
class CsvRowError:
    row_number: int
    message: str
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ImportRow:
    row_number: int
    data: dict


_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_header(name: str | None) -> str:
    """'descripcionDetallada', 'Descripcion Detallada' and 'descripcion_detallada' all map to the same key."""
    s = _CAMEL_RE.sub("_", (name or "").strip())
    s = re.sub(r"[\s\-]+", "_", s)
    return s.lower()


def _get(row: dict[str, str], *names: str) -> str:
    for n in names:
        if n in row and row[n] is not None:
            return str(row[n]).strip()
    return ""


def parse_ticket_import_csv(file_bytes: bytes) -> tuple[list[ImportRow], list[CsvRowError]]:
    """
    Parse a ticket/accion bulk import CSV.

    Each line is either a TICKET row or an ACCION row, linked by
    numero_ticket_asociado. Headers may be snake_case or camelCase.

    Returns:
      (rows, errors)
    Where each row carries its CSV line number (header = 1) and a dict keyed
    by IMPORT_FIELDS, ready for importer.import_ticket_rows().
    """
    text = file_bytes.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("El archivo CSV no tiene fila de encabezado.")

    headers = {normalize_header(h) for h in reader.fieldnames}
    if "tipo_registro" not in headers or "numero_ticket_asociado" not in headers:
        raise ValueError("El archivo CSV debe incluir las columnas tipo_registro y numero_ticket_asociado.")

    rows: list[ImportRow] = []
    errors: list[CsvRowError] = []

    for idx, raw in enumerate(reader, start=2):  # 1 = header
        # Skip fully empty rows
        if not raw or all((v or "").strip() == "" for v in raw.values() if isinstance(v, str)):
            continue

        normalized = {normalize_header(k): v for k, v in raw.items() if k is not None}
        data = {name: _get(normalized, name) for name in IMPORT_FIELDS}
        data["tipo_registro"] = data["tipo_registro"].upper()
        data["prioridad"] = data["prioridad"].upper()
        data["estado"] = data["estado"].upper()

        if data["tipo_registro"] not in VALID_TIPOS_REGISTRO:
            errors.append(
                CsvRowError(idx, f"tipo_registro inválido {data['tipo_registro']!r}. Debe ser TICKET o ACCION.", data)
            )
            continue

        rows.append(ImportRow(idx, data))

    return rows, errors
