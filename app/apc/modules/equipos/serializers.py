from __future__ import annotations

from app.apc.modules.empresas.serializers import contacto_to_dict, empresa_summary_to_dict, ubicacion_to_dict
from app.apc.modules.equipos.models import EquipoEnPrestamo, EquipoInventario
from app.apc.utils import iso, user_to_dict


def equipo_summary_to_dict(e: EquipoInventario | None) -> dict | None:
    if e is None:
        return None
    return {
        "id": e.id,
        "nombre_descriptivo": e.nombre_descriptivo,
        "identificador_unico": e.identificador_unico,
        "estado_equipo": e.estado_equipo,
    }


def equipo_to_dict(e: EquipoInventario) -> dict:
    return {
        "id": e.id,
        "nombre_descriptivo": e.nombre_descriptivo,
        "identificador_unico": e.identificador_unico,
        "tipo_equipo": e.tipo_equipo,
        "marca": e.marca,
        "modelo": e.modelo,
        "descripcion_adicional": e.descripcion_adicional,
        "estado_equipo": e.estado_equipo,
        "fecha_adquisicion": iso(e.fecha_adquisicion),
        "proveedor": e.proveedor,
        "notas_generales": e.notas_generales,
        "ubicacion_actual_id": e.ubicacion_actual_id,
        "ubicacion_actual": ubicacion_to_dict(e.ubicacion_actual) if e.ubicacion_actual else None,
        "empresa_id": e.empresa_id,
        "empresa": empresa_summary_to_dict(e.empresa),
        "parent_equipo_id": e.parent_equipo_id,
        "created_at": iso(e.created_at),
        "updated_at": iso(e.updated_at),
    }


def prestamo_to_dict(p: EquipoEnPrestamo) -> dict:
    return {
        "id": p.id,
        "equipo_id": p.equipo_id,
        "equipo": equipo_summary_to_dict(p.equipo),
        "prestado_a_contacto_id": p.prestado_a_contacto_id,
        "prestado_a_contacto": contacto_to_dict(p.prestado_a_contacto, include_empresa=False)
        if p.prestado_a_contacto
        else None,
        "persona_responsable_en_sitio": p.persona_responsable_en_sitio,
        "fecha_prestamo": iso(p.fecha_prestamo),
        "fecha_devolucion_estimada": iso(p.fecha_devolucion_estimada),
        "fecha_devolucion_real": iso(p.fecha_devolucion_real),
        "estado_prestamo": p.estado_prestamo,
        "ticket_id": p.ticket_id,
        "numero_caso": p.ticket.numero_caso if p.ticket else None,
        "notas_prestamo": p.notas_prestamo,
        "notas_devolucion": p.notas_devolucion,
        "entregado_por": user_to_dict(p.entregado_por),
        "recibido_por": user_to_dict(p.recibido_por),
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }
