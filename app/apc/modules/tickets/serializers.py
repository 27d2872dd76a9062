from __future__ import annotations

from app.apc.modules.empresas.serializers import contacto_to_dict, empresa_summary_to_dict, sucursal_summary_to_dict
from app.apc.modules.tickets.models import AccionTicket, Ticket
from app.apc.utils import iso, user_to_dict


def accion_to_dict(a: AccionTicket) -> dict:
    return {
        "id": a.id,
        "ticket_id": a.ticket_id,
        "descripcion": a.descripcion,
        "categoria": a.categoria,
        "fecha_accion": iso(a.fecha_accion),
        "usuario_id": a.usuario_id,
        "realizada_por": user_to_dict(a.realizada_por),
        "created_at": iso(a.created_at),
        "updated_at": iso(a.updated_at),
    }


def ticket_to_dict(t: Ticket, *, include_acciones: bool = False) -> dict:
    d = {
        "id": t.id,
        "numero_caso": t.numero_caso,
        "titulo": t.titulo,
        "descripcion_detallada": t.descripcion_detallada,
        "tipo_incidente": t.tipo_incidente,
        "prioridad": t.prioridad,
        "estado": t.estado,
        "solicitante_nombre": t.solicitante_nombre,
        "solicitante_telefono": t.solicitante_telefono,
        "solicitante_correo": t.solicitante_correo,
        "equipo_afectado": t.equipo_afectado,
        "empresa_id": t.empresa_id,
        "sucursal_id": t.sucursal_id,
        "contacto_id": t.contacto_id,
        "tecnico_asignado_id": t.tecnico_asignado_id,
        "creado_por_usuario_id": t.creado_por_usuario_id,
        "empresa": empresa_summary_to_dict(t.empresa),
        "sucursal": sucursal_summary_to_dict(t.sucursal),
        "contacto": contacto_to_dict(t.contacto, include_empresa=False) if t.contacto else None,
        "tecnico_asignado": user_to_dict(t.tecnico_asignado),
        "creado_por": user_to_dict(t.creado_por),
        "fecha_creacion": iso(t.fecha_creacion),
        "fecha_solucion_estimada": iso(t.fecha_solucion_estimada),
        "fecha_solucion_real": iso(t.fecha_solucion_real),
        "updated_at": iso(t.updated_at),
    }
    if include_acciones:
        d["acciones"] = [accion_to_dict(a) for a in t.acciones]
    return d
