from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.apc.models import Base, TimestampMixin, User, new_id

if TYPE_CHECKING:
    from app.apc.modules.empresas.models import ContactoEmpresa, Empresa, Sucursal


PRIORIDADES = ("BAJA", "MEDIA", "ALTA", "URGENTE")
PRIORIDAD_DEFAULT = "MEDIA"

ESTADO_ABIERTO = "ABIERTO"
ESTADO_RESUELTO = "RESUELTO"
ESTADO_CERRADO = "CERRADO"
ESTADOS_TICKET = (
    ESTADO_ABIERTO,
    "EN_PROGRESO",
    "PENDIENTE_CLIENTE",
    "PENDIENTE_TERCERO",
    ESTADO_RESUELTO,
    ESTADO_CERRADO,
    "CANCELADO",
)
# Estados that stamp fecha_solucion_real.
ESTADOS_SOLUCIONADOS = (ESTADO_RESUELTO, ESTADO_CERRADO)


class Ticket(TimestampMixin, Base):
    __tablename__ = "tickets"
    __table_args__ = (
        Index("idx_tickets_estado", "estado"),
        Index("idx_tickets_empresa_id", "empresa_id"),
        Index("idx_tickets_sucursal_id", "sucursal_id"),
        Index("idx_tickets_tecnico_asignado_id", "tecnico_asignado_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    numero_caso: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    titulo: Mapped[str] = mapped_column(String(255), nullable=False)
    descripcion_detallada: Mapped[str | None] = mapped_column(Text, nullable=True)
    tipo_incidente: Mapped[str] = mapped_column(String(128), nullable=False)
    prioridad: Mapped[str] = mapped_column(String(16), nullable=False, default=PRIORIDAD_DEFAULT)
    estado: Mapped[str] = mapped_column(String(32), nullable=False, default=ESTADO_ABIERTO)

    solicitante_nombre: Mapped[str] = mapped_column(String(255), nullable=False)
    solicitante_telefono: Mapped[str | None] = mapped_column(String(64), nullable=True)
    solicitante_correo: Mapped[str | None] = mapped_column(String(320), nullable=True)
    equipo_afectado: Mapped[str | None] = mapped_column(String(255), nullable=True)

    empresa_id: Mapped[str | None] = mapped_column(ForeignKey("empresas.id"), nullable=True)
    sucursal_id: Mapped[str | None] = mapped_column(ForeignKey("sucursales.id"), nullable=True)
    contacto_id: Mapped[str | None] = mapped_column(ForeignKey("contactos_empresa.id"), nullable=True)
    tecnico_asignado_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    creado_por_usuario_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    fecha_creacion: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    fecha_solucion_estimada: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    fecha_solucion_real: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    empresa: Mapped["Empresa | None"] = relationship("Empresa", lazy="selectin")
    sucursal: Mapped["Sucursal | None"] = relationship("Sucursal", lazy="selectin")
    contacto: Mapped["ContactoEmpresa | None"] = relationship("ContactoEmpresa", lazy="selectin")
    tecnico_asignado: Mapped[User | None] = relationship("User", foreign_keys=[tecnico_asignado_id], lazy="selectin")
    creado_por: Mapped[User | None] = relationship("User", foreign_keys=[creado_por_usuario_id], lazy="selectin")
    acciones: Mapped[list["AccionTicket"]] = relationship(
        "AccionTicket",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="AccionTicket.fecha_accion.desc()",
    )


class AccionTicket(TimestampMixin, Base):
    __tablename__ = "acciones_ticket"
    __table_args__ = (Index("idx_acciones_ticket_ticket_id", "ticket_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    ticket_id: Mapped[str] = mapped_column(ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    usuario_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    descripcion: Mapped[str] = mapped_column(Text, nullable=False)
    categoria: Mapped[str | None] = mapped_column(String(128), nullable=True)
    fecha_accion: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    ticket: Mapped[Ticket] = relationship("Ticket", back_populates="acciones")
    realizada_por: Mapped[User | None] = relationship("User", lazy="selectin")
