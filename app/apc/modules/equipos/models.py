from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.apc.models import Base, TimestampMixin, User, new_id

if TYPE_CHECKING:
    from app.apc.modules.empresas.models import ContactoEmpresa, Empresa, Ubicacion
    from app.apc.modules.tickets.models import Ticket


EQUIPO_DISPONIBLE = "DISPONIBLE"
EQUIPO_PRESTADO = "PRESTADO"
EQUIPO_PERDIDO_ROBADO = "PERDIDO_ROBADO"
ESTADOS_EQUIPO = (
    EQUIPO_DISPONIBLE,
    EQUIPO_PRESTADO,
    "EN_MANTENIMIENTO",
    "EN_USO_INTERNO",
    "DE_BAJA",
    EQUIPO_PERDIDO_ROBADO,
)
TIPOS_EQUIPO = ("NOTEBOOK", "MONITOR", "IMPRESORA", "PERIFERICO", "RED", "OTRO")

PRESTAMO_PRESTADO = "PRESTADO"
PRESTAMO_DEVUELTO = "DEVUELTO"
PRESTAMO_PERDIDO = "PERDIDO_POR_CLIENTE"
ESTADOS_PRESTAMO = (PRESTAMO_PRESTADO, PRESTAMO_DEVUELTO, PRESTAMO_PERDIDO)


class EquipoInventario(TimestampMixin, Base):
    __tablename__ = "equipos_inventario"
    __table_args__ = (Index("idx_equipos_inventario_estado", "estado_equipo"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nombre_descriptivo: Mapped[str] = mapped_column(String(255), nullable=False)
    identificador_unico: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    tipo_equipo: Mapped[str] = mapped_column(String(32), nullable=False)
    marca: Mapped[str | None] = mapped_column(String(128), nullable=True)
    modelo: Mapped[str | None] = mapped_column(String(128), nullable=True)
    descripcion_adicional: Mapped[str | None] = mapped_column(Text, nullable=True)
    estado_equipo: Mapped[str] = mapped_column(String(32), nullable=False, default=EQUIPO_DISPONIBLE)
    fecha_adquisicion: Mapped[date | None] = mapped_column(Date, nullable=True)
    proveedor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notas_generales: Mapped[str | None] = mapped_column(Text, nullable=True)

    ubicacion_actual_id: Mapped[str | None] = mapped_column(ForeignKey("ubicaciones.id"), nullable=True)
    empresa_id: Mapped[str | None] = mapped_column(ForeignKey("empresas.id"), nullable=True)
    parent_equipo_id: Mapped[str | None] = mapped_column(ForeignKey("equipos_inventario.id"), nullable=True)

    ubicacion_actual: Mapped["Ubicacion | None"] = relationship("Ubicacion", lazy="selectin")
    empresa: Mapped["Empresa | None"] = relationship("Empresa", lazy="selectin")
    parent_equipo: Mapped["EquipoInventario | None"] = relationship(
        "EquipoInventario", remote_side="EquipoInventario.id", back_populates="componentes"
    )
    componentes: Mapped[list["EquipoInventario"]] = relationship("EquipoInventario", back_populates="parent_equipo")
    prestamos: Mapped[list["EquipoEnPrestamo"]] = relationship("EquipoEnPrestamo", back_populates="equipo")


class EquipoEnPrestamo(TimestampMixin, Base):
    __tablename__ = "equipos_en_prestamo"
    __table_args__ = (
        Index("idx_equipos_en_prestamo_equipo_id", "equipo_id"),
        Index("idx_equipos_en_prestamo_estado", "estado_prestamo"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    equipo_id: Mapped[str] = mapped_column(ForeignKey("equipos_inventario.id"), nullable=False)
    prestado_a_contacto_id: Mapped[str] = mapped_column(ForeignKey("contactos_empresa.id"), nullable=False)
    persona_responsable_en_sitio: Mapped[str] = mapped_column(String(255), nullable=False)
    fecha_prestamo: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    fecha_devolucion_estimada: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    fecha_devolucion_real: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    estado_prestamo: Mapped[str] = mapped_column(String(32), nullable=False, default=PRESTAMO_PRESTADO)
    ticket_id: Mapped[str | None] = mapped_column(ForeignKey("tickets.id"), nullable=True)
    notas_prestamo: Mapped[str | None] = mapped_column(Text, nullable=True)
    notas_devolucion: Mapped[str | None] = mapped_column(Text, nullable=True)
    entregado_por_usuario_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    recibido_por_usuario_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    equipo: Mapped[EquipoInventario] = relationship("EquipoInventario", back_populates="prestamos", lazy="selectin")
    prestado_a_contacto: Mapped["ContactoEmpresa"] = relationship("ContactoEmpresa", lazy="selectin")
    ticket: Mapped["Ticket | None"] = relationship("Ticket", lazy="selectin")
    entregado_por: Mapped[User | None] = relationship("User", foreign_keys=[entregado_por_usuario_id], lazy="selectin")
    recibido_por: Mapped[User | None] = relationship("User", foreign_keys=[recibido_por_usuario_id], lazy="selectin")
