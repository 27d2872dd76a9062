from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.apc.models import Base, TimestampMixin, new_id

if TYPE_CHECKING:
    from app.apc.modules.geografia.models import Direccion


UBICACION_ACTIVA = "ACTIVA"
UBICACION_INACTIVA = "INACTIVA"
VALID_UBICACION_ESTADOS = (UBICACION_ACTIVA, UBICACION_INACTIVA)


class Empresa(TimestampMixin, Base):
    __tablename__ = "empresas"
    __table_args__ = (Index("idx_empresas_nombre", "nombre"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nombre: Mapped[str] = mapped_column(String(255), nullable=False)
    rut: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    telefono: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    direccion_id: Mapped[str | None] = mapped_column(ForeignKey("direcciones.id", ondelete="SET NULL"), nullable=True)

    direccion: Mapped["Direccion | None"] = relationship("Direccion", lazy="selectin")
    sucursales: Mapped[list["Sucursal"]] = relationship("Sucursal", back_populates="empresa", order_by="Sucursal.nombre")
    contactos: Mapped[list["ContactoEmpresa"]] = relationship(
        "ContactoEmpresa",
        back_populates="empresa",
        order_by="ContactoEmpresa.nombre_completo",
    )


class Sucursal(TimestampMixin, Base):
    __tablename__ = "sucursales"
    __table_args__ = (
        Index("idx_sucursales_nombre", "nombre"),
        Index("idx_sucursales_empresa_id", "empresa_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nombre: Mapped[str] = mapped_column(String(255), nullable=False)
    telefono: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    direccion_id: Mapped[str] = mapped_column(ForeignKey("direcciones.id"), nullable=False)
    empresa_id: Mapped[str | None] = mapped_column(ForeignKey("empresas.id"), nullable=True)

    direccion: Mapped["Direccion"] = relationship("Direccion", lazy="selectin")
    empresa: Mapped[Empresa | None] = relationship("Empresa", back_populates="sucursales", lazy="selectin")
    ubicaciones: Mapped[list["Ubicacion"]] = relationship("Ubicacion", back_populates="sucursal")


class Ubicacion(TimestampMixin, Base):
    __tablename__ = "ubicaciones"
    __table_args__ = (Index("idx_ubicaciones_sucursal_id", "sucursal_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nombre_referencial: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sucursal_id: Mapped[str] = mapped_column(ForeignKey("sucursales.id"), nullable=False)
    notas: Mapped[str | None] = mapped_column(Text, nullable=True)
    estado: Mapped[str] = mapped_column(String(16), nullable=False, default=UBICACION_ACTIVA)  # ACTIVA | INACTIVA

    sucursal: Mapped[Sucursal] = relationship("Sucursal", back_populates="ubicaciones", lazy="selectin")


class ContactoEmpresa(TimestampMixin, Base):
    __tablename__ = "contactos_empresa"
    __table_args__ = (Index("idx_contactos_empresa_id", "empresa_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nombre_completo: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    telefono: Mapped[str] = mapped_column(String(64), nullable=False)
    cargo: Mapped[str | None] = mapped_column(String(128), nullable=True)
    empresa_id: Mapped[str | None] = mapped_column(ForeignKey("empresas.id"), nullable=True)
    ubicacion_id: Mapped[str | None] = mapped_column(ForeignKey("ubicaciones.id"), nullable=True)

    empresa: Mapped[Empresa | None] = relationship("Empresa", back_populates="contactos", lazy="selectin")
    ubicacion: Mapped[Ubicacion | None] = relationship("Ubicacion", lazy="selectin")
