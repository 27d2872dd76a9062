from __future__ import annotations

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.apc.models import Base, TimestampMixin, new_id


class Pais(TimestampMixin, Base):
    __tablename__ = "paises"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nombre: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    regiones: Mapped[list["Region"]] = relationship("Region", back_populates="pais")


class Region(TimestampMixin, Base):
    __tablename__ = "regiones"
    __table_args__ = (Index("idx_regiones_pais_id", "pais_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nombre: Mapped[str] = mapped_column(String(128), nullable=False)
    pais_id: Mapped[str] = mapped_column(ForeignKey("paises.id"), nullable=False)

    pais: Mapped[Pais] = relationship("Pais", back_populates="regiones", lazy="selectin")
    provincias: Mapped[list["Provincia"]] = relationship("Provincia", back_populates="region")


class Provincia(TimestampMixin, Base):
    __tablename__ = "provincias"
    __table_args__ = (Index("idx_provincias_region_id", "region_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nombre: Mapped[str] = mapped_column(String(128), nullable=False)
    region_id: Mapped[str] = mapped_column(ForeignKey("regiones.id"), nullable=False)

    region: Mapped[Region] = relationship("Region", back_populates="provincias", lazy="selectin")
    comunas: Mapped[list["Comuna"]] = relationship("Comuna", back_populates="provincia")


class Comuna(TimestampMixin, Base):
    __tablename__ = "comunas"
    __table_args__ = (
        Index("idx_comunas_provincia_id", "provincia_id"),
        Index("idx_comunas_nombre", "nombre"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nombre: Mapped[str] = mapped_column(String(128), nullable=False)
    provincia_id: Mapped[str] = mapped_column(ForeignKey("provincias.id"), nullable=False)

    provincia: Mapped[Provincia] = relationship("Provincia", back_populates="comunas", lazy="selectin")


class Direccion(TimestampMixin, Base):
    __tablename__ = "direcciones"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    calle: Mapped[str] = mapped_column(String(255), nullable=False)
    numero: Mapped[str] = mapped_column(String(32), nullable=False)
    depto: Mapped[str | None] = mapped_column(String(64), nullable=True)
    comuna_id: Mapped[str] = mapped_column(ForeignKey("comunas.id"), nullable=False)

    # Loads comuna → provincia → region → pais for display
    comuna: Mapped[Comuna] = relationship("Comuna", lazy="selectin")
