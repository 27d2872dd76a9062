"""initial schema: users, audit, geografia, empresas, tickets, equipos

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(36), primary_key=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create every table (idempotent: existing tables are skipped)."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            _id(),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("rol", sa.String(16), nullable=False, server_default="TECNICO"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
        )

    # Geografia
    if "paises" not in existing_tables:
        op.create_table(
            "paises",
            _id(),
            sa.Column("nombre", sa.String(128), nullable=False, unique=True),
            *_timestamps(),
        )
    if "regiones" not in existing_tables:
        op.create_table(
            "regiones",
            _id(),
            sa.Column("nombre", sa.String(128), nullable=False),
            sa.Column("pais_id", sa.String(36), sa.ForeignKey("paises.id"), nullable=False),
            *_timestamps(),
        )
        op.create_index("idx_regiones_pais_id", "regiones", ["pais_id"])
    if "provincias" not in existing_tables:
        op.create_table(
            "provincias",
            _id(),
            sa.Column("nombre", sa.String(128), nullable=False),
            sa.Column("region_id", sa.String(36), sa.ForeignKey("regiones.id"), nullable=False),
            *_timestamps(),
        )
        op.create_index("idx_provincias_region_id", "provincias", ["region_id"])
    if "comunas" not in existing_tables:
        op.create_table(
            "comunas",
            _id(),
            sa.Column("nombre", sa.String(128), nullable=False),
            sa.Column("provincia_id", sa.String(36), sa.ForeignKey("provincias.id"), nullable=False),
            *_timestamps(),
        )
        op.create_index("idx_comunas_provincia_id", "comunas", ["provincia_id"])
        op.create_index("idx_comunas_nombre", "comunas", ["nombre"])
    if "direcciones" not in existing_tables:
        op.create_table(
            "direcciones",
            _id(),
            sa.Column("calle", sa.String(255), nullable=False),
            sa.Column("numero", sa.String(32), nullable=False),
            sa.Column("depto", sa.String(64), nullable=True),
            sa.Column("comuna_id", sa.String(36), sa.ForeignKey("comunas.id"), nullable=False),
            *_timestamps(),
        )

    # Empresas
    if "empresas" not in existing_tables:
        op.create_table(
            "empresas",
            _id(),
            sa.Column("nombre", sa.String(255), nullable=False),
            sa.Column("rut", sa.String(32), nullable=False, unique=True),
            sa.Column("telefono", sa.String(64), nullable=True),
            sa.Column("email", sa.String(320), nullable=True),
            sa.Column("direccion_id", sa.String(36), sa.ForeignKey("direcciones.id", ondelete="SET NULL"), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_empresas_nombre", "empresas", ["nombre"])
    if "sucursales" not in existing_tables:
        op.create_table(
            "sucursales",
            _id(),
            sa.Column("nombre", sa.String(255), nullable=False),
            sa.Column("telefono", sa.String(64), nullable=True),
            sa.Column("email", sa.String(320), nullable=True),
            sa.Column("direccion_id", sa.String(36), sa.ForeignKey("direcciones.id"), nullable=False),
            sa.Column("empresa_id", sa.String(36), sa.ForeignKey("empresas.id"), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_sucursales_nombre", "sucursales", ["nombre"])
        op.create_index("idx_sucursales_empresa_id", "sucursales", ["empresa_id"])
    if "ubicaciones" not in existing_tables:
        op.create_table(
            "ubicaciones",
            _id(),
            sa.Column("nombre_referencial", sa.String(255), nullable=True),
            sa.Column("sucursal_id", sa.String(36), sa.ForeignKey("sucursales.id"), nullable=False),
            sa.Column("notas", sa.Text(), nullable=True),
            sa.Column("estado", sa.String(16), nullable=False, server_default="ACTIVA"),
            *_timestamps(),
        )
        op.create_index("idx_ubicaciones_sucursal_id", "ubicaciones", ["sucursal_id"])
    if "contactos_empresa" not in existing_tables:
        op.create_table(
            "contactos_empresa",
            _id(),
            sa.Column("nombre_completo", sa.String(255), nullable=False),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("telefono", sa.String(64), nullable=False),
            sa.Column("cargo", sa.String(128), nullable=True),
            sa.Column("empresa_id", sa.String(36), sa.ForeignKey("empresas.id"), nullable=True),
            sa.Column("ubicacion_id", sa.String(36), sa.ForeignKey("ubicaciones.id"), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_contactos_empresa_id", "contactos_empresa", ["empresa_id"])

    # Tickets
    if "tickets" not in existing_tables:
        op.create_table(
            "tickets",
            _id(),
            sa.Column("numero_caso", sa.Integer(), nullable=False, unique=True),
            sa.Column("titulo", sa.String(255), nullable=False),
            sa.Column("descripcion_detallada", sa.Text(), nullable=True),
            sa.Column("tipo_incidente", sa.String(128), nullable=False),
            sa.Column("prioridad", sa.String(16), nullable=False, server_default="MEDIA"),
            sa.Column("estado", sa.String(32), nullable=False, server_default="ABIERTO"),
            sa.Column("solicitante_nombre", sa.String(255), nullable=False),
            sa.Column("solicitante_telefono", sa.String(64), nullable=True),
            sa.Column("solicitante_correo", sa.String(320), nullable=True),
            sa.Column("equipo_afectado", sa.String(255), nullable=True),
            sa.Column("empresa_id", sa.String(36), sa.ForeignKey("empresas.id"), nullable=True),
            sa.Column("sucursal_id", sa.String(36), sa.ForeignKey("sucursales.id"), nullable=True),
            sa.Column("contacto_id", sa.String(36), sa.ForeignKey("contactos_empresa.id"), nullable=True),
            sa.Column("tecnico_asignado_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("creado_por_usuario_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("fecha_creacion", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("fecha_solucion_estimada", sa.DateTime(), nullable=True),
            sa.Column("fecha_solucion_real", sa.DateTime(), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_tickets_estado", "tickets", ["estado"])
        op.create_index("idx_tickets_empresa_id", "tickets", ["empresa_id"])
        op.create_index("idx_tickets_sucursal_id", "tickets", ["sucursal_id"])
        op.create_index("idx_tickets_tecnico_asignado_id", "tickets", ["tecnico_asignado_id"])
    if "acciones_ticket" not in existing_tables:
        op.create_table(
            "acciones_ticket",
            _id(),
            sa.Column("ticket_id", sa.String(36), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("usuario_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("descripcion", sa.Text(), nullable=False),
            sa.Column("categoria", sa.String(128), nullable=True),
            sa.Column("fecha_accion", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            *_timestamps(),
        )
        op.create_index("idx_acciones_ticket_ticket_id", "acciones_ticket", ["ticket_id"])

    # Equipos
    if "equipos_inventario" not in existing_tables:
        op.create_table(
            "equipos_inventario",
            _id(),
            sa.Column("nombre_descriptivo", sa.String(255), nullable=False),
            sa.Column("identificador_unico", sa.String(128), nullable=False, unique=True),
            sa.Column("tipo_equipo", sa.String(32), nullable=False),
            sa.Column("marca", sa.String(128), nullable=True),
            sa.Column("modelo", sa.String(128), nullable=True),
            sa.Column("descripcion_adicional", sa.Text(), nullable=True),
            sa.Column("estado_equipo", sa.String(32), nullable=False, server_default="DISPONIBLE"),
            sa.Column("fecha_adquisicion", sa.Date(), nullable=True),
            sa.Column("proveedor", sa.String(255), nullable=True),
            sa.Column("notas_generales", sa.Text(), nullable=True),
            sa.Column("ubicacion_actual_id", sa.String(36), sa.ForeignKey("ubicaciones.id"), nullable=True),
            sa.Column("empresa_id", sa.String(36), sa.ForeignKey("empresas.id"), nullable=True),
            sa.Column("parent_equipo_id", sa.String(36), sa.ForeignKey("equipos_inventario.id"), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_equipos_inventario_estado", "equipos_inventario", ["estado_equipo"])
    if "equipos_en_prestamo" not in existing_tables:
        op.create_table(
            "equipos_en_prestamo",
            _id(),
            sa.Column("equipo_id", sa.String(36), sa.ForeignKey("equipos_inventario.id"), nullable=False),
            sa.Column("prestado_a_contacto_id", sa.String(36), sa.ForeignKey("contactos_empresa.id"), nullable=False),
            sa.Column("persona_responsable_en_sitio", sa.String(255), nullable=False),
            sa.Column("fecha_prestamo", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("fecha_devolucion_estimada", sa.DateTime(), nullable=False),
            sa.Column("fecha_devolucion_real", sa.DateTime(), nullable=True),
            sa.Column("estado_prestamo", sa.String(32), nullable=False, server_default="PRESTADO"),
            sa.Column("ticket_id", sa.String(36), sa.ForeignKey("tickets.id"), nullable=True),
            sa.Column("notas_prestamo", sa.Text(), nullable=True),
            sa.Column("notas_devolucion", sa.Text(), nullable=True),
            sa.Column("entregado_por_usuario_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("recibido_por_usuario_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_equipos_en_prestamo_equipo_id", "equipos_en_prestamo", ["equipo_id"])
        op.create_index("idx_equipos_en_prestamo_estado", "equipos_en_prestamo", ["estado_prestamo"])


def downgrade() -> None:
    for table in (
        "equipos_en_prestamo",
        "equipos_inventario",
        "acciones_ticket",
        "tickets",
        "contactos_empresa",
        "ubicaciones",
        "sucursales",
        "empresas",
        "direcciones",
        "comunas",
        "provincias",
        "regiones",
        "paises",
        "audit_events",
        "users",
    ):
        op.drop_table(table)
