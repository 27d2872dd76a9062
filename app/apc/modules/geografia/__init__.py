"""
Geografia module.

Scope:
- Pais → Region → Provincia → Comuna reference data (read for everyone, write for ADMIN)
- Direcciones (street addresses tied to a comuna)
- Location search (sucursales + comunas) and comuna search
- JSON snapshot backup/restore of the four geography tables (see backup.py)
"""
