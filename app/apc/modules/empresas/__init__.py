"""
Empresas module: client companies, their sucursales (branches), ubicaciones
inside a sucursal, and company contacts.
"""
