"""
Equipos module: equipment inventory and equipment loans to client contacts.
"""
