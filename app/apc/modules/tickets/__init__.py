"""
Tickets module.

Scope:
- Ticket CRUD with atomic creation (optional inline sucursal + initial action)
- AccionTicket log entries per ticket
- Bulk import of tickets/actions (pre-parsed JSON rows or CSV upload), all-or-nothing
"""
