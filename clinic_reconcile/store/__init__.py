"""
Clinic store access for clinic_reconcile.

Defines the persistent store contract the matcher reads from and the
correction applier writes to, with a SQLite reference implementation.
"""
