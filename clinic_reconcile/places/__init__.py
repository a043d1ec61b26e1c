"""
Places provider access for clinic_reconcile.

Async lookups used to fill in coordinates for bulk rows that arrived
without them.
"""
