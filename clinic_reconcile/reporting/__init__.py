"""
Reconciliation reporting for clinic_reconcile.

Serializes matching runs into timestamped review artifacts and a versioned
record store that the correction run reads back.
"""
