"""
clinic_reconcile - Clinic Record Reconciliation Engine

Reconciles clinic records found in bulk places exports against the canonical
clinic store using fuzzy name matching, geographic proximity and locality
signals, and replays human-confirmed corrections back into the store.
"""

__version__ = "1.0.0"
__author__ = "clinic_reconcile Team"
