"""
Data normalization modules for clinic_reconcile.

Handles standardization of clinic names, addresses, states, ZIP codes,
phone numbers and emails to enable accurate matching.
"""
