"""
Matching engine for clinic_reconcile.

Scores source clinics against canonical clinics on name similarity,
great-circle distance and shared locality, and classifies each source as a
likely duplicate or a new clinic.
"""
