"""
Data ingestion module for clinic_reconcile.

Handles loading and validation of the places bulk export (Excel, CSV or
JSON lines) and its conversion into source records.
"""
