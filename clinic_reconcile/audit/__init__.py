"""
Audit trail for correction runs and reviewer verdicts.
"""
