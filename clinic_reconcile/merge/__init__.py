"""
Correction of wrongly merged clinic records.
"""
