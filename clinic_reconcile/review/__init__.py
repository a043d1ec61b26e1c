"""
Reviewer assistance: flagging doubtful matches and drafting corrections.
"""
