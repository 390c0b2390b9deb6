"""
MFC flow planner: flow set-points and CSV schedules for MFC gas-dilution protocols.
"""
