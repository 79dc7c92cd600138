"""
jobs — Task orchestration.

Sub-modules:
    orchestrator  — ScheduledTask / Orchestrator over APScheduler
    schedule      — default pipeline wiring and cadences
"""
