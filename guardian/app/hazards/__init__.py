"""
hazards — Canonical hazard records and their persistence.

Sub-modules:
    models        — Hazard, HazardCandidate, AlertRecord, user/POI views
    tables        — SQLAlchemy ORM tables
    store         — HazardStore / UserDirectory interfaces + SQL implementation
    memory_store  — in-process implementation for tests and local runs
"""
