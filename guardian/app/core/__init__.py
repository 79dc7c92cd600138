"""
Core package — cross-cutting concerns.

Modules:
    config    — environment variables & settings
    logging   — structured JSON logging
    errors    — exception hierarchy & handlers
    results   — typed task outcomes (TaskResult / ErrorKind)
    health    — health check aggregation
    database  — async SQLAlchemy engine and sessions
    cache     — Redis cache layer
"""
