# timesheet_bot/infra/__init__.py
"""
Infrastructure: logging, metrics, record stores (Postgres and in-memory),
shared HTTP sessions, admin notification channels and the scheduler.
"""
