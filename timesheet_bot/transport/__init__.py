# timesheet_bot/transport/__init__.py
"""
Transport layer: Telegram Bot API client, update adapter, long-poller,
webhook endpoint and the FastAPI application.
"""
