# timesheet_bot/__init__.py
"""
Timesheet notification bot: delivers daily worked hours to workers over
Telegram and collects confirmations, corrections and feedback.
"""
__version__ = "1.0.0"
