# timesheet_bot/core/__init__.py
"""
Core -- transport-agnostic domain logic.

Identity resolution, conversation sessions, hours aggregation, dispatch,
reconciliation of disputed hours and the inbound event router.

Canonical imports:
    from timesheet_bot.core import ConversationEngine, DispatchEngine
    from timesheet_bot.core.domain import Worker, HoursRecord, InboundEvent
    from timesheet_bot.core.ports import AsyncRecordStore, MessageSender
"""
from timesheet_bot.core.domain import (  # noqa: F401
    Worker,
    HoursRecord,
    Dispute,
    DisputeKind,
    InboundEvent,
)
from timesheet_bot.core.errors import TimesheetError  # noqa: F401
from timesheet_bot.core.dispatch import DispatchEngine  # noqa: F401
from timesheet_bot.core.conversation import ConversationEngine  # noqa: F401
