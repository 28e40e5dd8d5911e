# timesheet_bot/core/conversation.py
"""
Inbound event routing.

Every event for one channel identity is handled under that identity's
session lock, so the session state machine never sees interleaved events.
Callback payloads go through a typed table keyed by payload class; free text
is a command, a menu label, a pending-session follow-up, or a worker search
(in that order).
"""
from __future__ import annotations

from html import escape
from typing import Awaitable, Callable, Optional

from timesheet_bot.core.aggregation import (
    AggregationEngine,
    CalendarMonth,
    CalendarWeek,
    RollingDays,
    Window,
)
from timesheet_bot.core.dispatch import DispatchEngine
from timesheet_bot.core.domain import InboundEvent, Worker
from timesheet_bot.core.errors import (
    AlreadyLinkedOther,
    NoData,
    NotFound,
    PayloadError,
    TargetAlreadyLinked,
    TimesheetError,
    TransportDeliveryFailure,
)
from timesheet_bot.core.identity import IdentityResolver
from timesheet_bot.core.payloads import (
    ActionPayload,
    CorrectPayload,
    FeedbackPayload,
    IncorrectPayload,
    LogoutRequestPayload,
    MonthPayload,
    MoreResultsPayload,
    Payload,
    SelectPayload,
    decode,
)
from timesheet_bot.core.ports import MessageSender
from timesheet_bot.core.reconciliation import ReconciliationEngine
from timesheet_bot.core.rendering import (
    feedback_buttons,
    history_buttons,
    logout_request_buttons,
    main_menu_buttons,
    menu_keyboard_labels,
    search_buttons,
)
from timesheet_bot.core.sessions import InMemorySessionStore
from timesheet_bot.core.texts import MENU_LABELS, get_text
from timesheet_bot.infra.logging_config import LogContext, get_logger
from timesheet_bot.infra.metrics import AppMetrics

logger = get_logger(__name__)

# slash commands that run the menu action of the same name
COMMAND_ACTIONS = ("last5days", "week", "month", "history")


class ConversationEngine:
    def __init__(
        self,
        *,
        sender: MessageSender,
        sessions: InMemorySessionStore,
        identity: IdentityResolver,
        aggregation: AggregationEngine,
        dispatch: DispatchEngine,
        reconciliation: ReconciliationEngine,
        rolling_days: int = 5,
    ) -> None:
        self.sender = sender
        self.sessions = sessions
        self.identity = identity
        self.aggregation = aggregation
        self.dispatch = dispatch
        self.reconciliation = reconciliation
        self.rolling_days = rolling_days

        self._callbacks: dict[type, Callable[[InboundEvent, Payload], Awaitable[None]]] = {
            ActionPayload: self._on_action,
            FeedbackPayload: self._on_feedback,
            MonthPayload: self._on_month,
            SelectPayload: self._on_select,
            MoreResultsPayload: self._on_more_results,
            CorrectPayload: self.reconciliation.confirm,
            IncorrectPayload: self.reconciliation.begin_correction,
            LogoutRequestPayload: self.reconciliation.request_unlink,
        }
        self._commands: dict[str, Callable[[InboundEvent, str], Awaitable[None]]] = {
            "start": self._cmd_start,
            "link": self._cmd_link,
            "tgid": self._cmd_tgid,
            "search": self._cmd_search,
            "menu": self._cmd_menu,
        }

    async def handle(self, event: InboundEvent) -> None:
        """Process one inbound event to completion under the sender's lock."""
        kind = "callback" if event.is_callback() else "text"
        AppMetrics.event_received(kind)
        ctx = LogContext(logger, channel_id=event.channel_id, request_id=event.event_id)

        async with self.sessions.lock(event.channel_id):
            with AppMetrics.track_event_time(kind):
                try:
                    if event.is_callback():
                        await self._handle_callback(event)
                    elif event.has_text():
                        await self._handle_text(event)
                except TransportDeliveryFailure as exc:
                    ctx.warning(f"Reply could not be delivered: {exc.detail}")
                except TimesheetError as exc:
                    ctx.warning(f"Unhandled domain error: {exc.code}: {exc.detail}")
                    await self._safe_send(event.channel_id, get_text("generic_error"))
                except Exception:
                    ctx.error("Event handling failed", exc_info=True)
                    AppMetrics.store_error("handle_event")
                    await self._safe_send(event.channel_id, get_text("generic_error"))

    # ------------------------------------------------------------------
    # callbacks
    # ------------------------------------------------------------------

    async def _handle_callback(self, event: InboundEvent) -> None:
        try:
            payload = decode(event.callback_data or "")
        except PayloadError as exc:
            logger.info(
                "Rejected callback payload: %s", exc.detail,
                extra={"channel_id": event.channel_id},
            )
            await self._answer(event, get_text("unknown_action"))
            return

        handler = self._callbacks[type(payload)]
        await handler(event, payload)

    async def _on_action(self, event: InboundEvent, payload: ActionPayload) -> None:
        await self._answer(event)
        await self._run_action(event.channel_id, payload.action)

    async def _on_feedback(self, event: InboundEvent, payload: FeedbackPayload) -> None:
        await self._answer(event)
        kind = payload.kind
        if kind is None:
            self.sessions.clear(event.channel_id)
            await self.sender.send(event.channel_id, get_text("feedback_cancelled"))
            await self._send_menus(event.channel_id)
            return

        if await self._require_worker(event.channel_id) is None:
            return
        await self.reconciliation.begin_feedback(event.channel_id, kind)

    async def _on_month(self, event: InboundEvent, payload: MonthPayload) -> None:
        await self._answer(event)
        self.sessions.clear(event.channel_id)
        worker = await self._require_worker(event.channel_id)
        if worker is not None:
            await self._send_window(worker, CalendarMonth(payload.month, payload.year))

    async def _on_select(self, event: InboundEvent, payload: SelectPayload) -> None:
        if payload.channel_id != event.channel_id:
            logger.info(
                "Select button pressed by a different identity",
                extra={"channel_id": event.channel_id, "worker_id": payload.worker_id},
            )
            await self._answer(event, get_text("not_for_you"), alert=True)
            return

        self.sessions.clear(event.channel_id)
        worker = await self._link(event.channel_id, payload.worker_id)
        if worker is not None:
            await self._answer(event, get_text("link_done_ack"))
        else:
            await self._answer(event)

    async def _on_more_results(self, event: InboundEvent, payload: MoreResultsPayload) -> None:
        await self._answer(event, get_text("search_more_hint"), alert=True)

    # ------------------------------------------------------------------
    # text
    # ------------------------------------------------------------------

    async def _handle_text(self, event: InboundEvent) -> None:
        text = (event.text or "").strip()

        if text.startswith("/"):
            name, _, rest = text[1:].partition(" ")
            name = name.split("@", 1)[0].lower()
            self.sessions.clear(event.channel_id)
            if name in COMMAND_ACTIONS:
                await self._run_action(event.channel_id, name)
                return
            handler = self._commands.get(name)
            if handler is None:
                await self.sender.send(event.channel_id, get_text("unknown_action"))
                return
            await handler(event, rest.strip())
            return

        action = MENU_LABELS.get(text)
        if action is not None:
            self.sessions.clear(event.channel_id)
            await self._run_action(event.channel_id, action)
            return

        session = self.sessions.get(event.channel_id)
        if await self.reconciliation.handle_pending_text(event, session):
            return

        await self._search(event.channel_id, text)

    async def _cmd_start(self, event: InboundEvent, _: str) -> None:
        worker = await self.identity.find(event.channel_id)
        if worker is None:
            await self.sender.send(event.channel_id, get_text("welcome_unlinked"))
            return
        await self.sender.send(event.channel_id, get_text("welcome_linked", name=escape(worker.name)))
        await self._send_menus(event.channel_id)

    async def _cmd_link(self, event: InboundEvent, arg: str) -> None:
        if not arg:
            await self.sender.send(event.channel_id, get_text("link_usage"))
            return
        try:
            worker_id = int(arg.split()[0])
        except ValueError:
            await self.sender.send(event.channel_id, get_text("link_bad_id"))
            return
        await self._link(event.channel_id, worker_id)

    async def _cmd_tgid(self, event: InboundEvent, _: str) -> None:
        await self.sender.send(event.channel_id, f"<code>{event.channel_id}</code>")

    async def _cmd_search(self, event: InboundEvent, _: str) -> None:
        await self.sender.send(
            event.channel_id, get_text("search_help", limit=self.identity.display_limit)
        )

    async def _cmd_menu(self, event: InboundEvent, _: str) -> None:
        if await self._require_worker(event.channel_id) is not None:
            await self._send_menus(event.channel_id)

    # ------------------------------------------------------------------
    # shared flows
    # ------------------------------------------------------------------

    async def _run_action(self, channel_id: str, action: str) -> None:
        """Top-level menu action: always supersedes a pending session."""
        self.sessions.clear(channel_id)
        worker = await self._require_worker(channel_id)
        if worker is None:
            return

        if action == "last5days":
            await self._send_window(worker, RollingDays(self.rolling_days))
        elif action == "week":
            await self._send_window(worker, CalendarWeek())
        elif action == "month":
            await self._send_window(worker, CalendarMonth())
        elif action == "history":
            await self.sender.send(
                channel_id, get_text("history_title"), history_buttons(self.aggregation.today())
            )
        elif action == "feedback":
            await self.sender.send(channel_id, get_text("feedback_title"), feedback_buttons())
        else:
            await self.sender.send(channel_id, get_text("unknown_action"))

    async def _send_window(self, worker: Worker, window: Window) -> None:
        try:
            await self.dispatch.dispatch_window(worker.id, window)
        except NoData:
            await self.sender.send(worker.channel_id, get_text("no_data"))

    async def _link(self, channel_id: str, worker_id: int) -> Optional[Worker]:
        try:
            worker = await self.identity.link(channel_id, worker_id)
        except AlreadyLinkedOther as exc:
            current = exc.current_worker
            await self.sender.send(
                channel_id,
                get_text("link_already_other", name=escape(current.name)),
                logout_request_buttons(current.id),
            )
            return None
        except NotFound:
            await self.sender.send(channel_id, get_text("link_not_found"))
            return None
        except TargetAlreadyLinked as exc:
            await self.sender.send(channel_id, get_text("link_target_taken", name=escape(exc.worker.name)))
            return None

        await self.sender.send(
            channel_id,
            get_text(
                "link_success",
                name=escape(worker.name),
                position=escape(worker.position or get_text("no_position")),
                worker_id=worker.id,
            ),
        )
        await self._deliver_today(worker)
        await self._send_menus(channel_id)
        return worker

    async def _deliver_today(self, worker: Worker) -> None:
        """Send today's hours right after linking; a failure keeps the link."""
        try:
            await self.dispatch.dispatch_one(worker.id, trigger="link")
        except NoData:
            await self.sender.send(worker.channel_id, get_text("link_hours_unavailable"))
        except TransportDeliveryFailure as exc:
            logger.warning(
                "Linked, but today's hours were not delivered: %s", exc.detail,
                extra={"worker_id": worker.id, "channel_id": worker.channel_id},
            )

    async def _search(self, channel_id: str, query: str) -> None:
        result = await self.identity.search(query)
        if not result:
            await self.sender.send(channel_id, get_text("search_nothing"))
            return
        await self.sender.send(
            channel_id,
            get_text("search_found", count=len(result)),
            search_buttons(channel_id, result.shown, result.hidden_count),
        )

    async def _send_menus(self, channel_id: str) -> None:
        await self.sender.send(channel_id, get_text("menu_title"), main_menu_buttons(self.rolling_days))
        await self.sender.send_menu_keyboard(
            channel_id, get_text("menu_keyboard_hint"), menu_keyboard_labels()
        )

    async def _require_worker(self, channel_id: str) -> Optional[Worker]:
        worker = await self.identity.find(channel_id)
        if worker is None:
            await self.sender.send(channel_id, get_text("link_first"))
        return worker

    async def _answer(self, event: InboundEvent, text: Optional[str] = None, *, alert: bool = False) -> None:
        if not event.callback_id:
            return
        try:
            await self.sender.answer_callback(event.callback_id, text, alert=alert)
        except Exception:
            logger.warning("answer_callback failed", exc_info=True, extra={"channel_id": event.channel_id})

    async def _safe_send(self, channel_id: str, text: str) -> None:
        try:
            await self.sender.send(channel_id, text)
        except Exception:
            logger.warning("Fallback reply failed", exc_info=True, extra={"channel_id": channel_id})
