# timesheet_bot/admin/errors.py
"""
Errors raised by AdminApplicationService.

Core errors (NotFound, NotLinked, TransportDeliveryFailure, InvalidRange ...)
never reach the HTTP layer directly; the service translates them into one of
the classes below and the route layer renders ``to_body()`` with the class's
status code.
"""
from __future__ import annotations


class AdminError(Exception):
    """An operator request that could not be served."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)

    def to_body(self) -> dict:
        return {"error": self.detail}


class ValidationError(AdminError):
    """Bad pagination, malformed dates or an unusable ingestion batch (400)."""

    status_code = 400


class NotFoundError(AdminError):
    """Unknown worker, hours record or Telegram ID (404)."""

    status_code = 404


class UnprocessableError(AdminError):
    """Worker has no linked Telegram account or the correction could not be delivered (422)."""

    status_code = 422
