"""
Domain error taxonomy.

Identity and session errors are turned into a localized reply to the sender;
store/transport errors inside batch operations are caught per item and counted.
"""
from __future__ import annotations


class TimesheetError(Exception):
    """Base class for all domain errors."""

    code: str = "error"

    def __init__(self, detail: str = ""):
        self.detail = detail or self.__class__.__name__
        super().__init__(self.detail)


class NotFound(TimesheetError):
    code = "not_found"


class AlreadyLinkedOther(TimesheetError):
    """The channel identity is already linked to a different worker."""

    code = "already_linked_other"

    def __init__(self, current_worker, detail: str = ""):
        self.current_worker = current_worker
        super().__init__(detail or f"channel already linked to worker {current_worker.id}")


class TargetAlreadyLinked(TimesheetError):
    """The requested worker is linked to a different channel identity."""

    code = "target_already_linked"

    def __init__(self, worker, detail: str = ""):
        self.worker = worker
        super().__init__(detail or f"worker {worker.id} is linked to another channel")


class InvalidRange(TimesheetError):
    code = "invalid_range"


class NoData(TimesheetError):
    code = "no_data"


class NotLinked(TimesheetError):
    code = "not_linked"


Unlinked = NotLinked


class TransportDeliveryFailure(TimesheetError):
    """Recipient unreachable or the transport refused the message."""

    code = "delivery_failed"

    def __init__(self, detail: str = "", *, retryable: bool = False):
        self.retryable = retryable
        super().__init__(detail)


class ParseFailure(TimesheetError):
    code = "parse_failure"


class PayloadError(TimesheetError):
    """Malformed or unknown affordance payload."""

    code = "bad_payload"
