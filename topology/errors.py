"""Exceptions raised by the in-process topology engine.

Delivery failures are never raised to publishers; these cover misuse of the
engine API (bad receipt handles, malformed patterns, duplicate names).
"""


class TopologyError(Exception):
    """Base class for topology engine errors."""


class PatternError(TopologyError):
    """An event pattern or filter policy could not be compiled."""


class ReceiptHandleError(TopologyError):
    """A receipt handle is unknown or has expired."""

    def __init__(self, queue_name: str, receipt_handle: str) -> None:
        super().__init__(
            f"Receipt handle {receipt_handle!r} is not valid for queue {queue_name!r}"
        )
        self.queue_name = queue_name
        self.receipt_handle = receipt_handle


class DuplicateNameError(TopologyError):
    """A rule, archive or subscription name is already registered."""
