"""Domain event envelope shared by producers, the topic and the audit bus."""

import json
import time
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

# Event sources
ORDER_SOURCE = "app.order"
INVOICE_SOURCE = "app.invoice"

# Detail types
ORDER_DETAIL_TYPE = "order"
INVOICE_DETAIL_TYPE = "invoice"

# Order lifecycle event types (topic message attribute "eventType")
ORDER_CREATED = "ORDER_CREATED"
ORDER_DELETED = "ORDER_DELETED"

# Audit reasons routed by the audit bus
PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
FAIL_NO_INVOICE_NUMBER = "FAIL_NO_INVOICE_NUMBER"
TIMEOUT = "TIMEOUT"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True, eq=False)
class Event:
    """An immutable domain event.

    ``source`` and ``detail_type`` are taxonomic tags used for routing;
    ``detail`` is a free-form payload which is deep-copied and frozen on
    construction so that no consumer can mutate what another one sees.
    """

    source: str
    detail_type: str
    detail: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    time: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        object.__setattr__(self, "detail", _freeze(_thaw(self.detail)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Event):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def as_dict(self) -> Dict[str, Any]:
        """Return the EventBridge JSON shape used for pattern matching."""
        return {
            "id": self.id,
            "time": self.time,
            "source": self.source,
            "detail-type": self.detail_type,
            "detail": _thaw(self.detail),
        }

    def to_entry(self, event_bus_name: Optional[str] = None) -> Dict[str, Any]:
        """Render the event as a ``PutEvents`` request entry."""
        entry = {
            "Source": self.source,
            "DetailType": self.detail_type,
            "Detail": json.dumps(_thaw(self.detail)),
        }
        if event_bus_name:
            entry["EventBusName"] = event_bus_name
        return entry

    @classmethod
    def from_entry(cls, entry: Mapping[str, Any]) -> "Event":
        """Build an event from a ``PutEvents`` request entry.

        Raises:
            ValueError: If ``Source`` or ``DetailType`` is missing, or
                ``Detail`` is not a JSON object.
        """
        source = entry.get("Source")
        detail_type = entry.get("DetailType")
        if not source or not detail_type:
            raise ValueError("PutEvents entry requires Source and DetailType")

        detail = json.loads(entry.get("Detail") or "{}")
        if not isinstance(detail, dict):
            raise ValueError("PutEvents entry Detail must be a JSON object")

        return cls(source=source, detail_type=detail_type, detail=detail)


@dataclass(frozen=True)
class TopicMessage:
    """A message published to a topic: a body plus string attributes."""

    body: Any
    attributes: Mapping[str, str] = field(default_factory=dict)
    subject: Optional[str] = None
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))
