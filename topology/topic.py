"""Publish/subscribe topic with per-subscription filter policies."""

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from topology.errors import DuplicateNameError, PatternError
from topology.events import TopicMessage

logger = logging.getLogger(__name__)

Consumer = Callable[[TopicMessage], Any]


class FilterPolicy:
    """Attribute allow-lists, e.g. ``{"eventType": ["ORDER_CREATED"]}``.

    A message matches when, for every filtered attribute, the message carries
    that attribute and its value is in the allow-list.
    """

    def __init__(self, allowlists: Mapping[str, Iterable[str]]) -> None:
        if not allowlists:
            raise PatternError("Filter policy must name at least one attribute")
        self._allowlists: Dict[str, frozenset] = {}
        for attribute, values in allowlists.items():
            if isinstance(values, str):
                raise PatternError(
                    f"Allow-list for {attribute!r} must be a list of strings"
                )
            self._allowlists[attribute] = frozenset(values)

    @property
    def allowlists(self) -> Dict[str, List[str]]:
        return {name: sorted(values) for name, values in self._allowlists.items()}

    def matches(self, attributes: Mapping[str, str]) -> bool:
        for attribute, allowed in self._allowlists.items():
            if attributes.get(attribute) not in allowed:
                return False
        return True

    def __repr__(self) -> str:
        return f"FilterPolicy({self.allowlists!r})"


@dataclass
class Subscription:
    name: str
    target: Consumer
    filter_policy: Optional[FilterPolicy] = None

    def accepts(self, message: TopicMessage) -> bool:
        if self.filter_policy is None:
            return True
        return self.filter_policy.matches(message.attributes)


@dataclass
class PublishResult:
    """Outcome of one publish: which subscriptions matched and which failed."""

    message_id: str
    delivered: List[str] = field(default_factory=list)
    failed: Dict[str, Exception] = field(default_factory=dict)

    @property
    def matched(self) -> List[str]:
        return self.delivered + list(self.failed)


class Topic:
    """Fan-out router delivering each message to every matching subscription.

    Deliveries are independent: a subscriber raising is logged and recorded
    in the ``PublishResult`` but never stops delivery to the others, and is
    never raised to the publisher.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    @property
    def subscriptions(self) -> List[Subscription]:
        with self._lock:
            return list(self._subscriptions.values())

    def subscribe(
        self,
        target: Consumer,
        filter_policy: Optional[Mapping[str, Iterable[str]]] = None,
        name: Optional[str] = None,
    ) -> Subscription:
        """Attach a consumer to the topic.

        Args:
            target: Callable invoked with a copy of each matching message.
            filter_policy: Optional attribute allow-lists; ``None`` receives
                every message.
            name: Subscription name, generated when omitted.

        Returns:
            The new subscription.
        """
        policy = None
        if filter_policy is not None:
            policy = (
                filter_policy
                if isinstance(filter_policy, FilterPolicy)
                else FilterPolicy(filter_policy)
            )

        subscription = Subscription(
            name=name or f"{self.name}-sub-{uuid.uuid4().hex[:8]}",
            target=target,
            filter_policy=policy,
        )
        with self._lock:
            if subscription.name in self._subscriptions:
                raise DuplicateNameError(
                    f"Topic {self.name!r} already has subscription {subscription.name!r}"
                )
            self._subscriptions[subscription.name] = subscription
        return subscription

    def subscribe_queue(
        self,
        queue,
        filter_policy: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> Subscription:
        """Subscribe a queue; matching messages are enqueued as-is."""
        return self.subscribe(queue.send, filter_policy=filter_policy, name=queue.name)

    def unsubscribe(self, name: str) -> None:
        with self._lock:
            self._subscriptions.pop(name, None)

    def publish(
        self,
        body: Any,
        attributes: Optional[Mapping[str, str]] = None,
        subject: Optional[str] = None,
    ) -> PublishResult:
        """Publish a message and deliver it to every matching subscription."""
        message = TopicMessage(body=body, attributes=attributes or {}, subject=subject)
        result = PublishResult(message_id=message.message_id)

        for subscription in self.subscriptions:
            if not subscription.accepts(message):
                continue

            delivery = TopicMessage(
                body=copy.deepcopy(message.body),
                attributes=message.attributes,
                subject=message.subject,
                message_id=message.message_id,
            )
            try:
                subscription.target(delivery)
            except Exception as e:
                logger.exception(
                    "Delivery of message %s from topic %s to %s failed",
                    message.message_id,
                    self.name,
                    subscription.name,
                )
                result.failed[subscription.name] = e
            else:
                result.delivered.append(subscription.name)

        logger.debug(
            "Published %s to %s: delivered=%s failed=%s",
            message.message_id,
            self.name,
            result.delivered,
            list(result.failed),
        )
        return result
