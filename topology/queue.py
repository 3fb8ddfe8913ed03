"""Point-to-point queue with visibility timeouts and dead-letter redrive.

Each message carries an explicit receive counter. A processing failure (an
explicit ``release`` or the visibility timeout running out) on a message that
has already been received ``max_receive_count`` times moves it to the
dead-letter queue instead of making it visible again.

Visibility timeouts are evaluated lazily against an injectable clock, so the
queue can be driven deterministically in tests.
"""

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Set

from topology.errors import ReceiptHandleError, TopologyError
from topology.metrics import Metric, Statistic

logger = logging.getLogger(__name__)

DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 30.0


@dataclass
class _Entry:
    message_id: str
    body: Any
    sent_at: float
    receive_count: int = 0
    receipt_handle: Optional[str] = None
    invisible_until: float = 0.0


@dataclass(frozen=True)
class ReceivedMessage:
    """A message handed to a consumer, valid until deleted or released."""

    message_id: str
    body: Any
    receipt_handle: str
    receive_count: int
    sent_at: float


class Queue:
    """At-least-once buffer; each message is visible to one consumer at a time."""

    def __init__(
        self,
        name: str,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
        max_receive_count: Optional[int] = None,
        dead_letter_queue: Optional["Queue"] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_receive_count is not None and max_receive_count < 1:
            raise TopologyError("max_receive_count must be at least 1")
        if dead_letter_queue is not None and max_receive_count is None:
            raise TopologyError("A dead-letter queue requires max_receive_count")
        if dead_letter_queue is self:
            raise TopologyError("A queue cannot be its own dead-letter queue")

        self.name = name
        self.visibility_timeout = visibility_timeout
        self.max_receive_count = max_receive_count
        self.dead_letter_queue = dead_letter_queue
        self._clock = clock

        self._visible: Dict[str, _Entry] = {}
        self._in_flight: Dict[str, _Entry] = {}
        self._cond = threading.Condition()
        self._dead_letters: List[_Entry] = []

        self.messages_sent = 0
        self.messages_deleted = 0
        self.messages_dead_lettered = 0

    def __repr__(self) -> str:
        return f"Queue({self.name!r})"

    # ------------------------------------------------------------------
    # Producer / consumer API
    # ------------------------------------------------------------------

    def send(self, body: Any) -> str:
        """Enqueue a message and return its id."""
        return self._enqueue(str(uuid.uuid4()), body)

    def receive(self, max_messages: int = 1, wait_time: float = 0.0) -> List[ReceivedMessage]:
        """Receive up to ``max_messages`` visible messages, oldest first.

        Args:
            max_messages: Batch size upper bound.
            wait_time: Seconds to block while the queue has no visible
                messages. Zero returns immediately.

        Returns:
            The received messages, each hidden for the visibility timeout.
        """
        if max_messages < 1:
            raise TopologyError("max_messages must be at least 1")

        deadline = time.monotonic() + wait_time
        with self._locked():
            self._expire_in_flight()
            while not self._visible:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return []
                self._cond.wait(remaining)
                self._expire_in_flight()

            now = self._clock()
            batch = sorted(self._visible.values(), key=lambda e: e.sent_at)[:max_messages]
            received = []
            for entry in batch:
                del self._visible[entry.message_id]
                entry.receive_count += 1
                entry.receipt_handle = uuid.uuid4().hex
                entry.invisible_until = now + self.visibility_timeout
                self._in_flight[entry.receipt_handle] = entry
                received.append(
                    ReceivedMessage(
                        message_id=entry.message_id,
                        body=entry.body,
                        receipt_handle=entry.receipt_handle,
                        receive_count=entry.receive_count,
                        sent_at=entry.sent_at,
                    )
                )
            return received

    def delete(self, receipt_handle: str) -> None:
        """Acknowledge a received message, removing it from the queue."""
        with self._locked():
            entry = self._in_flight.pop(receipt_handle, None)
            if entry is None:
                raise ReceiptHandleError(self.name, receipt_handle)
            self.messages_deleted += 1

    def release(self, receipt_handle: str) -> None:
        """Report a processing failure for a received message.

        The message becomes visible again, or is moved to the dead-letter
        queue once its receive count has reached ``max_receive_count``.
        """
        with self._locked():
            entry = self._in_flight.pop(receipt_handle, None)
            if entry is None:
                raise ReceiptHandleError(self.name, receipt_handle)
            self._fail(entry)

    def purge(self) -> None:
        with self._locked():
            self._visible.clear()
            self._in_flight.clear()

    # ------------------------------------------------------------------
    # Inspection and gauges
    # ------------------------------------------------------------------

    def message_ids(self) -> List[str]:
        """Ids of all messages still held (visible or in flight), oldest first."""
        with self._locked():
            self._expire_in_flight()
            entries = list(self._visible.values()) + list(self._in_flight.values())
        return [e.message_id for e in sorted(entries, key=lambda e: e.sent_at)]

    def bodies(self) -> List[Any]:
        with self._locked():
            self._expire_in_flight()
            entries = list(self._visible.values()) + list(self._in_flight.values())
        return [e.body for e in sorted(entries, key=lambda e: e.sent_at)]

    def approximate_number_of_messages_visible(self) -> int:
        with self._locked():
            self._expire_in_flight()
            return len(self._visible)

    def approximate_number_of_messages_not_visible(self) -> int:
        with self._locked():
            self._expire_in_flight()
            return len(self._in_flight)

    def approximate_age_of_oldest_message(self) -> float:
        """Age in seconds of the oldest message still held, 0 when empty."""
        with self._locked():
            self._expire_in_flight()
            entries = list(self._visible.values()) + list(self._in_flight.values())
            if not entries:
                return 0.0
            return self._clock() - min(e.sent_at for e in entries)

    def metric_approximate_number_of_messages_visible(
        self, period: float = 60.0, statistic: Statistic = Statistic.AVERAGE
    ) -> Metric:
        return Metric(
            "AWS/SQS",
            "ApproximateNumberOfMessagesVisible",
            period=period,
            statistic=statistic,
            dimensions={"QueueName": self.name},
            sampler=self.approximate_number_of_messages_visible,
        )

    def metric_approximate_age_of_oldest_message(
        self, period: float = 60.0, statistic: Statistic = Statistic.MAXIMUM
    ) -> Metric:
        return Metric(
            "AWS/SQS",
            "ApproximateAgeOfOldestMessage",
            period=period,
            statistic=statistic,
            dimensions={"QueueName": self.name},
            sampler=self.approximate_age_of_oldest_message,
        )

    # ------------------------------------------------------------------
    # Internals (callers hold self._cond)
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the queue lock, then hand dead-lettered messages on once released.

        The dead-letter queue is only entered after this queue's lock is
        released.
        """
        try:
            with self._cond:
                yield
        finally:
            with self._cond:
                pending, self._dead_letters = self._dead_letters, []
            for entry in pending:
                self.dead_letter_queue._enqueue(entry.message_id, entry.body)

    def _enqueue(self, message_id: str, body: Any) -> str:
        with self._cond:
            if message_id in self._visible or any(
                e.message_id == message_id for e in self._in_flight.values()
            ):
                return message_id
            self._visible[message_id] = _Entry(
                message_id=message_id, body=body, sent_at=self._clock()
            )
            self.messages_sent += 1
            self._cond.notify_all()
        return message_id

    def _expire_in_flight(self) -> None:
        now = self._clock()
        expired = [h for h, e in self._in_flight.items() if e.invisible_until <= now]
        for receipt_handle in expired:
            entry = self._in_flight.pop(receipt_handle)
            logger.debug(
                "Visibility timeout expired for message %s on %s",
                entry.message_id,
                self.name,
            )
            self._fail(entry)

    def _fail(self, entry: _Entry) -> None:
        entry.receipt_handle = None
        if (
            self.dead_letter_queue is not None
            and entry.receive_count >= self.max_receive_count
        ):
            self.messages_dead_lettered += 1
            logger.warning(
                "Moving message %s from %s to %s after %d receives",
                entry.message_id,
                self.name,
                self.dead_letter_queue.name,
                entry.receive_count,
            )
            self._dead_letters.append(entry)
            return

        self._visible[entry.message_id] = entry
        self._cond.notify_all()


@dataclass
class BatchResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def failed_item_identifiers(response: Any, identifiers: Sequence[str]) -> Set[str]:
    """Extract ``batchItemFailures`` identifiers from a handler response.

    Args:
        response: Whatever the handler returned.
        identifiers: Ids of the records in the batch.

    Returns:
        The ids to treat as failed. An entry with a missing or empty
        ``itemIdentifier``, or one naming a record outside the batch, fails
        the whole batch.
    """
    if not isinstance(response, Mapping):
        return set()
    known = set(identifiers)
    failed = set()
    for failure in response.get("batchItemFailures") or []:
        item_identifier = failure.get("itemIdentifier") if isinstance(failure, Mapping) else None
        if item_identifier is None or str(item_identifier) not in known:
            logger.warning("Invalid batch item failure %r fails the whole batch", failure)
            return known
        failed.add(str(item_identifier))
    return failed


class QueueConsumer:
    """Polls a queue and invokes a batch handler, like an SQS event source.

    The handler receives a list of ``ReceivedMessage`` and may return
    ``{"batchItemFailures": [{"itemIdentifier": message_id}, ...]}`` to fail
    individual messages. Raising, or running longer than ``timeout`` seconds,
    fails the whole batch. Failed messages are released back to the queue;
    the rest are deleted.
    """

    def __init__(
        self,
        queue: Queue,
        handler: Callable[[List[ReceivedMessage]], Any],
        batch_size: int = 10,
        max_batching_window: float = 0.0,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.queue = queue
        self.handler = handler
        self.batch_size = batch_size
        self.max_batching_window = max_batching_window
        self.timeout = timeout
        self._clock = clock

    def poll(self, wait_time: float = 0.0) -> BatchResult:
        """Receive one batch and process it."""
        messages = self.queue.receive(self.batch_size, wait_time=wait_time)
        result = BatchResult()
        if not messages:
            return result

        message_ids = [m.message_id for m in messages]
        started = self._clock()
        try:
            response = self.handler(messages)
        except Exception:
            logger.exception("Batch handler for %s failed", self.queue.name)
            failed = set(message_ids)
        else:
            elapsed = self._clock() - started
            if elapsed > self.timeout:
                logger.warning(
                    "Batch handler for %s timed out after %.1fs",
                    self.queue.name,
                    elapsed,
                )
                failed = set(message_ids)
            else:
                failed = failed_item_identifiers(response, message_ids)

        for message in messages:
            try:
                if message.message_id in failed:
                    self.queue.release(message.receipt_handle)
                    result.failed.append(message.message_id)
                else:
                    self.queue.delete(message.receipt_handle)
                    result.succeeded.append(message.message_id)
            except ReceiptHandleError:
                # Already reclaimed by a visibility timeout.
                logger.warning(
                    "Message %s on %s was reclaimed before it was settled",
                    message.message_id,
                    self.queue.name,
                )
                result.failed.append(message.message_id)
        return result

    def drain(self, max_batches: int = 100) -> BatchResult:
        """Poll until the queue has no visible messages or ``max_batches`` is hit."""
        total = BatchResult()
        for _ in range(max_batches):
            result = self.poll()
            if not result.succeeded and not result.failed:
                break
            total.succeeded.extend(result.succeeded)
            total.failed.extend(result.failed)
        return total

    def run(self, stop: threading.Event) -> None:
        """Poll with the batching window until ``stop`` is set."""
        while not stop.is_set():
            self.poll(wait_time=self.max_batching_window)
