"""Change-log batch processing with bisect-on-error and an on-failure target.

Mirrors a DynamoDB stream event source mapping: records are handed to the
handler in batches, a failed batch is split in two and each half retried
independently, and records that still fail once the retry budget is spent
are sent to the on-failure destination instead of blocking the stream.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from topology.queue import failed_item_identifiers

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]

RETRY_ATTEMPTS_EXHAUSTED = "RetryAttemptsExhausted"


def dynamodb_sequence_number(record: Record) -> str:
    return record["dynamodb"]["SequenceNumber"]


@dataclass
class StreamResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    invocations: int = 0


class StreamBatchProcessor:
    """Feeds ordered records to a handler with bounded, bisecting retries.

    Args:
        handler: Called with ``{"Records": [...]}``. Raising fails the batch;
            when ``report_batch_item_failures`` is set it may instead return
            ``{"batchItemFailures": [{"itemIdentifier": seq}]}``, and the
            retry resumes from the first reported record.
        batch_size: Maximum records per invocation.
        retry_attempts: Retries allowed after the first failed attempt.
        bisect_batch_on_error: Split failing batches in half on retry.
        on_failure: Receives one failure envelope per exhausted record.
        timeout: Invocations running longer than this fail the batch.
    """

    def __init__(
        self,
        handler: Callable[[Dict[str, Any]], Any],
        batch_size: int = 10,
        retry_attempts: int = 3,
        bisect_batch_on_error: bool = True,
        report_batch_item_failures: bool = True,
        on_failure: Optional[Callable[[Dict[str, Any]], Any]] = None,
        timeout: float = 30.0,
        sequence_number: Callable[[Record], str] = dynamodb_sequence_number,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if retry_attempts < 0:
            raise ValueError("retry_attempts must not be negative")
        self.handler = handler
        self.batch_size = batch_size
        self.retry_attempts = retry_attempts
        self.bisect_batch_on_error = bisect_batch_on_error
        self.report_batch_item_failures = report_batch_item_failures
        self.on_failure = on_failure
        self.timeout = timeout
        self._sequence_number = sequence_number
        self._clock = clock

    def process(self, records: Sequence[Record]) -> StreamResult:
        """Process records in order, batch by batch."""
        result = StreamResult()
        for offset in range(0, len(records), self.batch_size):
            batch = list(records[offset:offset + self.batch_size])
            self._process(batch, self.retry_attempts, result)
        return result

    def _process(self, batch: List[Record], retries_left: int, result: StreamResult) -> None:
        failed_at = self._invoke(batch, result)
        if failed_at is None:
            result.succeeded.extend(self._sequence_number(r) for r in batch)
            return

        result.succeeded.extend(self._sequence_number(r) for r in batch[:failed_at])
        remaining = batch[failed_at:]

        if retries_left <= 0:
            for record in remaining:
                self._dead_letter(record, result)
            return

        if self.bisect_batch_on_error and len(remaining) > 1:
            middle = len(remaining) // 2
            self._process(remaining[:middle], retries_left - 1, result)
            self._process(remaining[middle:], retries_left - 1, result)
        else:
            self._process(remaining, retries_left - 1, result)

    def _invoke(self, batch: List[Record], result: StreamResult) -> Optional[int]:
        """Run the handler; return the index of the first failed record, if any."""
        result.invocations += 1
        started = self._clock()
        try:
            response = self.handler({"Records": batch})
        except Exception:
            logger.exception("Stream handler failed on a batch of %d records", len(batch))
            return 0

        if self._clock() - started > self.timeout:
            logger.warning("Stream handler timed out on a batch of %d records", len(batch))
            return 0

        if not self.report_batch_item_failures:
            return None

        sequence_numbers = [self._sequence_number(r) for r in batch]
        failed = failed_item_identifiers(response, sequence_numbers)
        if not failed:
            return None
        return min(i for i, seq in enumerate(sequence_numbers) if seq in failed)

    def _dead_letter(self, record: Record, result: StreamResult) -> None:
        sequence_number = self._sequence_number(record)
        result.failed.append(sequence_number)
        logger.warning("Record %s exhausted its retries", sequence_number)
        if self.on_failure is None:
            return
        self.on_failure(
            {
                "condition": RETRY_ATTEMPTS_EXHAUSTED,
                "sequenceNumber": sequence_number,
                "retryAttempts": self.retry_attempts,
                "record": record,
            }
        )
