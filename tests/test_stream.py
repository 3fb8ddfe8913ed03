"""Unit tests for stream batch processing with bisect and retry exhaustion."""

import pytest

from topology.stream import RETRY_ATTEMPTS_EXHAUSTED, StreamBatchProcessor


def _records(*sequence_numbers):
    return [{"dynamodb": {"SequenceNumber": seq}} for seq in sequence_numbers]


def _sequence_numbers(event):
    return [r["dynamodb"]["SequenceNumber"] for r in event["Records"]]


def test_successful_batches_are_split_by_batch_size():
    seen = []
    processor = StreamBatchProcessor(lambda event: seen.append(_sequence_numbers(event)), batch_size=5)

    result = processor.process(_records(*"1234567"))

    assert seen == [list("12345"), list("67")]
    assert result.succeeded == list("1234567")
    assert result.invocations == 2


def test_bisect_isolates_poison_record():
    """Test a raising handler is bisected down to the failing record."""
    # Arrange
    dead_letters = []

    def handler(event):
        if "3" in _sequence_numbers(event):
            raise RuntimeError("poison")

    processor = StreamBatchProcessor(
        handler,
        batch_size=5,
        retry_attempts=3,
        bisect_batch_on_error=True,
        on_failure=dead_letters.append,
    )

    # Act
    result = processor.process(_records(*"12345"))

    # Assert
    assert result.succeeded == ["1", "2", "4", "5"]
    assert result.failed == ["3"]
    assert [d["sequenceNumber"] for d in dead_letters] == ["3"]


def test_reported_failures_resume_from_first_failed_record():
    """Test records before the first reported failure are not retried."""
    calls = []

    def handler(event):
        sequence_numbers = _sequence_numbers(event)
        calls.append(sequence_numbers)
        if "3" in sequence_numbers:
            return {"batchItemFailures": [{"itemIdentifier": "3"}]}
        return None

    processor = StreamBatchProcessor(handler, batch_size=5, retry_attempts=3)

    result = processor.process(_records(*"12345"))

    assert calls[0] == list("12345")
    assert calls[1] == list("3")
    assert all("1" not in c and "2" not in c for c in calls[1:])
    assert result.succeeded == ["1", "2", "4", "5"]
    assert result.failed == ["3"]


def test_exhausted_record_envelope():
    dead_letters = []

    def handler(event):
        raise RuntimeError("boom")

    processor = StreamBatchProcessor(
        handler, retry_attempts=2, bisect_batch_on_error=False, on_failure=dead_letters.append
    )
    record = _records("9")[0]

    result = processor.process([record])

    assert result.invocations == 3
    assert dead_letters == [
        {
            "condition": RETRY_ATTEMPTS_EXHAUSTED,
            "sequenceNumber": "9",
            "retryAttempts": 2,
            "record": record,
        }
    ]


def test_without_bisect_whole_remainder_is_dead_lettered():
    def handler(event):
        if "2" in _sequence_numbers(event):
            raise RuntimeError("boom")

    processor = StreamBatchProcessor(handler, retry_attempts=1, bisect_batch_on_error=False)

    result = processor.process(_records("1", "2", "3"))

    assert result.succeeded == []
    assert result.failed == ["1", "2", "3"]


def test_slow_handler_fails_the_batch(clock):
    def handler(event):
        clock.advance(31)

    processor = StreamBatchProcessor(handler, retry_attempts=0, timeout=30, clock=clock)

    result = processor.process(_records("1"))

    assert result.failed == ["1"]


def test_unknown_failure_identifier_fails_whole_batch():
    def handler(event):
        return {"batchItemFailures": [{"itemIdentifier": "nope"}]}

    processor = StreamBatchProcessor(handler, retry_attempts=0)

    result = processor.process(_records("1", "2"))

    assert result.failed == ["1", "2"]


@pytest.mark.parametrize("failure", [{"itemIdentifier": ""}, {"itemIdentifier": None}, {}])
def test_empty_failure_identifier_fails_whole_batch(failure):
    """Test a failure entry without an identifier is not read as success."""
    processor = StreamBatchProcessor(
        lambda event: {"batchItemFailures": [failure]}, retry_attempts=0
    )

    result = processor.process(_records("1", "2"))

    assert result.succeeded == []
    assert result.failed == ["1", "2"]
    assert result.invocations == 1


def test_item_failures_ignored_when_reporting_disabled():
    processor = StreamBatchProcessor(
        lambda event: {"batchItemFailures": [{"itemIdentifier": "1"}]},
        report_batch_item_failures=False,
    )

    result = processor.process(_records("1"))

    assert result.succeeded == ["1"]


@pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"retry_attempts": -1}])
def test_invalid_configuration_raises(kwargs):
    with pytest.raises(ValueError):
        StreamBatchProcessor(lambda event: None, **kwargs)
