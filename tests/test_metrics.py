"""Unit tests for metric statistics and log metric filters."""

import logging

import pytest

from topology.metrics import Metric, MetricFilter, MetricFilterHandler, Statistic


@pytest.mark.parametrize(
    "statistic, expected",
    [
        (Statistic.SUM, 9.0),
        (Statistic.MAXIMUM, 5.0),
        (Statistic.MINIMUM, 1.0),
        (Statistic.AVERAGE, 3.0),
        (Statistic.SAMPLE_COUNT, 3.0),
    ],
)
def test_statistics(statistic, expected):
    assert statistic.aggregate([1, 3, 5]) == expected


def test_statistic_of_empty_window_is_none():
    assert Statistic.SUM.aggregate([]) is None


def test_datapoint_covers_half_open_window():
    metric = Metric("ProductNotFound", "OrderWithNonValidProduct", statistic=Statistic.SUM)
    metric.put(1, timestamp=0)
    metric.put(1, timestamp=59.9)
    metric.put(1, timestamp=60)

    assert metric.datapoint(0, 60) == 2.0
    assert metric.datapoint(60, 120) == 1.0
    assert metric.datapoint(120, 180) is None


def test_with_shares_samples():
    """Test a re-read view sees samples put through the original."""
    metric = Metric("AWS/SQS", "ApproximateAgeOfOldestMessage", statistic=Statistic.MAXIMUM)
    summed = metric.with_(period=120, statistic=Statistic.SUM)
    metric.put(4, timestamp=10)
    metric.put(6, timestamp=70)

    assert summed.period == 120
    assert summed.datapoint(0, 120) == 10.0
    assert metric.datapoint(0, 120) == 6.0


def test_sample_reads_gauge():
    depth = [3]
    metric = Metric("AWS/SQS", "ApproximateNumberOfMessagesVisible", sampler=lambda: depth[0])

    assert metric.sample(timestamp=5) == 3.0
    assert metric.values(0, 60) == [3.0]


def test_sample_without_gauge_raises():
    with pytest.raises(ValueError):
        Metric("ns", "name").sample(0)


def test_prune():
    metric = Metric("ns", "name")
    metric.put(1, timestamp=10)
    metric.put(1, timestamp=100)

    metric.prune(before=50)

    assert metric.values(0, 1000) == [1.0]


def test_unquoted_filter_requires_every_term():
    metric_filter = MetricFilter("product not", Metric("ns", "name"))

    assert metric_filter.matches("Some product was not found")
    assert not metric_filter.matches("Some product was found")


def test_quoted_filter_matches_exact_phrase():
    metric_filter = MetricFilter('"product was not"', Metric("ns", "name"))

    assert metric_filter.matches("Some product was not found")
    assert not metric_filter.matches("product not found, was it")


def test_ingest_all_counts_matches():
    metric = Metric("ProductNotFound", "OrderWithNonValidProduct", statistic=Statistic.SUM)
    metric_filter = MetricFilter("Some product was not found", metric)

    count = metric_filter.ingest_all(
        [(1, "Some product was not found"), (2, "Order created"), (3, "Some product was not found")]
    )

    assert count == 2
    assert metric.datapoint(0, 60) == 2.0


def test_empty_filter_pattern_raises():
    with pytest.raises(ValueError):
        MetricFilter("  ", Metric("ns", "name"))


def test_handler_feeds_log_records_through_filters(clock):
    """Test logging a matching line adds a sample at the clock's time."""
    metric = Metric("ProductNotFound", "OrderWithNonValidProduct", statistic=Statistic.SUM)
    handler = MetricFilterHandler([MetricFilter("Some product was not found", metric)], clock=clock)
    log = logging.getLogger("tests.metric_filter")
    log.addHandler(handler)
    log.setLevel(logging.INFO)

    try:
        log.info("Some product was not found")
        log.info("Order created")
    finally:
        log.removeHandler(handler)

    assert metric.values(0, 2000) == [1.0]
