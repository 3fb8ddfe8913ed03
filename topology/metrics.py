"""Metric series, statistics and log metric filters."""

import logging
import threading
from enum import Enum
from typing import Callable, Iterable, List, Mapping, Optional, Tuple


class Statistic(str, Enum):
    SUM = "Sum"
    MAXIMUM = "Maximum"
    MINIMUM = "Minimum"
    AVERAGE = "Average"
    SAMPLE_COUNT = "SampleCount"

    def aggregate(self, values: List[float]) -> Optional[float]:
        """Reduce the samples of one window; ``None`` when there are none."""
        if not values:
            return None
        if self is Statistic.SUM:
            return float(sum(values))
        if self is Statistic.MAXIMUM:
            return float(max(values))
        if self is Statistic.MINIMUM:
            return float(min(values))
        if self is Statistic.AVERAGE:
            return float(sum(values)) / len(values)
        return float(len(values))


class _Series:
    """Timestamped samples shared by every view of one metric."""

    def __init__(self) -> None:
        self.samples: List[Tuple[float, float]] = []
        self.lock = threading.Lock()


class Metric:
    """A metric series viewed with a period and a statistic.

    Samples are either pushed with ``put`` or pulled from a gauge with
    ``sample``. ``with_`` returns another view over the same samples, the way
    a CloudWatch metric can be re-read with a different period or statistic.
    """

    def __init__(
        self,
        namespace: str,
        metric_name: str,
        period: float = 60.0,
        statistic: Statistic = Statistic.AVERAGE,
        dimensions: Optional[Mapping[str, str]] = None,
        sampler: Optional[Callable[[], float]] = None,
        _series: Optional[_Series] = None,
    ) -> None:
        if period <= 0:
            raise ValueError("Metric period must be positive")
        self.namespace = namespace
        self.metric_name = metric_name
        self.period = period
        self.statistic = Statistic(statistic)
        self.dimensions = dict(dimensions or {})
        self._sampler = sampler
        self._series = _series or _Series()

    def __repr__(self) -> str:
        return (
            f"Metric({self.namespace}/{self.metric_name}, "
            f"period={self.period}, statistic={self.statistic.value})"
        )

    def with_(
        self, period: Optional[float] = None, statistic: Optional[Statistic] = None
    ) -> "Metric":
        return Metric(
            self.namespace,
            self.metric_name,
            period=period or self.period,
            statistic=statistic or self.statistic,
            dimensions=self.dimensions,
            sampler=self._sampler,
            _series=self._series,
        )

    def put(self, value: float, timestamp: float) -> None:
        with self._series.lock:
            self._series.samples.append((timestamp, float(value)))

    def sample(self, timestamp: float) -> float:
        """Read the gauge and record its value at ``timestamp``."""
        if self._sampler is None:
            raise ValueError(f"{self!r} has no sampler")
        value = float(self._sampler())
        self.put(value, timestamp)
        return value

    def values(self, start: float, end: float) -> List[float]:
        with self._series.lock:
            return [v for t, v in self._series.samples if start <= t < end]

    def datapoint(self, start: float, end: float) -> Optional[float]:
        """Statistic over the samples in ``[start, end)``."""
        return self.statistic.aggregate(self.values(start, end))

    def prune(self, before: float) -> None:
        with self._series.lock:
            self._series.samples = [s for s in self._series.samples if s[0] >= before]


def _literal_terms(pattern: str) -> Tuple[str, ...]:
    pattern = pattern.strip()
    if len(pattern) >= 2 and pattern[0] == pattern[-1] == '"':
        return (pattern[1:-1],)
    return tuple(pattern.split())


class MetricFilter:
    """Turns log lines matching a literal filter pattern into metric samples.

    An unquoted pattern matches lines containing every one of its terms; a
    double-quoted pattern matches the exact phrase.
    """

    def __init__(self, pattern: str, metric: Metric, metric_value: float = 1.0) -> None:
        self.terms = _literal_terms(pattern)
        if not self.terms:
            raise ValueError("Metric filter pattern must not be empty")
        self.metric = metric
        self.metric_value = metric_value

    def matches(self, line: str) -> bool:
        return all(term in line for term in self.terms)

    def ingest(self, line: str, timestamp: float) -> bool:
        if not self.matches(line):
            return False
        self.metric.put(self.metric_value, timestamp)
        return True

    def ingest_all(self, lines: Iterable[Tuple[float, str]]) -> int:
        return sum(1 for timestamp, line in lines if self.ingest(line, timestamp))


class MetricFilterHandler(logging.Handler):
    """Logging handler feeding formatted records through metric filters."""

    def __init__(
        self,
        filters: Iterable[MetricFilter],
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        super().__init__()
        self.filters = list(filters)
        self._clock = clock

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            timestamp = self._clock() if self._clock else record.created
            for metric_filter in self.filters:
                metric_filter.ingest(line, timestamp)
        except Exception:
            self.handleError(record)
