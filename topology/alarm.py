"""Two-state threshold alarms evaluated over consecutive metric windows."""

import json
import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from topology.metrics import Metric

logger = logging.getLogger(__name__)


class ComparisonOperator(str, Enum):
    GREATER_THAN_OR_EQUAL_TO_THRESHOLD = "GreaterThanOrEqualToThreshold"
    GREATER_THAN_THRESHOLD = "GreaterThanThreshold"
    LESS_THAN_THRESHOLD = "LessThanThreshold"
    LESS_THAN_OR_EQUAL_TO_THRESHOLD = "LessThanOrEqualToThreshold"

    def compare(self, value: float, threshold: float) -> bool:
        if self is ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD:
            return value >= threshold
        if self is ComparisonOperator.GREATER_THAN_THRESHOLD:
            return value > threshold
        if self is ComparisonOperator.LESS_THAN_THRESHOLD:
            return value < threshold
        return value <= threshold


class TreatMissingData(str, Enum):
    BREACHING = "breaching"
    NOT_BREACHING = "notBreaching"
    IGNORE = "ignore"
    # No INSUFFICIENT_DATA state here, so "missing" behaves like "ignore".
    MISSING = "missing"


class AlarmState(str, Enum):
    OK = "OK"
    ALARM = "ALARM"


@dataclass(frozen=True)
class AlarmTransition:
    alarm_name: str
    old_state: AlarmState
    new_state: AlarmState
    reason: str
    timestamp: float
    datapoints: List[Optional[float]] = field(default_factory=list)

    def as_message(self) -> Dict[str, Any]:
        return {
            "AlarmName": self.alarm_name,
            "OldStateValue": self.old_state.value,
            "NewStateValue": self.new_state.value,
            "NewStateReason": self.reason,
            "StateChangeTime": self.timestamp,
        }


AlarmAction = Callable[[AlarmTransition], Any]


class Alarm:
    """Threshold monitor over a metric with consecutive-window hysteresis.

    Each completed metric window is classified as breaching or not (or
    skipped, for missing data treated as ``ignore``). The alarm enters ALARM
    only when the last ``evaluation_periods`` classified windows all breach,
    and returns to OK as soon as one of them does not.
    """

    def __init__(
        self,
        name: str,
        metric: Metric,
        threshold: float,
        evaluation_periods: int = 1,
        comparison_operator: ComparisonOperator = (
            ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD
        ),
        treat_missing_data: TreatMissingData = TreatMissingData.MISSING,
        description: str = "",
        actions_enabled: bool = True,
    ) -> None:
        if evaluation_periods < 1:
            raise ValueError("evaluation_periods must be at least 1")
        self.name = name
        self.metric = metric
        self.threshold = threshold
        self.evaluation_periods = evaluation_periods
        self.comparison_operator = ComparisonOperator(comparison_operator)
        self.treat_missing_data = TreatMissingData(treat_missing_data)
        self.description = description
        self.actions_enabled = actions_enabled

        self._state = AlarmState.OK
        self._recent: Deque[bool] = deque(maxlen=evaluation_periods)
        self._recent_values: Deque[Optional[float]] = deque(maxlen=evaluation_periods)
        self._next_window: Optional[int] = None
        self._alarm_actions: List[AlarmAction] = []
        self._ok_actions: List[AlarmAction] = []
        self._lock = threading.RLock()
        self.history: List[AlarmTransition] = []

    def __repr__(self) -> str:
        return f"Alarm({self.name!r}, state={self._state.value})"

    @property
    def state(self) -> AlarmState:
        return self._state

    def add_alarm_action(self, action: AlarmAction) -> None:
        self._alarm_actions.append(action)

    def add_ok_action(self, action: AlarmAction) -> None:
        self._ok_actions.append(action)

    def evaluate(self, now: float) -> AlarmState:
        """Evaluate every metric window completed since the last evaluation.

        The first evaluation looks back ``evaluation_periods`` windows.
        Windows already evaluated are never re-read.
        """
        period = self.metric.period
        with self._lock:
            end = math.floor(now / period)
            start = end - self.evaluation_periods
            if self._next_window is not None:
                start = max(start, self._next_window)

            for index in range(start, end):
                window_start = index * period
                value = self.metric.datapoint(window_start, window_start + period)
                self.record(value, timestamp=window_start + period)

            if self._next_window is None or end > self._next_window:
                self._next_window = end
            return self._state

    def record(self, value: Optional[float], timestamp: float = 0.0) -> AlarmState:
        """Feed the statistic of one completed window into the state machine."""
        with self._lock:
            if value is None:
                if self.treat_missing_data is TreatMissingData.BREACHING:
                    breaching = True
                elif self.treat_missing_data is TreatMissingData.NOT_BREACHING:
                    breaching = False
                else:
                    return self._state
            else:
                breaching = self.comparison_operator.compare(value, self.threshold)

            self._recent.append(breaching)
            self._recent_values.append(value)

            if len(self._recent) == self.evaluation_periods and all(self._recent):
                new_state = AlarmState.ALARM
            else:
                new_state = AlarmState.OK

            if new_state is not self._state:
                self._transition(new_state, timestamp)
            return self._state

    def _transition(self, new_state: AlarmState, timestamp: float) -> None:
        datapoints = list(self._recent_values)
        verdict = "crossed" if new_state is AlarmState.ALARM else "cleared"
        reason = (
            f"Threshold {verdict}: {len(datapoints)} datapoint(s) {datapoints} "
            f"evaluated {self.comparison_operator.value} {self.threshold}"
        )
        transition = AlarmTransition(
            alarm_name=self.name,
            old_state=self._state,
            new_state=new_state,
            reason=reason,
            timestamp=timestamp,
            datapoints=datapoints,
        )
        self._state = new_state
        self.history.append(transition)

        log = logger.warning if new_state is AlarmState.ALARM else logger.info
        log(
            "Alarm %s changed from %s to %s",
            self.name,
            transition.old_state.value,
            new_state.value,
        )

        if not self.actions_enabled:
            return
        actions = self._alarm_actions if new_state is AlarmState.ALARM else self._ok_actions
        for action in actions:
            try:
                action(transition)
            except Exception:
                logger.exception("Action for alarm %s failed", self.name)


class TopicAction:
    """Alarm action publishing the state change to a notification topic."""

    def __init__(self, topic) -> None:
        self.topic = topic

    def __call__(self, transition: AlarmTransition) -> None:
        self.topic.publish(
            json.dumps(transition.as_message()),
            subject=f'{transition.new_state.value}: "{transition.alarm_name}"',
        )
