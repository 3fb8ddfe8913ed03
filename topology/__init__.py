"""In-process engine for the order/invoice event topology."""

from topology.alarm import Alarm, AlarmState, ComparisonOperator, TopicAction, TreatMissingData
from topology.bus import Archive, EventBus, Rule
from topology.errors import DuplicateNameError, PatternError, ReceiptHandleError, TopologyError
from topology.events import Event, TopicMessage
from topology.metrics import Metric, MetricFilter, MetricFilterHandler, Statistic
from topology.patterns import compile_pattern
from topology.queue import Queue, QueueConsumer, ReceivedMessage
from topology.stream import StreamBatchProcessor
from topology.topic import FilterPolicy, Topic
from topology.wiring import Consumers, OrderTopology, build_topology

__all__ = [
    "Alarm",
    "AlarmState",
    "Archive",
    "ComparisonOperator",
    "Consumers",
    "DuplicateNameError",
    "Event",
    "EventBus",
    "FilterPolicy",
    "Metric",
    "MetricFilter",
    "MetricFilterHandler",
    "OrderTopology",
    "PatternError",
    "Queue",
    "QueueConsumer",
    "ReceiptHandleError",
    "ReceivedMessage",
    "Rule",
    "Statistic",
    "StreamBatchProcessor",
    "Topic",
    "TopicAction",
    "TopicMessage",
    "TopologyError",
    "TreatMissingData",
    "build_topology",
    "compile_pattern",
]
