"""Event bus routing events to rule targets by structural pattern.

Rules hold a compiled predicate over the event's JSON shape; every matching
rule delivers the event once to each of its targets. Archives are passive
taps recording matching events for a retention window, independent of rules.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from topology.errors import DuplicateNameError
from topology.events import Event
from topology.patterns import MATCH_ALL, Predicate, compile_pattern

logger = logging.getLogger(__name__)


@dataclass
class RuleTarget:
    """A rule target: a callable receiving the event, with an optional DLQ."""

    target_id: str
    invoke: Callable[[Event], Any]
    dead_letter_queue: Any = None


@dataclass
class Rule:
    name: str
    pattern: Mapping[str, Any]
    predicate: Predicate
    description: str = ""
    enabled: bool = True
    targets: List[RuleTarget] = field(default_factory=list)

    def matches(self, event: Event) -> bool:
        return self.enabled and self.predicate.matches(event.as_dict())

    def add_target(
        self,
        invoke: Callable[[Event], Any],
        target_id: Optional[str] = None,
        dead_letter_queue: Any = None,
    ) -> RuleTarget:
        target = RuleTarget(
            target_id=target_id or f"Target{len(self.targets)}",
            invoke=invoke,
            dead_letter_queue=dead_letter_queue,
        )
        self.targets.append(target)
        return target

    def add_queue_target(self, queue) -> RuleTarget:
        return self.add_target(queue.send, target_id=queue.name)


class Archive:
    """Records events matching its pattern for ``retention`` seconds."""

    def __init__(
        self,
        name: str,
        pattern: Optional[Mapping[str, Any]] = None,
        retention: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.pattern = dict(pattern) if pattern else None
        self.predicate = compile_pattern(pattern) if pattern else MATCH_ALL
        self.retention = retention
        self._clock = clock
        self._events: List[Tuple[float, Event]] = []
        self._lock = threading.Lock()

    def offer(self, event: Event) -> bool:
        if not self.predicate.matches(event.as_dict()):
            return False
        with self._lock:
            self._expire()
            self._events.append((self._clock(), event))
        return True

    def events(self) -> List[Event]:
        with self._lock:
            self._expire()
            return [event for _, event in self._events]

    def _expire(self) -> None:
        if self.retention is None:
            return
        cutoff = self._clock() - self.retention
        self._events = [(t, e) for t, e in self._events if t >= cutoff]


@dataclass
class PutEventsResult:
    """Outcome of one published event."""

    event: Event
    matched_rules: List[str] = field(default_factory=list)
    delivered: List[Tuple[str, str]] = field(default_factory=list)
    failed: Dict[Tuple[str, str], Exception] = field(default_factory=dict)
    archived: List[str] = field(default_factory=list)


class EventBus:
    """Pattern router for cross-domain events (e.g. the audit bus)."""

    def __init__(self, name: str, clock: Callable[[], float] = time.time) -> None:
        self.name = name
        self._clock = clock
        self._rules: Dict[str, Rule] = {}
        self._archives: Dict[str, Archive] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"EventBus({self.name!r})"

    @property
    def rules(self) -> List[Rule]:
        with self._lock:
            return list(self._rules.values())

    def rule(self, name: str) -> Rule:
        return self._rules[name]

    def put_rule(
        self, name: str, pattern: Mapping[str, Any], description: str = ""
    ) -> Rule:
        """Register a rule from an EventBridge-style pattern.

        Raises:
            DuplicateNameError: If a rule with this name exists on the bus.
            PatternError: If the pattern is malformed.
        """
        rule = Rule(
            name=name,
            pattern=dict(pattern),
            predicate=compile_pattern(pattern),
            description=description,
        )
        with self._lock:
            if name in self._rules:
                raise DuplicateNameError(f"Bus {self.name!r} already has rule {name!r}")
            self._rules[name] = rule
        return rule

    def archive(
        self,
        name: str,
        pattern: Optional[Mapping[str, Any]] = None,
        retention: Optional[float] = None,
    ) -> Archive:
        archive = Archive(name, pattern=pattern, retention=retention, clock=self._clock)
        with self._lock:
            if name in self._archives:
                raise DuplicateNameError(f"Bus {self.name!r} already has archive {name!r}")
            self._archives[name] = archive
        return archive

    def publish(self, event: Event) -> PutEventsResult:
        """Archive and route one event; target failures never propagate."""
        result = PutEventsResult(event=event)

        with self._lock:
            archives = list(self._archives.values())
            rules = list(self._rules.values())

        for archive in archives:
            if archive.offer(event):
                result.archived.append(archive.name)

        for rule in rules:
            if not rule.matches(event):
                continue
            result.matched_rules.append(rule.name)
            for target in rule.targets:
                self._deliver(rule, target, event, result)

        if not result.matched_rules:
            logger.debug(
                "Event %s (%s/%s) matched no rule on %s",
                event.id,
                event.source,
                event.detail_type,
                self.name,
            )
        return result

    def put_events(self, entries: Iterable[Mapping[str, Any]]) -> List[PutEventsResult]:
        """Publish ``PutEvents`` request entries.

        Every entry is validated before any is published, so a malformed
        entry rejects the whole request.

        Raises:
            ValueError: If any entry is malformed.
        """
        events = [Event.from_entry(entry) for entry in entries]
        return [self.publish(event) for event in events]

    def _deliver(
        self, rule: Rule, target: RuleTarget, event: Event, result: PutEventsResult
    ) -> None:
        key = (rule.name, target.target_id)
        try:
            target.invoke(event)
        except Exception as e:
            logger.exception(
                "Rule %s failed to deliver event %s to %s",
                rule.name,
                event.id,
                target.target_id,
            )
            result.failed[key] = e
            if target.dead_letter_queue is not None:
                target.dead_letter_queue.send(
                    {"rule": rule.name, "target": target.target_id, "event": event}
                )
        else:
            result.delivered.append(key)
