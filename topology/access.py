"""Key-prefix write authorization for shared tables.

Writers to the shared events table are scoped by partition-key prefix
(``#order_*``, ``#invoice_*``, ...) through an IAM ``dynamodb:LeadingKeys``
condition with ``StringLike`` semantics: ``*`` matches any run of characters,
``?`` exactly one, everything else literally and case-sensitively.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Tuple

from topology.errors import TopologyError

LEADING_KEYS_CONDITION = "ForAllValues:StringLike"
LEADING_KEYS_KEY = "dynamodb:LeadingKeys"


class AccessDeniedError(TopologyError):
    """A write was attempted outside the writer's key prefix."""


def string_like(pattern: str) -> "re.Pattern[str]":
    """Compile an IAM ``StringLike`` pattern to a regular expression."""
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


@dataclass(frozen=True)
class LeadingKeysPolicy:
    """Allow ``actions`` only on partition keys matching one of ``patterns``."""

    actions: Tuple[str, ...]
    patterns: Tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "actions", tuple(self.actions))
        object.__setattr__(self, "patterns", tuple(self.patterns))

    def allows(self, action: str, partition_keys: Iterable[str]) -> bool:
        """True when ``action`` is granted and every key matches a pattern."""
        if action not in self.actions:
            return False
        compiled = [string_like(p) for p in self.patterns]
        return all(
            any(regex.fullmatch(key) for regex in compiled) for key in partition_keys
        )

    def check(self, action: str, *partition_keys: str) -> None:
        if not self.allows(action, partition_keys):
            raise AccessDeniedError(
                f"{action} on {list(partition_keys)} is outside {list(self.patterns)}"
            )

    def condition(self) -> Dict[str, Any]:
        """The IAM condition block enforcing this policy."""
        return {LEADING_KEYS_CONDITION: {LEADING_KEYS_KEY: list(self.patterns)}}
