"""Decision table mapping trigger type and failure count to a reschedule strategy."""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterable
from dataclasses import dataclass

from .schemas import NotificationLevel, RescheduleStrategy, UserRole


@dataclass(frozen=True)
class RescheduleRule:
    """One row of the reschedule decision table."""

    trigger_type: str
    min_failure_count: int
    strategy: RescheduleStrategy
    notification_level: NotificationLevel
    delay_days: int | None = None
    escalate_to_role: UserRole | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.trigger_type, self.min_failure_count)


FALLBACK_RULE = RescheduleRule(
    trigger_type="*",
    min_failure_count=0,
    strategy="MANUAL",
    notification_level="URGENT",
)


class RuleTable:
    """Immutable rule list sorted by `(trigger_type, min_failure_count)`."""

    def __init__(self, rules: Iterable[RescheduleRule], *, fallback: RescheduleRule = FALLBACK_RULE) -> None:
        ordered = sorted(rules, key=lambda rule: rule.key)
        keys = [rule.key for rule in ordered]
        if len(set(keys)) != len(keys):
            raise ValueError("duplicate (trigger_type, min_failure_count) rule")
        self._rules: tuple[RescheduleRule, ...] = tuple(ordered)
        self._keys: tuple[tuple[str, int], ...] = tuple(keys)
        self._fallback = fallback

    @property
    def rules(self) -> tuple[RescheduleRule, ...]:
        return self._rules

    def select(self, trigger_type: str, failure_count: int) -> RescheduleRule:
        """Return the rule with the largest threshold not above `failure_count`."""

        index = bisect_right(self._keys, (trigger_type, failure_count)) - 1
        if index >= 0:
            candidate = self._rules[index]
            if candidate.trigger_type == trigger_type:
                return candidate
        return self._fallback


DEFAULT_RULES = RuleTable(
    [
        RescheduleRule("TIME_BASED", 1, "DELAY", "LOW", delay_days=1),
        RescheduleRule("TIME_BASED", 2, "DELAY", "MEDIUM", delay_days=3),
        RescheduleRule("TIME_BASED", 3, "ESCALATE", "HIGH", escalate_to_role="MANAGER"),
        RescheduleRule("USAGE_BASED", 1, "IMMEDIATE", "MEDIUM"),
        RescheduleRule("USAGE_BASED", 2, "ESCALATE", "HIGH", escalate_to_role="MANAGER"),
        RescheduleRule("CONDITION_BASED", 1, "IMMEDIATE", "HIGH"),
        RescheduleRule("CONDITION_BASED", 2, "ESCALATE", "URGENT", escalate_to_role="MANAGER"),
    ]
)
