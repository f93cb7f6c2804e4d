from __future__ import annotations

from threading import Lock
from typing import Iterable, Protocol

from asbuilt_router.routing.rules import RoutingRule


class RoutingRuleStore(Protocol):
    def find_applicable(
        self,
        *,
        utility_id: str,
        company_id: str | None,
        section_type: str,
    ) -> list[RoutingRule]: ...

    def put(self, rule: RoutingRule) -> None: ...


def _specificity_key(rule: RoutingRule) -> tuple[int, int]:
    # Ascending priority; company-scoped rules before utility-wide ones on ties.
    return (rule.priority, 0 if rule.company_id else 1)


class InMemoryRoutingRuleStore:
    def __init__(self, rules: Iterable[RoutingRule] = ()) -> None:
        self._lock = Lock()
        self._rules: dict[str, RoutingRule] = {rule.name: rule for rule in rules}

    def put(self, rule: RoutingRule) -> None:
        with self._lock:
            self._rules[rule.name] = rule

    def all(self) -> list[RoutingRule]:
        with self._lock:
            return list(self._rules.values())

    def find_applicable(
        self,
        *,
        utility_id: str,
        company_id: str | None,
        section_type: str,
    ) -> list[RoutingRule]:
        with self._lock:
            candidates = [
                rule
                for rule in self._rules.values()
                if rule.is_active
                and rule.utility_id == utility_id
                and rule.section_type == section_type
                and (rule.company_id is None or rule.company_id == company_id)
            ]
        return sorted(candidates, key=_specificity_key)


__all__ = ["InMemoryRoutingRuleStore", "RoutingRuleStore"]
