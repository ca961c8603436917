"""issue_etl.rules

Read-only rule lookup. Every rule definition is selected once, before the
engine starts, and kept in memory; lookups never touch the database again.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from types import MappingProxyType

import psycopg

from issue_etl.shared import UnknownRuleError

STATUS_REMOVED = "REMOVED"


@dataclass(frozen=True)
class Rule:
    uuid: str
    repository_key: str
    rule_key: str
    name: str | None = None
    status: str | None = None
    severity: str | None = None

    @property
    def key(self) -> str:
        return f"{self.repository_key}:{self.rule_key}"


class RuleRepository:
    """Immutable key → rule index, including REMOVED rules.

    Issues may still point at a rule that was removed after the analysis
    ran, so removed rules stay resolvable here.
    """

    def __init__(self, rules: Iterable[Rule]) -> None:
        by_key: dict[str, Rule] = {}
        by_uuid: dict[str, Rule] = {}
        for rule in rules:
            if rule.key in by_key:
                raise ValueError(f"duplicate rule key {rule.key!r}")
            by_key[rule.key] = rule
            by_uuid[rule.uuid] = rule
        self._by_key = MappingProxyType(by_key)
        self._by_uuid = MappingProxyType(by_uuid)

    def __len__(self) -> int:
        return len(self._by_key)

    def get_by_key(self, rule_key: str) -> Rule:
        rule = self._by_key.get(rule_key)
        if rule is None:
            raise UnknownRuleError(f"Rule not found: {rule_key}")
        return rule

    def find_by_key(self, rule_key: str | None) -> Rule | None:
        if rule_key is None:
            return None
        return self._by_key.get(rule_key)

    def find_by_uuid(self, uuid: str | None) -> Rule | None:
        if uuid is None:
            return None
        return self._by_uuid.get(uuid)


def load_rule_repository(conn: psycopg.Connection) -> RuleRepository:
    rows = conn.execute(
        """
        SELECT uuid, plugin_name, plugin_rule_key, name, status, priority
        FROM rules
        ORDER BY plugin_name, plugin_rule_key
        """
    ).fetchall()
    return RuleRepository(
        Rule(
            uuid=str(r[0]),
            repository_key=r[1],
            rule_key=r[2],
            name=r[3],
            status=r[4],
            severity=r[5],
        )
        for r in rows
    )
