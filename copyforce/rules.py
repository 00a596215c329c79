"""Include/exclude rules that decide which Salesforce tables are copied.

A table is eligible when at least one include rule matches its whole name
and no exclude rule does. Exclude always wins, whatever order the rules
were declared in; rules are still kept in declaration order so they can
be traced and logged.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from enum import Enum

from copyforce.exceptions import InvalidRulePattern
from copyforce.logging_utils import get_logger

logger = get_logger(__name__)

MATCH_ALL = ".*"


class RuleKind(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


@dataclass(frozen=True)
class TableRule:
    """A regular expression over table names, tagged include or exclude."""

    pattern: str
    kind: RuleKind = RuleKind.INCLUDE
    _regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            regex = re.compile(self.pattern)
        except re.error as e:
            raise InvalidRulePattern(
                f"Invalid table rule pattern '{self.pattern}': {e}",
                details={"pattern": self.pattern, "kind": self.kind.value},
            ) from e
        object.__setattr__(self, "_regex", regex)

    def matches(self, table_name: str) -> bool:
        return self._regex.fullmatch(table_name) is not None


class ExtractionRuleset:
    """Ordered collection of table rules with exclude-wins evaluation."""

    def __init__(self, rules: Iterable[TableRule] = ()):
        self._rules: list[TableRule] = []
        for rule in rules:
            self._add(rule, rule.kind)

    @classmethod
    def default(cls) -> "ExtractionRuleset":
        """Ruleset used when no rules document is supplied: copy everything."""
        ruleset = cls()
        ruleset.include_table(MATCH_ALL)
        return ruleset

    def include_table(self, rule: TableRule | str) -> TableRule | None:
        return self._add(rule, RuleKind.INCLUDE)

    def exclude_table(self, rule: TableRule | str) -> TableRule | None:
        return self._add(rule, RuleKind.EXCLUDE)

    def _add(self, rule: TableRule | str, kind: RuleKind) -> TableRule | None:
        pattern = rule.pattern if isinstance(rule, TableRule) else rule
        if pattern is None or not pattern.strip():
            logger.debug("Ignoring blank table rule", extra={"kind": kind.value})
            return None

        pattern = pattern.strip()
        if isinstance(rule, TableRule) and rule.pattern == pattern and rule.kind == kind:
            added = rule
        elif isinstance(rule, TableRule):
            added = replace(rule, pattern=pattern, kind=kind)
        else:
            added = TableRule(pattern, kind)

        self._rules.append(added)
        return added

    @property
    def rules(self) -> tuple[TableRule, ...]:
        return tuple(self._rules)

    @property
    def includes(self) -> tuple[TableRule, ...]:
        return tuple(r for r in self._rules if r.kind is RuleKind.INCLUDE)

    @property
    def excludes(self) -> tuple[TableRule, ...]:
        return tuple(r for r in self._rules if r.kind is RuleKind.EXCLUDE)

    def is_included(self, table_name: str) -> bool:
        if not any(r.matches(table_name) for r in self.includes):
            return False
        return not any(r.matches(table_name) for r in self.excludes)

    def select(self, table_names: Iterable[str]) -> list[str]:
        """Eligible table names, in the order given."""
        return [name for name in table_names if self.is_included(name)]

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[TableRule]:
        return iter(self._rules)

    def __repr__(self) -> str:
        rules = ", ".join(f"{r.kind.value}:{r.pattern}" for r in self._rules)
        return f"ExtractionRuleset([{rules}])"
