"""Build an ExtractionRuleset from a rules document.

The document is a flat list of declarations::

    <copyforce>
      <include table=".*"/>
      <exclude table=".*History"/>
    </copyforce>

Parsing is left to ``xml.sax``; this module only interprets the element
events it produces.
"""

from __future__ import annotations

import xml.sax
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from xml.sax.handler import ContentHandler

from copyforce.exceptions import RulesDocumentError
from copyforce.logging_utils import get_logger
from copyforce.rules import ExtractionRuleset, RuleKind, TableRule

logger = get_logger(__name__)

TABLE_ATTRIBUTE = "table"

RuleCallback = Callable[[TableRule], None]


def apply_declaration(
    ruleset: ExtractionRuleset,
    tag: str,
    attributes: Mapping[str, str],
) -> TableRule | None:
    """Add the rule declared by one element, if any.

    Unknown tags and declarations without a usable ``table`` attribute
    are no-ops.
    """
    if tag == RuleKind.INCLUDE.value:
        add = ruleset.include_table
    elif tag == RuleKind.EXCLUDE.value:
        add = ruleset.exclude_table
    else:
        return None

    table = attributes.get(TABLE_ATTRIBUTE)
    if table is None or not table.strip():
        logger.debug(f"Skipping <{tag}> without a table attribute")
        return None
    return add(table)


def interpret_declarations(
    events: Iterable[tuple[str, Mapping[str, str]]],
    ruleset: ExtractionRuleset | None = None,
    on_rule: RuleCallback | None = None,
) -> ExtractionRuleset:
    """Fold (tag, attributes) events into a ruleset."""
    if ruleset is None:
        ruleset = ExtractionRuleset()
    for tag, attributes in events:
        rule = apply_declaration(ruleset, tag, attributes)
        if rule is not None and on_rule is not None:
            on_rule(rule)
    return ruleset


class RulesDocumentHandler(ContentHandler):
    """SAX handler that feeds start-element events into a ruleset."""

    def __init__(self, ruleset: ExtractionRuleset, on_rule: RuleCallback | None = None):
        super().__init__()
        self.ruleset = ruleset
        self.on_rule = on_rule

    def startElement(self, name, attrs):
        rule = apply_declaration(self.ruleset, name, attrs)
        if rule is not None and self.on_rule is not None:
            self.on_rule(rule)


def load_rules(path: Path | str, on_rule: RuleCallback | None = None) -> ExtractionRuleset:
    """Parse a rules document into a new ruleset."""
    path = Path(path)
    ruleset = ExtractionRuleset()
    handler = RulesDocumentHandler(ruleset, on_rule=on_rule)

    try:
        with path.open("rb") as f:
            xml.sax.parse(f, handler)
    except xml.sax.SAXParseException as e:
        raise RulesDocumentError(
            f"Rules document '{path}' is not well-formed: {e.getMessage()}",
            details={"path": str(path), "line": e.getLineNumber(), "column": e.getColumnNumber()},
        ) from e
    except OSError as e:
        raise RulesDocumentError(
            f"Unable to read rules document '{path}': {e.strerror or e}",
            details={"path": str(path)},
        ) from e

    logger.info(
        "Loaded extraction rules",
        extra={"path": str(path), "includes": len(ruleset.includes), "excludes": len(ruleset.excludes)},
    )
    return ruleset
