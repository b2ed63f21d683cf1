"""Read the assertions of a Schematron rule set without compiling it.

This module backs rule-set introspection (``GET /rulesets/{reference}`` and
``ebinterface-validate rules``): it lists patterns, rule contexts and
assert/report nodes so operators can see what a rule set checks before
running it.

Features:
* Iterates patterns → rules → (assert|report) producing normalized
    :class:`SchematronRule` objects
* Maps ``@role`` to the same severities the report-shaping stylesheet emits

Severity mapping:
* ``sch:assert`` is ``fail`` unless its role is warning-like
  (``warning``, ``warn``, ``info``, ``information``)
* ``sch:report`` is ``warning`` unless its role is error-like
  (``error``, ``fatal``, ``fail``)

Example:
        from ebinterface_validation.schematron_parser import SchematronParser

        parser = SchematronParser(Path("rulesets/government-4p0.sch"))
        for rule in parser.iter_rules():
                print(rule.rule_id, rule.severity, rule.test)
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import RuleSetCompilationError

SCH_NS = {
    "sch": "http://purl.oclc.org/dsdl/schematron",
    "svrl": "http://purl.oclc.org/dsdl/svrl",
}

WARNING_ROLES = {"warning", "warn", "info", "information"}
ERROR_ROLES = {"error", "fatal", "fail"}


def severity_for(kind: str, role: Optional[str]) -> str:
    """Severity a failed assert / fired report is reported with."""
    role = (role or "").lower()
    if kind == "assert":
        return "warning" if role in WARNING_ROLES else "fail"
    return "fail" if role in ERROR_ROLES else "warning"


@dataclass
class SchematronRule:
    pattern: Optional[str]
    context: str
    kind: str
    rule_id: str
    test: str
    message: str
    severity: str


class SchematronParser:
    """Parse a Schematron file and expose its rules.

    Args:
        schematron_path: Path to the Schematron XML file.
    """

    def __init__(self, schematron_path: Path) -> None:
        self.path = Path(schematron_path)
        try:
            self.tree = ET.parse(self.path)
        except ET.ParseError as exc:
            raise RuleSetCompilationError(str(self.path), str(exc)) from exc
        self.root = self.tree.getroot()

    @property
    def title(self) -> Optional[str]:
        text = self.root.findtext("sch:title", namespaces=SCH_NS)
        return text.strip() if text else None

    def iter_rules(self) -> Iterable[SchematronRule]:
        """Yield each assert/report in definition order."""
        for pattern in self.root.findall("sch:pattern", namespaces=SCH_NS):
            pattern_id = pattern.get("id")
            for rule in pattern.findall("sch:rule", namespaces=SCH_NS):
                context = rule.get("context")
                if not context:
                    continue
                for node in rule:
                    kind = node.tag.rsplit("}", 1)[-1]
                    if kind not in ("assert", "report"):
                        continue
                    test = node.get("test", "")
                    yield SchematronRule(
                        pattern=pattern_id,
                        context=context,
                        kind=kind,
                        rule_id=node.get("id") or test,
                        test=test,
                        message=" ".join("".join(node.itertext()).split()),
                        severity=severity_for(kind, node.get("role")),
                    )

    def describe(self) -> Dict[str, Any]:
        rules: List[SchematronRule] = list(self.iter_rules())
        return {
            "title": self.title,
            "query_binding": self.root.get("queryBinding"),
            "phases": [
                phase.get("id")
                for phase in self.root.findall("sch:phase", namespaces=SCH_NS)
            ],
            "rule_count": len(rules),
            "rules": [asdict(rule) for rule in rules],
        }
