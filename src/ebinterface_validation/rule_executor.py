"""Apply compiled rule sets to document instances.

Execution is two transforms deep:

1. The rule set's validating XSLT turns the instance into SVRL, a raw report
   of every rule evaluated.
2. The fixed report-shaping stylesheet (``resources/report.xsl`` unless
   configured otherwise) turns SVRL into a flat ``report/finding`` document,
   which is read into :class:`~ebinterface_validation.models.Finding` values.

Both steps are pure functions of (instance, compiled rule set). A rule that
fails is a ``fail`` finding; only an instance the transform cannot process at
all raises :class:`~ebinterface_validation.exceptions.RuleExecutionError`.
"""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from lxml import etree

from .config import DEFAULT_REPORT_TRANSFORM
from .exceptions import RuleExecutionError, TransformResourceError
from .models import Finding, Severity
from .pool import ContextPool
from .rule_compiler import CompiledRuleSet

logger = logging.getLogger(__name__)

REPORT_NS = "urn:ebinterface:validation:report"


class RuleExecutor:
    """Run compiled rule sets and shape their output into findings."""

    def __init__(self, report_transform_path: Optional[Path] = None, max_idle: int = 8) -> None:
        path = Path(report_transform_path or DEFAULT_REPORT_TRANSFORM)
        try:
            stylesheet = etree.parse(str(path))
            report_transform = etree.XSLT(stylesheet)
        except (OSError, etree.XMLSyntaxError, etree.XSLTParseError) as exc:
            raise TransformResourceError(
                f"Report transform could not be loaded ({path}): {exc}"
            ) from exc
        self.report_transform_path = path
        self._report_pool = ContextPool(
            lambda: etree.XSLT(stylesheet),
            max_idle=max_idle,
            name="report",
            initial=report_transform,
        )
        logger.info("Loaded report transform from %s", path)

    def raw_report(
        self, data: Union[bytes, BinaryIO], compiled: CompiledRuleSet
    ) -> etree._ElementTree:
        """Apply the validating transform and return the SVRL document."""
        if hasattr(data, "read"):
            data = data.read()
        parser = etree.XMLParser(no_network=True, resolve_entities=False)
        try:
            document = etree.parse(BytesIO(data), parser)
        except etree.XMLSyntaxError as exc:
            raise RuleExecutionError(f"Instance could not be parsed: {exc}") from exc

        with compiled.transform() as validating:
            try:
                return validating(document)
            except etree.XSLTApplyError as exc:
                raise RuleExecutionError(
                    f"Rule set '{compiled.reference}' could not be applied: {exc}"
                ) from exc

    def shape(self, svrl: etree._ElementTree) -> etree._ElementTree:
        """Apply the report-shaping transform to an SVRL document."""
        with self._report_pool.checkout() as report_transform:
            try:
                return report_transform(svrl)
            except etree.XSLTApplyError as exc:
                raise RuleExecutionError(f"Report shaping failed: {exc}") from exc

    def execute(self, data: Union[bytes, BinaryIO], compiled: CompiledRuleSet) -> List[Finding]:
        """Evaluate ``compiled`` against ``data``.

        Returns:
            Findings in the document order of the rule engine output.

        Raises:
            RuleExecutionError: The instance is not parseable or a transform faulted.
        """
        findings = parse_findings(self.shape(self.raw_report(data, compiled)))
        logger.debug(
            "Rule set %s produced %d findings", compiled.reference, len(findings)
        )
        return findings


def parse_findings(report: etree._ElementTree) -> List[Finding]:
    """Read a shaped report document into :class:`Finding` values."""
    root = report.getroot()
    if root is None:
        raise RuleExecutionError("Report shaping produced an empty document")
    findings = []
    for node in root.iterfind(f"{{{REPORT_NS}}}finding"):
        try:
            severity = Severity(node.get("severity"))
        except ValueError as exc:
            raise RuleExecutionError(f"Unknown finding severity: {node.get('severity')}") from exc
        findings.append(
            Finding(
                rule_id=node.get("id", ""),
                severity=severity,
                message=(node.text or "").strip(),
                location=node.get("location") or None,
            )
        )
    return findings
