"""Core data structures produced by the validation pipeline.

These dataclasses are the values handed back to callers. They avoid any
framework dependency so they can be returned from the library API, serialized
by the FastAPI layer, or printed by the CLI without conversion glue.

Overview:
        * ``DocumentVersion`` enumerates the known ebInterface dialects in their
            unsigned and signed variants.
        * ``StructuralViolation`` is one schema conformance problem.
        * ``Finding`` is one rule-evaluation outcome; ``RuleSetReport`` groups the
            ordered findings of one rule-set run.
        * ``SignatureOutcome`` / ``SignerInfo`` describe the delegated signature check.
        * ``ValidationResult`` aggregates detection, schema and signature stages.

Typical construction (simplified)::

        from ebinterface_validation.models import (
                DocumentVersion, StructuralViolation, ValidationResult,
        )

        result = ValidationResult(
                version=DocumentVersion.E4P0,
                structural_violations=(
                        StructuralViolation("Element 'InvoiceDate': missing.", line=12, column=0),
                ),
        )
        result.schema_valid  # False
        payload = result.to_dict()

Design notes:
        * All result types are frozen and use tuples so a result cannot change
            after the pipeline hands it out.
        * ``to_dict`` produces stable keys for JSON responses and snapshot tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

DSIG_NAMESPACE = "http://www.w3.org/2000/09/xmldsig#"
SIGNATURE_PREFIX = "dsig"


class DocumentVersion(Enum):
    """Known ebInterface dialects.

    Each member carries the dialect label, the root namespace and whether it
    denotes the signed variant of that dialect.

    Example:
        >>> DocumentVersion.E4P0_SIGNED.signed
        True
        >>> DocumentVersion.E4P0_SIGNED.dialect is DocumentVersion.E4P0
        True
    """

    E3P0 = ("3p0", "http://www.ebinterface.at/schema/3p0/", False)
    E3P02 = ("3p02", "http://www.ebinterface.at/schema/3p02/", False)
    E4P0 = ("4p0", "http://www.ebinterface.at/schema/4p0/", False)
    E3P0_SIGNED = ("3p0", "http://www.ebinterface.at/schema/3p0/", True)
    E3P02_SIGNED = ("3p02", "http://www.ebinterface.at/schema/3p02/", True)
    E4P0_SIGNED = ("4p0", "http://www.ebinterface.at/schema/4p0/", True)

    def __init__(self, label: str, namespace: str, signed: bool) -> None:
        self.label = label
        self.namespace = namespace
        self.signed = signed

    def is_signed(self) -> bool:
        return self.signed

    @property
    def signature_namespace_prefix(self) -> Optional[str]:
        """Prefix under which the signature block is addressed, signed variants only."""
        return SIGNATURE_PREFIX if self.signed else None

    @property
    def dialect(self) -> "DocumentVersion":
        """Unsigned counterpart; schema and stylesheet selection key on this."""
        return DocumentVersion.lookup(self.namespace, signed=False)

    @classmethod
    def lookup(cls, namespace: Optional[str], signed: bool = False) -> "DocumentVersion":
        """Exact namespace lookup.

        Raises:
            KeyError: If the namespace is not one of the known dialects.
        """
        for member in cls:
            if member.namespace == namespace and member.signed == signed:
                return member
        raise KeyError(namespace)

    @classmethod
    def dialects(cls) -> Tuple["DocumentVersion", ...]:
        return tuple(member for member in cls if not member.signed)


@dataclass(frozen=True)
class StructuralViolation:
    """A single schema conformance problem.

    Attributes:
        message: Engine message, as reported by the schema validator.
        line: 1-based line number when known.
        column: Column number when known.
    """

    message: str
    line: Optional[int] = None
    column: Optional[int] = None

    @property
    def location(self) -> Optional[str]:
        if self.line is None:
            return None
        return f"{self.line}:{self.column or 0}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "line": self.line,
            "column": self.column,
            "location": self.location,
        }


class Severity(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARNING = "warning"


@dataclass(frozen=True)
class Finding:
    """One rule-evaluation outcome.

    Attributes:
        rule_id: Assertion identifier (``@id``) or, failing that, its test expression.
        severity: :class:`Severity` of the outcome.
        message: Human-readable assertion text.
        location: XPath of the offending node (or rule context for passes).
    """

    rule_id: str
    severity: Severity
    message: str = ""
    location: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "message": self.message,
            "location": self.location,
        }


@dataclass(frozen=True)
class RuleSetReport:
    """Ordered findings of one rule-set evaluation.

    Findings keep the document order of the rule engine output, not the order
    in which the rules are defined.
    """

    reference: str
    findings: Tuple[Finding, ...] = ()

    @property
    def failures(self) -> Tuple[Finding, ...]:
        return tuple(f for f in self.findings if f.severity is Severity.FAIL)

    @property
    def warnings(self) -> Tuple[Finding, ...]:
        return tuple(f for f in self.findings if f.severity is Severity.WARNING)

    @property
    def passed(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "passed": self.passed,
            "summary": {
                "total": len(self.findings),
                "failures": len(self.failures),
                "warnings": len(self.warnings),
            },
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass(frozen=True)
class SignerInfo:
    """Identity attributes of the signing certificate."""

    issuer: str
    subject: str
    serial_number: str
    qualified_certificate: bool = False
    public_authority: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issuer": self.issuer,
            "subject": self.subject,
            "serial_number": self.serial_number,
            "qualified_certificate": self.qualified_certificate,
            "public_authority": self.public_authority,
        }


class VerificationStatus(str, Enum):
    VERIFIED = "verified"  # collaborator answered; flags reflect its codes
    ERRORED = "errored"  # collaborator raised; flags forced to False


@dataclass(frozen=True)
class SignatureOutcome:
    """Result of the delegated signature check.

    ``status`` separates "the verifier said no" from "the verifier could not
    answer". Either way an errored outcome reports both flags as ``False``.
    """

    certificate_ok: bool
    signature_ok: bool
    signer: Optional[SignerInfo] = None
    status: VerificationStatus = VerificationStatus.VERIFIED
    error: Optional[str] = None

    @classmethod
    def errored(cls, error: str) -> "SignatureOutcome":
        return cls(
            certificate_ok=False,
            signature_ok=False,
            signer=None,
            status=VerificationStatus.ERRORED,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "certificate_ok": self.certificate_ok,
            "signature_ok": self.signature_ok,
            "status": self.status.value,
            "error": self.error,
            "signer": self.signer.to_dict() if self.signer else None,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Aggregate of detection, schema and signature stages.

    Either ``error`` is set (detection failed, nothing else is meaningful) or
    ``version`` is set together with whatever each stage produced.
    """

    version: Optional[DocumentVersion] = None
    structural_violations: Tuple[StructuralViolation, ...] = field(default_factory=tuple)
    signature: Optional[SignatureOutcome] = None
    error: Optional[str] = None
    # root namespace of a document whose dialect is unknown
    namespace: Optional[str] = None

    @classmethod
    def terminal(cls, error: str, namespace: Optional[str] = None) -> "ValidationResult":
        return cls(error=error, namespace=namespace)

    @property
    def detection_failed(self) -> bool:
        return self.error is not None

    @property
    def schema_valid(self) -> bool:
        return not self.detection_failed and not self.structural_violations

    @property
    def valid(self) -> bool:
        """Schema valid and, for signed variants, certificate and signature OK."""
        if not self.schema_valid:
            return False
        if self.signature is None:
            return True
        return self.signature.certificate_ok and self.signature.signature_ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version.name if self.version else None,
            "dialect": self.version.label if self.version else None,
            "signed": self.version.signed if self.version else None,
            "error": self.error,
            "namespace": self.namespace,
            "schema_valid": self.schema_valid,
            "valid": self.valid,
            "structural_violations": [v.to_dict() for v in self.structural_violations],
            "signature": self.signature.to_dict() if self.signature else None,
        }
