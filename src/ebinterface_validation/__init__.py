"""ebInterface Validation
=======================

Validation service for ebInterface e-invoices: dialect detection, XML Schema
conformance, delegated XML signature verification and Schematron business
rules, exposed as a library, a FastAPI service and a CLI.

Key capabilities
----------------
- Detect the ebInterface dialect (3.0, 3.0.2, 4.0) and whether the document
  carries an XML signature, from the root element alone.
- Validate structure against per-dialect schemas resolved through an OASIS
  catalog, without network access.
- Compile Schematron rule sets once (ISO skeleton, XSLT 1.0) and evaluate
  them into ordered pass/fail/warning findings.
- Delegate signature checks to a MOA-SP style service; collaborator faults
  become negative outcomes, never exceptions.
- Render documents to HTML with per-dialect stylesheets.

Design principles
-----------------
1. **Data, not exceptions** - schema violations and failing rules are part of
   the result; only unknown dialects and broken resources raise.
2. **Compile once, apply many** - schemas and rule sets are compiled once and
   each call borrows its own engine context.
3. **Separation of concerns** - detection, schemas, rules, signatures,
   transport and monitoring live in separate modules with narrow contracts.

Minimal quick start
-------------------
>>> from ebinterface_validation import ValidationPipeline
>>> pipeline = ValidationPipeline.from_settings()
>>> result = pipeline.validate(open("invoice.xml", "rb").read())
>>> result.valid

FastAPI application instance (for ASGI servers like uvicorn):
>>> from ebinterface_validation.app import app  # noqa: F401
"""

__version__ = "0.1.0"

from .config import ValidatorSettings
from .detector import detect_version
from .exceptions import (
    ConfigurationError,
    ProcessingError,
    UnknownNamespaceError,
    ValidationServiceError,
)
from .models import (
    DocumentVersion,
    Finding,
    RuleSetReport,
    Severity,
    SignatureOutcome,
    SignerInfo,
    StructuralViolation,
    ValidationResult,
)
from .pipeline import ValidationPipeline

__all__ = [
    "ConfigurationError",
    "DocumentVersion",
    "Finding",
    "ProcessingError",
    "RuleSetReport",
    "Severity",
    "SignatureOutcome",
    "SignerInfo",
    "StructuralViolation",
    "UnknownNamespaceError",
    "ValidationPipeline",
    "ValidationResult",
    "ValidationServiceError",
    "ValidatorSettings",
    "detect_version",
]
