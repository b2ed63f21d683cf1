"""Exception hierarchy for the validation pipeline.

Only two groups ever leave the pipeline as exceptions:

* **Terminal** - :class:`UnknownNamespaceError`; the document dialect could not
  be determined so nothing else can run.
* **Configuration-fatal** - :class:`ConfigurationError` and subclasses; a schema,
  rule set or transform resource is missing or broken. The affected capability
  stays unusable until the operator fixes it.

Per-document processing faults (:class:`ProcessingError`) are raised by the
rule executor and presentation transform, which are invoked explicitly by the
caller. Structural violations and failing rules are data, never exceptions.
:class:`SignatureServiceError` is raised by signature clients and is always
absorbed by :class:`~ebinterface_validation.signature.SignatureVerificationAdapter`.
"""

from __future__ import annotations


class ValidationServiceError(Exception):
    """Base class for all errors raised by this package."""


class UnknownNamespaceError(ValidationServiceError):
    """Root namespace missing or not one of the known ebInterface dialects."""

    def __init__(self, message: str, namespace: str | None = None) -> None:
        super().__init__(message)
        self.namespace = namespace


class ConfigurationError(ValidationServiceError):
    """A required resource is missing or malformed."""


class SchemaResourceError(ConfigurationError):
    """Schema definition missing or not compilable."""


class TransformResourceError(ConfigurationError):
    """A built-in or configured stylesheet could not be loaded."""


class RuleSetNotFoundError(ConfigurationError):
    """Rule-set reference does not resolve to a file."""

    def __init__(self, reference: str) -> None:
        super().__init__(f"Rule set not found: {reference}")
        self.reference = reference


class RuleSetCompilationError(ConfigurationError):
    """Rule document could not be turned into an executable transform."""

    def __init__(self, reference: str, message: str) -> None:
        super().__init__(f"Rule set '{reference}' could not be compiled: {message}")
        self.reference = reference


class ProcessingError(ValidationServiceError):
    """A single document could not be processed by a transform."""


class RuleExecutionError(ProcessingError):
    """The compiled validating transform could not be applied to the instance."""


class PresentationError(ProcessingError):
    """The presentation stylesheet failed on the given instance."""


class SignatureServiceError(ValidationServiceError):
    """The signature-verification collaborator returned a fault."""
