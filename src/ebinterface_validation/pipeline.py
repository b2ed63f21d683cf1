"""The validation pipeline: detection, schema, signature and rule sets.

:class:`ValidationPipeline` owns one instance of each stage and is built once
per process (see :meth:`ValidationPipeline.from_settings`). It is safe to call
from many threads at once; every stage borrows its own engine context.

Control flow of :meth:`ValidationPipeline.validate`::

    bytes -> detect_version --(UnknownNamespaceError)--> terminal result
                 |
                 v
          schema registry  (violations recorded, never raised)
                 |
                 v
          signature adapter (signed variants only, faults absorbed)
                 |
                 v
          ValidationResult

Rule-set evaluation is a separate call (:meth:`evaluate_rule_set`) against an
explicit rule-set reference and does not feed into ``ValidationResult``.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterator, List, Optional, Union

from . import detector
from .cache import RuleSetCache
from .config import ValidatorSettings
from .exceptions import UnknownNamespaceError
from .models import DocumentVersion, RuleSetReport, ValidationResult
from .monitoring import PerformanceMonitor, get_monitor
from .presentation import PresentationTransformer
from .rule_compiler import CompiledRuleSet, RuleSetCompiler
from .rule_executor import RuleExecutor
from .schema_registry import SchemaValidatorRegistry
from .schematron_parser import SchematronParser
from .signature import MoaSignatureClient, SignatureVerificationAdapter

logger = logging.getLogger(__name__)


class ValidationPipeline:
    """Wire the validation stages together.

    Args:
        registry: Structural validators per dialect, or a zero-argument
            callable that builds them on first use. Rule-set evaluation and
            rendering never touch the registry.
        compiler: Rule-set compiler with its cache.
        executor: Rule executor with the report-shaping transform.
        signature_adapter: Adapter for the signature collaborator.
        presentation: Optional HTML renderer.
        monitor: Performance monitor (defaults to the process-wide one).
    """

    def __init__(
        self,
        registry: Union[SchemaValidatorRegistry, Callable[[], SchemaValidatorRegistry]],
        compiler: RuleSetCompiler,
        executor: RuleExecutor,
        signature_adapter: Optional[SignatureVerificationAdapter] = None,
        presentation: Optional[PresentationTransformer] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ) -> None:
        if isinstance(registry, SchemaValidatorRegistry):
            self._registry: Optional[SchemaValidatorRegistry] = registry
            self._registry_loader = None
        else:
            self._registry = None
            self._registry_loader = registry
        self._registry_lock = threading.Lock()
        self.compiler = compiler
        self.executor = executor
        self.signature_adapter = signature_adapter or SignatureVerificationAdapter()
        self.presentation = presentation
        self.monitor = monitor or get_monitor()

    @property
    def registry(self) -> SchemaValidatorRegistry:
        """The schema registry, loaded on first access when built lazily.

        Raises:
            SchemaResourceError: The schemas cannot be loaded.
        """
        if self._registry is None:
            with self._registry_lock:
                if self._registry is None:
                    self._registry = self._registry_loader()
        return self._registry

    @classmethod
    def from_settings(
        cls,
        settings: Optional[ValidatorSettings] = None,
        monitor: Optional[PerformanceMonitor] = None,
        load_schemas: bool = True,
    ) -> "ValidationPipeline":
        """Build every stage from ``settings`` (default: the environment).

        With ``load_schemas=False`` the schema registry is built on the first
        structural validation, so rule sets and rendering work without schemas.

        Raises:
            ConfigurationError: A schema or transform resource is unusable.
        """
        settings = settings or ValidatorSettings.from_env()
        monitor = monitor or get_monitor()

        verifier = None
        if settings.signature_service_url:
            verifier = MoaSignatureClient(
                settings.signature_service_url,
                trust_profile=settings.signature_trust_profile,
                timeout=settings.signature_timeout,
            )
        else:
            logger.info("No signature service configured; signed documents will report errors")

        def load_registry() -> SchemaValidatorRegistry:
            return SchemaValidatorRegistry(
                settings.schema_dir, catalog_path=settings.resolved_catalog()
            )

        return cls(
            registry=load_registry() if load_schemas else load_registry,
            compiler=RuleSetCompiler(
                ruleset_dir=settings.ruleset_dir,
                cache=RuleSetCache(default_ttl=settings.ruleset_cache_ttl, monitor=monitor),
                meta_transform_path=settings.meta_transform_path,
                phase=settings.schematron_phase,
            ),
            executor=RuleExecutor(settings.report_transform_path),
            signature_adapter=SignatureVerificationAdapter(
                verifier, timeout=settings.signature_timeout
            ),
            presentation=PresentationTransformer(settings.stylesheet_dir),
            monitor=monitor,
        )

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        except Exception:
            self.monitor.record_stage(name, time.perf_counter() - start, error=True)
            raise
        self.monitor.record_stage(name, time.perf_counter() - start)

    def detect_version(self, data: bytes) -> DocumentVersion:
        with self._stage("detect"):
            return detector.detect_version(data)

    def validate(self, source: Union[bytes, BinaryIO, Path]) -> ValidationResult:
        """Validate structure and, for signed variants, the signature.

        Never raises for document problems: an unknown dialect yields a
        terminal result, everything else is recorded in the result.
        """
        data = _read(source)
        try:
            version = self.detect_version(data)
        except UnknownNamespaceError as exc:
            logger.info("Version detection failed: %s", exc)
            self.monitor.record_outcome(None, "unknown")
            return ValidationResult.terminal(str(exc), namespace=exc.namespace)

        with self._stage("schema"):
            violations = self.registry.validate(data, version)

        signature = None
        if version.is_signed():
            with self._stage("signature"):
                signature = self.signature_adapter.verify(
                    data, version.signature_namespace_prefix
                )

        result = ValidationResult(
            version=version,
            structural_violations=tuple(violations),
            signature=signature,
        )
        self.monitor.record_outcome(version.name, "valid" if result.valid else "invalid")
        logger.debug(
            "Validated %s: %d violations, signature=%s",
            version.name,
            len(violations),
            signature.status.value if signature else None,
        )
        return result

    def compile_rule_set(self, reference: str) -> CompiledRuleSet:
        with self._stage("compile"):
            return self.compiler.compile(reference)

    def evaluate_rule_set(
        self,
        source: Union[bytes, BinaryIO, Path],
        rule_set: Union[str, CompiledRuleSet],
    ) -> RuleSetReport:
        """Run one rule set against an instance.

        Raises:
            RuleSetNotFoundError: ``rule_set`` names no rule document.
            RuleSetCompilationError: The rule document cannot be compiled.
            RuleExecutionError: The instance cannot be processed.
        """
        compiled = (
            rule_set if isinstance(rule_set, CompiledRuleSet) else self.compile_rule_set(rule_set)
        )
        data = _read(source)
        with self._stage("rules"):
            findings = self.executor.execute(data, compiled)
        return RuleSetReport(reference=compiled.reference, findings=tuple(findings))

    def list_rule_sets(self) -> List[str]:
        return self.compiler.list_rule_sets()

    def describe_rule_set(self, reference: str) -> Dict[str, Any]:
        """Patterns, rules and assertions of a rule set, without compiling it."""
        path = self.compiler.resolve(reference)
        description = SchematronParser(path).describe()
        description["reference"] = reference
        description["path"] = str(path)
        return description

    def render(self, source: Union[bytes, BinaryIO, Path], version: Optional[DocumentVersion] = None) -> str:
        """Render an instance to HTML.

        Raises:
            UnknownNamespaceError: ``version`` not given and not detectable.
            PresentationError: The stylesheet failed on the instance.
        """
        data = _read(source)
        if self.presentation is None:
            self.presentation = PresentationTransformer()
        version = version or self.detect_version(data)
        with self._stage("render"):
            return self.presentation.render(data, version)

    def close(self) -> None:
        self.signature_adapter.close()


def _read(source: Union[bytes, BinaryIO, Path]) -> bytes:
    if isinstance(source, Path):
        return source.read_bytes()
    if hasattr(source, "read"):
        return source.read()
    return source
