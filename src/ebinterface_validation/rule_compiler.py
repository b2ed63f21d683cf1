"""Compile Schematron rule sets into executable validating transforms.

Compilation runs two fixed stages:

1. **Meta-transform** - the generic ISO Schematron skeleton shipped with lxml
   (``iso_dsdl_include`` -> ``iso_abstract_expand`` -> ``iso_svrl_for_xslt1``)
   turns the rule document into the *source* of a validating XSLT. An operator
   may swap the last step for their own skeleton stylesheet.
2. **Transform compilation** - that intermediate source is compiled into an
   ``lxml.etree.XSLT`` that emits SVRL when applied to an instance.

The result is a :class:`CompiledRuleSet`. :class:`RuleSetCompiler` caches it
per resolved rule-set path, so each distinct rule set is compiled once for the
life of the cache.

Example:
        compiler = RuleSetCompiler(ruleset_dir=Path("rulesets"))
        compiled = compiler.compile("government-4p0")
        with compiled.transform() as validating_xslt:
                svrl = validating_xslt(instance_tree)

Limitations:
* Only XSLT 1.0 query bindings are supported; ``queryBinding="xslt2"`` rule
    sets are rejected at compile time.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterator, List, Optional

from lxml import etree, isoschematron

from .cache import RuleSetCache
from .exceptions import RuleSetCompilationError, RuleSetNotFoundError, TransformResourceError
from .pool import ContextPool
from .schematron_parser import SCH_NS

logger = logging.getLogger(__name__)

SUPPORTED_QUERY_BINDINGS = {"xslt", "xslt1", "exslt", "xpath"}

# lxml's bundled skeleton stylesheets are module-level singletons
_META_LOCK = threading.Lock()


@dataclass(frozen=True, eq=False)
class CompiledRuleSet:
    """Executable form of one rule set, shared read-only by all callers.

    Attributes:
        reference: Reference the caller asked for.
        source_path: Resolved rule document path.
        title: ``sch:title`` of the rule set, if any.
        validator_source: Intermediate XSLT document produced by the meta-transform.
        compiled_at: Epoch seconds when compilation finished.
    """

    reference: str
    source_path: Path
    title: Optional[str]
    validator_source: etree._ElementTree = field(repr=False)
    compiled_at: float = field(default_factory=time.time)
    _pool: ContextPool = field(default=None, repr=False)

    @property
    def fingerprint(self) -> str:
        """md5 of the intermediate transform; equal for equal rule sources."""
        return hashlib.md5(etree.tostring(self.validator_source, method="c14n")).hexdigest()

    @contextmanager
    def transform(self) -> Iterator[etree.XSLT]:
        """Borrow a validating XSLT for the duration of one call."""
        with self._pool.checkout() as xslt:
            yield xslt


def load_meta_transform(path: Path) -> etree.XSLT:
    """Load an operator supplied Schematron skeleton stylesheet."""
    try:
        return etree.XSLT(etree.parse(str(path)))
    except (OSError, etree.XMLSyntaxError, etree.XSLTParseError) as exc:
        raise TransformResourceError(f"Meta-transform could not be loaded ({path}): {exc}") from exc


def compile_rule_set(
    path: Path,
    reference: Optional[str] = None,
    meta_transform: Optional[etree.XSLT] = None,
    phase: Optional[str] = None,
    max_idle: int = 8,
) -> CompiledRuleSet:
    """Compile one Schematron document. Pure function of its inputs.

    Args:
        path: Schematron rule document.
        reference: Caller-facing reference (defaults to ``str(path)``).
        meta_transform: Replacement for ``iso_svrl_for_xslt1``.
        phase: Schematron phase to activate (``None`` means ``#ALL``).
        max_idle: Validating transforms kept for reuse.

    Raises:
        RuleSetCompilationError: The document is not well formed, not
            Schematron, uses an unsupported query binding, or either stage fails.
    """
    reference = reference or str(path)
    try:
        schematron = etree.parse(str(path))
    except (OSError, etree.XMLSyntaxError) as exc:
        raise RuleSetCompilationError(reference, str(exc)) from exc

    root = schematron.getroot()
    if root.tag != f"{{{SCH_NS['sch']}}}schema":
        raise RuleSetCompilationError(reference, f"root element {root.tag} is not sch:schema")
    binding = (root.get("queryBinding") or "xslt").lower()
    if binding not in SUPPORTED_QUERY_BINDINGS:
        raise RuleSetCompilationError(reference, f"unsupported queryBinding '{binding}'")

    params = {}
    if phase:
        params["phase"] = etree.XSLT.strparam(phase)
    compile_step = meta_transform or isoschematron.iso_svrl_for_xslt1
    try:
        with _META_LOCK:
            included = isoschematron.iso_dsdl_include(schematron)
            expanded = isoschematron.iso_abstract_expand(included)
            validator_source = compile_step(expanded, **params)
    except etree.XSLTApplyError as exc:
        raise RuleSetCompilationError(reference, f"meta-transform failed: {exc}") from exc
    if validator_source.getroot() is None:
        raise RuleSetCompilationError(reference, "meta-transform produced no output")

    try:
        validating = etree.XSLT(validator_source)
    except etree.XSLTParseError as exc:
        raise RuleSetCompilationError(reference, f"generated transform invalid: {exc}") from exc

    title = root.findtext("sch:title", namespaces=SCH_NS)
    logger.info("Compiled rule set %s from %s", reference, path)
    return CompiledRuleSet(
        reference=reference,
        source_path=Path(path),
        title=title.strip() if title else None,
        validator_source=validator_source,
        _pool=ContextPool(
            lambda: etree.XSLT(validator_source),
            max_idle=max_idle,
            name=f"ruleset-{reference}",
            initial=validating,
        ),
    )


class RuleSetCompiler:
    """Resolve rule-set references and hand out cached compilations."""

    def __init__(
        self,
        ruleset_dir: Optional[Path] = None,
        cache: Optional[RuleSetCache] = None,
        meta_transform_path: Optional[Path] = None,
        phase: Optional[str] = None,
    ) -> None:
        self.ruleset_dir = Path(ruleset_dir) if ruleset_dir else None
        self.cache = cache if cache is not None else RuleSetCache()
        self.phase = phase
        self.meta_transform = (
            load_meta_transform(meta_transform_path) if meta_transform_path else None
        )

    def resolve(self, reference: str) -> Path:
        """Map a reference to an existing rule document.

        Relative references resolve against the rule-set directory; the
        ``.sch`` suffix may be omitted.

        Raises:
            RuleSetNotFoundError: Nothing exists at the resolved location.
        """
        candidate = Path(reference)
        relative = not candidate.is_absolute() and self.ruleset_dir is not None
        if relative:
            candidate = self.ruleset_dir / candidate
        for path in (candidate, candidate.with_name(candidate.name + ".sch")):
            if not path.is_file():
                continue
            # relative references must stay inside the rule-set directory
            if relative and self.ruleset_dir.resolve() not in path.resolve().parents:
                break
            return path
        raise RuleSetNotFoundError(reference)

    def compile(self, reference: str) -> CompiledRuleSet:
        """Return the compiled rule set for ``reference``, compiling on first use.

        References spelled differently but resolving to the same document share
        one compilation; the returned object carries the caller's spelling.
        """
        path = self.resolve(reference)
        key = self.cache._make_key("ruleset", str(path.resolve()), self.phase)
        compiled = self.cache.get_or_create(
            key,
            lambda: compile_rule_set(
                path,
                reference=reference,
                meta_transform=self.meta_transform,
                phase=self.phase,
            ),
            file_path=path,
        )
        if compiled.reference != reference:
            compiled = replace(compiled, reference=reference)
        return compiled

    def invalidate(self, reference: Optional[str] = None) -> None:
        """Drop one cached compilation, or all of them."""
        if reference is None:
            self.cache.clear()
            return
        path = self.resolve(reference)
        self.cache.invalidate(self.cache._make_key("ruleset", str(path.resolve()), self.phase))

    def list_rule_sets(self) -> List[str]:
        """References of all ``*.sch`` documents in the rule-set directory."""
        if self.ruleset_dir is None or not self.ruleset_dir.is_dir():
            return []
        return sorted(p.stem for p in self.ruleset_dir.glob("*.sch"))
