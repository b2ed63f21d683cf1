"""Per-dialect structural validators.

The registry owns one compiled XML Schema per ebInterface dialect. It is
built once at startup from a schema directory laid out as::

    schemas/
        ebInterface3p0.xsd
        ebInterface3p02.xsd
        ebInterface4p0.xsd
        catalog.xml          (optional OASIS catalog for remote imports)

Key capabilities:
* Fail-fast loading: a missing or uncompilable schema raises
  :class:`~ebinterface_validation.exceptions.SchemaResourceError`
* Catalog based resolution of ``xs:import`` / ``xs:include`` locations to
  local files (network access is never attempted)
* Thread-safe validation: every call borrows its own ``XMLSchema`` instance

Example:
        from ebinterface_validation.schema_registry import SchemaValidatorRegistry
        registry = SchemaValidatorRegistry(Path("schemas"))
        violations = registry.validate(data, DocumentVersion.E4P0)
        for violation in violations:
                print(violation.location, violation.message)

Design notes:
* Validator selection is a pure function of ``DocumentVersion.dialect``; no
    namespace sniffing happens here.
* Malformed XML is reported as violations, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Union
from urllib.parse import unquote, urlparse

from lxml import etree

from .exceptions import SchemaResourceError
from .models import DocumentVersion, StructuralViolation
from .pool import ContextPool

logger = logging.getLogger(__name__)

CATALOG_NS = "urn:oasis:names:tc:entity:xmlns:xml:catalog"

SCHEMA_FILES = {
    "3p0": "ebInterface3p0.xsd",
    "3p02": "ebInterface3p02.xsd",
    "4p0": "ebInterface4p0.xsd",
}


@dataclass
class SchemaInfo:
    """Information about the schema backing one dialect."""

    version: DocumentVersion
    path: Path
    description: str


class CatalogResolver(etree.Resolver):
    """Resolve schema locations through an OASIS XML catalog.

    Supported entries: ``system``, ``uri``, ``rewriteSystem`` and
    ``rewriteURI``. Relative targets are resolved against the catalog's
    directory.

    Example:
        resolver = CatalogResolver(Path("schemas/catalog.xml"))
        resolver.lookup("http://www.w3.org/TR/2002/REC-xmldsig-core-20020212/xmldsig-core-schema.xsd")
    """

    def __init__(self, catalog_path: Path) -> None:
        super().__init__()
        self.catalog_path = Path(catalog_path)
        self.base_dir = self.catalog_path.parent
        self.exact: Dict[str, str] = {}
        self.rewrites: List[tuple] = []
        self._load()

    def _load(self) -> None:
        try:
            root = etree.parse(str(self.catalog_path)).getroot()
        except (OSError, etree.XMLSyntaxError) as exc:
            raise SchemaResourceError(
                f"Catalog could not be read: {self.catalog_path}: {exc}"
            ) from exc

        for entry in root.iter(f"{{{CATALOG_NS}}}*"):
            name = etree.QName(entry).localname
            if name == "system":
                self.exact[entry.get("systemId", "")] = entry.get("uri", "")
            elif name == "uri":
                self.exact[entry.get("name", "")] = entry.get("uri", "")
            elif name == "rewriteSystem":
                self.rewrites.append(
                    (entry.get("systemIdStartString", ""), entry.get("rewritePrefix", ""))
                )
            elif name == "rewriteURI":
                self.rewrites.append(
                    (entry.get("uriStartString", ""), entry.get("rewritePrefix", ""))
                )
        # longest prefix wins
        self.rewrites.sort(key=lambda item: len(item[0]), reverse=True)
        logger.info(
            "Loaded catalog %s (%d entries, %d rewrites)",
            self.catalog_path,
            len(self.exact),
            len(self.rewrites),
        )

    def lookup(self, system_url: Optional[str]) -> Optional[Path]:
        if not system_url:
            return None
        target = self.exact.get(system_url)
        if target is None:
            for prefix, replacement in self.rewrites:
                if prefix and system_url.startswith(prefix):
                    target = replacement + system_url[len(prefix):]
                    break
        if not target:
            return None
        return self._to_path(target)

    def _to_path(self, uri: str) -> Path:
        if uri.startswith("file:"):
            return Path(unquote(urlparse(uri).path))
        path = Path(uri)
        return path if path.is_absolute() else self.base_dir / path

    def resolve(self, system_url, public_id, context):
        target = self.lookup(system_url)
        if target is None:
            return None
        logger.debug("Catalog resolved %s -> %s", system_url, target)
        return self.resolve_filename(str(target), context)


class SchemaValidatorRegistry:
    """Hold one structural validator per known dialect."""

    def __init__(
        self,
        schema_dir: Optional[Path],
        catalog_path: Optional[Path] = None,
        max_idle: int = 8,
    ) -> None:
        """Load and compile every dialect schema.

        Args:
            schema_dir: Directory containing the ``SCHEMA_FILES``.
            catalog_path: Optional OASIS catalog for import resolution.
            max_idle: Validators kept per dialect for reuse.

        Raises:
            SchemaResourceError: Directory, schema or catalog unusable.
        """
        if schema_dir is None or not Path(schema_dir).is_dir():
            raise SchemaResourceError(
                f"Schema directory not found: {schema_dir}. "
                "Set EBINTERFACE_SCHEMA_DIR or run 'ebinterface-validate schemas download'."
            )
        self.schema_dir = Path(schema_dir)
        self.resolver = CatalogResolver(catalog_path) if catalog_path else None
        self.max_idle = max_idle
        self.schemas: Dict[DocumentVersion, SchemaInfo] = {}
        self._pools: Dict[DocumentVersion, ContextPool] = {}
        self._load_schemas()

    def _schema_parser(self) -> etree.XMLParser:
        parser = etree.XMLParser(no_network=True, resolve_entities=False)
        if self.resolver is not None:
            parser.resolvers.add(self.resolver)
        return parser

    def _parse(self, path: Path) -> etree._ElementTree:
        return etree.parse(str(path), self._schema_parser())

    def _load_schemas(self) -> None:
        for dialect in DocumentVersion.dialects():
            path = self.schema_dir / SCHEMA_FILES[dialect.label]
            if not path.exists():
                raise SchemaResourceError(f"Schema for {dialect.label} not found: {path}")
            try:
                document = self._parse(path)
                validator = etree.XMLSchema(document)
            except (OSError, etree.XMLSyntaxError, etree.XMLSchemaParseError) as exc:
                raise SchemaResourceError(
                    f"Schema for {dialect.label} could not be compiled ({path}): {exc}"
                ) from exc

            self.schemas[dialect] = SchemaInfo(
                version=dialect,
                path=path,
                description=f"ebInterface {dialect.label} ({dialect.namespace})",
            )
            # further validators derive from the startup document, not the file
            self._pools[dialect] = ContextPool(
                lambda dialect=dialect, document=document: self._derive(dialect, document),
                max_idle=self.max_idle,
                name=f"schema-{dialect.label}",
                initial=validator,
            )
            logger.info("Loaded schema for ebInterface %s from %s", dialect.label, path)

    def _derive(self, dialect: DocumentVersion, document: etree._ElementTree) -> etree.XMLSchema:
        try:
            return etree.XMLSchema(document)
        except (OSError, etree.XMLSchemaParseError) as exc:
            raise SchemaResourceError(
                f"Additional validator for {dialect.label} could not be built: {exc}"
            ) from exc

    def get_schema_info(self, version: DocumentVersion) -> SchemaInfo:
        return self.schemas[version.dialect]

    def get_available_versions(self) -> List[DocumentVersion]:
        return list(self.schemas)

    def validate(
        self, data: Union[bytes, BinaryIO], version: DocumentVersion
    ) -> List[StructuralViolation]:
        """Validate ``data`` against the schema of ``version``'s dialect.

        Args:
            data: Raw document bytes or a binary stream.
            version: Detected document version.

        Returns:
            Structural violations in engine order; empty when the document conforms.

        Raises:
            OSError: Reading from a stream failed. Nothing else is raised for
                malformed input.
        """
        if hasattr(data, "read"):
            data = data.read()

        parser = etree.XMLParser(no_network=True, resolve_entities=False)
        try:
            document = etree.parse(BytesIO(data), parser)
        except etree.XMLSyntaxError as exc:
            return _violations_from_syntax_error(exc)

        with self._pools[version.dialect].checkout() as schema:
            if schema.validate(document):
                return []
            return [
                StructuralViolation(entry.message, entry.line, entry.column)
                for entry in schema.error_log
            ]

    def pool_stats(self) -> Dict[str, Dict[str, int]]:
        return {version.label: pool.stats() for version, pool in self._pools.items()}


def _violations_from_syntax_error(exc: etree.XMLSyntaxError) -> List[StructuralViolation]:
    violations = [
        StructuralViolation(entry.message, entry.line, entry.column)
        for entry in exc.error_log
    ]
    if not violations:
        line, column = exc.position
        violations.append(StructuralViolation(exc.msg or str(exc), line, column))
    return violations
