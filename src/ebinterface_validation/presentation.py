"""Render instances to HTML with a per-dialect stylesheet.

Stylesheets are looked up in the stylesheet directory as
``ebInterface-<label>.xslt`` (for example ``ebInterface-4p0.xslt``). A dialect
without its own stylesheet falls back to the bundled generic view
``ebInterface.xslt``. Rendering is independent of validation: a document that
fails its schema can still be rendered as long as it is well formed.
"""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import Dict, Optional

from lxml import etree

from .config import DEFAULT_STYLESHEET_DIR
from .exceptions import PresentationError, TransformResourceError
from .models import DocumentVersion
from .pool import ContextPool

logger = logging.getLogger(__name__)

GENERIC_STYLESHEET = DEFAULT_STYLESHEET_DIR / "ebInterface.xslt"


class PresentationTransformer:
    """Per-dialect HTML rendering."""

    def __init__(self, stylesheet_dir: Optional[Path] = None, max_idle: int = 4) -> None:
        self.stylesheet_dir = Path(stylesheet_dir or DEFAULT_STYLESHEET_DIR)
        self.stylesheets: Dict[DocumentVersion, Path] = {}
        self._pools: Dict[DocumentVersion, ContextPool] = {}
        for dialect in DocumentVersion.dialects():
            path = self.stylesheet_dir / f"ebInterface-{dialect.label}.xslt"
            if not path.is_file():
                path = GENERIC_STYLESHEET
            self.stylesheets[dialect] = path
            self._pools[dialect] = ContextPool(
                _loader(path), max_idle=max_idle, name=f"render-{dialect.label}"
            )

    def stylesheet_for(self, version: DocumentVersion) -> Path:
        return self.stylesheets[version.dialect]

    def render(self, data: bytes, version: DocumentVersion) -> str:
        """Apply the dialect's stylesheet and return the serialized output.

        Raises:
            TransformResourceError: The stylesheet itself cannot be loaded.
            PresentationError: The instance is not well formed or the transform failed.
        """
        parser = etree.XMLParser(no_network=True, resolve_entities=False)
        try:
            document = etree.parse(BytesIO(data), parser)
        except etree.XMLSyntaxError as exc:
            raise PresentationError(f"Instance could not be parsed: {exc}") from exc

        with self._pools[version.dialect].checkout() as transform:
            try:
                output = transform(document, dialect=etree.XSLT.strparam(version.label))
            except etree.XSLTApplyError as exc:
                raise PresentationError(f"Rendering failed: {exc}") from exc
        logger.debug("Rendered %s document with %s", version.label, self.stylesheet_for(version))
        return str(output)


def _loader(path: Path):
    def load() -> etree.XSLT:
        try:
            return etree.XSLT(etree.parse(str(path)))
        except (OSError, etree.XMLSyntaxError, etree.XSLTParseError) as exc:
            raise TransformResourceError(f"Stylesheet could not be loaded ({path}): {exc}") from exc

    return load
