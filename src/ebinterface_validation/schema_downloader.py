"""Download the official ebInterface schemas into a local schema directory.

The registry never touches the network, so the schemas and everything they
import have to be on disk. This helper fetches them once and writes an OASIS
catalog that maps every remote import to its local copy.

Layout written under the cache directory::

        schemas/
                ebInterface4p0.xsd
                catalog.xml
                imports/http/www.w3.org/TR/2002/REC-xmldsig-core-20020212/xmldsig-core-schema.xsd

Example:
        from ebinterface_validation.schema_downloader import download_all
        results = download_all()
        print(results["4p0"])

Notes:
* Relative ``schemaLocation`` values in a top-level schema are rewritten to
    absolute URLs, so the renamed top-level file still resolves through the
    catalog. Imported files keep their original relative references and are
    stored in a mirror of their URL path.
* A minimal check ensures each file contains the XML Schema namespace, to
    reduce accidental HTML/error-page caching.
"""

import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Dict, List, Optional, Set
from urllib.parse import urljoin, urlparse

from lxml import etree

from .config import DEFAULT_CACHE_DIR
from .schema_registry import CATALOG_NS, SCHEMA_FILES

logger = logging.getLogger(__name__)

XSD_NS = "http://www.w3.org/2001/XMLSchema"

# Official ebInterface schema URLs
EBINTERFACE_SCHEMA_URLS = {
    "3p0": "http://www.ebinterface.at/schema/3p0/Invoice.xsd",
    "3p02": "http://www.ebinterface.at/schema/3p02/Invoice.xsd",
    "4p0": "http://www.ebinterface.at/schema/4p0/Invoice.xsd",
}

IMPORTS_DIR = "imports"


def get_schema_cache_dir(cache_dir: Optional[Path] = None) -> Path:
    """Return (and create if needed) the local schema directory."""
    cache_dir = Path(cache_dir) if cache_dir else DEFAULT_CACHE_DIR
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def get_cached_schema_path(label: str, cache_dir: Optional[Path] = None) -> Path:
    return get_schema_cache_dir(cache_dir) / SCHEMA_FILES[label]


def _fetch(url: str) -> bytes:
    with urllib.request.urlopen(url, timeout=30) as response:
        content = response.read()
    if XSD_NS.encode("ascii") not in content:
        raise ValueError(f"{url} does not appear to be an XML Schema document")
    return content


def _mirror_path(cache_dir: Path, url: str) -> Path:
    parsed = urlparse(url)
    return cache_dir / IMPORTS_DIR / parsed.scheme / parsed.netloc / parsed.path.lstrip("/")


def _references(document: etree._Element) -> List[etree._Element]:
    return [
        node
        for node in document.iter(f"{{{XSD_NS}}}import", f"{{{XSD_NS}}}include", f"{{{XSD_NS}}}redefine")
        if node.get("schemaLocation")
    ]


def _fetch_imports(document: etree._Element, base_url: str, cache_dir: Path, seen: Set[str]) -> None:
    """Mirror every schema ``document`` references, recursively."""
    for node in _references(document):
        url = urljoin(base_url, node.get("schemaLocation"))
        if url in seen:
            continue
        seen.add(url)
        target = _mirror_path(cache_dir, url)
        if not target.exists():
            logger.info(f"Downloading imported schema {url}")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(_fetch(url))
        _fetch_imports(etree.parse(str(target)).getroot(), url, cache_dir, seen)


def download_schema(
    label: str, force: bool = False, cache_dir: Optional[Path] = None
) -> Optional[Path]:
    """Download one ebInterface schema and its imports into the cache.

    Args:
        label: Dialect label (must exist in ``EBINTERFACE_SCHEMA_URLS``).
        force: If True, redownload even if a cached file already exists.
        cache_dir: Target directory (default ``~/.cache/ebinterface-validation/schemas``).

    Returns:
        Path to the downloaded (or cached) schema file; ``None`` on failure.
    """
    if label not in EBINTERFACE_SCHEMA_URLS:
        logger.error(
            f"Unknown schema version: {label}. Available: {list(EBINTERFACE_SCHEMA_URLS.keys())}"
        )
        return None

    cache_dir = get_schema_cache_dir(cache_dir)
    cached_path = cache_dir / SCHEMA_FILES[label]
    if cached_path.exists() and not force:
        logger.info(f"Using cached ebInterface schema: {cached_path}")
        return cached_path

    url = EBINTERFACE_SCHEMA_URLS[label]
    logger.info(f"Downloading ebInterface schema {label} from {url}")
    try:
        document = etree.fromstring(_fetch(url), etree.XMLParser(no_network=True))
        for node in _references(document):
            node.set("schemaLocation", urljoin(url, node.get("schemaLocation")))
        _fetch_imports(document, url, cache_dir, set())
        cached_path.write_bytes(
            etree.tostring(document, xml_declaration=True, encoding="UTF-8")
        )
    except urllib.error.URLError as e:
        logger.error(f"Failed to download schema from {url}: {e}")
        return None
    except (ValueError, etree.XMLSyntaxError) as e:
        logger.error(f"Downloaded file is not a usable schema: {e}")
        return None

    write_catalog(cache_dir)
    logger.info(f"Downloaded and cached ebInterface schema {label} to {cached_path}")
    return cached_path


def download_all(force: bool = False, cache_dir: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    return {
        label: download_schema(label, force=force, cache_dir=cache_dir)
        for label in EBINTERFACE_SCHEMA_URLS
    }


def write_catalog(cache_dir: Path) -> Path:
    """(Re)write ``catalog.xml`` with one ``system`` entry per mirrored import."""
    root = etree.Element(f"{{{CATALOG_NS}}}catalog", nsmap={None: CATALOG_NS})
    imports = cache_dir / IMPORTS_DIR
    if imports.is_dir():
        for path in sorted(p for p in imports.rglob("*") if p.is_file()):
            scheme, netloc, *rest = path.relative_to(imports).parts
            etree.SubElement(
                root,
                f"{{{CATALOG_NS}}}system",
                systemId=f"{scheme}://{netloc}/{'/'.join(rest)}",
                uri=path.relative_to(cache_dir).as_posix(),
            )
    catalog = cache_dir / "catalog.xml"
    catalog.write_bytes(
        etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)
    )
    return catalog


def get_available_versions() -> List[str]:
    """Return the dialect labels supported for download."""
    return list(EBINTERFACE_SCHEMA_URLS.keys())


def clear_schema_cache(cache_dir: Optional[Path] = None) -> None:
    """Delete all downloaded schemas, imports and the catalog."""
    cache_dir = get_schema_cache_dir(cache_dir)
    for schema_file in cache_dir.glob("ebInterface*.xsd"):
        schema_file.unlink()
        logger.info(f"Removed cached schema: {schema_file}")
    if (cache_dir / IMPORTS_DIR).is_dir():
        shutil.rmtree(cache_dir / IMPORTS_DIR)
    (cache_dir / "catalog.xml").unlink(missing_ok=True)
