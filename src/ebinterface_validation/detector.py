"""Sniff the ebInterface dialect of a raw document.

The dialect comes from the root start tag alone. The document does not have
to be schema valid, or even well formed past its root element, for detection
to succeed. Only documents mentioning the XML-DSig namespace are scanned
further, for a signature element.

Example:
        from ebinterface_validation.detector import detect_version

        version = detect_version(Path("invoice.xml").read_bytes())
        print(version.label, version.signed)
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Dict, Optional, Tuple

from lxml import etree

from .exceptions import UnknownNamespaceError
from .models import DSIG_NAMESPACE, DocumentVersion

logger = logging.getLogger(__name__)

_DSIG_MARKER = DSIG_NAMESPACE.encode("ascii")


def read_root(data: bytes) -> Tuple[Optional[str], Dict[str, str]]:
    """Return the root element namespace and the namespaces declared on it.

    Raises:
        UnknownNamespaceError: If no root element can be read at all.
    """
    declared: Dict[str, str] = {}
    events = etree.iterparse(
        BytesIO(data),
        events=("start-ns", "start"),
        recover=True,
        resolve_entities=False,
        no_network=True,
    )
    try:
        for event, item in events:
            if event == "start-ns":
                prefix, uri = item
                declared[prefix or ""] = uri
                continue
            return etree.QName(item).namespace, declared
    except etree.XMLSyntaxError as exc:
        raise UnknownNamespaceError(
            f"Document root could not be read: {exc}"
        ) from exc
    raise UnknownNamespaceError("Document has no root element")


def contains_signature(data: bytes) -> bool:
    """Return True when an element in the XML-DSig namespace occurs in ``data``.

    Comments, text and attribute values that merely mention the namespace do
    not count.
    """
    if _DSIG_MARKER not in data:
        return False
    events = etree.iterparse(
        BytesIO(data),
        events=("start",),
        tag=f"{{{DSIG_NAMESPACE}}}*",
        recover=True,
        resolve_entities=False,
        no_network=True,
    )
    try:
        for _event, _element in events:
            return True
    except etree.XMLSyntaxError as exc:
        # the root was readable; an unreadable tail holds no signature element
        logger.debug("Stopped signature scan: %s", exc)
    return False


def detect_version(data: bytes) -> DocumentVersion:
    """Classify ``data`` as one of the known :class:`DocumentVersion` members.

    The root namespace is matched exactly. The signed variant is chosen when the
    XML-DSig namespace is declared on the root or an XML-DSig element occurs
    anywhere in the document.

    Raises:
        UnknownNamespaceError: Namespace absent or not a known dialect.
    """
    namespace, declared = read_root(data)
    if not namespace:
        raise UnknownNamespaceError("Root element has no namespace")

    signed = DSIG_NAMESPACE in declared.values() or contains_signature(data)
    try:
        version = DocumentVersion.lookup(namespace, signed=signed)
    except KeyError:
        raise UnknownNamespaceError(
            f"Unknown namespace: {namespace}", namespace=namespace
        ) from None

    logger.debug("Detected %s (signed=%s)", version.label, version.signed)
    return version
