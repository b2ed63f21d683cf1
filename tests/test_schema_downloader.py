"""Tests for the schema download helper, with the network replaced."""

import io
import urllib.error

import pytest
from lxml import etree

from ebinterface_validation import schema_downloader
from ebinterface_validation.schema_downloader import (
    clear_schema_cache,
    download_all,
    download_schema,
    get_available_versions,
    get_cached_schema_path,
)
from ebinterface_validation.schema_registry import CATALOG_NS

XSD_NS = "http://www.w3.org/2001/XMLSchema"

INVOICE_4P0 = b"""<?xml version="1.0" encoding="UTF-8"?>
<xs:schema xmlns:xs="http://www.w3.org/2001/XMLSchema"
           targetNamespace="http://www.ebinterface.at/schema/4p0/">
  <xs:import namespace="http://www.w3.org/2000/09/xmldsig#"
             schemaLocation="http://www.w3.org/TR/xmldsig-core/xmldsig-core-schema.xsd"/>
  <xs:include schemaLocation="Common.xsd"/>
</xs:schema>
"""

COMMON = b"""<?xml version="1.0" encoding="UTF-8"?>
<xs:schema xmlns:xs="http://www.w3.org/2001/XMLSchema"
           targetNamespace="http://www.ebinterface.at/schema/4p0/"/>
"""

DSIG = b"""<?xml version="1.0" encoding="UTF-8"?>
<xs:schema xmlns:xs="http://www.w3.org/2001/XMLSchema"
           targetNamespace="http://www.w3.org/2000/09/xmldsig#"/>
"""

REMOTE = {
    "http://www.ebinterface.at/schema/4p0/Invoice.xsd": INVOICE_4P0,
    "http://www.ebinterface.at/schema/4p0/Common.xsd": COMMON,
    "http://www.w3.org/TR/xmldsig-core/xmldsig-core-schema.xsd": DSIG,
}


@pytest.fixture
def fetched(monkeypatch):
    calls = []

    def fake_fetch(url):
        calls.append(url)
        if url not in REMOTE:
            raise urllib.error.URLError("not found")
        return REMOTE[url]

    monkeypatch.setattr(schema_downloader, "_fetch", fake_fetch)
    return calls


def test_download_schema_mirrors_imports(tmp_path, fetched):
    path = download_schema("4p0", cache_dir=tmp_path)

    assert path == tmp_path / "ebInterface4p0.xsd"
    document = etree.parse(str(path)).getroot()
    locations = [node.get("schemaLocation") for node in document if node.get("schemaLocation")]
    assert locations == [
        "http://www.w3.org/TR/xmldsig-core/xmldsig-core-schema.xsd",
        "http://www.ebinterface.at/schema/4p0/Common.xsd",
    ]
    assert (tmp_path / "imports/http/www.ebinterface.at/schema/4p0/Common.xsd").read_bytes() == COMMON
    assert (tmp_path / "imports/http/www.w3.org/TR/xmldsig-core/xmldsig-core-schema.xsd").exists()

    catalog = etree.parse(str(tmp_path / "catalog.xml")).getroot()
    entries = {
        entry.get("systemId"): entry.get("uri")
        for entry in catalog.iter(f"{{{CATALOG_NS}}}system")
    }
    assert entries["http://www.ebinterface.at/schema/4p0/Common.xsd"] == (
        "imports/http/www.ebinterface.at/schema/4p0/Common.xsd"
    )
    assert len(entries) == 2


def test_cached_schema_is_not_refetched(tmp_path, fetched):
    download_schema("4p0", cache_dir=tmp_path)
    fetched.clear()

    assert download_schema("4p0", cache_dir=tmp_path) == tmp_path / "ebInterface4p0.xsd"
    assert fetched == []

    download_schema("4p0", force=True, cache_dir=tmp_path)
    # imports are already mirrored
    assert fetched == ["http://www.ebinterface.at/schema/4p0/Invoice.xsd"]


def test_unknown_version(tmp_path, fetched):
    assert download_schema("9p9", cache_dir=tmp_path) is None
    assert fetched == []


def test_download_all_reports_failures(tmp_path, fetched):
    results = download_all(cache_dir=tmp_path)
    assert results["4p0"] == tmp_path / "ebInterface4p0.xsd"
    assert results["3p0"] is None
    assert results["3p02"] is None


def test_error_page_is_rejected(tmp_path, monkeypatch):
    monkeypatch.setattr(
        schema_downloader.urllib.request,
        "urlopen",
        lambda url, timeout: io.BytesIO(b"<html><body>Moved</body></html>"),
    )
    assert download_schema("3p0", cache_dir=tmp_path) is None
    assert not get_cached_schema_path("3p0", tmp_path).exists()


def test_clear_schema_cache(tmp_path, fetched):
    download_schema("4p0", cache_dir=tmp_path)
    clear_schema_cache(tmp_path)

    assert not (tmp_path / "ebInterface4p0.xsd").exists()
    assert not (tmp_path / "imports").exists()
    assert not (tmp_path / "catalog.xml").exists()


def test_available_versions():
    assert get_available_versions() == ["3p0", "3p02", "4p0"]
