"""Runtime configuration for the validation service.

Settings are read from ``EBINTERFACE_*`` environment variables so the same
values drive the library, the HTTP service and the CLI.

Environment Variables:
    EBINTERFACE_SCHEMA_DIR: Directory with ``ebInterface<label>.xsd`` files.
    EBINTERFACE_CATALOG: OASIS XML catalog (default ``<schema dir>/catalog.xml``).
    EBINTERFACE_RULESET_DIR: Directory with Schematron rule sets.
    EBINTERFACE_STYLESHEET_DIR: Directory with ``ebInterface-<label>.xslt`` overrides.
    EBINTERFACE_META_TRANSFORM: Replacement for the Schematron-to-XSLT stylesheet.
    EBINTERFACE_REPORT_TRANSFORM: Replacement for the SVRL report-shaping stylesheet.
    EBINTERFACE_SCHEMATRON_PHASE: Schematron phase to compile (default all).
    EBINTERFACE_RULESET_CACHE_TTL: Seconds a compiled rule set stays cached (default forever).
    EBINTERFACE_SIGNATURE_URL: Endpoint of the signature-verification service.
    EBINTERFACE_SIGNATURE_TRUST_PROFILE: Trust profile sent with each request.
    EBINTERFACE_SIGNATURE_TIMEOUT: Seconds before a verification attempt is abandoned.

Example:
    $ EBINTERFACE_SCHEMA_DIR=/srv/schemas ebinterface-validate validate invoice.xml
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

RESOURCES_DIR = Path(__file__).resolve().parent / "resources"
DEFAULT_RULESET_DIR = RESOURCES_DIR / "rulesets"
DEFAULT_STYLESHEET_DIR = RESOURCES_DIR / "stylesheets"
DEFAULT_REPORT_TRANSFORM = RESOURCES_DIR / "report.xsl"
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "ebinterface-validation" / "schemas"


@dataclass
class ValidatorSettings:
    """Resource locations and collaborator settings for one pipeline."""

    schema_dir: Optional[Path] = None
    catalog_path: Optional[Path] = None
    ruleset_dir: Path = DEFAULT_RULESET_DIR
    stylesheet_dir: Path = DEFAULT_STYLESHEET_DIR
    meta_transform_path: Optional[Path] = None
    report_transform_path: Path = DEFAULT_REPORT_TRANSFORM
    schematron_phase: Optional[str] = None
    ruleset_cache_ttl: Optional[float] = None
    signature_service_url: Optional[str] = None
    signature_trust_profile: str = "Test-Signaturdienste"
    signature_timeout: float = 30.0

    def resolved_catalog(self) -> Optional[Path]:
        """Explicit catalog, else ``catalog.xml`` next to the schemas if present."""
        if self.catalog_path is not None:
            return self.catalog_path
        if self.schema_dir is not None:
            candidate = self.schema_dir / "catalog.xml"
            if candidate.exists():
                return candidate
        return None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ValidatorSettings":
        env = os.environ if environ is None else environ

        def _path(name: str) -> Optional[Path]:
            value = env.get(name)
            return Path(value).expanduser() if value else None

        settings = cls(
            schema_dir=_path("EBINTERFACE_SCHEMA_DIR") or discover_schema_directory(),
            catalog_path=_path("EBINTERFACE_CATALOG"),
            meta_transform_path=_path("EBINTERFACE_META_TRANSFORM"),
            schematron_phase=env.get("EBINTERFACE_SCHEMATRON_PHASE") or None,
            signature_service_url=env.get("EBINTERFACE_SIGNATURE_URL") or None,
        )
        settings.ruleset_dir = _path("EBINTERFACE_RULESET_DIR") or settings.ruleset_dir
        settings.stylesheet_dir = (
            _path("EBINTERFACE_STYLESHEET_DIR") or settings.stylesheet_dir
        )
        settings.report_transform_path = (
            _path("EBINTERFACE_REPORT_TRANSFORM") or settings.report_transform_path
        )
        if env.get("EBINTERFACE_RULESET_CACHE_TTL"):
            settings.ruleset_cache_ttl = float(env["EBINTERFACE_RULESET_CACHE_TTL"])
        if env.get("EBINTERFACE_SIGNATURE_TRUST_PROFILE"):
            settings.signature_trust_profile = env["EBINTERFACE_SIGNATURE_TRUST_PROFILE"]
        if env.get("EBINTERFACE_SIGNATURE_TIMEOUT"):
            settings.signature_timeout = float(env["EBINTERFACE_SIGNATURE_TIMEOUT"])
        return settings


def discover_schema_directory() -> Optional[Path]:
    """Look for a schema directory in the usual places."""
    potential_dirs = [
        Path.cwd() / "schemas",
        DEFAULT_CACHE_DIR,
        Path("/usr/local/share/ebinterface-schemas"),
    ]
    for dir_path in potential_dirs:
        if dir_path.is_dir() and any(dir_path.glob("ebInterface*.xsd")):
            return dir_path
    return None
