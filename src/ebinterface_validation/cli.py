"""
Command line interface: ``ebinterface-validate``.

Exit codes: 0 document valid / command succeeded, 1 document invalid or
rule failures, 2 terminal or configuration error.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import ValidatorSettings
from .exceptions import ValidationServiceError
from .pipeline import ValidationPipeline
from .schema_downloader import (
    EBINTERFACE_SCHEMA_URLS,
    clear_schema_cache,
    download_all,
    download_schema,
    get_available_versions,
    get_cached_schema_path,
)


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def _settings(args) -> ValidatorSettings:
    settings = ValidatorSettings.from_env()
    if getattr(args, "schema_dir", None):
        settings.schema_dir = args.schema_dir
    if getattr(args, "ruleset_dir", None):
        settings.ruleset_dir = args.ruleset_dir
    return settings


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def cmd_validate(args):
    """Validate structure and signature of a document."""
    setup_logging(args.verbose)
    try:
        pipeline = ValidationPipeline.from_settings(_settings(args))
    except ValidationServiceError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    result = pipeline.validate(args.document)
    if args.json:
        _print_json(result.to_dict())
    elif result.detection_failed:
        print(f"✗ {result.error}")
    else:
        print(f"Document version: ebInterface {result.version.label}"
              f"{' (signed)' if result.version.signed else ''}")
        for violation in result.structural_violations:
            print(f"  ✗ {violation.location or '-'}: {violation.message}")
        if result.signature is not None:
            sig = result.signature
            print(f"  Signature: {'OK' if sig.signature_ok else 'FAILED'}, "
                  f"certificate: {'OK' if sig.certificate_ok else 'FAILED'}")
            if sig.error:
                print(f"  Signature check error: {sig.error}")
            if sig.signer:
                print(f"  Signer: {sig.signer.subject} (issuer {sig.signer.issuer})")
        print("✓ Valid" if result.valid else "✗ Invalid")
    if result.detection_failed:
        return 2
    return 0 if result.valid else 1


def cmd_evaluate(args):
    """Evaluate a rule set against a document."""
    setup_logging(args.verbose)
    try:
        pipeline = ValidationPipeline.from_settings(_settings(args), load_schemas=False)
        report = pipeline.evaluate_rule_set(args.document, args.ruleset)
    except ValidationServiceError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    if args.json:
        _print_json(report.to_dict())
    else:
        for finding in report.findings:
            if finding.severity.value == "pass" and not args.all:
                continue
            print(f"  [{finding.severity.value:7}] {finding.rule_id}: {finding.message}"
                  f"{' @ ' + finding.location if finding.location else ''}")
        print(f"{len(report.failures)} failures, {len(report.warnings)} warnings")
    return 0 if report.passed else 1


def cmd_render(args):
    """Render a document to HTML."""
    setup_logging(args.verbose)
    try:
        pipeline = ValidationPipeline.from_settings(_settings(args), load_schemas=False)
        html = pipeline.render(args.document)
    except ValidationServiceError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    if args.output:
        args.output.write_text(html, encoding="utf-8")
        print(f"✓ Rendered to {args.output}")
    else:
        print(html)
    return 0


def cmd_rules(args):
    """List rule sets, or describe one."""
    setup_logging(args.verbose)
    try:
        pipeline = ValidationPipeline.from_settings(_settings(args), load_schemas=False)
        if args.ruleset:
            _print_json(pipeline.describe_rule_set(args.ruleset))
            return 0
    except ValidationServiceError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2
    for reference in pipeline.list_rule_sets():
        print(f"  {reference}")
    return 0


def cmd_schemas_download(args):
    """Download ebInterface schemas command."""
    setup_logging(args.verbose)
    if args.version:
        results = {args.version: download_schema(args.version, force=args.force, cache_dir=args.dir)}
    else:
        results = download_all(force=args.force, cache_dir=args.dir)

    failed = 0
    for label, path in results.items():
        if path:
            print(f"✓ Downloaded ebInterface schema {label} to: {path}")
        else:
            failed += 1
            print(f"✗ Failed to download ebInterface schema {label}")
    return 1 if failed else 0


def cmd_schemas_list(args):
    """List downloadable schema versions."""
    print("Available ebInterface schema versions:")
    for label in get_available_versions():
        cached = get_cached_schema_path(label, args.dir).exists()
        marker = "✓" if cached else "○"
        print(f"  {marker} {label} ({'cached' if cached else 'available'}) {EBINTERFACE_SCHEMA_URLS[label]}")
    return 0


def cmd_schemas_clear(args):
    """Clear schema cache command."""
    setup_logging(args.verbose)
    try:
        clear_schema_cache(args.dir)
        print("✓ Schema cache cleared")
        return 0
    except OSError as e:
        print(f"✗ Failed to clear cache: {e}")
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ebInterface document validation",
        prog="ebinterface-validate"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--schema-dir",
        type=Path,
        help="Schema directory (overrides EBINTERFACE_SCHEMA_DIR)"
    )
    parser.add_argument(
        "--ruleset-dir",
        type=Path,
        help="Rule-set directory (overrides EBINTERFACE_RULESET_DIR)"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands"
    )

    validate_parser = subparsers.add_parser(
        "validate",
        help="Check schema conformance and signature"
    )
    validate_parser.add_argument("document", type=Path, help="ebInterface XML file")
    validate_parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    validate_parser.set_defaults(func=cmd_validate)

    evaluate_parser = subparsers.add_parser(
        "evaluate",
        help="Evaluate a Schematron rule set"
    )
    evaluate_parser.add_argument("ruleset", help="Rule-set reference (name or path)")
    evaluate_parser.add_argument("document", type=Path, help="ebInterface XML file")
    evaluate_parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    evaluate_parser.add_argument("--all", action="store_true", help="Also list passed rules")
    evaluate_parser.set_defaults(func=cmd_evaluate)

    render_parser = subparsers.add_parser(
        "render",
        help="Render a document to HTML"
    )
    render_parser.add_argument("document", type=Path, help="ebInterface XML file")
    render_parser.add_argument("-o", "--output", type=Path, help="Write HTML to this file")
    render_parser.set_defaults(func=cmd_render)

    rules_parser = subparsers.add_parser(
        "rules",
        help="List rule sets, or show the rules of one"
    )
    rules_parser.add_argument("ruleset", nargs="?", help="Rule-set reference to describe")
    rules_parser.set_defaults(func=cmd_rules)

    schemas_parser = subparsers.add_parser(
        "schemas",
        help="Manage the local ebInterface schema cache"
    )
    schemas_parser.add_argument(
        "--dir",
        type=Path,
        help="Schema directory (default: ~/.cache/ebinterface-validation/schemas)"
    )
    schemas_sub = schemas_parser.add_subparsers(dest="schemas_command")

    download_parser = schemas_sub.add_parser(
        "download",
        help="Download schemas from ebinterface.at"
    )
    download_parser.add_argument(
        "--version",
        choices=get_available_versions(),
        help="Schema version to download (default: all)"
    )
    download_parser.add_argument(
        "--force",
        action="store_true",
        help="Force download even if cached version exists"
    )
    download_parser.set_defaults(func=cmd_schemas_download)

    list_parser = schemas_sub.add_parser("list", help="List available schema versions")
    list_parser.set_defaults(func=cmd_schemas_list)

    clear_parser = schemas_sub.add_parser("clear", help="Clear cached schemas")
    clear_parser.set_defaults(func=cmd_schemas_clear)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, 'func'):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
