"""End-to-end tests of the validation pipeline with a fake signature service."""

from io import BytesIO
from pathlib import Path

import pytest

from ebinterface_validation.config import ValidatorSettings
from ebinterface_validation.exceptions import (
    PresentationError,
    RuleSetCompilationError,
    RuleSetNotFoundError,
    SchemaResourceError,
    UnknownNamespaceError,
)
from ebinterface_validation.models import DocumentVersion, Severity, SignerInfo, VerificationStatus
from ebinterface_validation.pipeline import ValidationPipeline
from ebinterface_validation.signature import VerificationResponse

FIXTURES = Path(__file__).resolve().parent / "fixtures"

SIGNER = SignerInfo(issuer="CN=Test CA", subject="CN=Biller", serial_number="42")


class StubVerifier:
    def __init__(self, certificate_code=0, signature_code=0, signer=SIGNER, error=None):
        self.response = VerificationResponse(certificate_code, signature_code, signer)
        self.error = error
        self.calls = 0

    def verify(self, data, signature_prefix):
        self.calls += 1
        assert signature_prefix == "dsig"
        if self.error is not None:
            raise self.error
        return self.response


@pytest.mark.parametrize(
    "name,version",
    [
        ("invoice-3p0.xml", DocumentVersion.E3P0),
        ("invoice-3p02.xml", DocumentVersion.E3P02),
        ("invoice-4p0.xml", DocumentVersion.E4P0),
    ],
)
def test_valid_unsigned_documents(make_pipeline, load_instance, name, version):
    verifier = StubVerifier()
    result = make_pipeline(verifier).validate(load_instance(name))

    assert result.version is version
    assert result.structural_violations == ()
    assert result.signature is None
    assert result.valid
    assert verifier.calls == 0


def test_unknown_namespace_gives_terminal_result(make_pipeline, load_instance):
    result = make_pipeline().validate(load_instance("unknown-namespace.xml"))
    assert result.detection_failed
    assert result.version is None
    assert "Unknown namespace" in result.error
    assert not result.valid
    assert result.to_dict()["structural_violations"] == []
    assert result.namespace == "http://www.ebinterface.at/schema/5p0/"
    assert result.to_dict()["namespace"] == result.namespace


def test_structural_violations_do_not_stop_signature_check(make_pipeline, load_instance):
    verifier = StubVerifier()
    data = load_instance("invoice-4p0-signed.xml").replace(
        b"<eb:InvoiceDate>2026-10-03</eb:InvoiceDate>", b""
    )
    result = make_pipeline(verifier).validate(data)

    assert result.version is DocumentVersion.E4P0_SIGNED
    assert result.structural_violations
    assert verifier.calls == 1
    assert result.signature.signature_ok
    assert not result.valid


def test_valid_signature(make_pipeline, load_instance):
    result = make_pipeline(StubVerifier()).validate(load_instance("invoice-4p0-signed.xml"))
    assert result.schema_valid
    assert result.signature.certificate_ok and result.signature.signature_ok
    assert result.signature.signer == SIGNER
    assert result.valid


def test_altered_signature_is_reported(make_pipeline, load_instance):
    result = make_pipeline(StubVerifier(signature_code=1, signer=None)).validate(
        load_instance("invoice-4p0-signed.xml")
    )
    assert result.schema_valid
    assert result.signature.certificate_ok
    assert not result.signature.signature_ok
    assert not result.valid


def test_verifier_fault_does_not_affect_other_stages(make_pipeline, load_instance):
    data = load_instance("invoice-4p0-signed.xml")
    healthy = make_pipeline(StubVerifier()).validate(data)
    faulty = make_pipeline(StubVerifier(error=ConnectionError("down"))).validate(data)

    assert faulty.version is healthy.version
    assert faulty.structural_violations == healthy.structural_violations
    assert faulty.signature.certificate_ok is False
    assert faulty.signature.signature_ok is False
    assert faulty.signature.signer is None
    assert faulty.signature.status is VerificationStatus.ERRORED


def test_signed_without_service_is_errored(make_pipeline, load_instance):
    result = make_pipeline(None).validate(load_instance("invoice-3p02-signed-root.xml"))
    assert result.version is DocumentVersion.E3P02_SIGNED
    assert result.schema_valid
    assert result.signature.status is VerificationStatus.ERRORED
    assert not result.valid


def test_validate_accepts_stream_and_path(make_pipeline, load_instance):
    pipeline = make_pipeline()
    path = FIXTURES / "instances" / "invoice-3p0.xml"
    assert pipeline.validate(path).valid
    assert pipeline.validate(BytesIO(load_instance("invoice-3p0.xml"))).valid


def test_result_to_dict(make_pipeline, load_instance):
    payload = make_pipeline(StubVerifier()).validate(load_instance("invoice-4p0-signed.xml")).to_dict()
    assert payload["version"] == "E4P0_SIGNED"
    assert payload["dialect"] == "4p0"
    assert payload["signed"] is True
    assert payload["signature"]["signer"]["subject"] == "CN=Biller"
    assert payload["signature"]["status"] == "verified"


def test_detect_version_raises(make_pipeline):
    with pytest.raises(UnknownNamespaceError):
        make_pipeline().detect_version(b"<Invoice/>")


class TestRuleSets:
    def test_evaluate_by_reference(self, make_pipeline, load_instance):
        report = make_pipeline().evaluate_rule_set(load_instance("invoice-4p0-incomplete-order.xml"), "basic")
        assert report.reference == "basic"
        assert not report.passed
        assert [f.rule_id for f in report.failures] == ["BASIC-TEST-NUMBER"]
        assert [f.rule_id for f in report.warnings] == ["BASIC-BILLER-ADDRESS"]
        summary = report.to_dict()["summary"]
        assert summary == {"total": 2, "failures": 1, "warnings": 1}

    def test_evaluate_with_compiled_rule_set(self, make_pipeline, load_instance):
        pipeline = make_pipeline()
        compiled = pipeline.compile_rule_set("basic")
        report = pipeline.evaluate_rule_set(load_instance("invoice-4p0.xml"), compiled)
        assert report.passed
        assert all(f.severity is Severity.PASS for f in report.findings)

    def test_repeated_evaluation_is_identical(self, make_pipeline, load_instance):
        pipeline = make_pipeline()
        data = load_instance("invoice-4p0-incomplete-order.xml")
        assert pipeline.evaluate_rule_set(data, "basic") == pipeline.evaluate_rule_set(data, "basic")

    def test_rule_evaluation_independent_of_schema(self, make_pipeline, load_instance):
        report = make_pipeline().evaluate_rule_set(load_instance("invoice-4p0-missing-date.xml"), "basic")
        assert report.passed

    def test_configuration_errors_propagate(self, make_pipeline, load_instance):
        pipeline = make_pipeline()
        data = load_instance("invoice-4p0.xml")
        with pytest.raises(RuleSetNotFoundError):
            pipeline.evaluate_rule_set(data, "missing")
        with pytest.raises(RuleSetCompilationError):
            pipeline.evaluate_rule_set(data, "xslt2")

    def test_list_and_describe(self, make_pipeline):
        pipeline = make_pipeline()
        assert "basic" in pipeline.list_rule_sets()
        description = pipeline.describe_rule_set("basic")
        assert description["reference"] == "basic"
        assert description["rule_count"] == 4
        assert description["path"].endswith("basic.sch")


class TestRender:
    def test_render_generic_stylesheet(self, make_pipeline, load_instance):
        html = make_pipeline().render(load_instance("invoice-4p0.xml"))
        assert "<html>" in html
        assert "InvoiceNumber" in html
        assert "2026-0042" in html
        assert "ebInterface 4p0" in html

    def test_render_signed_document_summarises_signature(self, make_pipeline, load_instance):
        html = make_pipeline().render(load_instance("invoice-4p0-signed.xml"))
        assert "signed document" in html
        assert "SignatureValue" not in html

    def test_render_malformed_document(self, make_pipeline):
        with pytest.raises(PresentationError):
            make_pipeline().render(b"<eb:Invoice", DocumentVersion.E4P0)

    def test_render_unknown_dialect(self, make_pipeline, load_instance):
        with pytest.raises(UnknownNamespaceError):
            make_pipeline().render(load_instance("unknown-namespace.xml"))


def test_stages_are_recorded(make_pipeline, load_instance, monitor):
    pipeline = make_pipeline(StubVerifier())
    pipeline.validate(load_instance("invoice-4p0-signed.xml"))
    pipeline.validate(load_instance("unknown-namespace.xml"))

    summary = monitor.get_performance_summary()
    assert summary["stages"]["detect"]["count"] == 2
    assert summary["stages"]["detect"]["error_count"] == 1
    assert summary["stages"]["schema"]["count"] == 1
    assert summary["stages"]["signature"]["count"] == 1
    assert summary["outcomes"]["E4P0_SIGNED"]["valid"] == 1
    assert summary["outcomes"]["unknown"]["unknown"] == 1


def test_from_settings(monitor):
    settings = ValidatorSettings(
        schema_dir=FIXTURES / "schemas",
        ruleset_dir=FIXTURES / "rulesets",
    )
    pipeline = ValidationPipeline.from_settings(settings, monitor=monitor)
    try:
        assert not pipeline.signature_adapter.configured
        assert pipeline.list_rule_sets()[0] == "basic"
        assert pipeline.validate((FIXTURES / "instances" / "invoice-4p0.xml").read_bytes()).valid
    finally:
        pipeline.close()


def test_from_settings_with_missing_schemas(tmp_path, monitor):
    with pytest.raises(SchemaResourceError):
        ValidationPipeline.from_settings(ValidatorSettings(schema_dir=tmp_path), monitor=monitor)


def test_rule_sets_and_rendering_do_not_load_schemas(tmp_path, monitor):
    settings = ValidatorSettings(schema_dir=tmp_path, ruleset_dir=FIXTURES / "rulesets")
    pipeline = ValidationPipeline.from_settings(settings, monitor=monitor, load_schemas=False)
    instance = (FIXTURES / "instances" / "invoice-4p0-incomplete-order.xml").read_bytes()
    try:
        report = pipeline.evaluate_rule_set(instance, "basic")
        assert len(report.failures) == 1
        assert "2026-" in pipeline.render(instance)

        with pytest.raises(SchemaResourceError):
            pipeline.validate(instance)
    finally:
        pipeline.close()
