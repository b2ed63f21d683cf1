"""Delegated signature verification.

Two layers live here:

* :class:`MoaSignatureClient` talks to a MOA-SP style verification service
  over SOAP (``httpx``). It reports faults by raising
  :class:`~ebinterface_validation.exceptions.SignatureServiceError`.
* :class:`SignatureVerificationAdapter` is what the pipeline calls. It maps
  the collaborator's result codes onto :class:`SignatureOutcome` and turns
  every exception (including a timeout) into an ``errored`` outcome with both
  flags ``False``. Nothing raised by a verifier ever leaves :meth:`verify`.

Example:
        client = MoaSignatureClient("https://moa.example.at/moa-spss/services/SignatureVerification")
        adapter = SignatureVerificationAdapter(client, timeout=10.0)
        outcome = adapter.verify(signed_bytes, "dsig")
        outcome.signature_ok, outcome.certificate_ok
"""

from __future__ import annotations

import base64
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from lxml import etree

from .exceptions import SignatureServiceError
from .models import DSIG_NAMESPACE, SignatureOutcome, SignerInfo

logger = logging.getLogger(__name__)

MOA_NS = "http://reference.e-government.gv.at/namespace/moa/20020822#"
SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"

_NSMAP = {"moa": MOA_NS, "dsig": DSIG_NAMESPACE, "soapenv": SOAP_ENV_NS}


@dataclass(frozen=True)
class VerificationResponse:
    """What a signature verifier answers; code ``0`` means the check passed."""

    certificate_check_code: int
    signature_check_code: int
    signer: Optional[SignerInfo] = None


class SignatureVerifier(Protocol):
    def verify(self, data: bytes, signature_prefix: str) -> VerificationResponse:
        ...


class MoaSignatureClient:
    """SOAP client for a MOA-SP ``VerifyXMLSignatureRequest`` endpoint."""

    def __init__(
        self,
        url: str,
        trust_profile: str = "Test-Signaturdienste",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self.trust_profile = trust_profile
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self.client.close()

    def build_request(self, data: bytes, signature_prefix: str) -> bytes:
        """Serialize the SOAP envelope for one verification request."""
        envelope = etree.Element(f"{{{SOAP_ENV_NS}}}Envelope", nsmap={"soapenv": SOAP_ENV_NS})
        body = etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
        request = etree.SubElement(
            body,
            f"{{{MOA_NS}}}VerifyXMLSignatureRequest",
            nsmap={None: MOA_NS, signature_prefix: DSIG_NAMESPACE},
        )
        info = etree.SubElement(request, f"{{{MOA_NS}}}VerifySignatureInfo")
        environment = etree.SubElement(info, f"{{{MOA_NS}}}VerifySignatureEnvironment")
        etree.SubElement(environment, f"{{{MOA_NS}}}Base64Content").text = base64.b64encode(
            data
        ).decode("ascii")
        etree.SubElement(
            info, f"{{{MOA_NS}}}VerifySignatureLocation"
        ).text = f"//{signature_prefix}:Signature"
        etree.SubElement(request, f"{{{MOA_NS}}}TrustProfileID").text = self.trust_profile
        return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")

    def verify(self, data: bytes, signature_prefix: str) -> VerificationResponse:
        try:
            response = self.client.post(
                self.url,
                content=self.build_request(data, signature_prefix),
                headers={"Content-Type": "text/xml; charset=utf-8", "SOAPAction": '""'},
            )
        except httpx.HTTPError as exc:
            raise SignatureServiceError(f"Signature service unreachable: {exc}") from exc

        # SOAP 1.1 faults arrive with status 500, so parse before checking status
        try:
            document = etree.fromstring(response.content)
        except etree.XMLSyntaxError as exc:
            raise SignatureServiceError(
                f"Signature service returned HTTP {response.status_code} with an unreadable body"
            ) from exc

        fault = document.find(".//soapenv:Fault", _NSMAP)
        if fault is not None:
            raise SignatureServiceError(
                f"Signature service fault: {fault.findtext('faultstring', default='').strip()}"
            )
        if response.status_code >= 400:
            raise SignatureServiceError(f"Signature service returned HTTP {response.status_code}")
        return parse_verification_response(document)


def parse_verification_response(document: etree._Element) -> VerificationResponse:
    """Read codes and signer identity from a ``VerifyXMLSignatureResponse``."""
    result = document
    if etree.QName(document).localname != "VerifyXMLSignatureResponse":
        result = document.find(".//moa:VerifyXMLSignatureResponse", _NSMAP)
    if result is None:
        raise SignatureServiceError("Response carries no VerifyXMLSignatureResponse")

    signature_code = result.findtext("moa:SignatureCheck/moa:Code", namespaces=_NSMAP)
    certificate_code = result.findtext("moa:CertificateCheck/moa:Code", namespaces=_NSMAP)
    if signature_code is None or certificate_code is None:
        raise SignatureServiceError("Response is missing a check code")
    try:
        codes = int(certificate_code), int(signature_code)
    except ValueError as exc:
        raise SignatureServiceError(f"Non-numeric check code in response: {exc}") from exc

    return VerificationResponse(
        certificate_check_code=codes[0],
        signature_check_code=codes[1],
        signer=_signer_info(result.find("moa:SignerInfo/dsig:X509Data", _NSMAP)),
    )


def _signer_info(x509: Optional[etree._Element]) -> Optional[SignerInfo]:
    if x509 is None:
        return None
    subject = x509.findtext("dsig:X509SubjectName", namespaces=_NSMAP)
    if subject is None:
        return None
    return SignerInfo(
        issuer=(x509.findtext("dsig:X509IssuerSerial/dsig:X509IssuerName", default="", namespaces=_NSMAP)).strip(),
        subject=subject.strip(),
        serial_number=(x509.findtext("dsig:X509IssuerSerial/dsig:X509SerialNumber", default="", namespaces=_NSMAP)).strip(),
        qualified_certificate=x509.find("moa:QualifiedCertificate", _NSMAP) is not None,
        public_authority=x509.find("moa:PublicAuthority", _NSMAP) is not None,
    )


class SignatureVerificationAdapter:
    """Map verifier responses to :class:`SignatureOutcome`, absorbing all faults.

    Args:
        verifier: Collaborator implementing :class:`SignatureVerifier`. With
            ``None`` every call yields an ``errored`` outcome.
        timeout: Seconds to wait for the verifier; ``None`` waits indefinitely.
            Each timed call runs on its own worker thread, so the clock starts
            when that call starts and concurrent callers never queue behind
            each other.
    """

    def __init__(self, verifier: Optional[SignatureVerifier] = None, timeout: Optional[float] = None) -> None:
        self.verifier = verifier
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return self.verifier is not None

    def verify(self, data: bytes, signature_prefix: str) -> SignatureOutcome:
        if self.verifier is None:
            return SignatureOutcome.errored("No signature verification service configured")
        try:
            response = self._call(data, signature_prefix)
            outcome = SignatureOutcome(
                certificate_ok=response.certificate_check_code == 0,
                signature_ok=response.signature_check_code == 0,
                signer=response.signer,
            )
        except FuturesTimeoutError:
            logger.warning("Signature verification timed out after %ss", self.timeout)
            return SignatureOutcome.errored(f"Signature verification timed out after {self.timeout}s")
        except Exception as exc:  # every collaborator fault maps to the same negative outcome
            logger.warning("Signature verification failed: %s", exc)
            return SignatureOutcome.errored(str(exc) or exc.__class__.__name__)

        logger.debug(
            "Signature check codes: certificate=%s signature=%s",
            response.certificate_check_code,
            response.signature_check_code,
        )
        return outcome

    def _call(self, data: bytes, signature_prefix: str) -> VerificationResponse:
        if self.timeout is None:
            return self.verifier.verify(data, signature_prefix)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="signature")
        try:
            future = executor.submit(self.verifier.verify, data, signature_prefix)
            return future.result(timeout=self.timeout)
        finally:
            # a hung verifier keeps only its own worker
            executor.shutdown(wait=False)

    def close(self) -> None:
        close = getattr(self.verifier, "close", None)
        if callable(close):
            close()
