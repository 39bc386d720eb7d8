from __future__ import annotations

import asyncio
import logging
import socket
import ssl
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import SignatureAlgorithmOID

from ..models.results import Diagnostics, TLSSecurityResult
from ..utils.http import HttpClient
from ..utils.network import NetworkLedger
from ..utils.normalize import normalize_domain

logger = logging.getLogger(__name__)

TLS_PORT = 443
HSTS_HEADER = "strict-transport-security"

CHECK_HANDSHAKE = "handshake"
CHECK_HSTS = "hsts"

VERSION_LABELS = {
    0x0301: "TLS 1.0",
    0x0302: "TLS 1.1",
    0x0303: "TLS 1.2",
    0x0304: "TLS 1.3",
}

SIGNATURE_ALGORITHMS = {
    SignatureAlgorithmOID.RSA_WITH_MD5: "md5WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA1: "sha1WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA224: "sha224WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA256: "sha256WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA384: "sha384WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA512: "sha512WithRSAEncryption",
    SignatureAlgorithmOID.RSASSA_PSS: "RSASSA-PSS",
    SignatureAlgorithmOID.ECDSA_WITH_SHA1: "ecdsa-with-SHA1",
    SignatureAlgorithmOID.ECDSA_WITH_SHA224: "ecdsa-with-SHA224",
    SignatureAlgorithmOID.ECDSA_WITH_SHA256: "ecdsa-with-SHA256",
    SignatureAlgorithmOID.ECDSA_WITH_SHA384: "ecdsa-with-SHA384",
    SignatureAlgorithmOID.ECDSA_WITH_SHA512: "ecdsa-with-SHA512",
    SignatureAlgorithmOID.DSA_WITH_SHA1: "dsa-with-sha1",
    SignatureAlgorithmOID.DSA_WITH_SHA256: "dsa-with-sha256",
    SignatureAlgorithmOID.ED25519: "ed25519",
    SignatureAlgorithmOID.ED448: "ed448",
}

# Raised by cryptography for leaves OpenSSL accepted but the stricter parser rejects.
CERTIFICATE_ERRORS = (ValueError, UnsupportedAlgorithm, x509.DuplicateExtension)


class TLSHandshakeError(RuntimeError):
    pass


@dataclass(frozen=True)
class Handshake:
    version_code: int
    cipher: str
    leaf_der: Optional[bytes]


def tls_version_label(code: int) -> str:
    return VERSION_LABELS.get(code, f"Unknown ({code})")


def _version_code(name: Optional[str]) -> int:
    # ssl reports e.g. "TLSv1.3"; map it onto the wire protocol number.
    if not name:
        return 0
    try:
        return ssl.TLSVersion[name.replace(".", "_")].value
    except KeyError:
        return 0


def handshake(host: str, port: int = TLS_PORT, timeout_seconds: float = 5.0, ledger: NetworkLedger | None = None) -> Handshake:
    """Blocking, verified handshake returning the negotiated parameters and leaf certificate."""
    context = ssl.create_default_context()
    start = time.monotonic()
    error: str | None = None
    try:
        with socket.create_connection((host, port), timeout=timeout_seconds) as sock:
            with context.wrap_socket(sock, server_hostname=host) as ssock:
                cipher = ssock.cipher()
                return Handshake(
                    version_code=_version_code(ssock.version()),
                    cipher=cipher[0] if cipher else "",
                    leaf_der=ssock.getpeercert(binary_form=True),
                )
    except (OSError, ssl.SSLError) as exc:
        error = str(exc) or type(exc).__name__
        raise TLSHandshakeError(error) from exc
    finally:
        if ledger:
            ledger.add(
                type="tls",
                destination_host=host,
                method="HANDSHAKE",
                error=error,
                success=error is None,
                duration_ms=int((time.monotonic() - start) * 1000),
            )


def key_strength(certificate: x509.Certificate) -> int:
    public_key = certificate.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        return (public_key.key_size + 7) // 8 * 8
    return 0


def signature_algorithm_name(certificate: x509.Certificate) -> str:
    oid = certificate.signature_algorithm_oid
    return SIGNATURE_ALGORITHMS.get(oid, oid.dotted_string)


def san_dns_names(certificate: x509.Certificate) -> tuple[str, ...]:
    try:
        extension = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return ()
    return tuple(extension.value.get_values_for_type(x509.DNSName))


def certificate_fields(der: bytes, now: Optional[datetime] = None) -> dict:
    certificate = x509.load_der_x509_certificate(der)
    now = now or datetime.now(timezone.utc)
    not_before = certificate.not_valid_before_utc
    not_after = certificate.not_valid_after_utc
    return {
        "certificate_valid": not_before <= now <= not_after,
        "cert_issuer": certificate.issuer.rfc4514_string(),
        "cert_subject": certificate.subject.rfc4514_string(),
        "cert_not_before": not_before,
        "cert_not_after": not_after,
        "cert_dns_names": san_dns_names(certificate),
        "cert_key_strength": key_strength(certificate),
        "cert_signature_algorithm": signature_algorithm_name(certificate),
    }


async def check_hsts(domain: str, http: HttpClient) -> bool:
    response = await http.get(f"https://{domain}")
    return bool(response.headers.get(HSTS_HEADER, "").strip())


async def inspect_tls(
    domain: str,
    http: HttpClient,
    timeout_seconds: float = 5.0,
    ledger: NetworkLedger | None = None,
) -> TLSSecurityResult:
    """Handshake with ``domain:443`` and probe for HSTS at the same time.

    When the handshake fails the result carries only that failure; the HSTS
    outcome is discarded.
    """
    domain = normalize_domain(domain)
    diagnostics = Diagnostics()
    shake, hsts = await asyncio.gather(
        asyncio.to_thread(handshake, domain, TLS_PORT, timeout_seconds, ledger),
        check_hsts(domain, http),
        return_exceptions=True,
    )
    for outcome in (shake, hsts):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome

    if isinstance(shake, BaseException):
        logger.info("tls handshake failed", extra={"domain": domain, "error": str(shake)})
        diagnostics.add(CHECK_HANDSHAKE, f"Failed to establish TLS connection: {shake}")
        return TLSSecurityResult(diagnostics=diagnostics.freeze())

    fields: dict = {
        "tls_version": tls_version_label(shake.version_code),
        "cipher_suite": shake.cipher,
    }
    if shake.leaf_der:
        try:
            fields.update(certificate_fields(shake.leaf_der))
        except CERTIFICATE_ERRORS as exc:
            logger.info("certificate parse failed", extra={"domain": domain, "error": str(exc)})
            diagnostics.add(CHECK_HANDSHAKE, f"Failed to parse certificate: {exc}")
    else:
        diagnostics.add(CHECK_HANDSHAKE, "No certificates provided")

    if isinstance(hsts, BaseException):
        diagnostics.add(CHECK_HSTS, f"HSTS check error: {hsts}")
    else:
        fields["hsts_header"] = hsts

    result = TLSSecurityResult(diagnostics=diagnostics.freeze(), **fields)
    logger.info(
        "tls inspection finished",
        extra={"domain": domain, "version": result.tls_version, "errors": len(result.diagnostics)},
    )
    return result
