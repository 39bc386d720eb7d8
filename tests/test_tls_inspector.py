import asyncio
from datetime import datetime, timedelta, timezone

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import NameOID

from domain_risk.modules import tls_inspector
from domain_risk.modules.tls_inspector import Handshake, TLSHandshakeError, inspect_tls, tls_version_label


def _certificate_der(key=None, days_valid=90, names=("example.com", "www.example.com")):
    key = key or rsa.generate_private_key(public_exponent=65537, key_size=2048)
    now = datetime.now(timezone.utc)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test CA"), x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(n) for n in names]), critical=False)
        .sign(key, None if isinstance(key, ed25519.Ed25519PrivateKey) else hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


class _Http:
    def __init__(self, headers=None, error=None):
        self.headers = headers or {}
        self.error = error
        self.calls = []

    async def get(self, url, **kwargs):
        self.calls.append(url)
        if self.error:
            raise self.error
        return httpx.Response(200, headers=self.headers, request=httpx.Request("GET", url))


def _fake_handshake(result):
    def handshake(host, port, timeout_seconds, ledger):
        if isinstance(result, Exception):
            raise result
        return result

    return handshake


def test_tls_version_labels():
    assert tls_version_label(0x0301) == "TLS 1.0"
    assert tls_version_label(0x0302) == "TLS 1.1"
    assert tls_version_label(0x0303) == "TLS 1.2"
    assert tls_version_label(0x0304) == "TLS 1.3"
    assert tls_version_label(0x0300) == "Unknown (768)"


def test_inspect_tls_reads_leaf_certificate(monkeypatch):
    shake = Handshake(version_code=0x0304, cipher="TLS_AES_256_GCM_SHA384", leaf_der=_certificate_der())
    monkeypatch.setattr(tls_inspector, "handshake", _fake_handshake(shake))
    http = _Http(headers={"Strict-Transport-Security": "max-age=31536000"})

    result = asyncio.run(inspect_tls("Example.com", http))

    assert http.calls == ["https://example.com"]
    assert result.tls_version == "TLS 1.3"
    assert result.cipher_suite == "TLS_AES_256_GCM_SHA384"
    assert result.hsts_header is True
    assert result.certificate_valid is True
    assert result.cert_subject == "CN=example.com"
    assert "CN=Test CA" in result.cert_issuer
    assert result.cert_dns_names == ("example.com", "www.example.com")
    assert result.cert_key_strength == 2048
    assert result.cert_signature_algorithm == "sha256WithRSAEncryption"
    assert result.cert_not_after > result.cert_not_before
    assert result.errors == []


def test_handshake_failure_discards_hsts(monkeypatch):
    monkeypatch.setattr(tls_inspector, "handshake", _fake_handshake(TLSHandshakeError("connection refused")))
    http = _Http(headers={"Strict-Transport-Security": "max-age=1"})

    result = asyncio.run(inspect_tls("example.com", http))

    assert result.errors == ["Failed to establish TLS connection: connection refused"]
    assert result.hsts_header is False
    assert result.tls_version == ""
    assert result.certificate_valid is False


def test_missing_certificate(monkeypatch):
    shake = Handshake(version_code=0x0303, cipher="ECDHE-RSA-AES128-GCM-SHA256", leaf_der=None)
    monkeypatch.setattr(tls_inspector, "handshake", _fake_handshake(shake))

    result = asyncio.run(inspect_tls("example.com", _Http()))

    assert result.tls_version == "TLS 1.2"
    assert result.errors == ["No certificates provided"]
    assert result.certificate_valid is False
    assert result.cert_issuer == ""
    assert result.cert_key_strength == 0


def test_hsts_failure_keeps_handshake_fields(monkeypatch):
    shake = Handshake(version_code=0x0304, cipher="TLS_AES_128_GCM_SHA256", leaf_der=_certificate_der())
    monkeypatch.setattr(tls_inspector, "handshake", _fake_handshake(shake))
    http = _Http(error=httpx.ConnectTimeout("timed out"))

    result = asyncio.run(inspect_tls("example.com", http))

    assert result.tls_version == "TLS 1.3"
    assert result.certificate_valid is True
    assert result.hsts_header is False
    assert result.errors == ["HSTS check error: timed out"]
    assert result.failed_checks() == {"hsts"}


def test_empty_hsts_header_counts_as_absent(monkeypatch):
    shake = Handshake(version_code=0x0304, cipher="TLS_AES_128_GCM_SHA256", leaf_der=_certificate_der())
    monkeypatch.setattr(tls_inspector, "handshake", _fake_handshake(shake))

    result = asyncio.run(inspect_tls("example.com", _Http(headers={"Strict-Transport-Security": ""})))

    assert result.hsts_header is False


def test_non_rsa_key_reports_zero_strength():
    der = _certificate_der(key=ec.generate_private_key(ec.SECP256R1()))
    fields = tls_inspector.certificate_fields(der)
    assert fields["cert_key_strength"] == 0
    assert fields["cert_signature_algorithm"] == "ecdsa-with-SHA256"


def test_expired_certificate_is_not_valid():
    der = _certificate_der(days_valid=1)
    fields = tls_inspector.certificate_fields(der, now=datetime.now(timezone.utc) + timedelta(days=5))
    assert fields["certificate_valid"] is False


def test_unparseable_certificate_keeps_handshake_fields(monkeypatch):
    shake = Handshake(version_code=0x0303, cipher="ECDHE-RSA-AES128-GCM-SHA256", leaf_der=b"\x30\x03\x02\x01\x00")
    monkeypatch.setattr(tls_inspector, "handshake", _fake_handshake(shake))
    http = _Http(headers={"Strict-Transport-Security": "max-age=63072000"})

    result = asyncio.run(inspect_tls("example.com", http))

    assert result.tls_version == "TLS 1.2"
    assert result.cipher_suite == "ECDHE-RSA-AES128-GCM-SHA256"
    assert result.hsts_header is True
    assert result.certificate_valid is False
    assert result.cert_subject == "" and result.cert_not_after is None
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Failed to parse certificate: ")
    assert result.failed_checks() == {"handshake"}


def test_signature_algorithm_labels():
    rsa_cert = x509.load_der_x509_certificate(_certificate_der())
    ed_cert = x509.load_der_x509_certificate(_certificate_der(key=ed25519.Ed25519PrivateKey.generate()))
    assert tls_inspector.signature_algorithm_name(rsa_cert) == "sha256WithRSAEncryption"
    assert tls_inspector.signature_algorithm_name(ed_cert) == "ed25519"
