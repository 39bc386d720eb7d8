from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, computed_field

from .config import ScanKind

logger = logging.getLogger(__name__)

MAX_DIAGNOSTICS = 32

Timestamp = datetime


class Diagnostic(BaseModel):
    """One partial failure recorded during a scan, tagged with the sub-check that produced it."""

    model_config = ConfigDict(frozen=True)

    check: str
    message: str


class Diagnostics:
    """Mutable collector used while a scan runs; frozen into the result at the end."""

    def __init__(self, limit: int = MAX_DIAGNOSTICS) -> None:
        self.limit = limit
        self.dropped = 0
        self._items: list[Diagnostic] = []

    def add(self, check: str, message: str) -> None:
        if len(self._items) >= self.limit:
            self.dropped += 1
            logger.debug("diagnostic dropped", extra={"check": check, "diagnostic": message})
            return
        self._items.append(Diagnostic(check=check, message=message))

    def extend(self, other: "Diagnostics") -> None:
        for item in other._items:
            self.add(item.check, item.message)
        self.dropped += other.dropped

    def freeze(self) -> tuple[Diagnostic, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)


class ScanResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    diagnostics: tuple[Diagnostic, ...] = ()

    @computed_field
    @property
    def errors(self) -> list[str]:
        return [d.message for d in self.diagnostics]

    def failed_checks(self) -> set[str]:
        return {d.check for d in self.diagnostics}


class DNSSecurityResult(ScanResult):
    spf_record: str = ""
    spf_valid: bool = False
    spf_policy: str = ""
    dkim_record: str = ""
    dkim_valid: bool = False
    dkim_validation_error: str = ""
    dmarc_record: str = ""
    dmarc_policy: str = ""
    dmarc_valid: bool = False
    dmarc_validation_error: str = ""
    dnssec_enabled: bool = False
    dnssec_valid: bool = False
    dnssec_validation_error: str = ""
    ip_addresses: tuple[str, ...] = ()
    mx_records: tuple[str, ...] = ()
    ns_records: tuple[str, ...] = ()


class TLSSecurityResult(ScanResult):
    tls_version: str = ""
    cipher_suite: str = ""
    hsts_header: bool = False
    certificate_valid: bool = False
    cert_issuer: str = ""
    cert_subject: str = ""
    cert_not_before: Optional[datetime] = None
    cert_not_after: Optional[datetime] = None
    cert_dns_names: tuple[str, ...] = ()
    cert_key_strength: int = 0
    cert_signature_algorithm: str = ""


class CrtShCertificate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = 0
    common_name: str = ""
    issuer: str = ""
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    serial_number: str = ""
    dns_names: tuple[str, ...] = ()
    signature_algorithm: str = ""


class CrtShSecurityResult(ScanResult):
    certificates: tuple[CrtShCertificate, ...] = ()
    subdomains: tuple[str, ...] = ()


class ChaosSecurityResult(ScanResult):
    subdomains: tuple[str, ...] = ()


class ShodanLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    city: str = ""
    country_name: str = ""
    latitude: float = 0.0
    longitude: float = 0.0


class ShodanSSL(BaseModel):
    model_config = ConfigDict(frozen=True)

    issuer: str = ""
    subject: str = ""
    expires: str = ""
    not_after: Optional[datetime] = None


class ShodanHost(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip: str = ""
    port: int = 0
    hostnames: tuple[str, ...] = ()
    os: str = ""
    banner: str = ""
    tags: tuple[str, ...] = ()
    location: ShodanLocation = Field(default_factory=ShodanLocation)
    ssl: Optional[ShodanSSL] = None
    domains: tuple[str, ...] = ()
    asn: str = ""
    org: str = ""
    isp: str = ""
    timestamp: Optional[datetime] = None
    module: str = ""


class ShodanSecurityResult(ScanResult):
    hosts: tuple[ShodanHost, ...] = ()


class OTXGeneralInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    pulse_count: int = 0
    pulses: tuple[str, ...] = ()


class OTXMalware(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str = ""
    datetime: Optional[Timestamp] = None


class OTXURL(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str = ""
    datetime: Optional[Timestamp] = None


class OTXPassiveDNS(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str = ""
    hostname: str = ""
    record: str = ""
    datetime: Optional[Timestamp] = None


class OTXSecurityResult(ScanResult):
    general_info: Optional[OTXGeneralInfo] = None
    malware: tuple[OTXMalware, ...] = ()
    urls: tuple[OTXURL, ...] = ()
    passive_dns: tuple[OTXPassiveDNS, ...] = ()


class WhoisSecurityResult(ScanResult):
    domain: str = ""
    registrar: str = ""
    creation_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    registrant_name: str = ""


class AbuseChIOC(BaseModel):
    model_config = ConfigDict(frozen=True)

    ioc_type: str = ""
    ioc_value: str = ""
    threat_type: str = ""
    confidence: float = 0.0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    malware_alias: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()


class AbuseChSecurityResult(ScanResult):
    iocs: tuple[AbuseChIOC, ...] = ()


class ISCIncident(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    date: Optional[datetime] = None
    description: str = ""
    severity: str = ""


class ISCSecurityResult(ScanResult):
    incidents: tuple[ISCIncident, ...] = ()
    overall_risk: str = ""


RESULT_TYPES: dict[ScanKind, type[ScanResult]] = {
    ScanKind.dns: DNSSecurityResult,
    ScanKind.tls: TLSSecurityResult,
    ScanKind.crtsh: CrtShSecurityResult,
    ScanKind.chaos: ChaosSecurityResult,
    ScanKind.shodan: ShodanSecurityResult,
    ScanKind.otx: OTXSecurityResult,
    ScanKind.whois: WhoisSecurityResult,
    ScanKind.abusech: AbuseChSecurityResult,
    ScanKind.isc: ISCSecurityResult,
}


class DomainScanResults(BaseModel):
    model_config = ConfigDict(frozen=True)

    dns: Optional[DNSSecurityResult] = None
    tls: Optional[TLSSecurityResult] = None
    crtsh: Optional[CrtShSecurityResult] = None
    chaos: Optional[ChaosSecurityResult] = None
    shodan: Optional[ShodanSecurityResult] = None
    otx: Optional[OTXSecurityResult] = None
    whois: Optional[WhoisSecurityResult] = None
    abusech: Optional[AbuseChSecurityResult] = None
    isc: Optional[ISCSecurityResult] = None


class AppliedRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    rule: str
    points: int


class RiskScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    risk_tier: str
    applied_rules: tuple[AppliedRule, ...] = ()


class ScanRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: ScanKind
    domain: str
    dns_scan_id: Optional[str] = None
    created_at: datetime
    result: SerializeAsAny[ScanResult]


class Report(BaseModel):
    model_config = ConfigDict(frozen=True)

    report_id: str
    domain: str
    dns_scan_id: str
    score: int
    risk_tier: str
    applied_rules: tuple[AppliedRule, ...] = ()
    scan_ids: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
