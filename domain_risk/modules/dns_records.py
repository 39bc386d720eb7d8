from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

import dns.dnssec
import dns.exception
import dns.rrset
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import load_der_public_key

from ..models.results import DNSSecurityResult, Diagnostics
from ..utils.dns import DnsClient, DnsQueryError, answer_rrset, txt_strings
from ..utils.normalize import normalize_domain

logger = logging.getLogger(__name__)

SPF_PREFIX = "v=spf1"
DKIM_PREFIX = "v=DKIM1"
DMARC_PREFIX = "v=DMARC1"
DKIM_SELECTOR = "default"

SPF_QUALIFIERS = ("-all", "~all", "+all", "?all")
SPF_ENFORCING = ("-all", "~all")
DMARC_POLICIES = ("none", "quarantine", "reject")

CHECK_SPF = "spf"
CHECK_DKIM = "dkim"
CHECK_DMARC = "dmarc"
CHECK_DNSSEC = "dnssec"
CHECK_IP = "ip"
CHECK_MX = "mx"
CHECK_NS = "ns"

NXDOMAIN = "NXDOMAIN"


@dataclass(frozen=True)
class SpfCheck:
    record: str = ""
    valid: bool = False
    policy: str = ""
    # Set when the apex itself answered NXDOMAIN.
    domain_missing: bool = False


@dataclass(frozen=True)
class DkimCheck:
    record: str = ""
    valid: bool = False
    error: str = ""


@dataclass(frozen=True)
class DmarcCheck:
    record: str = ""
    policy: str = ""
    valid: bool = False
    error: str = ""


@dataclass(frozen=True)
class DnssecCheck:
    enabled: bool = False
    valid: bool = False
    error: str = ""


def parse_tags(record: str) -> Dict[str, str]:
    """Split a ``;``-delimited ``key=value`` record; later duplicates win."""
    tags: Dict[str, str] = {}
    for part in record.split(";"):
        part = part.strip()
        if not part or "=" not in part:
            continue
        key, value = part.split("=", 1)
        tags[key.strip()] = value.strip()
    return tags


def parse_spf(txt_records: List[str]) -> SpfCheck:
    for rec in txt_records:
        if not rec.startswith(SPF_PREFIX):
            continue
        policy = ""
        for token in rec.split():
            if token in SPF_QUALIFIERS:
                policy = token
        valid = any(q in rec for q in SPF_ENFORCING)
        return SpfCheck(record=rec, valid=valid, policy=policy)
    return SpfCheck()


def parse_dkim(txt_records: List[str]) -> DkimCheck:
    if not txt_records:
        return DkimCheck(error="No DKIM record found")
    record = next((r for r in txt_records if r.startswith(DKIM_PREFIX)), None)
    if record is None:
        return DkimCheck(record=txt_records[0], error="Invalid DKIM record: missing v=DKIM1")

    tags = parse_tags(record)
    key_type = tags.get("k", "")
    if not key_type:
        return DkimCheck(record=record, error="Missing key type (k=)")
    if key_type != "rsa":
        return DkimCheck(record=record, error=f"Unsupported key type: {key_type}")

    encoded = "".join(tags.get("p", "").split())
    if not encoded:
        return DkimCheck(record=record, error="Missing public key (p=)")
    try:
        der = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        return DkimCheck(record=record, error=f"Failed to decode public key: {exc}")
    try:
        load_der_public_key(der)
    except (ValueError, UnsupportedAlgorithm) as exc:
        return DkimCheck(record=record, error=f"Failed to parse public key: {exc}")
    return DkimCheck(record=record, valid=True)


def parse_dmarc(txt_records: List[str]) -> DmarcCheck:
    if not txt_records:
        return DmarcCheck(error="No DMARC record found")
    record = next((r for r in txt_records if r.startswith(DMARC_PREFIX)), None)
    if record is None:
        return DmarcCheck(record=txt_records[0], error="Invalid DMARC record: missing v=DMARC1")

    tags = parse_tags(record)
    if "p" not in tags:
        return DmarcCheck(record=record, error="Missing policy (p=) field")
    policy = tags["p"]
    if policy not in DMARC_POLICIES:
        return DmarcCheck(record=record, policy=policy, error=f"Invalid policy: {policy}")
    # rua only degrades quality; the record still passes.
    if "rua" not in tags:
        return DmarcCheck(record=record, policy=policy, valid=True, error="Missing recommended rua field")
    return DmarcCheck(record=record, policy=policy, valid=True)


def _lookup_txt(
    client: DnsClient,
    name: str,
    check: str,
    label: str,
    diagnostics: Diagnostics,
    absent_on_nxdomain: bool = False,
) -> Optional[List[str]]:
    try:
        return txt_strings(client.resolve(name, "TXT"))
    except DnsQueryError as exc:
        if absent_on_nxdomain and exc.rcode == NXDOMAIN:
            return []
        diagnostics.add(check, f"{label} lookup failed: {exc}")
        return None


def check_spf(client: DnsClient, domain: str, diagnostics: Diagnostics) -> SpfCheck:
    try:
        rrset = client.resolve(domain, "TXT")
    except DnsQueryError as exc:
        diagnostics.add(CHECK_SPF, f"SPF lookup failed: {exc}")
        return SpfCheck(domain_missing=exc.rcode == NXDOMAIN)
    return parse_spf(txt_strings(rrset))


def check_dkim(client: DnsClient, domain: str, diagnostics: Diagnostics) -> DkimCheck:
    name = f"{DKIM_SELECTOR}._domainkey.{domain}"
    records = _lookup_txt(client, name, CHECK_DKIM, "DKIM", diagnostics, absent_on_nxdomain=True)
    if records is None:
        return DkimCheck()
    return parse_dkim(records)


def check_dmarc(client: DnsClient, domain: str, diagnostics: Diagnostics) -> DmarcCheck:
    records = _lookup_txt(client, f"_dmarc.{domain}", CHECK_DMARC, "DMARC", diagnostics, absent_on_nxdomain=True)
    if records is None:
        return DmarcCheck()
    return parse_dmarc(records)


def verify_rrsigs(
    rrset: dns.rrset.RRset,
    rrsigs: dns.rrset.RRset,
    dnskeys: dns.rrset.RRset,
    now: Optional[datetime] = None,
) -> bool:
    """True if any RRSIG over ``rrset`` verifies against any single DNSKEY."""
    when = now.timestamp() if now else None
    for rrsig in rrsigs:
        for key in dnskeys:
            keyring = {rrsig.signer: dns.rrset.from_rdata(dnskeys.name, dnskeys.ttl, key)}
            try:
                dns.dnssec.validate_rrsig(rrset, rrsig, keyring, now=when)
                return True
            except dns.exception.DNSException as exc:
                logger.debug(
                    "rrsig verification failed",
                    extra={"key_tag": rrsig.key_tag, "algorithm": int(rrsig.algorithm), "error": str(exc)},
                )
    return False


def check_dnssec(client: DnsClient, domain: str, diagnostics: Diagnostics) -> DnssecCheck:
    try:
        ds_response = client.query(domain, "DS", want_dnssec=True)
        dnskey_response = client.query(domain, "DNSKEY", want_dnssec=True)
    except DnsQueryError as exc:
        diagnostics.add(CHECK_DNSSEC, f"DNSSEC key lookup failed: {exc}")
        return DnssecCheck()

    ds_rrset = answer_rrset(ds_response, domain, "DS")
    dnskey_rrset = answer_rrset(dnskey_response, domain, "DNSKEY")
    if ds_rrset is None and dnskey_rrset is None:
        return DnssecCheck(error="No DS or DNSKEY records found")
    # DS without usable keys reports enabled=True, unlike the no-DS/no-DNSKEY case above.
    if dnskey_rrset is None or len(dnskey_rrset) == 0:
        return DnssecCheck(enabled=True, error="No DNSKEY records found")

    try:
        a_response = client.query(domain, "A", want_dnssec=True)
    except DnsQueryError as exc:
        diagnostics.add(CHECK_DNSSEC, f"DNSSEC A lookup failed: {exc}")
        return DnssecCheck(enabled=True)

    a_rrset = answer_rrset(a_response, domain, "A")
    if a_rrset is None:
        return DnssecCheck(enabled=True, error="No A records found")
    rrsigs = answer_rrset(a_response, a_rrset.name.to_text(), "RRSIG", covers="A")
    if rrsigs is None or len(rrsigs) == 0:
        return DnssecCheck(enabled=True, error="No valid RRSIG found for A records")
    if verify_rrsigs(a_rrset, rrsigs, dnskey_rrset):
        return DnssecCheck(enabled=True, valid=True)
    return DnssecCheck(enabled=True, error="DNSSEC signature verification failed for all DNSKEYs")


def enumerate_addresses(client: DnsClient, domain: str, diagnostics: Diagnostics) -> tuple[str, ...]:
    addresses: list[str] = []
    for record_type in ("A", "AAAA"):
        try:
            rrset = client.resolve(domain, record_type)
        except DnsQueryError as exc:
            diagnostics.add(CHECK_IP, f"{record_type} lookup failed: {exc}")
            continue
        if rrset is not None:
            addresses.extend(rdata.address for rdata in rrset)
    return tuple(addresses)


def enumerate_mx(client: DnsClient, domain: str, diagnostics: Diagnostics) -> tuple[str, ...]:
    try:
        rrset = client.resolve(domain, "MX")
    except DnsQueryError as exc:
        diagnostics.add(CHECK_MX, f"MX lookup failed: {exc}")
        return ()
    if rrset is None:
        return ()
    ordered = sorted(rrset, key=lambda rdata: rdata.preference)
    return tuple(rdata.exchange.to_text(omit_final_dot=True) for rdata in ordered)


def enumerate_ns(client: DnsClient, domain: str, diagnostics: Diagnostics) -> tuple[str, ...]:
    try:
        rrset = client.resolve(domain, "NS")
    except DnsQueryError as exc:
        diagnostics.add(CHECK_NS, f"NS lookup failed: {exc}")
        return ()
    if rrset is None:
        return ()
    return tuple(rdata.target.to_text(omit_final_dot=True) for rdata in rrset)


SUB_CHECKS: Dict[str, tuple[Callable, object]] = {
    CHECK_SPF: (check_spf, SpfCheck()),
    CHECK_DKIM: (check_dkim, DkimCheck()),
    CHECK_DMARC: (check_dmarc, DmarcCheck()),
    CHECK_DNSSEC: (check_dnssec, DnssecCheck()),
    CHECK_IP: (enumerate_addresses, ()),
    CHECK_MX: (enumerate_mx, ()),
    CHECK_NS: (enumerate_ns, ()),
}


async def validate_domain(domain: str, client: DnsClient) -> DNSSecurityResult:
    """Run every DNS sub-check concurrently and merge them into one result.

    A sub-check that fails records a diagnostic and keeps its zero values; it
    never suppresses the other sub-checks.
    """
    domain = normalize_domain(domain)
    collectors = {name: Diagnostics() for name in SUB_CHECKS}
    outcomes = await asyncio.gather(
        *(asyncio.to_thread(func, client, domain, collectors[name]) for name, (func, _) in SUB_CHECKS.items()),
        return_exceptions=True,
    )

    values: Dict[str, object] = {}
    for (name, (_, empty)), outcome in zip(SUB_CHECKS.items(), outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, Exception):
            logger.warning("dns sub-check crashed", extra={"domain": domain, "check": name, "error": str(outcome)})
            collectors[name].add(name, f"{name.upper()} check failed: {outcome}")
            outcome = empty
        values[name] = outcome

    # Without the apex, NXDOMAIN below it is a failed lookup rather than an absent record.
    if values[CHECK_SPF].domain_missing:
        for name in (CHECK_DKIM, CHECK_DMARC):
            if not len(collectors[name]):
                collectors[name].add(name, f"{name.upper()} lookup failed: {NXDOMAIN}")
                values[name] = SUB_CHECKS[name][1]

    diagnostics = Diagnostics()
    for name in SUB_CHECKS:
        diagnostics.extend(collectors[name])

    spf: SpfCheck = values[CHECK_SPF]
    dkim: DkimCheck = values[CHECK_DKIM]
    dmarc: DmarcCheck = values[CHECK_DMARC]
    dnssec: DnssecCheck = values[CHECK_DNSSEC]

    result = DNSSecurityResult(
        spf_record=spf.record,
        spf_valid=spf.valid,
        spf_policy=spf.policy,
        dkim_record=dkim.record,
        dkim_valid=dkim.valid,
        dkim_validation_error=dkim.error,
        dmarc_record=dmarc.record,
        dmarc_policy=dmarc.policy,
        dmarc_valid=dmarc.valid,
        dmarc_validation_error=dmarc.error,
        dnssec_enabled=dnssec.enabled,
        dnssec_valid=dnssec.valid,
        dnssec_validation_error=dnssec.error,
        ip_addresses=values[CHECK_IP],
        mx_records=values[CHECK_MX],
        ns_records=values[CHECK_NS],
        diagnostics=diagnostics.freeze(),
    )
    logger.info("dns validation finished", extra={"domain": domain, "errors": len(result.diagnostics)})
    return result
