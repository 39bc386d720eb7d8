from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from ..models.results import (
    AbuseChSecurityResult,
    AppliedRule,
    ChaosSecurityResult,
    CrtShSecurityResult,
    DNSSecurityResult,
    DomainScanResults,
    ISCSecurityResult,
    OTXSecurityResult,
    RiskScore,
    ShodanSecurityResult,
    TLSSecurityResult,
    WhoisSecurityResult,
)

MAX_SCORE = 100

TIERS = (
    (80, "Critical"),
    (60, "High"),
    (40, "Medium"),
)
LOWEST_TIER = "Low"

FLAGGED_SHODAN_TAGS = ("vulnerable", "exposed")


def risk_tier(score: int) -> str:
    for threshold, tier in TIERS:
        if score >= threshold:
            return tier
    return LOWEST_TIER


def _rule(source: str, rule: str, points: int, triggered: bool) -> dict:
    return {"source": source, "rule": rule, "points": points, "triggered": triggered}


def _error_rule(source: str, errors: list[str], per_error: int) -> dict:
    return _rule(source, "scan errors", per_error * len(errors), bool(errors))


def _utc(moment: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps are taken as UTC.
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _expired(moment: Optional[datetime], now: datetime) -> bool:
    moment = _utc(moment)
    return moment is not None and now > moment


def _within(moment: Optional[datetime], now: datetime, days: int) -> bool:
    moment = _utc(moment)
    return moment is not None and now - moment < timedelta(days=days)


def dns_rules(result: DNSSecurityResult, now: datetime) -> list[dict]:
    return [
        _rule("dns", "SPF missing or invalid", 20, not result.spf_valid),
        _rule("dns", "DMARC missing or invalid", 20, not result.dmarc_valid),
        _rule("dns", "DNSSEC disabled or invalid", 15, not result.dnssec_enabled or not result.dnssec_valid),
        _error_rule("dns", result.errors, 10),
    ]


def tls_rules(result: TLSSecurityResult, now: datetime) -> list[dict]:
    version = result.tls_version
    return [
        _rule("tls", "outdated TLS version", 25, version in ("TLS 1.0", "TLS 1.1")),
        _rule("tls", "TLS 1.2 negotiated", 10, version == "TLS 1.2"),
        _rule("tls", "unrecognized TLS version", 15, version not in ("TLS 1.0", "TLS 1.1", "TLS 1.2", "TLS 1.3")),
        _rule("tls", "HSTS header missing", 10, not result.hsts_header),
        _rule(
            "tls",
            "certificate invalid or expired",
            20,
            not result.certificate_valid or _expired(result.cert_not_after, now),
        ),
        # Unknown key types report 0 and still count as weak.
        _rule("tls", "key strength below 2048 bits", 10, result.cert_key_strength < 2048),
        _error_rule("tls", result.errors, 5),
    ]


def crtsh_rules(result: CrtShSecurityResult, now: datetime) -> list[dict]:
    rules = []
    for cert in result.certificates:
        rules.append(_rule("crtsh", f"expired certificate {cert.id}", 10, _expired(cert.not_after, now)))
        rules.append(_rule("crtsh", f"certificate {cert.id} has more than 5 SAN names", 5, len(cert.dns_names) > 5))
    rules.append(_rule("crtsh", "more than 10 subdomains", 10, len(result.subdomains) > 10))
    rules.append(_error_rule("crtsh", result.errors, 5))
    return rules


def chaos_rules(result: ChaosSecurityResult, now: datetime) -> list[dict]:
    return [
        _rule("chaos", "more than 10 subdomains", 10, len(result.subdomains) > 10),
        _error_rule("chaos", result.errors, 5),
    ]


def shodan_rules(result: ShodanSecurityResult, now: datetime) -> list[dict]:
    rules = []
    for host in result.hosts:
        label = f"{host.ip}:{host.port}"
        ssl_expired = host.ssl is not None and _expired(host.ssl.not_after, now)
        rules.append(_rule("shodan", f"expired SSL on {label}", 10, ssl_expired))
        rules.append(_rule("shodan", f"{label} has more than 5 hostnames", 5, len(host.hostnames) > 5))
        for tag in host.tags:
            rules.append(_rule("shodan", f"{label} tagged {tag}", 10, tag in FLAGGED_SHODAN_TAGS))
        seen = _utc(host.timestamp)
        stale = seen is not None and now - seen > timedelta(days=30)
        rules.append(_rule("shodan", f"stale data for {label}", 5, stale))
    rules.append(_error_rule("shodan", result.errors, 5))
    return rules


def otx_rules(result: OTXSecurityResult, now: datetime) -> list[dict]:
    pulses = result.general_info.pulse_count if result.general_info else 0
    rules = [_rule("otx", f"listed in {pulses} pulses", 15 * pulses, pulses > 0)]
    for sample in result.malware:
        rules.append(_rule("otx", f"recent malware {sample.hash}", 20, _within(sample.datetime, now, 90)))
    for entry in result.urls:
        rules.append(_rule("otx", f"recent malicious URL {entry.url}", 10, _within(entry.datetime, now, 90)))
    rules.append(_error_rule("otx", result.errors, 5))
    return rules


def whois_rules(result: WhoisSecurityResult, now: datetime) -> list[dict]:
    expiry = _utc(result.expiry_date)
    expired = _expired(expiry, now)
    expiring = expiry is not None and not expired and now + timedelta(days=30) > expiry
    return [
        _rule("whois", "domain registration expired", 20, expired),
        _rule("whois", "domain registration expires within 30 days", 10, expiring),
        _rule("whois", "domain field missing", 5, result.domain == ""),
        _error_rule("whois", result.errors, 5),
    ]


def abusech_rules(result: AbuseChSecurityResult, now: datetime) -> list[dict]:
    rules = []
    for ioc in result.iocs:
        rules.append(_rule("abusech", f"high-confidence IOC {ioc.ioc_value}", 15, ioc.confidence > 0.7))
        rules.append(
            _rule("abusech", f"medium-confidence IOC {ioc.ioc_value}", 10, 0.5 < ioc.confidence <= 0.7)
        )
        rules.append(_rule("abusech", f"IOC {ioc.ioc_value} seen within 30 days", 10, _within(ioc.last_seen, now, 30)))
    rules.append(_error_rule("abusech", result.errors, 5))
    return rules


def isc_rules(result: ISCSecurityResult, now: datetime) -> list[dict]:
    return [
        _rule("isc", "overall risk High", 30, result.overall_risk == "High"),
        _rule("isc", "overall risk Medium", 15, result.overall_risk == "Medium"),
        _rule("isc", f"{len(result.incidents)} incidents", 10 * len(result.incidents), bool(result.incidents)),
        _error_rule("isc", result.errors, 5),
    ]


SOURCE_RULES = (
    ("dns", dns_rules),
    ("tls", tls_rules),
    ("crtsh", crtsh_rules),
    ("chaos", chaos_rules),
    ("shodan", shodan_rules),
    ("otx", otx_rules),
    ("whois", whois_rules),
    ("abusech", abusech_rules),
    ("isc", isc_rules),
)


def _score_from_rules(rules: list[dict]) -> tuple[int, list[AppliedRule]]:
    raw = 0
    applied: list[AppliedRule] = []
    for rule in rules:
        if rule["triggered"] and rule["points"]:
            raw += int(rule["points"])
            applied.append(AppliedRule(source=rule["source"], rule=rule["rule"], points=rule["points"]))
    return raw, applied


def score(results: DomainScanResults, now: Optional[datetime] = None) -> RiskScore:
    """Additive risk score over whichever sources are present, clamped to [0, 100].

    Pure and total: absent sources contribute nothing and no input raises.
    """
    now = _utc(now) or datetime.now(timezone.utc)
    rules: list[dict] = []
    for field_name, source_rules in SOURCE_RULES:
        result = getattr(results, field_name)
        if result is not None:
            rules.extend(source_rules(result, now))
    raw, applied = _score_from_rules(rules)
    clamped = max(0, min(MAX_SCORE, raw))
    return RiskScore(score=clamped, risk_tier=risk_tier(clamped), applied_rules=tuple(applied))
