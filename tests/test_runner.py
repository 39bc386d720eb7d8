import asyncio
from datetime import datetime, timezone

import pytest

from domain_risk.models.config import ScanConfig, ScanKind, SourceConfig
from domain_risk.models.results import (
    AbuseChIOC,
    AbuseChSecurityResult,
    DNSSecurityResult,
    Diagnostic,
    TLSSecurityResult,
)
from domain_risk.pipeline.context import ScanContext
from domain_risk.pipeline.runner import (
    LineageError,
    RecordNotFoundError,
    ScanService,
    SourceNotConfiguredError,
    StoreUnavailableError,
)
from domain_risk.pipeline.sources import ScanSource, build_sources
from domain_risk.utils.network import NetworkLedger
from domain_risk.utils.store import MemoryResultStore

GOOD_DNS = DNSSecurityResult(
    spf_valid=True,
    spf_policy="-all",
    dkim_valid=True,
    dmarc_valid=True,
    dmarc_policy="reject",
    dnssec_enabled=True,
    dnssec_valid=True,
)


class FakeSource(ScanSource):
    def __init__(self, context, kind, result=None, error=None):
        super().__init__(context)
        self.kind = kind
        self.result = result
        self.error = error
        self.calls = []

    async def scan(self, domain, prior_scan_id=None):
        self.calls.append((domain, prior_scan_id))
        if self.error:
            raise self.error
        return self.result


def _context(store="memory", config=None):
    return ScanContext(
        config=config or ScanConfig(),
        ledger=NetworkLedger(),
        http_client=None,
        hsts_client=None,
        dns_client=None,
        store=MemoryResultStore() if store == "memory" else store,
    )


def _service(context, **sources):
    fakes = {ScanKind(kind): FakeSource(context, ScanKind(kind), *spec) for kind, spec in sources.items()}
    return ScanService(context, sources=fakes)


def test_scan_dns_stores_result():
    service = _service(_context(), dns=(GOOD_DNS,))
    record = asyncio.run(service.scan_dns(" Example.COM. "))

    assert record.domain == "example.com"
    assert record.dns_scan_id is None
    assert service.get_scan(ScanKind.dns, record.id).result.spf_policy == "-all"


def test_run_scan_requires_matching_dns_scan():
    service = _service(_context(), dns=(GOOD_DNS,), tls=(TLSSecurityResult(),))
    dns_record = asyncio.run(service.scan_dns("example.com"))

    with pytest.raises(LineageError):
        asyncio.run(service.run_scan(ScanKind.tls, "example.com", ""))
    with pytest.raises(LineageError):
        asyncio.run(service.run_scan(ScanKind.tls, "example.com", "not-a-scan"))
    with pytest.raises(LineageError):
        asyncio.run(service.run_scan(ScanKind.tls, "other.com", dns_record.id))

    record = asyncio.run(service.run_scan(ScanKind.tls, "example.com", dns_record.id))
    assert record.dns_scan_id == dns_record.id
    assert service.sources[ScanKind.tls].calls == [("example.com", dns_record.id)]


def test_unregistered_source_is_an_error():
    service = _service(_context(), dns=(GOOD_DNS,))
    dns_record = asyncio.run(service.scan_dns("example.com"))
    with pytest.raises(SourceNotConfiguredError):
        asyncio.run(service.run_scan(ScanKind.shodan, "example.com", dns_record.id))


def test_store_required():
    service = _service(_context(store=None), dns=(GOOD_DNS,))
    with pytest.raises(StoreUnavailableError):
        asyncio.run(service.scan_dns("example.com"))
    with pytest.raises(StoreUnavailableError):
        service.calculate_risk_score("example.com")


def test_missing_records():
    service = _service(_context(), dns=(GOOD_DNS,))
    with pytest.raises(RecordNotFoundError):
        service.get_scan(ScanKind.dns, "missing")
    with pytest.raises(RecordNotFoundError):
        service.get_report("missing")


def test_generate_report_survives_failing_source():
    ioc = AbuseChIOC(ioc_type="domain", ioc_value="example.com", confidence=0.9)
    service = _service(
        _context(),
        dns=(GOOD_DNS,),
        tls=(None, RuntimeError("boom")),
        abusech=(AbuseChSecurityResult(iocs=(ioc,)),),
    )

    report = asyncio.run(service.generate_report("example.com"))

    assert set(report.scan_ids) == {"dns", "abusech"}
    assert report.dns_scan_id == report.scan_ids["dns"]
    assert report.score == 15
    assert report.risk_tier == "Low"
    assert [(r.source, r.points) for r in report.applied_rules] == [("abusech", 15)]
    assert service.get_report(report.report_id) == report
    assert service.list_reports("example.com") == [report]
    assert service.history(ScanKind.abusech, "example.com")[0].dns_scan_id == report.dns_scan_id


def test_calculate_risk_score_uses_latest_results():
    context = _context()
    service = _service(context, dns=(GOOD_DNS,))
    store = context.store
    store.insert(ScanKind.dns, "example.com", DNSSecurityResult())
    store.insert(ScanKind.dns, "example.com", GOOD_DNS)
    store.insert(
        ScanKind.tls,
        "example.com",
        TLSSecurityResult(
            tls_version="TLS 1.3",
            hsts_header=True,
            certificate_valid=True,
            cert_key_strength=4096,
            cert_not_after=datetime(2030, 1, 1, tzinfo=timezone.utc),
            diagnostics=(Diagnostic(check="hsts", message="HSTS check error: timed out"),),
        ),
    )

    risk = service.calculate_risk_score("example.com", now=datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert risk.score == 5
    assert risk.risk_tier == "Low"
    assert [(r.source, r.points) for r in risk.applied_rules] == [("tls", 5)]


def test_build_sources_skips_keyless_sources():
    config = ScanConfig(shodan=SourceConfig(api_key="k", base_url="https://api.shodan.io"))
    sources = build_sources(_context(config=config))
    assert ScanKind.shodan in sources
    assert ScanKind.chaos not in sources
    assert ScanKind.otx not in sources
    assert {ScanKind.dns, ScanKind.tls, ScanKind.crtsh, ScanKind.whois, ScanKind.abusech, ScanKind.isc} <= set(sources)


def test_source_without_scan_cannot_be_created():
    class NoScan(ScanSource):
        kind = ScanKind.dns

    with pytest.raises(TypeError):
        NoScan(_context())
