from datetime import datetime, timezone

import pytest

from domain_risk.models.config import ScanKind, StoreMode
from domain_risk.models.results import AppliedRule, DNSSecurityResult, Diagnostic, Report, TLSSecurityResult
from domain_risk.utils.store import MemoryResultStore, ResultStore, SqliteResultStore, build_store


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryResultStore()
    return SqliteResultStore(str(tmp_path / "nested" / "results.db"))


def _report(report_id, domain="example.com"):
    return Report(
        report_id=report_id,
        domain=domain,
        dns_scan_id="dns-1",
        score=65,
        risk_tier="High",
        applied_rules=(AppliedRule(source="dns", rule="No DMARC policy", points=20),),
        scan_ids={"dns": "dns-1"},
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_insert_and_get_keep_result_type(store):
    result = DNSSecurityResult(
        spf_valid=True,
        spf_policy="-all",
        mx_records=("mx.example.com",),
        diagnostics=(Diagnostic(check="dmarc", message="DMARC lookup failed: SERVFAIL"),),
    )
    record = store.insert(ScanKind.dns, "example.com", result)

    loaded = store.get(ScanKind.dns, record.id)
    assert isinstance(loaded.result, DNSSecurityResult)
    assert loaded.result.spf_policy == "-all"
    assert loaded.result.mx_records == ("mx.example.com",)
    assert loaded.result.errors == ["DMARC lookup failed: SERVFAIL"]
    assert loaded.created_at.tzinfo is not None
    assert store.get(ScanKind.tls, record.id) is None


def test_by_domain_newest_first(store):
    first = store.insert(ScanKind.dns, "example.com", DNSSecurityResult(spf_policy="~all"))
    second = store.insert(ScanKind.dns, "example.com", DNSSecurityResult(spf_policy="-all"))
    store.insert(ScanKind.dns, "other.com", DNSSecurityResult())

    records = store.by_domain(ScanKind.dns, "example.com")
    assert [r.id for r in records] == [second.id, first.id]
    assert store.latest(ScanKind.dns, "example.com").result.spf_policy == "-all"
    assert store.latest(ScanKind.tls, "example.com") is None


def test_dns_scan_exists_checks_domain(store):
    dns_record = store.insert(ScanKind.dns, "example.com", DNSSecurityResult())
    tls_record = store.insert(ScanKind.tls, "example.com", TLSSecurityResult(), dns_scan_id=dns_record.id)

    assert store.dns_scan_exists(dns_record.id, "example.com") is True
    assert store.dns_scan_exists(dns_record.id, "other.com") is False
    assert store.dns_scan_exists(tls_record.id, "example.com") is False
    assert store.get(ScanKind.tls, tls_record.id).dns_scan_id == dns_record.id


def test_reports(store):
    store.insert_report(_report("r1"))
    store.insert_report(_report("r2"))
    store.insert_report(_report("r3", domain="other.com"))

    assert store.get_report("r1").applied_rules[0].points == 20
    assert store.get_report("missing") is None
    assert [r.report_id for r in store.list_reports("example.com")] == ["r2", "r1"]
    assert len(store.list_reports()) == 3


def test_sqlite_store_persists_across_instances(tmp_path):
    path = str(tmp_path / "results.db")
    record = SqliteResultStore(path).insert(ScanKind.dns, "example.com", DNSSecurityResult(dmarc_policy="reject"))
    assert SqliteResultStore(path).get(ScanKind.dns, record.id).result.dmarc_policy == "reject"


def test_build_store_modes(tmp_path):
    assert isinstance(build_store(StoreMode.memory, ""), MemoryResultStore)
    assert isinstance(build_store("sqlite", str(tmp_path / "r.db")), SqliteResultStore)
    assert build_store(StoreMode.none, "") is None


def test_incomplete_store_cannot_be_created():
    class HalfStore(ResultStore):
        def insert(self, kind, domain, result, dns_scan_id=None):
            return None

    with pytest.raises(TypeError):
        HalfStore()
