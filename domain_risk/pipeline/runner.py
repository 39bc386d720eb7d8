from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from .. import __version__
from ..models.config import ScanConfig, ScanKind
from ..models.results import DomainScanResults, Report, RiskScore, ScanRecord
from ..modules import scoring
from ..utils.normalize import normalize_domain
from ..utils.store import ResultStore
from .context import ScanContext
from .sources import ScanSource, build_sources

logger = logging.getLogger(__name__)


class ScanError(RuntimeError):
    """Precondition failure reported to the caller instead of the result's diagnostics."""


class LineageError(ScanError):
    pass


class SourceNotConfiguredError(ScanError):
    pass


class StoreUnavailableError(ScanError):
    pass


class RecordNotFoundError(ScanError):
    pass


class ScanService:
    def __init__(self, context: ScanContext, sources: Optional[dict[ScanKind, ScanSource]] = None) -> None:
        self.context = context
        self.sources = sources if sources is not None else build_sources(context)

    @property
    def store(self) -> ResultStore:
        if self.context.store is None:
            raise StoreUnavailableError("no result store configured")
        return self.context.store

    def _source(self, kind: ScanKind) -> ScanSource:
        source = self.sources.get(kind)
        if source is None:
            raise SourceNotConfiguredError(f"scan source {kind.value} is not configured")
        return source

    async def scan_dns(self, domain: str) -> ScanRecord:
        domain = normalize_domain(domain)
        store = self.store
        result = await self._source(ScanKind.dns).scan(domain)
        record = store.insert(ScanKind.dns, domain, result)
        logger.info("dns scan stored", extra={"domain": domain, "scan_id": record.id})
        return record

    async def run_scan(self, kind: ScanKind, domain: str, dns_scan_id: str) -> ScanRecord:
        kind = ScanKind(kind)
        if kind == ScanKind.dns:
            return await self.scan_dns(domain)
        domain = normalize_domain(domain)
        store = self.store
        if not dns_scan_id:
            raise LineageError("a DNS scan id is required")
        if not store.dns_scan_exists(dns_scan_id, domain):
            raise LineageError(f"invalid DNS scan ID {dns_scan_id} for {domain}")
        source = self._source(kind)
        result = await source.scan(domain, dns_scan_id)
        record = store.insert(kind, domain, result, dns_scan_id=dns_scan_id)
        logger.info(
            "scan stored",
            extra={"kind": kind.value, "domain": domain, "scan_id": record.id, "errors": len(result.diagnostics)},
        )
        return record

    async def _safe_scan(self, kind: ScanKind, domain: str, dns_scan_id: str) -> Optional[ScanRecord]:
        try:
            return await self.run_scan(kind, domain, dns_scan_id)
        except Exception as exc:
            logger.error("scan failed", extra={"kind": kind.value, "domain": domain, "error": str(exc)})
            return None

    def collect_latest(self, domain: str) -> DomainScanResults:
        domain = normalize_domain(domain)
        store = self.store
        latest = {}
        for kind in ScanKind:
            record = store.latest(kind, domain)
            if record is not None:
                latest[kind.value] = record.result
        return DomainScanResults(**latest)

    def calculate_risk_score(self, domain: str, now: Optional[datetime] = None) -> RiskScore:
        return scoring.score(self.collect_latest(domain), now=now)

    async def generate_report(self, domain: str) -> Report:
        """DNS scan first, every other registered source concurrently, then score and store."""
        domain = normalize_domain(domain)
        dns_record = await self.scan_dns(domain)
        kinds = [kind for kind in self.sources if kind != ScanKind.dns]
        records = await asyncio.gather(*(self._safe_scan(kind, domain, dns_record.id) for kind in kinds))

        scan_ids = {ScanKind.dns.value: dns_record.id}
        results = {ScanKind.dns.value: dns_record.result}
        for kind, record in zip(kinds, records):
            if record is not None:
                scan_ids[kind.value] = record.id
                results[kind.value] = record.result

        risk = scoring.score(DomainScanResults(**results))
        report = Report(
            report_id=str(uuid4()),
            domain=domain,
            dns_scan_id=dns_record.id,
            score=risk.score,
            risk_tier=risk.risk_tier,
            applied_rules=risk.applied_rules,
            scan_ids=scan_ids,
            created_at=datetime.now(timezone.utc),
        )
        self.store.insert_report(report)
        logger.info(
            "report generated",
            extra={"domain": domain, "report_id": report.report_id, "score": report.score, "tier": report.risk_tier},
        )
        return report

    def history(self, kind: ScanKind, domain: str) -> list[ScanRecord]:
        return self.store.by_domain(ScanKind(kind), normalize_domain(domain))

    def get_scan(self, kind: ScanKind, scan_id: str) -> ScanRecord:
        record = self.store.get(ScanKind(kind), scan_id)
        if record is None:
            raise RecordNotFoundError(f"{ScanKind(kind).value} scan {scan_id} not found")
        return record

    def list_reports(self, domain: Optional[str] = None) -> list[Report]:
        return self.store.list_reports(normalize_domain(domain) if domain else None)

    def get_report(self, report_id: str) -> Report:
        report = self.store.get_report(report_id)
        if report is None:
            raise RecordNotFoundError(f"report {report_id} not found")
        return report


def _manifest(context: ScanContext) -> dict:
    return {
        "tool_version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "config": context.config.redacted(),
        "ledger_totals": context.ledger.totals(),
    }


async def run_report(config: ScanConfig, domain: str) -> dict:
    context = ScanContext.from_config(config)
    try:
        service = ScanService(context)
        report = await service.generate_report(domain)
    finally:
        await context.close()
    return {"report": report.model_dump(mode="json"), "manifest": _manifest(context)}


def run_report_sync(config: ScanConfig, domain: str) -> dict:
    return asyncio.run(run_report(config, domain))
