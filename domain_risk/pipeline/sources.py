from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..models.config import ScanKind
from ..models.results import ScanResult
from ..modules import abusech, chaos, crtsh, dns_records, isc, otx, shodan, tls_inspector, whois_lookup
from .context import ScanContext

logger = logging.getLogger(__name__)


class ScanSource(ABC):
    """One kind of scan. ``prior_scan_id`` is the DNS scan the result is attached to."""

    kind: ScanKind

    def __init__(self, context: ScanContext) -> None:
        self.context = context

    @property
    def settings(self):
        return self.context.config.source(self.kind)

    @property
    def limiter(self):
        return self.context.limiter(self.kind)

    @abstractmethod
    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        ...


class DnsSource(ScanSource):
    kind = ScanKind.dns

    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        return await dns_records.validate_domain(domain, self.context.dns_client)


class TlsSource(ScanSource):
    kind = ScanKind.tls

    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        return await tls_inspector.inspect_tls(
            domain,
            self.context.hsts_client,
            timeout_seconds=self.context.config.tls_timeout_seconds,
            ledger=self.context.ledger,
        )


class CrtShSource(ScanSource):
    kind = ScanKind.crtsh

    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        return await crtsh.run(domain, self.context.http_client, limiter=self.limiter)


class ChaosSource(ScanSource):
    kind = ScanKind.chaos

    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        return await chaos.run(
            domain, self.context.http_client, self.settings.api_key, self.settings.base_url, limiter=self.limiter
        )


class ShodanSource(ScanSource):
    kind = ScanKind.shodan

    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        return await shodan.run(
            domain, self.context.http_client, self.settings.api_key, self.settings.base_url, limiter=self.limiter
        )


class OtxSource(ScanSource):
    kind = ScanKind.otx

    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        return await otx.run(
            domain, self.context.http_client, self.settings.api_key, self.settings.base_url, limiter=self.limiter
        )


class WhoisSource(ScanSource):
    kind = ScanKind.whois

    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        return await whois_lookup.run(domain, limiter=self.limiter, ledger=self.context.ledger)


class AbuseChSource(ScanSource):
    kind = ScanKind.abusech

    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        return await abusech.run(
            domain, self.context.http_client, self.settings.api_key, self.settings.base_url, limiter=self.limiter
        )


class IscSource(ScanSource):
    kind = ScanKind.isc

    async def scan(self, domain: str, prior_scan_id: Optional[str] = None) -> ScanResult:
        return await isc.run(
            domain, self.context.http_client, self.settings.api_key, self.settings.base_url, limiter=self.limiter
        )


SOURCE_TYPES: dict[ScanKind, type[ScanSource]] = {
    source.kind: source
    for source in (
        DnsSource,
        TlsSource,
        CrtShSource,
        ChaosSource,
        ShodanSource,
        OtxSource,
        WhoisSource,
        AbuseChSource,
        IscSource,
    )
}

# Sources that are left out entirely when no API key is configured.
KEY_REQUIRED = (ScanKind.chaos, ScanKind.shodan, ScanKind.otx)


def build_sources(context: ScanContext) -> dict[ScanKind, ScanSource]:
    sources: dict[ScanKind, ScanSource] = {}
    for kind, source_type in SOURCE_TYPES.items():
        if kind in KEY_REQUIRED and not context.config.source(kind).api_key:
            logger.info("source not registered", extra={"kind": kind.value, "reason": "missing api key"})
            continue
        sources[kind] = source_type(context)
    return sources
