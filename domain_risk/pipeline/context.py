from __future__ import annotations

from dataclasses import dataclass, field

from ..models.config import ScanConfig, ScanKind
from ..utils.dns import DnsClient
from ..utils.http import HttpClient
from ..utils.network import NetworkLedger
from ..utils.rate_limit import AsyncRateLimiter
from ..utils.store import ResultStore, build_store


@dataclass
class ScanContext:
    config: ScanConfig
    ledger: NetworkLedger
    http_client: HttpClient
    hsts_client: HttpClient
    dns_client: DnsClient
    store: ResultStore | None
    limiters: dict[ScanKind, AsyncRateLimiter] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: ScanConfig, store: ResultStore | None = None) -> "ScanContext":
        ledger = NetworkLedger()
        http = HttpClient(timeout_seconds=config.http_timeout_seconds, retries=config.retries, ledger=ledger)
        # HSTS probe follows redirects and skips verification; the handshake check owns trust.
        hsts = HttpClient(
            timeout_seconds=config.tls_timeout_seconds,
            ledger=ledger,
            verify=False,
            follow_redirects=True,
        )
        dns_client = DnsClient(
            nameserver=config.resolver,
            port=config.resolver_port,
            timeout_seconds=config.dns_timeout_seconds,
            ledger=ledger,
        )
        limiters = {
            kind: AsyncRateLimiter.from_delay_ms(config.source(kind).request_delay_ms)
            for kind in ScanKind
            if kind not in (ScanKind.dns, ScanKind.tls)
        }
        if store is None:
            store = build_store(config.store, config.store_path)
        return cls(
            config=config,
            ledger=ledger,
            http_client=http,
            hsts_client=hsts,
            dns_client=dns_client,
            store=store,
            limiters=limiters,
        )

    def limiter(self, kind: ScanKind) -> AsyncRateLimiter | None:
        return self.limiters.get(kind)

    async def close(self) -> None:
        await self.http_client.close()
        await self.hsts_client.close()
