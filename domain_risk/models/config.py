from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ScanKind(str, Enum):
    dns = "dns"
    tls = "tls"
    crtsh = "crtsh"
    chaos = "chaos"
    shodan = "shodan"
    otx = "otx"
    whois = "whois"
    abusech = "abusech"
    isc = "isc"


class StoreMode(str, Enum):
    sqlite = "sqlite"
    memory = "memory"
    none = "none"


class SourceConfig(BaseModel):
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    request_delay_ms: int = 1000


class ScanConfig(BaseModel):
    resolver: str = "8.8.8.8"
    resolver_port: int = 53
    dns_timeout_seconds: float = 5.0
    tls_timeout_seconds: float = 5.0
    http_timeout_seconds: float = 10.0
    retries: int = 0
    store: StoreMode = StoreMode.sqlite
    store_path: str = "./output/results.db"
    crtsh: SourceConfig = Field(default_factory=lambda: SourceConfig(request_delay_ms=100))
    chaos: SourceConfig = Field(
        default_factory=lambda: SourceConfig(base_url="https://dns.projectdiscovery.io/dns", request_delay_ms=100)
    )
    shodan: SourceConfig = Field(
        default_factory=lambda: SourceConfig(base_url="https://api.shodan.io", request_delay_ms=2500)
    )
    otx: SourceConfig = Field(
        default_factory=lambda: SourceConfig(base_url="https://otx.alienvault.com/api/v1/")
    )
    abusech: SourceConfig = Field(
        default_factory=lambda: SourceConfig(base_url="https://threatfox-api.abuse.ch/api/v1/")
    )
    isc: SourceConfig = Field(default_factory=lambda: SourceConfig(base_url="https://isc.sans.edu/api"))
    whois: SourceConfig = Field(default_factory=lambda: SourceConfig(request_delay_ms=1000))

    def source(self, kind: ScanKind) -> SourceConfig:
        return getattr(self, kind.value)

    def redacted(self) -> dict:
        data = self.model_dump(mode="json")
        for kind in ScanKind:
            section = data.get(kind.value)
            if isinstance(section, dict) and section.get("api_key"):
                section["api_key"] = "***"
        return data
