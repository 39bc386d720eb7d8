from __future__ import annotations

import logging
from typing import Optional

from ..models.results import Diagnostics, ShodanHost, ShodanLocation, ShodanSecurityResult, ShodanSSL
from ..utils.http import FETCH_ERRORS, HttpClient, describe_error
from ..utils.normalize import normalize_domain, parse_timestamp
from ..utils.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)


def _str(value: object) -> str:
    return "" if value is None else str(value)


def _strings(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value if v is not None)


def _float(value: object) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _ssl(match: dict) -> Optional[ShodanSSL]:
    cert = (match.get("ssl") or {}).get("cert") or {}
    issuer = (cert.get("issuer") or {}).get("CN") or ""
    if not issuer:
        return None
    expires = _str(cert.get("expires"))
    return ShodanSSL(
        issuer=issuer,
        subject=(cert.get("subject") or {}).get("CN") or "",
        expires=expires,
        not_after=parse_timestamp(expires),
    )


def parse_match(match: dict) -> ShodanHost:
    location = match.get("location") or {}
    try:
        port = int(match.get("port") or 0)
    except (TypeError, ValueError):
        port = 0
    return ShodanHost(
        ip=_str(match.get("ip_str")),
        port=port,
        hostnames=_strings(match.get("hostnames")),
        os=_str(match.get("os")),
        banner=_str(match.get("data")),
        tags=_strings(match.get("tags")),
        location=ShodanLocation(
            city=_str(location.get("city")),
            country_name=_str(location.get("country_name")),
            latitude=_float(location.get("latitude")),
            longitude=_float(location.get("longitude")),
        ),
        ssl=_ssl(match),
        domains=_strings(match.get("domains")),
        asn=_str(match.get("asn")),
        org=_str(match.get("org")),
        isp=_str(match.get("isp")),
        timestamp=parse_timestamp(match.get("timestamp")),
        module=_str((match.get("_shodan") or {}).get("module")),
    )


async def run(
    domain: str,
    http: HttpClient,
    api_key: str,
    base_url: str = "https://api.shodan.io",
    limiter: Optional[AsyncRateLimiter] = None,
) -> ShodanSecurityResult:
    domain = normalize_domain(domain)
    diagnostics = Diagnostics()
    url = f"{base_url.rstrip('/')}/shodan/host/search"
    try:
        resp = await http.get(url, params={"key": api_key, "query": f"hostname:{domain}"}, rate_limiter=limiter)
        resp.raise_for_status()
        data = resp.json()
    except FETCH_ERRORS as exc:
        diagnostics.add("shodan", f"Shodan API query error: {describe_error(exc)}")
        return ShodanSecurityResult(diagnostics=diagnostics.freeze())

    matches = data.get("matches") if isinstance(data, dict) else None
    hosts = [parse_match(m) for m in matches or [] if isinstance(m, dict)]
    logger.info("shodan search finished", extra={"domain": domain, "hosts": len(hosts)})
    return ShodanSecurityResult(hosts=tuple(hosts), diagnostics=diagnostics.freeze())
