from __future__ import annotations

import logging
from typing import Optional

from ..models.results import ChaosSecurityResult, Diagnostics
from ..utils.http import FETCH_ERRORS, HttpClient, describe_error
from ..utils.normalize import dedupe_subdomains, normalize_domain
from ..utils.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)


def expand_prefixes(prefixes: list, domain: str) -> list[str]:
    """Chaos returns bare labels ("www", "*.dev"); qualify them under ``domain``."""
    names = []
    for prefix in prefixes:
        value = str(prefix).strip().rstrip(".")
        if not value:
            continue
        names.append(value if value.endswith(f".{domain}") else f"{value}.{domain}")
    return dedupe_subdomains(names, domain)


async def run(
    domain: str,
    http: HttpClient,
    api_key: str,
    base_url: str,
    limiter: Optional[AsyncRateLimiter] = None,
) -> ChaosSecurityResult:
    domain = normalize_domain(domain)
    diagnostics = Diagnostics()
    url = f"{base_url.rstrip('/')}/{domain}/subdomains"
    try:
        resp = await http.get(url, headers={"Authorization": api_key}, rate_limiter=limiter)
        resp.raise_for_status()
        data = resp.json()
    except FETCH_ERRORS as exc:
        diagnostics.add("chaos", f"Error retrieving subdomains: {describe_error(exc)}")
        return ChaosSecurityResult(diagnostics=diagnostics.freeze())

    prefixes = data.get("subdomains") if isinstance(data, dict) else None
    subdomains = expand_prefixes(prefixes or [], domain)
    logger.info("chaos lookup finished", extra={"domain": domain, "subdomains": len(subdomains)})
    return ChaosSecurityResult(subdomains=tuple(subdomains), diagnostics=diagnostics.freeze())
