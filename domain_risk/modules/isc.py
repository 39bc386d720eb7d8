from __future__ import annotations

import logging
from typing import Optional

from ..models.results import Diagnostics, ISCIncident, ISCSecurityResult
from ..utils.http import FETCH_ERRORS, HttpClient, describe_error
from ..utils.normalize import normalize_domain, parse_timestamp
from ..utils.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)

MISSING_KEY = "ISC API key not configured. Skipping API scan."


def parse_incidents(items: list) -> list[ISCIncident]:
    return [
        ISCIncident(
            id=str(item.get("id") or ""),
            date=parse_timestamp(item.get("date")),
            description=str(item.get("description") or ""),
            severity=str(item.get("severity") or ""),
        )
        for item in items
        if isinstance(item, dict)
    ]


async def run(
    domain: str,
    http: HttpClient,
    api_key: Optional[str],
    base_url: str = "https://isc.sans.edu/api",
    limiter: Optional[AsyncRateLimiter] = None,
) -> ISCSecurityResult:
    domain = normalize_domain(domain)
    diagnostics = Diagnostics()
    if not api_key:
        diagnostics.add("isc", MISSING_KEY)
        return ISCSecurityResult(diagnostics=diagnostics.freeze())

    url = f"{base_url.rstrip('/')}/v1/domain_info/{domain}"
    try:
        resp = await http.get(url, params={"apikey": api_key}, rate_limiter=limiter)
        resp.raise_for_status()
        data = resp.json()
    except FETCH_ERRORS as exc:
        diagnostics.add("isc", f"ISC API request failed: {describe_error(exc)}")
        return ISCSecurityResult(diagnostics=diagnostics.freeze())

    if not isinstance(data, dict):
        diagnostics.add("isc", "Failed to unmarshal API response: expected an object")
        return ISCSecurityResult(diagnostics=diagnostics.freeze())

    # Errors reported by the feed itself are carried through.
    for message in data.get("errors") or []:
        diagnostics.add("isc", str(message))
    incidents = parse_incidents(data.get("incidents") or [])
    logger.info("isc lookup finished", extra={"domain": domain, "incidents": len(incidents)})
    return ISCSecurityResult(
        incidents=tuple(incidents),
        overall_risk=str(data.get("overall_risk") or ""),
        diagnostics=diagnostics.freeze(),
    )
