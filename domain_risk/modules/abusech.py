from __future__ import annotations

import logging
from typing import Any, Optional

from ..models.results import AbuseChIOC, AbuseChSecurityResult, Diagnostics
from ..utils.http import FETCH_ERRORS, HttpClient, describe_error
from ..utils.normalize import normalize_domain, parse_timestamp
from ..utils.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)

THREATFOX_URL = "https://threatfox-api.abuse.ch/api/v1/"
NO_RESULT = "no_result"


def _confidence(item: dict) -> float:
    # ThreatFox reports confidence_level as a percentage.
    raw = item.get("confidence_level", item.get("confidence"))
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if value > 1:
        value /= 100.0
    return min(max(value, 0.0), 1.0)


def _strings(value: Any) -> tuple[str, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(",") if v.strip())
    return tuple(str(v) for v in value if v)


def parse_iocs(data: list, diagnostics: Diagnostics) -> list[AbuseChIOC]:
    iocs = []
    for item in data:
        if not isinstance(item, dict):
            continue
        seen = {}
        for key in ("first_seen", "last_seen"):
            raw = item.get(key)
            seen[key] = parse_timestamp(raw)
            if raw and seen[key] is None:
                diagnostics.add("abusech", f"Failed to parse {key}: {raw!r}")
        iocs.append(
            AbuseChIOC(
                ioc_type=str(item.get("ioc_type") or ""),
                ioc_value=str(item.get("ioc") or ""),
                threat_type=str(item.get("threat_type") or ""),
                confidence=_confidence(item),
                first_seen=seen["first_seen"],
                last_seen=seen["last_seen"],
                malware_alias=_strings(item.get("malware_alias")),
                tags=_strings(item.get("tags")),
            )
        )
    return iocs


async def run(
    domain: str,
    http: HttpClient,
    api_key: Optional[str] = None,
    base_url: str = THREATFOX_URL,
    limiter: Optional[AsyncRateLimiter] = None,
) -> AbuseChSecurityResult:
    domain = normalize_domain(domain)
    diagnostics = Diagnostics()
    headers = {"Auth-Key": api_key} if api_key else None
    try:
        resp = await http.post(
            base_url,
            json={"query": "search_ioc", "search_term": domain},
            headers=headers,
            rate_limiter=limiter,
        )
        resp.raise_for_status()
        data = resp.json()
    except FETCH_ERRORS as exc:
        diagnostics.add("abusech", f"ThreatFox API request failed: {describe_error(exc)}")
        return AbuseChSecurityResult(diagnostics=diagnostics.freeze())

    status = data.get("query_status") if isinstance(data, dict) else None
    if status == NO_RESULT:
        return AbuseChSecurityResult(diagnostics=diagnostics.freeze())
    if status != "ok":
        diagnostics.add("abusech", f"ThreatFox API error: {status}")
        return AbuseChSecurityResult(diagnostics=diagnostics.freeze())

    items = data.get("data")
    iocs = parse_iocs(items if isinstance(items, list) else [], diagnostics)
    logger.info("threatfox lookup finished", extra={"domain": domain, "iocs": len(iocs)})
    return AbuseChSecurityResult(iocs=tuple(iocs), diagnostics=diagnostics.freeze())
