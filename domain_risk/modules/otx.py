from __future__ import annotations

import logging
from typing import Any, Optional

from ..models.results import OTXURL, Diagnostics, OTXGeneralInfo, OTXMalware, OTXPassiveDNS, OTXSecurityResult
from ..utils.http import FETCH_ERRORS, HttpClient, describe_error
from ..utils.normalize import normalize_domain, parse_timestamp
from ..utils.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)

SECTIONS = (
    ("general", "OTX general query error"),
    ("malware", "OTX malware query error"),
    ("url_list", "OTX URLs query error"),
    ("passive_dns", "OTX passive DNS query error"),
)


def _items(payload: Any, key: str) -> list[dict]:
    # OTX wraps lists in an object; bare lists are accepted as well.
    if isinstance(payload, dict):
        payload = payload.get(key)
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


def _first(item: dict, *keys: str) -> Any:
    for key in keys:
        if item.get(key) not in (None, ""):
            return item[key]
    return None


def parse_general(payload: Any) -> OTXGeneralInfo:
    if not isinstance(payload, dict):
        return OTXGeneralInfo()
    pulse_info = payload.get("pulse_info")
    if isinstance(pulse_info, dict):
        pulses = [p.get("name", "") if isinstance(p, dict) else str(p) for p in pulse_info.get("pulses") or []]
        count = pulse_info.get("count", len(pulses))
    else:
        pulses = [str(p) for p in payload.get("pulses") or []]
        count = payload.get("pulse_count", len(pulses))
    return OTXGeneralInfo(pulse_count=int(count or 0), pulses=tuple(pulses))


def parse_malware(payload: Any) -> list[OTXMalware]:
    return [
        OTXMalware(
            hash=str(item.get("hash") or ""),
            datetime=parse_timestamp(_first(item, "datetime_int", "datetime", "date")),
        )
        for item in _items(payload, "data")
    ]


def parse_urls(payload: Any) -> list[OTXURL]:
    return [
        OTXURL(url=str(item.get("url") or ""), datetime=parse_timestamp(_first(item, "date", "datetime")))
        for item in _items(payload, "url_list")
    ]


def parse_passive_dns(payload: Any) -> list[OTXPassiveDNS]:
    return [
        OTXPassiveDNS(
            address=str(item.get("address") or ""),
            hostname=str(item.get("hostname") or ""),
            record=str(item.get("record_type") or ""),
            datetime=parse_timestamp(_first(item, "first", "first_seen")),
        )
        for item in _items(payload, "passive_dns")
    ]


async def run(
    domain: str,
    http: HttpClient,
    api_key: str,
    base_url: str = "https://otx.alienvault.com/api/v1/",
    limiter: Optional[AsyncRateLimiter] = None,
) -> OTXSecurityResult:
    """Query the four OTX indicator sections; each failing section is recorded on its own."""
    domain = normalize_domain(domain)
    diagnostics = Diagnostics()
    headers = {"X-OTX-API-KEY": api_key}
    payloads: dict[str, Any] = {}
    for section, label in SECTIONS:
        url = f"{base_url.rstrip('/')}/indicators/domain/{domain}/{section}"
        try:
            resp = await http.get(url, headers=headers, rate_limiter=limiter)
            resp.raise_for_status()
            payloads[section] = resp.json()
        except FETCH_ERRORS as exc:
            diagnostics.add(f"otx.{section}", f"{label}: {describe_error(exc)}")

    result = OTXSecurityResult(
        general_info=parse_general(payloads["general"]) if "general" in payloads else None,
        malware=tuple(parse_malware(payloads.get("malware"))),
        urls=tuple(parse_urls(payloads.get("url_list"))),
        passive_dns=tuple(parse_passive_dns(payloads.get("passive_dns"))),
        diagnostics=diagnostics.freeze(),
    )
    logger.info(
        "otx lookup finished",
        extra={"domain": domain, "pulses": result.general_info.pulse_count if result.general_info else 0},
    )
    return result
