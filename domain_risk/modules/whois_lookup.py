from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import whois

from ..models.results import Diagnostics, WhoisSecurityResult
from ..utils.network import NetworkLedger
from ..utils.normalize import normalize_domain, parse_timestamp
from ..utils.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)

WHOIS_ERRORS = (whois.parser.PywhoisError, OSError, ValueError)


def _first(value: Any) -> Any:
    # python-whois returns a list when the registry repeats a field.
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _text(value: Any) -> str:
    value = _first(value)
    return "" if value is None else str(value).strip()


def parse_record(record: Any) -> dict:
    get = record.get if hasattr(record, "get") else lambda key, default=None: getattr(record, key, default)
    return {
        "domain": _text(get("domain_name")).lower(),
        "registrar": _text(get("registrar")),
        "creation_date": parse_timestamp(_first(get("creation_date"))),
        "expiry_date": parse_timestamp(_first(get("expiration_date"))),
        "registrant_name": _text(get("name") or get("registrant_name") or get("org")),
    }


async def run(
    domain: str,
    limiter: Optional[AsyncRateLimiter] = None,
    ledger: NetworkLedger | None = None,
) -> WhoisSecurityResult:
    domain = normalize_domain(domain)
    diagnostics = Diagnostics()
    if limiter:
        await limiter.wait()
    try:
        record = await asyncio.to_thread(whois.whois, domain)
    except WHOIS_ERRORS as exc:
        logger.info("whois lookup failed", extra={"domain": domain, "error": str(exc)})
        diagnostics.add("whois", f"Whois query failed: {exc}")
        if ledger:
            ledger.add(type="whois", destination_host=domain, method="WHOIS", error=str(exc), success=False)
        return WhoisSecurityResult(diagnostics=diagnostics.freeze())
    if ledger:
        ledger.add(type="whois", destination_host=domain, method="WHOIS", success=True)

    return WhoisSecurityResult(diagnostics=diagnostics.freeze(), **parse_record(record))
