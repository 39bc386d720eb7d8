from __future__ import annotations

import logging
from typing import Optional

from ..models.results import CrtShCertificate, CrtShSecurityResult, Diagnostics
from ..utils.http import FETCH_ERRORS, HttpClient, describe_error
from ..utils.normalize import dedupe_subdomains, normalize_domain, parse_timestamp
from ..utils.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)

CRTSH_URL = "https://crt.sh/"


def _to_int(value: object) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_entries(entries: list, domain: str) -> tuple[list[CrtShCertificate], list[str]]:
    certificates: list[CrtShCertificate] = []
    names: list[str] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        dns_names = [part.strip() for part in str(entry.get("name_value", "")).split("\n") if part.strip()]
        names.extend(dns_names)
        certificates.append(
            CrtShCertificate(
                id=_to_int(entry.get("id")),
                common_name=str(entry.get("common_name") or ""),
                issuer=str(entry.get("issuer_name") or ""),
                not_before=parse_timestamp(entry.get("not_before")),
                not_after=parse_timestamp(entry.get("not_after")),
                serial_number=str(entry.get("serial_number") or ""),
                dns_names=tuple(dns_names),
                signature_algorithm=str(entry.get("signature_algorithm") or ""),
            )
        )
    return certificates, dedupe_subdomains(names, domain)


async def run(domain: str, http: HttpClient, limiter: Optional[AsyncRateLimiter] = None) -> CrtShSecurityResult:
    domain = normalize_domain(domain)
    diagnostics = Diagnostics()
    try:
        resp = await http.get(CRTSH_URL, params={"q": f"%.{domain}", "output": "json"}, rate_limiter=limiter)
        resp.raise_for_status()
        data = resp.json()
    except FETCH_ERRORS as exc:
        diagnostics.add("crtsh", f"crt.sh query error: {describe_error(exc)}")
        return CrtShSecurityResult(diagnostics=diagnostics.freeze())

    certificates, subdomains = parse_entries(data if isinstance(data, list) else [], domain)
    logger.info("crt.sh lookup finished", extra={"domain": domain, "certificates": len(certificates)})
    return CrtShSecurityResult(
        certificates=tuple(certificates),
        subdomains=tuple(subdomains),
        diagnostics=diagnostics.freeze(),
    )
