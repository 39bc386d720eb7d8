from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

DOMAIN_RE = re.compile(r"^(?!-)[A-Za-z0-9.-]{1,253}(?<!-)$")

TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S UTC",
    "%Y%m%d%H%M%SZ",
    "%Y-%m-%d",
)


def normalize_domain(domain: str) -> str:
    value = domain.strip().lower()
    value = value.rstrip(".")
    return value


def to_fqdn(domain: str) -> str:
    value = normalize_domain(domain)
    return f"{value}."


def is_valid_subdomain(name: str) -> bool:
    if not DOMAIN_RE.match(name):
        return False
    if ".." in name:
        return False
    return True


def normalize_subdomain(name: str) -> str:
    value = name.strip().lower().rstrip(".")
    if value.startswith("*."):
        value = value[2:]
    return value


def dedupe_subdomains(names: list[str], domain: str) -> list[str]:
    """Normalize, drop invalid or out-of-scope names and return them sorted."""
    suffix = f".{normalize_domain(domain)}"
    seen = set()
    out = []
    for raw in names:
        value = normalize_subdomain(raw)
        if not value or not is_valid_subdomain(value):
            continue
        if not value.endswith(suffix):
            continue
        if value not in seen:
            seen.add(value)
            out.append(value)
    return sorted(out)


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse the timestamp shapes third-party APIs return into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        parsed = None
        # Explicit formats first; fromisoformat misreads compact forms like 20250102030405Z.
        for fmt in TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
