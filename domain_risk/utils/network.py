from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class NetworkLedgerEntry:
    timestamp: str
    type: str
    destination_host: str
    url: str | None = None
    method: str | None = None
    status: int | str | None = None
    error: str | None = None
    bytes_out: int = 0
    bytes_in: int = 0
    duration_ms: int = 0
    query_name: str | None = None
    record_type: str | None = None
    success: bool | None = None


@dataclass
class NetworkLedger:
    """Append-only record of every outbound DNS query, TLS handshake and HTTP request."""

    entries: list[NetworkLedgerEntry] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(self, **kwargs: Any) -> None:
        entry = NetworkLedgerEntry(timestamp=datetime.now(timezone.utc).isoformat(), **kwargs)
        with self._lock:
            self.entries.append(entry)

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            entries = [e.__dict__ for e in self.entries]
        return {"entries": entries, "totals": self.totals()}

    def totals(self) -> dict[str, Any]:
        counts = defaultdict(int)
        failures = defaultdict(int)
        bytes_in = defaultdict(int)
        with self._lock:
            entries = list(self.entries)
        for entry in entries:
            counts[entry.type] += 1
            bytes_in[entry.type] += entry.bytes_in
            if entry.error:
                failures[entry.type] += 1
        return {
            "counts": dict(counts),
            "failures": dict(failures),
            "bytes_in": dict(bytes_in),
            "total_entries": len(entries),
        }
