from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

from ..models.config import ScanKind, StoreMode
from ..models.results import RESULT_TYPES, Report, ScanRecord, ScanResult

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResultStore(ABC):
    """Immutable result blobs keyed by kind, domain, scan id and creation time."""

    @abstractmethod
    def insert(self, kind: ScanKind, domain: str, result: ScanResult, dns_scan_id: Optional[str] = None) -> ScanRecord:
        ...

    @abstractmethod
    def get(self, kind: ScanKind, scan_id: str) -> Optional[ScanRecord]:
        ...

    @abstractmethod
    def by_domain(self, kind: ScanKind, domain: str) -> list[ScanRecord]:
        ...

    def latest(self, kind: ScanKind, domain: str) -> Optional[ScanRecord]:
        records = self.by_domain(kind, domain)
        return records[0] if records else None

    def dns_scan_exists(self, scan_id: str, domain: str) -> bool:
        record = self.get(ScanKind.dns, scan_id)
        return record is not None and record.domain == domain

    @abstractmethod
    def insert_report(self, report: Report) -> Report:
        ...

    @abstractmethod
    def get_report(self, report_id: str) -> Optional[Report]:
        ...

    @abstractmethod
    def list_reports(self, domain: Optional[str] = None) -> list[Report]:
        ...

    @staticmethod
    def new_record(kind: ScanKind, domain: str, result: ScanResult, dns_scan_id: Optional[str]) -> ScanRecord:
        return ScanRecord(
            id=str(uuid4()),
            kind=kind,
            domain=domain,
            dns_scan_id=dns_scan_id,
            created_at=_now(),
            result=result,
        )


class MemoryResultStore(ResultStore):
    def __init__(self) -> None:
        self._records: list[ScanRecord] = []
        self._reports: list[Report] = []

    def insert(self, kind: ScanKind, domain: str, result: ScanResult, dns_scan_id: Optional[str] = None) -> ScanRecord:
        record = self.new_record(kind, domain, result, dns_scan_id)
        self._records.append(record)
        return record

    def get(self, kind: ScanKind, scan_id: str) -> Optional[ScanRecord]:
        for record in self._records:
            if record.kind == kind and record.id == scan_id:
                return record
        return None

    def by_domain(self, kind: ScanKind, domain: str) -> list[ScanRecord]:
        # Insertion order breaks created_at ties.
        matches = [r for r in self._records if r.kind == kind and r.domain == domain]
        return list(reversed(matches))

    def insert_report(self, report: Report) -> Report:
        self._reports.append(report)
        return report

    def get_report(self, report_id: str) -> Optional[Report]:
        return next((r for r in self._reports if r.report_id == report_id), None)

    def list_reports(self, domain: Optional[str] = None) -> list[Report]:
        reports = [r for r in self._reports if domain is None or r.domain == domain]
        return list(reversed(reports))


class SqliteResultStore(ResultStore):
    def __init__(self, path: str) -> None:
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS scan_results ("
                "id TEXT PRIMARY KEY, kind TEXT NOT NULL, domain TEXT NOT NULL, "
                "dns_scan_id TEXT, created_at TEXT NOT NULL, result TEXT NOT NULL)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS scan_results_domain ON scan_results (kind, domain, created_at)"
            )
            conn.execute(
                "CREATE TABLE IF NOT EXISTS reports ("
                "id TEXT PRIMARY KEY, domain TEXT NOT NULL, created_at TEXT NOT NULL, payload TEXT NOT NULL)"
            )
            conn.commit()

    @staticmethod
    def _record(row: tuple) -> ScanRecord:
        scan_id, kind, domain, dns_scan_id, created_at, blob = row
        kind = ScanKind(kind)
        return ScanRecord(
            id=scan_id,
            kind=kind,
            domain=domain,
            dns_scan_id=dns_scan_id,
            created_at=datetime.fromisoformat(created_at),
            result=RESULT_TYPES[kind].model_validate_json(blob),
        )

    def insert(self, kind: ScanKind, domain: str, result: ScanResult, dns_scan_id: Optional[str] = None) -> ScanRecord:
        record = self.new_record(kind, domain, result, dns_scan_id)
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "INSERT INTO scan_results (id, kind, domain, dns_scan_id, created_at, result) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    kind.value,
                    domain,
                    dns_scan_id,
                    record.created_at.isoformat(),
                    result.model_dump_json(),
                ),
            )
            conn.commit()
        logger.debug("scan result stored", extra={"kind": kind.value, "domain": domain, "scan_id": record.id})
        return record

    def get(self, kind: ScanKind, scan_id: str) -> Optional[ScanRecord]:
        with sqlite3.connect(self.path) as conn:
            row = conn.execute(
                "SELECT id, kind, domain, dns_scan_id, created_at, result FROM scan_results WHERE kind=? AND id=?",
                (kind.value, scan_id),
            ).fetchone()
        return self._record(row) if row else None

    def by_domain(self, kind: ScanKind, domain: str) -> list[ScanRecord]:
        with sqlite3.connect(self.path) as conn:
            rows = conn.execute(
                "SELECT id, kind, domain, dns_scan_id, created_at, result FROM scan_results "
                "WHERE kind=? AND domain=? ORDER BY created_at DESC, rowid DESC",
                (kind.value, domain),
            ).fetchall()
        return [self._record(row) for row in rows]

    def insert_report(self, report: Report) -> Report:
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "INSERT INTO reports (id, domain, created_at, payload) VALUES (?, ?, ?, ?)",
                (report.report_id, report.domain, report.created_at.isoformat(), report.model_dump_json()),
            )
            conn.commit()
        return report

    def get_report(self, report_id: str) -> Optional[Report]:
        with sqlite3.connect(self.path) as conn:
            row = conn.execute("SELECT payload FROM reports WHERE id=?", (report_id,)).fetchone()
        return Report.model_validate_json(row[0]) if row else None

    def list_reports(self, domain: Optional[str] = None) -> list[Report]:
        query = "SELECT payload FROM reports"
        params: tuple = ()
        if domain is not None:
            query += " WHERE domain=?"
            params = (domain,)
        query += " ORDER BY created_at DESC, rowid DESC"
        with sqlite3.connect(self.path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [Report.model_validate_json(row[0]) for row in rows]


def build_store(mode: StoreMode | str, path: str) -> Optional[ResultStore]:
    mode = StoreMode(mode)
    if mode == StoreMode.sqlite:
        return SqliteResultStore(path)
    if mode == StoreMode.memory:
        return MemoryResultStore()
    return None
