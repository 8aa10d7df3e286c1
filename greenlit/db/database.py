"""SQLite database layer via aiosqlite."""

from __future__ import annotations

import json
import uuid

import aiosqlite

SCHEMA = """
CREATE TABLE IF NOT EXISTS scans (
    id TEXT PRIMARY KEY,
    file_name TEXT,
    status TEXT NOT NULL,
    critical INTEGER NOT NULL DEFAULT 0,
    warning INTEGER NOT NULL DEFAULT 0,
    info INTEGER NOT NULL DEFAULT 0,
    result_json TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS reports (
    id TEXT PRIMARY KEY,
    scan_id TEXT NOT NULL REFERENCES scans(id),
    page_count INTEGER NOT NULL,
    document_json TEXT NOT NULL,
    typst_source TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class Database:
    """Async SQLite database for persisting scans and rendered reports."""

    def __init__(self, path: str = "greenlit.db") -> None:
        self.path = path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected; call connect() first")
        return self._db

    # -- Scans --

    async def create_scan(self, result: dict, file_name: str | None = None) -> str:
        scan_id = str(uuid.uuid4())
        counts = result.get("counts", {})
        await self.db.execute(
            "INSERT INTO scans (id, file_name, status, critical, warning, info, result_json) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                scan_id,
                file_name,
                result.get("status", "UNKNOWN"),
                counts.get("critical", 0),
                counts.get("warning", 0),
                counts.get("info", 0),
                json.dumps(result),
            ),
        )
        await self.db.commit()
        return scan_id

    async def get_scan(self, scan_id: str) -> dict | None:
        cursor = await self.db.execute("SELECT * FROM scans WHERE id = ?", (scan_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        scan = dict(row)
        scan["result"] = json.loads(scan.pop("result_json"))
        return scan

    # -- Reports --

    async def create_report(
        self, scan_id: str, document: dict, typst_source: str, page_count: int
    ) -> str:
        report_id = str(uuid.uuid4())
        await self.db.execute(
            "INSERT INTO reports (id, scan_id, page_count, document_json, typst_source) "
            "VALUES (?, ?, ?, ?, ?)",
            (report_id, scan_id, page_count, json.dumps(document), typst_source),
        )
        await self.db.commit()
        return report_id

    async def get_report(self, report_id: str) -> dict | None:
        cursor = await self.db.execute("SELECT * FROM reports WHERE id = ?", (report_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        report = dict(row)
        report["document"] = json.loads(report.pop("document_json"))
        return report
