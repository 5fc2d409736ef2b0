"""AegisGrid Backend — Crowd-sourced report store

Reports are immutable once created and are only removed by `clear()`.
Optionally mirrored to a JSON file (REPORTS_PATH) so they survive restarts.
"""

import json
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from config import REPORTS_PATH, MAX_REPORTS
from models import Report, ReportCreate

logger = logging.getLogger("aegisgrid.reports")


class ReportStore:
    """Thread-safe in-memory report list, newest first."""

    def __init__(self, path: Optional[str] = None, max_reports: int = MAX_REPORTS):
        self._path = Path(path) if path else None
        self._max_reports = max_reports
        self._reports: list[Report] = []
        self._lock = threading.Lock()
        if self._path is not None:
            self._load()

    def _load(self):
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read reports from {self._path}: {e}")
            return
        if not isinstance(raw, list):
            logger.warning(f"Ignoring {self._path}: expected a JSON list")
            return

        loaded = []
        for item in raw:
            try:
                loaded.append(Report.model_validate(item))
            except ValidationError:
                continue
        self._reports = loaded[: self._max_reports]
        logger.info(f"Loaded {len(self._reports)} reports from {self._path}")

    def _save(self):
        if self._path is None:
            return
        payload = [r.model_dump() for r in self._reports]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as e:
            logger.warning(f"Could not persist reports to {self._path}: {e}")

    def add(self, data: ReportCreate) -> Report:
        report = Report(
            id=str(uuid.uuid4()),
            lat=data.lat,
            lon=data.lon,
            category=data.category,
            severity=data.severity,
            note=data.note.strip(),
            createdAt=int(time.time() * 1000),
        )
        with self._lock:
            self._reports.insert(0, report)
            # Keep only the newest reports
            del self._reports[self._max_reports:]
            self._save()
        logger.info(f"Report submitted: {report.category} (sev {report.severity}) "
                    f"at ({report.lat:.4f}, {report.lon:.4f})")
        return report

    def snapshot(self) -> tuple[Report, ...]:
        """Read-only copy for scoring; later writes do not affect it."""
        with self._lock:
            return tuple(self._reports)

    def clear(self) -> int:
        with self._lock:
            count = len(self._reports)
            self._reports = []
            self._save()
        logger.info(f"Cleared {count} reports")
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._reports)


report_store = ReportStore(REPORTS_PATH or None)
