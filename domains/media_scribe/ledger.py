"""
Dedup ledger.

Persisted mapping from a work item key to its processing status. The ledger
is the single writer of its backing file and the only mutable state shared
between ingestion and the worker pool; every public method takes the
internal lock.

File format::

    {"<key>": {"status": "done", "updated_at": "2025-01-01T00:00:00+00:00"}, ...}
"""

import json
import threading
from pathlib import Path
from typing import Dict, Optional

from loguru import logger
from pydantic import ValidationError

from app.models.schemas import Admission, DedupRecord, DedupStatus, LedgerStats
from app.utils.helpers import atomic_write_text
from domains.media_scribe.errors import LedgerIOError, LedgerStateError


class DedupLedger:
    """Durable check-and-reserve store keyed by work item key."""

    def __init__(self, path: Path):
        """
        Initialize ledger and load any persisted state.

        Args:
            path: JSON file backing the ledger

        Raises:
            LedgerIOError: If the file exists but cannot be read or parsed
        """
        self.path = path
        self._lock = threading.Lock()
        self._records: Dict[str, DedupRecord] = {}
        # Keys admitted during this ledger lifetime
        self._admitted: set[str] = set()
        self._dirty = False

        self._load()

    def _load(self):
        """Load persisted records, turning leftover pending entries into failed."""
        if not self.path.exists():
            logger.info(f"Starting new ledger at {self.path}")
            return

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            records = {
                key: DedupRecord(key=key, **value) for key, value in raw.items()
            }
        except (OSError, ValueError, TypeError, AttributeError, ValidationError) as e:
            raise LedgerIOError(f"Cannot load ledger {self.path}: {e}") from e

        recovered = 0
        for key, record in records.items():
            if record.status == DedupStatus.PENDING:
                # Left over from a crash; make it retryable.
                records[key] = DedupRecord(key=key, status=DedupStatus.FAILED)
                recovered += 1

        self._records = records
        logger.info(f"Loaded {len(records)} ledger records from {self.path}")

        if recovered:
            logger.warning(f"Recovered {recovered} interrupted records as retryable")
            self._dirty = True
            try:
                self._persist()
            except LedgerIOError as e:
                logger.error(f"Could not persist recovered ledger state: {e}")

    def _persist(self):
        """Rewrite the backing file. Caller holds the lock (or is __init__)."""
        payload = {
            key: {
                "status": record.status.value,
                "updated_at": record.updated_at.isoformat(),
            }
            for key, record in self._records.items()
        }
        try:
            atomic_write_text(self.path, json.dumps(payload, indent=2, sort_keys=True))
        except OSError as e:
            raise LedgerIOError(f"Cannot write ledger {self.path}: {e}") from e
        self._dirty = False

    def check_and_reserve(self, key: str) -> Admission:
        """
        Atomically admit ``key`` for processing.

        A key is admitted when it is unknown, or when it is failed and has not
        been admitted yet during this ledger lifetime. Admission is recorded
        as pending and persisted before returning.

        Raises:
            LedgerIOError: If the reservation could not be persisted. The
                in-memory state is rolled back so the key stays admissible.
        """
        with self._lock:
            record = self._records.get(key)

            if record is not None:
                if record.status == DedupStatus.PENDING:
                    return Admission.ALREADY_PENDING
                if record.status == DedupStatus.DONE:
                    return Admission.ALREADY_PROCESSED
                if key in self._admitted:
                    # Failed again after its retry in this lifetime
                    return Admission.ALREADY_PROCESSED

            self._records[key] = DedupRecord(key=key, status=DedupStatus.PENDING)
            try:
                self._persist()
            except LedgerIOError:
                if record is None:
                    del self._records[key]
                else:
                    self._records[key] = record
                raise

            self._admitted.add(key)
            if record is not None:
                logger.info(f"Re-admitting previously failed key {key[:12]}")
            return Admission.ADMITTED

    def mark_done(self, key: str):
        """Transition a reserved key to done."""
        self._finish(key, DedupStatus.DONE)

    def mark_failed(self, key: str):
        """Transition a reserved key to failed; it stays retryable after restart."""
        self._finish(key, DedupStatus.FAILED)

    def _finish(self, key: str, status: DedupStatus):
        with self._lock:
            record = self._records.get(key)
            if record is None or record.status != DedupStatus.PENDING:
                current = record.status.value if record else "missing"
                raise LedgerStateError(f"Key {key[:12]} is not pending (status: {current})")

            # The transition stands even if the write fails; flush() retries.
            self._records[key] = DedupRecord(key=key, status=status)
            self._dirty = True
            self._persist()

    def get(self, key: str) -> Optional[DedupRecord]:
        """Return a snapshot of the record for ``key``."""
        with self._lock:
            return self._records.get(key)

    def stats(self) -> LedgerStats:
        """Count records per status."""
        with self._lock:
            counts = {status: 0 for status in DedupStatus}
            for record in self._records.values():
                counts[record.status] += 1
        return LedgerStats(
            pending=counts[DedupStatus.PENDING],
            done=counts[DedupStatus.DONE],
            failed=counts[DedupStatus.FAILED],
        )

    @property
    def dirty(self) -> bool:
        return self._dirty

    def flush(self):
        """Persist the full ledger to stable storage."""
        with self._lock:
            self._persist()
            logger.info(f"Ledger flushed to {self.path} ({len(self._records)} records)")

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
