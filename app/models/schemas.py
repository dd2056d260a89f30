"""
Pydantic models for Scribe.

Shared data models across the application.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.utils.helpers import hash_text, now_utc


# =====================================================
# Work Items
# =====================================================

class MediaKind(str, Enum):
    """Kind of media payload a work item refers to."""
    AUDIO = "audio"
    VIDEO = "video"
    IMAGE = "image"


class WorkItem(BaseModel):
    """One media reference extracted from an ingestion event."""
    model_config = ConfigDict(frozen=True)

    source_id: str  # file path or message id
    media_kind: MediaKind
    media_locator: str  # path or URL
    discovered_at: datetime = Field(default_factory=now_utc)

    @property
    def key(self) -> str:
        """Dedup key derived from (source_id, media_locator)."""
        return hash_text(f"{self.source_id}\n{self.media_locator}")


# =====================================================
# Dedup Ledger Models
# =====================================================

class DedupStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class DedupRecord(BaseModel):
    """Ledger entry for one dedup key."""
    model_config = ConfigDict(frozen=True)

    key: str
    status: DedupStatus
    updated_at: datetime = Field(default_factory=now_utc)


class Admission(str, Enum):
    """Outcome of a ledger reservation attempt."""
    ADMITTED = "admitted"
    ALREADY_PROCESSED = "already_processed"
    ALREADY_PENDING = "already_pending"


# =====================================================
# Processing Results
# =====================================================

class Content(BaseModel):
    """Text produced by a backend for one payload."""
    model_config = ConfigDict(frozen=True)

    text: str
    language: Optional[str] = None
    duration_ms: Optional[int] = None


class ErrorKind(str, Enum):
    BACKEND_FAILURE = "backend_failure"
    TIMEOUT = "timeout"


class ProcessingResult(BaseModel):
    """Outcome of running one work item through a backend."""
    model_config = ConfigDict(frozen=True)

    work_item: WorkItem
    backend_name: str
    content: Optional[Content] = None
    produced_at: datetime = Field(default_factory=now_utc)
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.content is not None


class Sidecar(BaseModel):
    """JSON document written next to a processed file."""
    file_path: str
    file_type: str
    backend_used: str
    timestamp: datetime
    content: Content


# =====================================================
# Relay Network Models
# =====================================================

class OutboundMessage(BaseModel):
    """Unsigned relay message handed to the transport for publication."""
    model_config = ConfigDict(frozen=True)

    kind: int = 1
    content: str
    tags: List[List[str]] = Field(default_factory=list)


class RelayEvent(BaseModel):
    """Signed event as delivered by a relay."""
    id: str
    pubkey: str = ""
    created_at: int = 0
    kind: int = 1
    tags: List[List[str]] = Field(default_factory=list)
    content: str = ""
    sig: str = ""


# =====================================================
# Status API Models
# =====================================================

class LedgerStats(BaseModel):
    pending: int = 0
    done: int = 0
    failed: int = 0


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    accepting: bool
    queue_depth: int
    queue_capacity: int
    workers: int
    ledger: LedgerStats
    version: str
