"""Core models for space-batcher."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# Top-level collections of an export document, in the order they are written.
CONTENT_MODEL_KEYS = ("contentTypes", "tags", "locales", "editorInterfaces", "webhooks")
DOCUMENT_KEYS = CONTENT_MODEL_KEYS + ("entries", "assets")


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


def batch_key(number: int) -> str:
    """Zero-padded batch key used in state records (1 -> "01")."""
    return f"{number:02d}"


def batch_id(number: int) -> str:
    """Batch directory / manifest identifier (1 -> "batch-01")."""
    return f"batch-{batch_key(number)}"


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass
class BucketState:
    """
    State of one token bucket.

    Tokens are fractional and refill continuously at ``refill_rate`` tokens
    per second, up to ``capacity``.

    Attributes:
        name: Label used in logs ("per-second", "per-hour")
        capacity: Max tokens the bucket can hold
        tokens: Current token count (0 <= tokens <= capacity)
        refill_rate: Tokens added per second
        last_refill: Clock reading (seconds) of the last refill
    """

    name: str
    capacity: float
    tokens: float
    refill_rate: float
    last_refill: float

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("capacity must be positive")
        if self.refill_rate <= 0:
            raise ValueError("refill_rate must be positive")

    @classmethod
    def per_second(cls, requests: int, now: float) -> "BucketState":
        """Create a full bucket allowing ``requests`` calls per second."""
        return cls(
            name="per-second",
            capacity=requests,
            tokens=requests,
            refill_rate=float(requests),
            last_refill=now,
        )

    @classmethod
    def per_hour(cls, requests: int, now: float) -> "BucketState":
        """Create a full bucket allowing ``requests`` calls per hour."""
        return cls(
            name="per-hour",
            capacity=requests,
            tokens=requests,
            refill_rate=requests / 3600,
            last_refill=now,
        )


@dataclass
class LimiterStats:
    """Diagnostics exposed by the admission controller."""

    total_requests: int
    throttled_requests: int
    rate_limited_responses: int
    total_wait_seconds: float
    runtime_seconds: float
    second_bucket_tokens: float
    hour_bucket_tokens: float

    @property
    def avg_requests_per_second(self) -> float:
        """Average admitted calls per second since the controller started."""
        if self.runtime_seconds <= 0:
            return 0.0
        return self.total_requests / self.runtime_seconds


# ---------------------------------------------------------------------------
# Partitioning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentModel:
    """Schema layer of an export, imported once with the first batch."""

    content_types: list[dict[str, Any]] = field(default_factory=list)
    locales: list[dict[str, Any]] = field(default_factory=list)
    tags: list[dict[str, Any]] = field(default_factory=list)
    editor_interfaces: list[dict[str, Any]] = field(default_factory=list)
    webhooks: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "ContentModel":
        """Extract the content model collections from an export document."""
        return cls(
            content_types=list(document.get("contentTypes") or []),
            locales=list(document.get("locales") or []),
            tags=list(document.get("tags") or []),
            editor_interfaces=list(document.get("editorInterfaces") or []),
            webhooks=list(document.get("webhooks") or []),
        )

    def to_document(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "contentTypes": self.content_types,
            "tags": self.tags,
            "locales": self.locales,
            "editorInterfaces": self.editor_interfaces,
            "webhooks": self.webhooks,
        }


@dataclass(frozen=True)
class Batch:
    """
    An independently importable slice of the content graph.

    Created by the partitioner and never mutated afterwards.

    Attributes:
        number: 1-based batch number
        assets: Asset slice of this batch (empty for the overflow batch)
        entries: Entries first claimed by this batch
        content_model: Full content model (first batch only)
        overflow: True for the final batch of entries that reference no asset
    """

    number: int
    assets: list[dict[str, Any]]
    entries: list[dict[str, Any]]
    content_model: ContentModel | None = None
    overflow: bool = False

    @property
    def key(self) -> str:
        return batch_key(self.number)

    @property
    def batch_id(self) -> str:
        return batch_id(self.number)

    @property
    def has_content_model(self) -> bool:
        return self.content_model is not None and bool(self.content_model.content_types)

    def to_document(self) -> dict[str, Any]:
        """Render with the same top-level shape as the source export."""
        document: dict[str, Any] = (self.content_model or ContentModel()).to_document()
        document["entries"] = self.entries
        document["assets"] = self.assets
        return document

    def summary(self) -> "BatchSummary":
        return BatchSummary(
            batch_number=self.number,
            batch_id=self.batch_id,
            assets=len(self.assets),
            entries=len(self.entries),
            has_content_model=self.has_content_model,
        )


@dataclass(frozen=True)
class BatchSummary:
    """One manifest line."""

    batch_number: int
    batch_id: str
    assets: int
    entries: int
    has_content_model: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "batchNumber": self.batch_number,
            "batchId": self.batch_id,
            "assets": self.assets,
            "entries": self.entries,
            "hasContentModel": self.has_content_model,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchSummary":
        return cls(
            batch_number=int(data["batchNumber"]),
            batch_id=data["batchId"],
            assets=int(data.get("assets", 0)),
            entries=int(data.get("entries", 0)),
            has_content_model=bool(data.get("hasContentModel", False)),
        )


@dataclass
class Manifest:
    """Summary of all produced batches plus run-level totals."""

    total_assets: int
    total_entries: int
    batch_size: int
    batches: list[BatchSummary] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)

    @property
    def total_batches(self) -> int:
        return len(self.batches)

    def get(self, number: int) -> BatchSummary | None:
        """Look up a batch by its 1-based number."""
        for summary in self.batches:
            if summary.batch_number == number:
                return summary
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalBatches": self.total_batches,
            "totalAssets": self.total_assets,
            "totalEntries": self.total_entries,
            "batchSize": self.batch_size,
            "createdAt": self.created_at,
            "batches": [b.to_dict() for b in self.batches],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        return cls(
            total_assets=int(data.get("totalAssets", 0)),
            total_entries=int(data.get("totalEntries", 0)),
            batch_size=int(data.get("batchSize", 0)),
            batches=[BatchSummary.from_dict(b) for b in data.get("batches", [])],
            created_at=data.get("createdAt") or utc_now_iso(),
        )


# ---------------------------------------------------------------------------
# Migration state
# ---------------------------------------------------------------------------


@dataclass
class FailedBatch:
    """A batch that exhausted its retries."""

    batch: str
    error: str
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, str]:
        return {"batch": self.batch, "error": self.error, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailedBatch":
        return cls(
            batch=str(data["batch"]),
            error=str(data.get("error", "")),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )


@dataclass
class MigrationState:
    """
    Progress record of one migration run.

    Attributes:
        started_at: When the run was first started
        completed_batches: Keys of batches imported successfully
        failed_batches: Batches that exhausted their retries
        current_batch: Key of the batch in flight, or None
        attempts: Attempt counter per batch key (audit only)
    """

    started_at: str = field(default_factory=utc_now_iso)
    completed_batches: list[str] = field(default_factory=list)
    failed_batches: list[FailedBatch] = field(default_factory=list)
    current_batch: str | None = None
    attempts: dict[str, int] = field(default_factory=dict)

    def is_completed(self, key: str) -> bool:
        return key in self.completed_batches

    def failed_keys(self) -> list[str]:
        return [f.batch for f in self.failed_batches]

    def mark_in_flight(self, key: str) -> None:
        self.current_batch = key

    def record_attempt(self, key: str) -> int:
        self.attempts[key] = self.attempts.get(key, 0) + 1
        return self.attempts[key]

    def mark_completed(self, key: str) -> None:
        """Move a batch to completed, dropping any earlier failure record."""
        self.failed_batches = [f for f in self.failed_batches if f.batch != key]
        if key not in self.completed_batches:
            self.completed_batches.append(key)
        if self.current_batch == key:
            self.current_batch = None

    def mark_failed(self, key: str, error: str) -> None:
        """Record a terminal failure, replacing an earlier record for the same batch."""
        self.failed_batches = [f for f in self.failed_batches if f.batch != key]
        self.failed_batches.append(FailedBatch(batch=key, error=error))
        if self.current_batch == key:
            self.current_batch = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at,
            "completedBatches": list(self.completed_batches),
            "failedBatches": [f.to_dict() for f in self.failed_batches],
            "currentBatch": self.current_batch,
            "attempts": dict(self.attempts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MigrationState":
        current = data.get("currentBatch")
        return cls(
            started_at=data.get("startedAt") or utc_now_iso(),
            completed_batches=[str(b) for b in data.get("completedBatches", [])],
            failed_batches=[FailedBatch.from_dict(f) for f in data.get("failedBatches", [])],
            current_batch=str(current) if current is not None else None,
            attempts={str(k): int(v) for k, v in (data.get("attempts") or {}).items()},
        )


@dataclass
class ImportSummary:
    """Outcome of one driver run."""

    total_batches: int
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class ItemCounts:
    """Per-batch item results, for logs and tests."""

    assets_imported: int = 0
    assets_failed: int = 0
    assets_unpublished: int = 0
    entries_imported: int = 0
    entries_failed: int = 0
