"""
Data model for change events, apply outcomes and failure records.
"""

from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional
import threading


class OperationKind(str, Enum):
    """Classified change stream operation."""
    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    DROP = "drop"
    OTHER = "other"

    @classmethod
    def from_operation_type(cls, operation_type: Optional[str]) -> "OperationKind":
        try:
            return cls(operation_type)
        except ValueError:
            return cls.OTHER


class ApplyOutcome(str, Enum):
    """Result of applying one event to the target."""
    APPLIED = "applied"
    NOT_MATCHED = "not_matched"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Kinds of failures that are logged and swallowed."""
    CHECKPOINT_SAVE = "checkpoint_save"
    CHECKPOINT_CORRUPT = "checkpoint_corrupt"
    CHECKPOINT_LOAD = "checkpoint_load"
    ENSURE_COLLECTION = "ensure_collection"
    MISSING_DOCUMENT = "missing_document"
    NO_MATCH = "no_match"
    DUPLICATE_KEY = "duplicate_key"
    MUTATION = "mutation"
    FEED = "feed"


@dataclass(frozen=True)
class Namespace:
    """Database and collection an event applies to."""
    database: str
    collection: Optional[str] = None

    def __str__(self) -> str:
        if self.collection is None:
            return self.database
        return f"{self.database}.{self.collection}"


@dataclass
class ChangeEvent:
    """
    One observed mutation on the source cluster.

    Built from a raw pymongo change document:
        - operation: classified ``operationType``
        - namespace: ``ns`` (None for cluster-scoped events)
        - document_key: ``documentKey``
        - full_document: ``fullDocument`` post-image
        - token: ``_id`` resume token
    """
    operation: OperationKind
    token: Any
    namespace: Optional[Namespace] = None
    document_key: Optional[Dict[str, Any]] = None
    full_document: Optional[Dict[str, Any]] = None
    operation_type: Optional[str] = None

    @classmethod
    def from_change(cls, change: Mapping[str, Any]) -> "ChangeEvent":
        operation_type = change.get("operationType")
        ns = change.get("ns") or {}
        namespace = None
        if ns.get("db"):
            namespace = Namespace(database=ns["db"], collection=ns.get("coll"))

        return cls(
            operation=OperationKind.from_operation_type(operation_type),
            token=change.get("_id"),
            namespace=namespace,
            document_key=change.get("documentKey"),
            full_document=change.get("fullDocument"),
            operation_type=operation_type,
        )


@dataclass
class FailureRecord:
    """A failure that was logged and swallowed by the engine."""
    kind: FailureKind
    message: str
    database: Optional[str] = None
    collection: Optional[str] = None
    operation: Optional[str] = None
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


FailureSink = Callable[[FailureRecord], None]


def discard_failure(record: FailureRecord) -> None:
    """Default sink: failures are only logged."""
    return None


class FailureJournal:
    """
    Bounded, thread-safe journal of recent failures.

    Instances are callable so they can be passed anywhere a FailureSink is
    expected.
    """

    def __init__(self, maxlen: int = 100):
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self._records: Deque[FailureRecord] = deque(maxlen=maxlen)
        self._total = 0
        self._lock = threading.Lock()

    def __call__(self, record: FailureRecord) -> None:
        with self._lock:
            self._records.append(record)
            self._total += 1

    @property
    def total(self) -> int:
        return self._total

    def recent(self, kind: Optional[FailureKind] = None) -> List[FailureRecord]:
        with self._lock:
            records = list(self._records)
        if kind is None:
            return records
        return [r for r in records if r.kind == kind]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._total = 0
