"""
CDC (Change Data Capture) module for MongoDB change stream replication.
"""

from .errors import CDCError, FeedCreationError, FeedResumeError, FeedIterationError, CheckpointError
from .models import (
    ChangeEvent, Namespace, OperationKind, ApplyOutcome, FailureKind, FailureRecord, FailureJournal
)
from .checkpoint_store import CheckpointStore
from .database_filter import DatabaseFilter
from .change_feed import ChangeFeedConsumer, FeedHandle
from .mutation_applier import MutationApplier

__all__ = [
    "CDCError",
    "FeedCreationError",
    "FeedResumeError",
    "FeedIterationError",
    "CheckpointError",
    "ChangeEvent",
    "Namespace",
    "OperationKind",
    "ApplyOutcome",
    "FailureKind",
    "FailureRecord",
    "FailureJournal",
    "CheckpointStore",
    "DatabaseFilter",
    "ChangeFeedConsumer",
    "FeedHandle",
    "MutationApplier",
]
