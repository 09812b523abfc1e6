"""
Per-event replication flow: classify, filter, apply, checkpoint.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict
import logging

from ..connectors.cdc.checkpoint_store import CheckpointStore
from ..connectors.cdc.database_filter import DatabaseFilter
from ..connectors.cdc.metrics import events_total, failures_total
from ..connectors.cdc.models import (
    ApplyOutcome, ChangeEvent, FailureKind, FailureRecord, OperationKind
)
from ..connectors.cdc.mutation_applier import MutationApplier

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """What happened to one event."""
    outcome: ApplyOutcome
    checkpointed: bool
    reason: str = ""


@dataclass
class ReplicatorStats:
    """Running counters for one Replicator."""
    events_seen: int = 0
    applied: int = 0
    not_matched: int = 0
    skipped: int = 0
    failed: int = 0
    checkpoint_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Replicator:
    """
    Replays one change event at a time onto the target.

    The checkpoint is saved after every event whatever the outcome. The
    change stream cannot re-deliver a single event, so holding the checkpoint
    back on a tolerated failure would only stall progress; failures are
    logged and reported instead.
    """

    def __init__(
        self,
        database_filter: DatabaseFilter,
        applier: MutationApplier,
        checkpoint_store: CheckpointStore
    ):
        self.database_filter = database_filter
        self.applier = applier
        self.checkpoint_store = checkpoint_store
        self.stats = ReplicatorStats()

    def process(self, event: ChangeEvent) -> ProcessResult:
        self.stats.events_seen += 1
        outcome, reason = self._apply(event)

        checkpointed = self.checkpoint_store.save(event.token)
        if not checkpointed:
            self.stats.checkpoint_failures += 1

        self._count(outcome)
        events_total.labels(operation=event.operation.value, outcome=outcome.value).inc()
        return ProcessResult(outcome=outcome, checkpointed=checkpointed, reason=reason)

    def reset_stats(self) -> None:
        self.stats = ReplicatorStats()

    def _apply(self, event: ChangeEvent):
        if event.namespace is None:
            logger.debug(f"Skipping non-namespace change: {event.operation_type}")
            return ApplyOutcome.SKIPPED, "no namespace"

        database = event.namespace.database
        collection = event.namespace.collection
        if not self.database_filter.includes(database):
            logger.debug(f"Skipping change for database: {database}")
            return ApplyOutcome.SKIPPED, "filtered"

        if collection is None:
            logger.debug(f"Skipping database-level change: {event.operation_type} on {database}")
            return ApplyOutcome.SKIPPED, "no collection"

        logger.info(f"Processing change: {event.operation.value} on {event.namespace}")
        try:
            if event.operation == OperationKind.INSERT:
                return self.applier.apply_insert(database, collection, event.full_document), ""
            if event.operation in (OperationKind.UPDATE, OperationKind.REPLACE):
                return self.applier.apply_update(
                    database, collection, event.document_key, event.full_document
                ), ""
            if event.operation == OperationKind.DELETE:
                return self.applier.apply_delete(database, collection, event.document_key), ""
            if event.operation == OperationKind.DROP:
                return self.applier.apply_drop(database, collection), ""
        except Exception as e:
            logger.error(
                f"Error processing change for database {database}: {e}",
                exc_info=True,
                extra={"database": database, "collection": collection}
            )
            failures_total.labels(kind=FailureKind.MUTATION.value).inc()
            self.applier.on_failure(FailureRecord(
                kind=FailureKind.MUTATION,
                message=str(e),
                database=database,
                collection=collection,
                operation=event.operation.value
            ))
            return ApplyOutcome.FAILED, "unexpected error"

        logger.debug(
            f"Unhandled operation type: {event.operation_type} for {event.namespace}"
        )
        return ApplyOutcome.SKIPPED, "unhandled operation"

    def _count(self, outcome: ApplyOutcome) -> None:
        if outcome == ApplyOutcome.APPLIED:
            self.stats.applied += 1
        elif outcome == ApplyOutcome.NOT_MATCHED:
            self.stats.not_matched += 1
        elif outcome == ApplyOutcome.SKIPPED:
            self.stats.skipped += 1
        else:
            self.stats.failed += 1
