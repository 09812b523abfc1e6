"""
Applies classified change events to the target cluster.

Every failure is logged at the call site, reported as a FailureRecord and
swallowed; the caller checkpoints the event either way.
"""

from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError
from typing import Any, Dict, Optional
import logging

from .metrics import failures_total
from .models import ApplyOutcome, FailureKind, FailureRecord, FailureSink, discard_failure

logger = logging.getLogger(__name__)


class MutationApplier:
    """
    Writes inserts, replacements, deletes and drops to the target cluster.

    Thread Safety: NOT thread-safe. Only the replication worker calls it.
    """

    def __init__(self, client: MongoClient, on_failure: FailureSink = discard_failure):
        """
        Args:
            client: Target cluster client
            on_failure: Sink receiving a FailureRecord for each swallowed failure
        """
        self.client = client
        self.on_failure = on_failure

    def ensure_collection(self, database: str, collection: str) -> None:
        """Create the target collection if missing (best effort)."""
        try:
            db = self.client[database]
            if collection in db.list_collection_names():
                logger.debug(f"Collection {database}.{collection} already exists on target")
                return
            logger.info(f"Creating collection {database}.{collection} on target")
            db.create_collection(collection)
        except PyMongoError as e:
            # The write that follows may still create it implicitly
            logger.error(
                f"Failed to ensure collection {database}.{collection} exists: {e}",
                extra={"database": database, "collection": collection}
            )
            self._record(FailureKind.ENSURE_COLLECTION, str(e), database, collection, None)

    def apply_insert(
        self,
        database: str,
        collection: str,
        document: Optional[Dict[str, Any]]
    ) -> ApplyOutcome:
        """
        Insert the post-image verbatim.

        A replayed insert fails with a duplicate key; that is logged and
        reported, not retried.
        """
        if document is None:
            return self._missing_document("insert", database, collection)

        self.ensure_collection(database, collection)
        try:
            self.client[database][collection].insert_one(document)
        except DuplicateKeyError as e:
            logger.error(
                f"Duplicate key inserting into {database}.{collection}: _id={document.get('_id')}",
                extra={"database": database, "collection": collection}
            )
            self._record(FailureKind.DUPLICATE_KEY, str(e), database, collection, "insert")
            return ApplyOutcome.FAILED
        except PyMongoError as e:
            return self._failed("insert", e, database, collection)

        logger.info(f"Inserted document in {database}.{collection}: _id={document.get('_id')}")
        return ApplyOutcome.APPLIED

    def apply_update(
        self,
        database: str,
        collection: str,
        key: Optional[Dict[str, Any]],
        document: Optional[Dict[str, Any]]
    ) -> ApplyOutcome:
        """Replace the document matching ``key`` without upsert."""
        if document is None:
            return self._missing_document("update", database, collection)
        if not key:
            return self._failed("update", ValueError("change event has no documentKey"), database, collection)

        self.ensure_collection(database, collection)
        try:
            result = self.client[database][collection].replace_one(key, document, upsert=False)
        except PyMongoError as e:
            return self._failed("update", e, database, collection)

        logger.info(
            f"replaceOne in {database}.{collection}: matched={result.matched_count}, "
            f"modified={result.modified_count}"
        )
        if result.matched_count == 0:
            logger.warning(
                f"Update failed: No matching document for filter={key}",
                extra={"database": database, "collection": collection}
            )
            self._record(
                FailureKind.NO_MATCH, f"no document matched {key}", database, collection, "update"
            )
            return ApplyOutcome.NOT_MATCHED
        return ApplyOutcome.APPLIED

    def apply_delete(
        self,
        database: str,
        collection: str,
        key: Optional[Dict[str, Any]]
    ) -> ApplyOutcome:
        """Delete the document matching ``key``."""
        if not key:
            return self._failed("delete", ValueError("change event has no documentKey"), database, collection)

        self.ensure_collection(database, collection)
        try:
            result = self.client[database][collection].delete_one(key)
        except PyMongoError as e:
            return self._failed("delete", e, database, collection)

        logger.info(
            f"Deleted document in {database}.{collection}: filter={key}, "
            f"deletedCount={result.deleted_count}"
        )
        if result.deleted_count == 0:
            logger.warning(
                f"Delete failed: No matching document for filter={key}",
                extra={"database": database, "collection": collection}
            )
            self._record(
                FailureKind.NO_MATCH, f"no document matched {key}", database, collection, "delete"
            )
            return ApplyOutcome.NOT_MATCHED
        return ApplyOutcome.APPLIED

    def apply_drop(self, database: str, collection: str) -> ApplyOutcome:
        """Drop the target collection."""
        try:
            self.client[database][collection].drop()
        except PyMongoError as e:
            return self._failed("drop", e, database, collection)

        logger.info(f"Dropped collection {database}.{collection}")
        return ApplyOutcome.APPLIED

    def _missing_document(self, operation: str, database: str, collection: str) -> ApplyOutcome:
        logger.warning(
            f"No full document for operation {operation} in {database}.{collection}",
            extra={"database": database, "collection": collection}
        )
        self._record(
            FailureKind.MISSING_DOCUMENT, "event carries no post-image",
            database, collection, operation
        )
        return ApplyOutcome.SKIPPED

    def _failed(self, operation: str, error: Exception, database: str, collection: str) -> ApplyOutcome:
        logger.error(
            f"Failed to handle {operation} in {database}.{collection}: {error}",
            extra={"database": database, "collection": collection, "error_type": type(error).__name__}
        )
        self._record(FailureKind.MUTATION, str(error), database, collection, operation)
        return ApplyOutcome.FAILED

    def _record(
        self,
        kind: FailureKind,
        message: str,
        database: Optional[str],
        collection: Optional[str],
        operation: Optional[str]
    ) -> None:
        failures_total.labels(kind=kind.value).inc()
        self.on_failure(FailureRecord(
            kind=kind,
            message=message,
            database=database,
            collection=collection,
            operation=operation
        ))
