"""
MongoDB-backed checkpoint store for change stream resume tokens.

A single record ``{"_id": "lastCheckpoint", "token": <resume token>}`` lives
in a configured collection on the target cluster and is overwritten after
every processed event.
"""

from pymongo.collection import Collection
from pymongo.errors import PyMongoError
from typing import Any, Mapping, Optional
import logging
from tenacity import (
    RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
)

from .errors import CheckpointError
from .metrics import checkpoint_loads_total, checkpoint_saves_total, failures_total
from .models import FailureKind, FailureRecord, FailureSink, discard_failure

logger = logging.getLogger(__name__)

CHECKPOINT_ID = "lastCheckpoint"


class CheckpointStore:
    """
    Checkpoint store on the target cluster.

    Only the active replication worker writes the record, so no locking is
    done here.

    Example:
        >>> store = CheckpointStore(target_client["partsync"]["checkpoints"])
        >>> store.save({"_data": "8263..."})
        >>> token = store.load()
    """

    def __init__(
        self,
        collection: Collection,
        save_attempts: int = 1,
        on_failure: FailureSink = discard_failure
    ):
        """
        Initialize checkpoint store.

        Args:
            collection: Target collection holding the checkpoint record
            save_attempts: Attempts per save before the failure is swallowed
            on_failure: Sink receiving a FailureRecord for each swallowed failure

        Raises:
            ValueError: If save_attempts is less than 1
        """
        if save_attempts < 1:
            raise ValueError("save_attempts must be at least 1")

        self.collection = collection
        self.save_attempts = save_attempts
        self.on_failure = on_failure
        self.location = f"{collection.database.name}.{collection.name}"

    def load(self) -> Optional[Mapping[str, Any]]:
        """
        Load the last checkpoint token.

        Returns:
            Resume token if a well-formed checkpoint exists, None otherwise.
            A malformed record is deleted so the next run starts fresh.

        Raises:
            CheckpointError: If the record cannot be read. Starting without it
                would skip every event since the stored position.
        """
        try:
            record = self.collection.find_one({"_id": CHECKPOINT_ID})
        except PyMongoError as e:
            logger.error(
                f"Failed to read checkpoint from {self.location}: {e}",
                extra={"checkpoint": self.location}
            )
            checkpoint_loads_total.labels(status='error').inc()
            self._record(FailureKind.CHECKPOINT_LOAD, str(e))
            raise CheckpointError(f"Failed to read checkpoint from {self.location}: {e}") from e

        if record is None or record.get("token") is None:
            checkpoint_loads_total.labels(status='not_found').inc()
            logger.debug(f"No checkpoint found in {self.location}")
            return None

        token = record["token"]
        if not self._validate_token(token):
            logger.warning(
                f"Invalid checkpoint token type (expected document, got "
                f"{type(token).__name__}); deleting and starting fresh",
                extra={"checkpoint": self.location}
            )
            checkpoint_loads_total.labels(status='invalid').inc()
            self._record(
                FailureKind.CHECKPOINT_CORRUPT,
                f"malformed token of type {type(token).__name__}"
            )
            self.clear()
            return None

        checkpoint_loads_total.labels(status='success').inc()
        logger.debug(f"Loaded checkpoint from {self.location}")
        return token

    def save(self, token: Any) -> bool:
        """
        Upsert the checkpoint record.

        Failures are logged and recorded, never raised: the previous checkpoint
        stays in place and events after it are re-delivered on restart.

        Returns:
            True if the checkpoint was written
        """
        if token is None:
            return False

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.save_attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
                retry=retry_if_exception_type(CheckpointError),
                reraise=True
            ):
                with attempt:
                    self._write(token)
        except (CheckpointError, RetryError) as e:
            logger.error(
                f"Failed to store checkpoint: {e}",
                extra={"checkpoint": self.location, "attempts": self.save_attempts}
            )
            checkpoint_saves_total.labels(status='error').inc()
            self._record(FailureKind.CHECKPOINT_SAVE, str(e))
            return False

        checkpoint_saves_total.labels(status='success').inc()
        logger.debug(f"Stored checkpoint in {self.location}: {token}")
        return True

    def clear(self) -> None:
        """Delete the checkpoint record (next run opens a fresh stream)."""
        try:
            self.collection.delete_one({"_id": CHECKPOINT_ID})
            logger.info(f"Deleted checkpoint in {self.location}")
        except PyMongoError as e:
            logger.error(
                f"Failed to delete checkpoint in {self.location}: {e}",
                extra={"checkpoint": self.location}
            )

    def _write(self, token: Any) -> None:
        try:
            self.collection.update_one(
                {"_id": CHECKPOINT_ID},
                {"$set": {"token": token}},
                upsert=True
            )
        except PyMongoError as e:
            raise CheckpointError(f"Database error: {e}") from e

    def _validate_token(self, token: Any) -> bool:
        """Resume tokens are non-empty documents (usually ``{"_data": ...}``)."""
        return isinstance(token, Mapping) and len(token) > 0

    def _record(self, kind: FailureKind, message: str) -> None:
        failures_total.labels(kind=kind.value).inc()
        self.on_failure(FailureRecord(
            kind=kind,
            message=message,
            database=self.collection.database.name,
            collection=self.collection.name
        ))
