"""
MongoDB change stream consumer.

Opens a cluster-wide change stream on the source, optionally resumed from a
checkpoint token, and yields classified ChangeEvents one at a time. Polling
uses ``try_next()`` with ``max_await_time_ms`` so an idle stream hands
control back often enough to observe cancellation.
"""

from pymongo import MongoClient
from pymongo.change_stream import ChangeStream
from pymongo.errors import OperationFailure, PyMongoError
from typing import Any, Dict, Iterator, List, Mapping, Optional
import logging
import threading

from .errors import FeedCreationError, FeedIterationError, FeedResumeError
from .models import ChangeEvent

logger = logging.getLogger(__name__)

# InvalidResumeToken, ChangeStreamFatalError, ChangeStreamHistoryLost
RESUME_ERROR_CODES = frozenset({260, 280, 286})


def _is_resume_failure(error: PyMongoError) -> bool:
    if isinstance(error, OperationFailure) and error.code in RESUME_ERROR_CODES:
        return True
    return "resume" in str(error).lower()


class FeedHandle:
    """
    An open change stream.

    Use as a context manager; the stream is closed on exit.
    """

    def __init__(self, stream: ChangeStream, resumed: bool = False):
        self.stream = stream
        self.resumed = resumed

    def __enter__(self) -> "FeedHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def events(self, cancel: Optional[threading.Event] = None) -> Iterator[ChangeEvent]:
        """
        Yield change events in source order.

        Stops when ``cancel`` is set, when the stream is closed, or raises on
        an unrecoverable stream error.

        Raises:
            FeedResumeError: If the source lost the history the stream needs
            FeedIterationError: On any other stream failure
        """
        while not (cancel is not None and cancel.is_set()):
            try:
                if not self.stream.alive:
                    logger.info("Change stream closed by server")
                    return
                change = self.stream.try_next()
            except PyMongoError as e:
                if _is_resume_failure(e):
                    raise FeedResumeError(f"Change stream history lost: {e}") from e
                raise FeedIterationError(f"Change stream iteration failed: {e}") from e

            if change is None:
                # max_await_time_ms elapsed without events
                continue

            yield ChangeEvent.from_change(change)

    def close(self) -> None:
        try:
            self.stream.close()
        except PyMongoError as e:
            logger.warning(f"Error closing change stream: {e}")


class ChangeFeedConsumer:
    """
    Opens change streams against the source cluster.

    Example:
        >>> consumer = ChangeFeedConsumer(MongoClient(source_uri))
        >>> with consumer.open(token, DatabaseFilter().compile()) as feed:
        ...     for event in feed.events(cancel):
        ...         replicator.process(event)
    """

    def __init__(
        self,
        client: MongoClient,
        max_await_time_ms: int = 1000,
        full_document: str = "updateLookup"
    ):
        if max_await_time_ms <= 0:
            raise ValueError("max_await_time_ms must be positive")

        self.client = client
        self.max_await_time_ms = max_await_time_ms
        self.full_document = full_document

    def open(
        self,
        resume_from: Optional[Mapping[str, Any]] = None,
        pipeline: Optional[List[Dict[str, Any]]] = None
    ) -> FeedHandle:
        """
        Open a live change stream.

        Args:
            resume_from: Resume token to continue after, or None to start at
                the current end of the source log
            pipeline: Aggregation stages applied server-side

        Raises:
            FeedResumeError: If the source rejects ``resume_from``
            FeedCreationError: On any other setup failure
        """
        pipeline = pipeline or []
        options: Dict[str, Any] = {
            "full_document": self.full_document,
            "max_await_time_ms": self.max_await_time_ms,
        }
        if resume_from is not None:
            options["resume_after"] = resume_from
            logger.info(f"Resuming change stream with token: {resume_from}")
        else:
            logger.info("Starting new change stream without resume token")

        logger.info(
            f"Change stream pipeline stages: {len(pipeline)}",
            extra={"pipeline": pipeline}
        )

        try:
            stream = self.client.watch(pipeline=pipeline, **options)
        except PyMongoError as e:
            if resume_from is not None and _is_resume_failure(e):
                logger.error(f"Change stream cannot resume from checkpoint: {e}")
                raise FeedResumeError(f"Failed to resume change stream: {e}") from e
            logger.error(f"Error creating change stream: {e}")
            raise FeedCreationError(f"Failed to create change stream: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error creating change stream: {e}")
            raise FeedCreationError(f"Failed to create change stream: {e}") from e

        return FeedHandle(stream, resumed=resume_from is not None)
