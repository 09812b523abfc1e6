"""
Start/stop lifecycle for the replication worker.

One background thread runs the whole consumption loop. ``start`` and ``stop``
share a single lock; the worker publishes its own state transitions under a
separate lock so callers joining the worker never deadlock with it.
"""

from enum import Enum
from typing import Any, Dict, Optional
import logging
import threading
import uuid

from ..connectors.cdc.change_feed import ChangeFeedConsumer
from ..connectors.cdc.checkpoint_store import CheckpointStore
from ..connectors.cdc.database_filter import DatabaseFilter
from ..connectors.cdc.errors import CDCError
from ..connectors.cdc.metrics import failures_total, replication_state
from ..connectors.cdc.models import FailureJournal, FailureKind, FailureRecord
from ..utils.logging import RunContext
from .replicator import Replicator

logger = logging.getLogger(__name__)


class ReplicationState(str, Enum):
    """Replication state enumeration."""
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    ERROR = "ERROR"


_STATE_GAUGE = {
    ReplicationState.STOPPED: 0,
    ReplicationState.STARTING: 1,
    ReplicationState.RUNNING: 2,
    ReplicationState.ERROR: 3,
}


class LifecycleController:
    """
    Single-flight state machine around the replication loop.

    STOPPED -> STARTING -> RUNNING -> STOPPED | ERROR

    Example:
        >>> controller = LifecycleController(store, consumer, replicator, db_filter)
        >>> controller.start()
        >>> controller.status()
        <ReplicationState.RUNNING: 'RUNNING'>
        >>> controller.stop(wait=True)
    """

    def __init__(
        self,
        checkpoint_store: CheckpointStore,
        consumer: ChangeFeedConsumer,
        replicator: Replicator,
        database_filter: DatabaseFilter,
        journal: Optional[FailureJournal] = None
    ):
        self.checkpoint_store = checkpoint_store
        self.consumer = consumer
        self.replicator = replicator
        self.database_filter = database_filter
        self.journal = journal

        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._running = threading.Event()
        self._cancel = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._state = ReplicationState.STOPPED
        self._last_error: Optional[str] = None
        self._run_id: Optional[str] = None
        replication_state.set(_STATE_GAUGE[self._state])

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def status(self) -> ReplicationState:
        return self._state

    def start(self) -> bool:
        """
        Spawn the replication worker.

        Returns:
            False if a worker is already running (no-op)
        """
        with self._lock:
            if self._running.is_set():
                logger.warning("Replication is already running")
                return False

            self._running.set()
            self._cancel = threading.Event()
            self._last_error = None
            self._run_id = uuid.uuid4().hex
            self.replicator.reset_stats()
            self._set_state(ReplicationState.STARTING)

            self._worker = threading.Thread(
                target=self._run,
                args=(self._cancel, self._run_id),
                name=f"partsync-replication-{self._run_id[:8]}",
                daemon=True
            )
            self._worker.start()
            logger.info("Replication worker started", extra={"run_id": self._run_id})
            return True

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Request the worker to exit before its next event.

        The event being processed is allowed to finish.

        Args:
            wait: Join the worker before returning
            timeout: Join timeout in seconds (only with wait=True)

        Returns:
            False if nothing was running (no-op)
        """
        with self._lock:
            if not self._running.is_set():
                logger.warning("Replication is not running")
                return False

            logger.info("Stopping replication", extra={"run_id": self._run_id})
            self._cancel.set()
            worker = self._worker

        if wait and worker is not None:
            worker.join(timeout)
        return True

    def join(self, timeout: Optional[float] = None) -> None:
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    def snapshot(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "state": self._state.value,
            "running": self.is_running,
            "run_id": self._run_id,
            "last_error": self._last_error,
            "stats": self.replicator.stats.to_dict(),
        }
        if self.journal is not None:
            data["failures_total"] = self.journal.total
            data["recent_failures"] = [r.to_dict() for r in self.journal.recent()[-10:]]
        return data

    def _run(self, cancel: threading.Event, run_id: str) -> None:
        with RunContext(run_id):
            final_state = ReplicationState.STOPPED
            try:
                resume_token = self.checkpoint_store.load()
                pipeline = self.database_filter.compile()

                with self.consumer.open(resume_token, pipeline) as feed:
                    self._set_state(ReplicationState.RUNNING)
                    logger.info("Starting to iterate change stream...")

                    for event in feed.events(cancel):
                        if cancel.is_set():
                            logger.info("Replication stopped; exiting loop")
                            break
                        self.replicator.process(event)

                logger.info("Change stream iteration ended")

            except CDCError as e:
                logger.error(f"Fatal error in replication: {e}", exc_info=True)
                final_state = self._fail(e)
            except Exception as e:
                logger.error(f"Unexpected fatal error in replication: {e}", exc_info=True)
                final_state = self._fail(e)
            finally:
                self._set_state(final_state)
                self._running.clear()
                logger.info(
                    f"Replication worker exited with state {final_state.value}",
                    extra={"stats": self.replicator.stats.to_dict()}
                )

    def _fail(self, error: Exception) -> ReplicationState:
        self._last_error = f"{type(error).__name__}: {error}"
        failures_total.labels(kind=FailureKind.FEED.value).inc()
        if self.journal is not None:
            self.journal(FailureRecord(kind=FailureKind.FEED, message=self._last_error))
        return ReplicationState.ERROR

    def _set_state(self, state: ReplicationState) -> None:
        with self._state_lock:
            self._state = state
        replication_state.set(_STATE_GAUGE[state])
        logger.debug(f"Replication state -> {state.value}")
