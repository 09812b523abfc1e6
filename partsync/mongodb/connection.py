from typing import Optional
import logging

import pymongo

from ..config.settings import ReplicationSettings, get_settings
from ..connectors.cdc import (
    ChangeFeedConsumer, CheckpointStore, DatabaseFilter, FailureJournal, MutationApplier
)
from ..replication import LifecycleController, Replicator

logger = logging.getLogger(__name__)


def get_client(mongo_uri: str, server_selection_timeout_ms: int = 10000) -> pymongo.MongoClient:
    """Create a MongoClient from a URI. Caller is responsible for closing if needed.

    Looking up `pymongo.MongoClient` at call time allows tests to monkeypatch
    it (e.g., with mongomock) and have our code pick it up.
    """
    return pymongo.MongoClient(mongo_uri, serverSelectionTimeoutMS=server_selection_timeout_ms)


def build_controller(settings: Optional[ReplicationSettings] = None) -> LifecycleController:
    """Wire clients, checkpoint store, filter, consumer, applier and replicator."""
    settings = settings or get_settings().replication

    source = get_client(settings.source_uri, settings.server_selection_timeout_ms)
    target = get_client(settings.target_uri, settings.server_selection_timeout_ms)

    journal = FailureJournal(maxlen=settings.failure_journal_size)
    database_filter = DatabaseFilter.from_lists(settings.include_databases, settings.ignore_databases)
    store = CheckpointStore(
        target[settings.checkpoint_database][settings.checkpoint_collection],
        save_attempts=settings.checkpoint_save_attempts,
        on_failure=journal
    )
    consumer = ChangeFeedConsumer(source, max_await_time_ms=settings.max_await_time_ms)
    applier = MutationApplier(target, on_failure=journal)
    replicator = Replicator(database_filter, applier, store)

    logger.info(
        "Replication controller configured",
        extra={
            "include_databases": sorted(database_filter.allow),
            "ignore_databases": sorted(database_filter.deny),
            "checkpoint": store.location,
        }
    )
    return LifecycleController(store, consumer, replicator, database_filter, journal=journal)
