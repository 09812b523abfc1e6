"""Unit tests for CDC components."""

import pytest
from unittest.mock import Mock, MagicMock
import threading

from pymongo.errors import AutoReconnect, OperationFailure

from partsync.connectors.cdc import (
    ChangeEvent, ChangeFeedConsumer, CheckpointError, CheckpointStore, DatabaseFilter,
    FailureJournal, FailureKind, FeedCreationError, FeedIterationError, FeedResumeError,
    Namespace, OperationKind
)
from partsync.connectors.cdc.checkpoint_store import CHECKPOINT_ID


class TestDatabaseFilter:
    """Test DatabaseFilter."""

    @pytest.mark.parametrize("allow,deny,database,expected", [
        ([], [], "sales", True),
        ([], ["admin"], "admin", False),
        ([], ["admin"], "sales", True),
        (["sales", "hr"], ["hr"], "sales", True),
        (["sales", "hr"], ["hr"], "hr", False),
        (["sales", "hr"], ["hr"], "ops", False),
        (["sales"], [], "sales", True),
        (["sales"], [], "local", False),
    ])
    def test_includes(self, allow, deny, database, expected):
        """Database included iff (allow empty or member) and not denied."""
        db_filter = DatabaseFilter.from_lists(allow, deny)
        assert db_filter.includes(database) is expected

    def test_compile_empty_is_match_all(self):
        assert DatabaseFilter().compile() == []

    def test_compile_allow_only(self):
        pipeline = DatabaseFilter.from_lists(["sales", "hr"]).compile()
        assert pipeline == [{"$match": {"ns.db": {"$in": ["hr", "sales"]}}}]

    def test_compile_deny_only(self):
        pipeline = DatabaseFilter.from_lists(ignore=["admin"]).compile()
        assert pipeline == [{"$match": {"ns.db": {"$nin": ["admin"]}}}]

    def test_compile_both(self):
        pipeline = DatabaseFilter.from_lists(["sales", "hr"], ["hr"]).compile()
        assert pipeline == [{"$match": {"$and": [
            {"ns.db": {"$in": ["hr", "sales"]}},
            {"ns.db": {"$nin": ["hr"]}},
        ]}}]


class TestChangeEvent:
    """Test ChangeEvent classification."""

    def test_from_insert(self, change_factory):
        change = change_factory("insert", 1, key={"_id": 1}, doc={"_id": 1, "amt": 10})
        event = ChangeEvent.from_change(change)

        assert event.operation == OperationKind.INSERT
        assert event.namespace == Namespace("sales", "orders")
        assert event.document_key == {"_id": 1}
        assert event.full_document == {"_id": 1, "amt": 10}
        assert event.token == {"_data": "8200000001"}

    def test_cluster_scoped_event_has_no_namespace(self, change_factory):
        event = ChangeEvent.from_change(change_factory("invalidate", 2, db=None))
        assert event.namespace is None
        assert event.operation == OperationKind.OTHER

    @pytest.mark.parametrize("operation_type", ["dropDatabase", "rename", "createIndexes", None])
    def test_unknown_operations_are_other(self, operation_type):
        event = ChangeEvent.from_change({"_id": {"_data": "x"}, "operationType": operation_type})
        assert event.operation == OperationKind.OTHER


class TestCheckpointStore:
    """Test CheckpointStore against an in-memory target."""

    @pytest.fixture
    def journal(self):
        return FailureJournal()

    @pytest.fixture
    def store(self, checkpoint_collection, journal):
        return CheckpointStore(checkpoint_collection, on_failure=journal)

    def test_load_returns_none_if_not_exists(self, store):
        assert store.load() is None

    def test_save_then_load_round_trip(self, store):
        token = {"_data": "826512AB4C000000012B022C0100296E5A1004"}
        assert store.save(token) is True
        assert store.load() == token

    def test_save_overwrites_single_record(self, store, checkpoint_collection):
        store.save({"_data": "01"})
        store.save({"_data": "02"})

        assert checkpoint_collection.count_documents({}) == 1
        record = checkpoint_collection.find_one({"_id": CHECKPOINT_ID})
        assert record["token"] == {"_data": "02"}

    @pytest.mark.parametrize("bad_token", ["not_a_document", 42, {}, ["_data", "x"]])
    def test_malformed_token_is_deleted(self, store, checkpoint_collection, journal, bad_token):
        """A malformed checkpoint is removed and treated as absent."""
        checkpoint_collection.insert_one({"_id": CHECKPOINT_ID, "token": bad_token})

        assert store.load() is None
        assert checkpoint_collection.find_one({"_id": CHECKPOINT_ID}) is None
        assert [r.kind for r in journal.recent()] == [FailureKind.CHECKPOINT_CORRUPT]

    def test_save_failure_is_swallowed(self, journal):
        collection = MagicMock()
        collection.update_one.side_effect = AutoReconnect("connection reset")
        store = CheckpointStore(collection, on_failure=journal)

        assert store.save({"_data": "01"}) is False
        assert collection.update_one.call_count == 1
        assert journal.recent(FailureKind.CHECKPOINT_SAVE)

    def test_save_retries_when_configured(self, journal):
        collection = MagicMock()
        collection.update_one.side_effect = [AutoReconnect("blip"), Mock()]
        store = CheckpointStore(collection, save_attempts=3, on_failure=journal)

        assert store.save({"_data": "01"}) is True
        assert collection.update_one.call_count == 2
        assert journal.total == 0

    def test_load_failure_raises(self, journal):
        """An unreadable checkpoint is never mistaken for an absent one."""
        collection = MagicMock()
        collection.find_one.side_effect = AutoReconnect("down")
        store = CheckpointStore(collection, on_failure=journal)

        with pytest.raises(CheckpointError, match="Failed to read checkpoint"):
            store.load()
        assert collection.delete_one.call_count == 0
        assert journal.recent(FailureKind.CHECKPOINT_LOAD)

    def test_clear(self, store, checkpoint_collection):
        store.save({"_data": "01"})
        store.clear()
        assert checkpoint_collection.count_documents({}) == 0

    def test_invalid_save_attempts(self, checkpoint_collection):
        with pytest.raises(ValueError, match="save_attempts must be at least 1"):
            CheckpointStore(checkpoint_collection, save_attempts=0)


class TestChangeFeedConsumer:
    """Test ChangeFeedConsumer."""

    @pytest.fixture
    def source_client(self):
        return Mock()

    def test_open_fresh(self, source_client, fake_stream_cls):
        source_client.watch.return_value = fake_stream_cls()
        consumer = ChangeFeedConsumer(source_client, max_await_time_ms=500)

        handle = consumer.open(None, [{"$match": {"ns.db": {"$in": ["sales"]}}}])

        assert handle.resumed is False
        source_client.watch.assert_called_once_with(
            pipeline=[{"$match": {"ns.db": {"$in": ["sales"]}}}],
            full_document="updateLookup",
            max_await_time_ms=500
        )

    def test_open_resumed(self, source_client, fake_stream_cls):
        source_client.watch.return_value = fake_stream_cls()
        consumer = ChangeFeedConsumer(source_client)
        token = {"_data": "01"}

        handle = consumer.open(token, [])

        assert handle.resumed is True
        assert source_client.watch.call_args.kwargs["resume_after"] == token

    def test_resume_rejected_raises_feed_resume_error(self, source_client):
        source_client.watch.side_effect = OperationFailure(
            "Resume of change stream was not possible", code=286
        )
        consumer = ChangeFeedConsumer(source_client)

        with pytest.raises(FeedResumeError):
            consumer.open({"_data": "01"}, [])

    def test_setup_failure_raises_feed_creation_error(self, source_client):
        source_client.watch.side_effect = OperationFailure("bad pipeline", code=40324)
        consumer = ChangeFeedConsumer(source_client)

        with pytest.raises(FeedCreationError):
            consumer.open(None, [{"$bogus": {}}])

    def test_events_yields_in_order_and_skips_idle_polls(self, source_client, fake_stream_cls, change_factory):
        changes = [change_factory("insert", 1, doc={"_id": 1}), None, change_factory("delete", 2, key={"_id": 1})]
        source_client.watch.return_value = fake_stream_cls(changes)

        with ChangeFeedConsumer(source_client).open() as feed:
            events = list(feed.events())

        assert [e.operation for e in events] == [OperationKind.INSERT, OperationKind.DELETE]
        assert feed.stream.closed

    def test_events_stop_on_cancel(self, source_client, fake_stream_cls):
        stream = fake_stream_cls(idle=True)
        source_client.watch.return_value = stream
        cancel = threading.Event()
        cancel.set()

        with ChangeFeedConsumer(source_client).open() as feed:
            assert list(feed.events(cancel)) == []

        assert stream.polls == 0

    def test_iteration_error(self, source_client, fake_stream_cls):
        source_client.watch.return_value = fake_stream_cls([AutoReconnect("gone")])

        with ChangeFeedConsumer(source_client).open() as feed:
            with pytest.raises(FeedIterationError):
                list(feed.events())

    def test_history_lost_during_iteration(self, source_client, fake_stream_cls):
        source_client.watch.return_value = fake_stream_cls([
            OperationFailure("history lost", code=286)
        ])

        with ChangeFeedConsumer(source_client).open() as feed:
            with pytest.raises(FeedResumeError):
                list(feed.events())

    def test_invalid_max_await(self, source_client):
        with pytest.raises(ValueError, match="max_await_time_ms must be positive"):
            ChangeFeedConsumer(source_client, max_await_time_ms=0)
