import pymongo
import mongomock

from partsync.config.settings import ReplicationSettings
from partsync.mongodb import connection as conn
from partsync.replication import LifecycleController, ReplicationState


def test_get_client_uses_patched_mongo_client(monkeypatch):
    created = []

    def fake_client(uri, **kwargs):
        created.append((uri, kwargs))
        return mongomock.MongoClient()

    monkeypatch.setattr(pymongo, 'MongoClient', fake_client)

    client = conn.get_client('mongodb://x', server_selection_timeout_ms=1500)
    assert isinstance(client, mongomock.MongoClient)
    assert created == [('mongodb://x', {'serverSelectionTimeoutMS': 1500})]


def test_build_controller_wires_settings(monkeypatch):
    clients = {}

    def fake_client(uri, **kwargs):
        clients[uri] = mongomock.MongoClient()
        return clients[uri]

    monkeypatch.setattr(pymongo, 'MongoClient', fake_client)

    settings = ReplicationSettings(
        source_uri='mongodb://source',
        target_uri='mongodb://target',
        include_databases=['sales', 'hr'],
        ignore_databases=['hr'],
        checkpoint_database='relay',
        checkpoint_collection='tokens',
        max_await_time_ms=250,
    )
    controller = conn.build_controller(settings)

    assert isinstance(controller, LifecycleController)
    assert controller.status() == ReplicationState.STOPPED
    assert controller.database_filter.includes('sales')
    assert not controller.database_filter.includes('hr')
    assert controller.checkpoint_store.location == 'relay.tokens'
    assert controller.consumer.client is clients['mongodb://source']
    assert controller.consumer.max_await_time_ms == 250
    assert controller.replicator.applier.client is clients['mongodb://target']
