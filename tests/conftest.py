"""Shared fixtures: in-memory target cluster and a scripted change stream."""

import time
from typing import Any, Dict, List, Optional

import mongomock
import pytest


class FakeChangeStream:
    """
    Stands in for pymongo's ChangeStream.

    ``try_next`` hands out the scripted changes in order (exceptions are
    raised). When the script runs out the stream either closes or, with
    ``idle=True``, keeps returning None like an idle server poll.
    """

    def __init__(self, changes: Optional[List[Any]] = None, idle: bool = False, poll_delay: float = 0.01):
        self._changes = list(changes or [])
        self.idle = idle
        self.poll_delay = poll_delay
        self.alive = True
        self.closed = False
        self.polls = 0

    def try_next(self):
        self.polls += 1
        if self._changes:
            item = self._changes.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if self.idle:
            time.sleep(self.poll_delay)
            return None
        self.alive = False
        return None

    def close(self):
        self.closed = True
        self.alive = False


def make_change(
    operation_type: str,
    seq: int,
    db: Optional[str] = "sales",
    coll: Optional[str] = "orders",
    key: Optional[Dict[str, Any]] = None,
    doc: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Raw change document as pymongo returns it."""
    change: Dict[str, Any] = {
        "_id": {"_data": f"82{seq:08d}"},
        "operationType": operation_type,
    }
    if db is not None:
        change["ns"] = {"db": db}
        if coll is not None:
            change["ns"]["coll"] = coll
    if key is not None:
        change["documentKey"] = key
    if doc is not None:
        change["fullDocument"] = doc
    return change


@pytest.fixture
def target_client():
    """In-memory target cluster."""
    return mongomock.MongoClient()


@pytest.fixture
def checkpoint_collection(target_client):
    return target_client["partsync"]["checkpoints"]


@pytest.fixture
def fake_stream_cls():
    return FakeChangeStream


@pytest.fixture
def change_factory():
    return make_change


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def waiter():
    return wait_for
