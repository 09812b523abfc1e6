from .replicator import Replicator, ReplicatorStats, ProcessResult
from .controller import LifecycleController, ReplicationState

__all__ = [
    "Replicator",
    "ReplicatorStats",
    "ProcessResult",
    "LifecycleController",
    "ReplicationState",
]
