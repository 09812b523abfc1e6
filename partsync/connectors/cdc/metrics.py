"""
Prometheus metrics for the replication engine.

Exposition is left to the hosting process (default registry).
"""

from prometheus_client import Counter, Gauge

events_total = Counter(
    'partsync_events_total',
    'Total change events processed',
    ['operation', 'outcome']
)

failures_total = Counter(
    'partsync_failures_total',
    'Total swallowed failures',
    ['kind']
)

checkpoint_saves_total = Counter(
    'partsync_checkpoint_saves_total',
    'Total checkpoint saves',
    ['status']
)

checkpoint_loads_total = Counter(
    'partsync_checkpoint_loads_total',
    'Total checkpoint loads',
    ['status']
)

replication_state = Gauge(
    'partsync_replication_state',
    'Current replication state (0=stopped, 1=starting, 2=running, 3=error)'
)
