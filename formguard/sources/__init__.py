"""Record sources: analytics API client, snapshot store and refresher."""

from formguard.sources.client import RecordSourceClient, RecordSourceError, create_http_client
from formguard.sources.snapshot import Refresher, Snapshot, SnapshotStore

__all__ = [
    "RecordSourceClient",
    "RecordSourceError",
    "create_http_client",
    "Refresher",
    "Snapshot",
    "SnapshotStore",
]
