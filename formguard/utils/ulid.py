"""ULID generation for FormGuard refresh cycles.

Every snapshot fetched from the record sources is tagged with a ULID
(``Snapshot.refresh_id``). Because ULIDs sort lexicographically by creation
time, the id doubles as an ordering key for snapshots and as the correlation
key bound into structured logs for the duration of a refresh.

Uses the `python-ulid` library.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Return a new 26-character ULID string (Crockford Base32, uppercase)."""
    return str(ULID())
