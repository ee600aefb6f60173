"""Persistence interface for audit entries, anchor snapshots and keypairs."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol
from uuid import UUID

from herdledger.modules.audit.records import AnchorSnapshot, AuditEntry, KeyPair

# Receives the stream's latest entry (``None`` for an empty stream) and
# returns the fully hashed entry to insert after it.
EntryBuilder = Callable[[AuditEntry | None], AuditEntry]


class AuditRepository(Protocol):
    """Storage backend used by the audit services.

    Implementations must make :meth:`append_entry` and
    :meth:`record_snapshot` atomic units and must never update an entry
    other than to set its ``anchor_snapshot_id`` once.
    """

    async def append_entry(
        self, entity_type: str, entity_id: str, build: EntryBuilder
    ) -> AuditEntry:
        """Read the stream's latest entry and insert ``build(latest)`` atomically.

        Raises ``ConcurrencyConflictError`` when another writer already took
        the same ``chain_sequence``.
        """
        ...

    async def get_entry(self, entry_id: UUID) -> AuditEntry | None: ...

    async def latest_sequence(self, entity_type: str, entity_id: str) -> int | None: ...

    async def list_entries(
        self,
        entity_type: str,
        entity_id: str,
        *,
        after_sequence: int,
        until_sequence: int | None,
        limit: int,
    ) -> list[AuditEntry]:
        """Return up to ``limit`` entries with ``after < sequence <= until``."""
        ...

    async def list_entries_by_actor(
        self,
        actor_id: str,
        *,
        limit: int,
        offset: int = 0,
        entity_type: str | None = None,
        event_type: str | None = None,
    ) -> list[AuditEntry]:
        """Return an actor's entries across all streams, newest first."""
        ...

    async def list_unanchored(self, limit: int) -> list[AuditEntry]:
        """Return unanchored entries ordered by ``(created_at, id)``."""
        ...

    async def count_unanchored(self) -> int: ...

    async def record_snapshot(self, snapshot: AnchorSnapshot) -> AnchorSnapshot:
        """Persist ``snapshot`` and mark its entries anchored in one unit.

        Raises ``ConcurrencyConflictError`` (writing nothing) when any covered
        entry is missing or already anchored.
        """
        ...

    async def get_snapshot(self, snapshot_id: UUID) -> AnchorSnapshot | None: ...

    async def list_snapshots(self, *, limit: int, offset: int = 0) -> list[AnchorSnapshot]:
        """Return anchor snapshots, newest first."""
        ...

    async def add_keypair(self, keypair: KeyPair) -> KeyPair:
        """Store ``keypair`` and supersede the actor's previously active key."""
        ...

    async def get_keypair(self, key_id: str) -> KeyPair | None: ...

    async def active_keypair(self, actor_id: str) -> KeyPair | None: ...
