"""In-memory audit repository for development, tests and single-process use."""

from __future__ import annotations

import copy
import dataclasses
from datetime import UTC, datetime
from uuid import UUID

from herdledger.modules.audit.errors import ConcurrencyConflictError
from herdledger.modules.audit.records import AnchorSnapshot, AuditEntry, KeyPair
from herdledger.modules.audit.repository import EntryBuilder


class InMemoryAuditRepository:
    """Dict-backed :class:`AuditRepository`.

    Every method body runs without awaiting, so each call is atomic with
    respect to other coroutines on the same event loop. Payloads are copied
    on the way in and out so callers cannot mutate stored entries.
    """

    def __init__(self) -> None:
        self._entries: dict[UUID, AuditEntry] = {}
        self._streams: dict[tuple[str, str], list[UUID]] = {}
        self._hashes: set[str] = set()
        self._snapshots: dict[UUID, AnchorSnapshot] = {}
        self._keypairs: dict[str, KeyPair] = {}

    @staticmethod
    def _detached(entry: AuditEntry) -> AuditEntry:
        return dataclasses.replace(entry, payload=copy.deepcopy(entry.payload))

    async def append_entry(
        self, entity_type: str, entity_id: str, build: EntryBuilder
    ) -> AuditEntry:
        stream = self._streams.setdefault((entity_type, entity_id), [])
        latest = self._entries[stream[-1]] if stream else None
        entry = self._detached(build(self._detached(latest) if latest else None))

        if entry.stream != (entity_type, entity_id):
            raise ValueError("Built entry belongs to a different stream")
        if entry.chain_sequence != len(stream) or entry.current_hash in self._hashes:
            raise ConcurrencyConflictError(
                f"chain_sequence {entry.chain_sequence} already taken in "
                f"stream {entity_type}/{entity_id}"
            )
        if entry.id in self._entries:
            raise ConcurrencyConflictError(f"Entry {entry.id} already exists")

        self._entries[entry.id] = entry
        self._hashes.add(entry.current_hash)
        stream.append(entry.id)
        return self._detached(entry)

    async def get_entry(self, entry_id: UUID) -> AuditEntry | None:
        entry = self._entries.get(entry_id)
        return self._detached(entry) if entry else None

    async def latest_sequence(self, entity_type: str, entity_id: str) -> int | None:
        stream = self._streams.get((entity_type, entity_id))
        return len(stream) - 1 if stream else None

    async def list_entries(
        self,
        entity_type: str,
        entity_id: str,
        *,
        after_sequence: int,
        until_sequence: int | None,
        limit: int,
    ) -> list[AuditEntry]:
        stream = self._streams.get((entity_type, entity_id), [])
        stop = len(stream) if until_sequence is None else min(len(stream), until_sequence + 1)
        start = max(after_sequence + 1, 0)
        ids = stream[start:stop][:limit]
        return [self._detached(self._entries[entry_id]) for entry_id in ids]

    async def list_entries_by_actor(
        self,
        actor_id: str,
        *,
        limit: int,
        offset: int = 0,
        entity_type: str | None = None,
        event_type: str | None = None,
    ) -> list[AuditEntry]:
        matching = sorted(
            (
                entry
                for entry in self._entries.values()
                if entry.actor_id == actor_id
                and (entity_type is None or entry.entity_type == entity_type)
                and (event_type is None or entry.event_type == event_type)
            ),
            key=lambda entry: (entry.created_at, str(entry.id)),
            reverse=True,
        )
        return [self._detached(entry) for entry in matching[offset : offset + limit]]

    async def list_unanchored(self, limit: int) -> list[AuditEntry]:
        pending = sorted(
            (entry for entry in self._entries.values() if entry.anchor_snapshot_id is None),
            key=lambda entry: (entry.created_at, str(entry.id)),
        )
        return [self._detached(entry) for entry in pending[:limit]]

    async def count_unanchored(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.anchor_snapshot_id is None)

    async def record_snapshot(self, snapshot: AnchorSnapshot) -> AnchorSnapshot:
        if snapshot.id in self._snapshots:
            raise ConcurrencyConflictError(f"Snapshot {snapshot.id} already recorded")

        covered: list[AuditEntry] = []
        for raw_id in snapshot.entry_ids:
            entry = self._entries.get(UUID(raw_id))
            if entry is None or entry.anchor_snapshot_id is not None:
                raise ConcurrencyConflictError(
                    f"Entry {raw_id} is missing or already anchored"
                )
            covered.append(entry)

        self._snapshots[snapshot.id] = snapshot
        for entry in covered:
            self._entries[entry.id] = dataclasses.replace(entry, anchor_snapshot_id=snapshot.id)
        return snapshot

    async def get_snapshot(self, snapshot_id: UUID) -> AnchorSnapshot | None:
        return self._snapshots.get(snapshot_id)

    async def list_snapshots(self, *, limit: int, offset: int = 0) -> list[AnchorSnapshot]:
        newest_first = sorted(
            self._snapshots.values(),
            key=lambda snapshot: (snapshot.created_at, str(snapshot.id)),
            reverse=True,
        )
        return newest_first[offset : offset + limit]

    async def add_keypair(self, keypair: KeyPair) -> KeyPair:
        if keypair.key_id in self._keypairs:
            raise ConcurrencyConflictError(f"Key {keypair.key_id} already registered")
        now = datetime.now(UTC)
        for key_id, existing in list(self._keypairs.items()):
            if existing.actor_id == keypair.actor_id and existing.superseded_at is None:
                self._keypairs[key_id] = dataclasses.replace(existing, superseded_at=now)
        self._keypairs[keypair.key_id] = keypair
        return keypair

    async def get_keypair(self, key_id: str) -> KeyPair | None:
        return self._keypairs.get(key_id)

    async def active_keypair(self, actor_id: str) -> KeyPair | None:
        for keypair in self._keypairs.values():
            if keypair.actor_id == actor_id and keypair.superseded_at is None:
                return keypair
        return None

