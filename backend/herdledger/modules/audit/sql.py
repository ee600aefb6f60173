"""SQLAlchemy async implementation of the audit repository."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herdledger.core.logging import get_logger
from herdledger.db.models import ActorKeyPairRow, AnchorSnapshotRow, AuditEntryRow
from herdledger.modules.audit.errors import ConcurrencyConflictError
from herdledger.modules.audit.records import AnchorSnapshot, AuditEntry, KeyPair
from herdledger.modules.audit.repository import EntryBuilder

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; stored values are always UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _entry_from_row(row: AuditEntryRow) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        event_type=row.event_type,
        actor_id=row.actor_id,
        actor_role=row.actor_role,
        created_at=_as_utc(row.created_at),
        payload=dict(row.payload),
        chain_sequence=row.chain_sequence,
        previous_hash=row.previous_hash,
        current_hash=row.current_hash,
        hash_algorithm=row.hash_algorithm,
        hash_canonicalization=row.hash_canonicalization,
        signature=row.signature,
        signer_public_key_id=row.signer_public_key_id,
        anchor_snapshot_id=row.anchor_snapshot_id,
    )


def _row_from_entry(entry: AuditEntry) -> AuditEntryRow:
    return AuditEntryRow(
        id=entry.id,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        event_type=entry.event_type,
        actor_id=entry.actor_id,
        actor_role=entry.actor_role,
        created_at=entry.created_at,
        payload=entry.payload,
        chain_sequence=entry.chain_sequence,
        previous_hash=entry.previous_hash,
        current_hash=entry.current_hash,
        hash_algorithm=entry.hash_algorithm,
        hash_canonicalization=entry.hash_canonicalization,
        signature=entry.signature,
        signer_public_key_id=entry.signer_public_key_id,
    )


def _snapshot_from_row(row: AnchorSnapshotRow) -> AnchorSnapshot:
    return AnchorSnapshot(
        id=row.id,
        created_at=_as_utc(row.created_at),
        entry_ids=list(row.entry_ids),
        leaf_hashes=list(row.leaf_hashes),
        merkle_root=row.merkle_root,
        ledger=row.ledger,
        transaction_id=row.transaction_id,
        block_reference=row.block_reference,
        confirmed_at=_as_utc(row.confirmed_at),
        explorer_url=row.explorer_url,
        receipt_token=row.receipt_token,
        signature=row.signature,
        signature_kid=row.signature_kid,
    )


def _keypair_from_row(row: ActorKeyPairRow) -> KeyPair:
    return KeyPair(
        key_id=row.key_id,
        actor_id=row.actor_id,
        public_key_pem=row.public_key_pem,
        created_at=_as_utc(row.created_at),
        private_key_encrypted=row.private_key_encrypted,
        algorithm=row.algorithm,
        superseded_at=_as_utc(row.superseded_at) if row.superseded_at else None,
    )


class SqlAuditRepository:
    """:class:`AuditRepository` backed by SQLAlchemy async sessions.

    Each operation opens its own short-lived session from the factory.
    On PostgreSQL, appends additionally take a transaction-scoped advisory
    lock keyed by the stream so that writers in other processes serialize
    too; elsewhere the unique ``(stream, chain_sequence)`` constraint is the
    last line of defence.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    async def _lock_stream(session: AsyncSession, entity_type: str, entity_id: str) -> None:
        if session.get_bind().dialect.name != "postgresql":
            return
        await session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:stream_key))"),
            {"stream_key": f"audit:{entity_type}:{entity_id}"},
        )

    async def append_entry(
        self, entity_type: str, entity_id: str, build: EntryBuilder
    ) -> AuditEntry:
        try:
            async with self._session_factory() as session, session.begin():
                await self._lock_stream(session, entity_type, entity_id)
                latest_row = await session.scalar(
                    select(AuditEntryRow)
                    .where(
                        AuditEntryRow.entity_type == entity_type,
                        AuditEntryRow.entity_id == entity_id,
                    )
                    .order_by(AuditEntryRow.chain_sequence.desc())
                    .limit(1)
                )
                latest = _entry_from_row(latest_row) if latest_row is not None else None
                entry = build(latest)
                if entry.stream != (entity_type, entity_id):
                    raise ValueError("Built entry belongs to a different stream")
                session.add(_row_from_entry(entry))
                await session.flush()
        except DBIntegrityError as exc:
            logger.warning(
                "audit_append_conflict",
                entity_type=entity_type,
                entity_id=entity_id,
                error=str(exc.orig),
            )
            raise ConcurrencyConflictError(
                f"Concurrent append detected for stream {entity_type}/{entity_id}"
            ) from exc
        return entry

    async def get_entry(self, entry_id: UUID) -> AuditEntry | None:
        async with self._session_factory() as session:
            row = await session.get(AuditEntryRow, entry_id)
            return _entry_from_row(row) if row is not None else None

    async def latest_sequence(self, entity_type: str, entity_id: str) -> int | None:
        async with self._session_factory() as session:
            return await session.scalar(
                select(func.max(AuditEntryRow.chain_sequence)).where(
                    AuditEntryRow.entity_type == entity_type,
                    AuditEntryRow.entity_id == entity_id,
                )
            )

    async def list_entries(
        self,
        entity_type: str,
        entity_id: str,
        *,
        after_sequence: int,
        until_sequence: int | None,
        limit: int,
    ) -> list[AuditEntry]:
        query = (
            select(AuditEntryRow)
            .where(
                AuditEntryRow.entity_type == entity_type,
                AuditEntryRow.entity_id == entity_id,
                AuditEntryRow.chain_sequence > after_sequence,
            )
            .order_by(AuditEntryRow.chain_sequence.asc())
            .limit(limit)
        )
        if until_sequence is not None:
            query = query.where(AuditEntryRow.chain_sequence <= until_sequence)
        async with self._session_factory() as session:
            rows = (await session.scalars(query)).all()
        return [_entry_from_row(row) for row in rows]

    async def list_entries_by_actor(
        self,
        actor_id: str,
        *,
        limit: int,
        offset: int = 0,
        entity_type: str | None = None,
        event_type: str | None = None,
    ) -> list[AuditEntry]:
        query = select(AuditEntryRow).where(AuditEntryRow.actor_id == actor_id)
        if entity_type is not None:
            query = query.where(AuditEntryRow.entity_type == entity_type)
        if event_type is not None:
            query = query.where(AuditEntryRow.event_type == event_type)
        query = (
            query.order_by(AuditEntryRow.created_at.desc(), AuditEntryRow.id.desc())
            .offset(offset)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(query)).all()
        return [_entry_from_row(row) for row in rows]

    async def list_unanchored(self, limit: int) -> list[AuditEntry]:
        query = (
            select(AuditEntryRow)
            .where(AuditEntryRow.anchor_snapshot_id.is_(None))
            .order_by(AuditEntryRow.created_at.asc(), AuditEntryRow.id.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(query)).all()
        return [_entry_from_row(row) for row in rows]

    async def count_unanchored(self) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(AuditEntryRow)
                .where(AuditEntryRow.anchor_snapshot_id.is_(None))
            )
        return int(count or 0)

    async def record_snapshot(self, snapshot: AnchorSnapshot) -> AnchorSnapshot:
        entry_ids = [UUID(raw_id) for raw_id in snapshot.entry_ids]
        try:
            async with self._session_factory() as session, session.begin():
                session.add(
                    AnchorSnapshotRow(
                        id=snapshot.id,
                        created_at=snapshot.created_at,
                        entry_ids=list(snapshot.entry_ids),
                        leaf_hashes=list(snapshot.leaf_hashes),
                        entry_count=snapshot.entry_count,
                        merkle_root=snapshot.merkle_root,
                        ledger=snapshot.ledger,
                        transaction_id=snapshot.transaction_id,
                        block_reference=snapshot.block_reference,
                        explorer_url=snapshot.explorer_url,
                        confirmed_at=snapshot.confirmed_at,
                        receipt_token=snapshot.receipt_token,
                        signature=snapshot.signature,
                        signature_kid=snapshot.signature_kid,
                    )
                )
                await session.flush()
                result = await session.execute(
                    update(AuditEntryRow)
                    .where(
                        AuditEntryRow.id.in_(entry_ids),
                        AuditEntryRow.anchor_snapshot_id.is_(None),
                    )
                    .values(anchor_snapshot_id=snapshot.id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != len(entry_ids):
                    raise ConcurrencyConflictError(
                        f"{len(entry_ids) - result.rowcount} entries of snapshot "
                        f"{snapshot.id} are missing or already anchored"
                    )
        except DBIntegrityError as exc:
            raise ConcurrencyConflictError(f"Snapshot {snapshot.id} already recorded") from exc
        return snapshot

    async def get_snapshot(self, snapshot_id: UUID) -> AnchorSnapshot | None:
        async with self._session_factory() as session:
            row = await session.get(AnchorSnapshotRow, snapshot_id)
            return _snapshot_from_row(row) if row is not None else None

    async def list_snapshots(self, *, limit: int, offset: int = 0) -> list[AnchorSnapshot]:
        query = (
            select(AnchorSnapshotRow)
            .order_by(AnchorSnapshotRow.created_at.desc(), AnchorSnapshotRow.id.desc())
            .offset(offset)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(query)).all()
        return [_snapshot_from_row(row) for row in rows]

    async def add_keypair(self, keypair: KeyPair) -> KeyPair:
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    update(ActorKeyPairRow)
                    .where(
                        ActorKeyPairRow.actor_id == keypair.actor_id,
                        ActorKeyPairRow.superseded_at.is_(None),
                    )
                    .values(superseded_at=datetime.now(UTC))
                    .execution_options(synchronize_session=False)
                )
                session.add(
                    ActorKeyPairRow(
                        key_id=keypair.key_id,
                        actor_id=keypair.actor_id,
                        public_key_pem=keypair.public_key_pem,
                        private_key_encrypted=keypair.private_key_encrypted,
                        algorithm=keypair.algorithm,
                        created_at=keypair.created_at,
                        superseded_at=keypair.superseded_at,
                    )
                )
        except DBIntegrityError as exc:
            raise ConcurrencyConflictError(f"Key {keypair.key_id} already registered") from exc
        return keypair

    async def get_keypair(self, key_id: str) -> KeyPair | None:
        async with self._session_factory() as session:
            row = await session.get(ActorKeyPairRow, key_id)
            return _keypair_from_row(row) if row is not None else None

    async def active_keypair(self, actor_id: str) -> KeyPair | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(ActorKeyPairRow)
                .where(
                    ActorKeyPairRow.actor_id == actor_id,
                    ActorKeyPairRow.superseded_at.is_(None),
                )
                .order_by(ActorKeyPairRow.created_at.desc())
                .limit(1)
            )
            return _keypair_from_row(row) if row is not None else None
