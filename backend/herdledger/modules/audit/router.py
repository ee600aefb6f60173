"""Audit trail endpoints for stream reads, verification, certificates and anchoring."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from herdledger.core.crypto.verification import ChainVerificationResult
from herdledger.core.logging import get_logger
from herdledger.modules.audit.errors import (
    AnchorSubmissionError,
    AuditTrailError,
    ConcurrencyConflictError,
    EntryNotAnchoredError,
    IntegrityError,
    NotFoundError,
)
from herdledger.modules.audit.facade import AuditTrail
from herdledger.modules.audit.records import AnchorSnapshot
from herdledger.modules.audit.schemas import (
    ActorEntryListResponse,
    AnchorCycleResponse,
    AnchorSnapshotListResponse,
    AnchorSnapshotResponse,
    AuditEntryListResponse,
    AuditEntryResponse,
    BatchVerificationRequest,
    BatchVerificationResponse,
    CertificateDataResponse,
    ChainVerificationResponse,
    InclusionVerificationResponse,
    ProofStepResponse,
    StreamRef,
)

logger = get_logger(__name__)
router = APIRouter()


def get_audit_trail(request: Request) -> AuditTrail:
    audit_trail: AuditTrail | None = getattr(request.app.state, "audit_trail", None)
    if audit_trail is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Audit trail is not initialized",
        )
    return audit_trail


Trail = Annotated[AuditTrail, Depends(get_audit_trail)]


def _http_error(exc: AuditTrailError) -> HTTPException:
    """Map service errors onto HTTP status codes."""
    if isinstance(exc, EntryNotAnchoredError | ConcurrencyConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, IntegrityError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, AnchorSubmissionError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


def _snapshot_response(snapshot: AnchorSnapshot) -> AnchorSnapshotResponse:
    return AnchorSnapshotResponse(
        id=snapshot.id,
        created_at=snapshot.created_at,
        entry_count=snapshot.entry_count,
        entry_ids=list(snapshot.entry_ids),
        merkle_root=snapshot.merkle_root,
        ledger=snapshot.ledger,
        transaction_id=snapshot.transaction_id,
        block_reference=snapshot.block_reference,
        explorer_url=snapshot.explorer_url,
        confirmed_at=snapshot.confirmed_at,
        signature=snapshot.signature,
        signature_kid=snapshot.signature_kid,
        receipt_token_present=snapshot.receipt_token is not None,
    )



def _chain_response(
    entity_type: str, entity_id: str, result: ChainVerificationResult
) -> ChainVerificationResponse:
    return ChainVerificationResponse(
        entity_type=entity_type,
        entity_id=entity_id,
        is_valid=result.is_valid,
        total_entries=result.total_entries,
        verified_count=result.verified_count,
        broken_at_index=result.broken_at_index,
        broken_at_entry_id=result.broken_at_entry_id,
        errors=result.errors,
    )

@router.get(
    "/streams/{entity_type}/{entity_id}/entries",
    response_model=AuditEntryListResponse,
)
async def list_stream_entries(
    trail: Trail,
    entity_type: str,
    entity_id: str,
    after_sequence: int = Query(-1, ge=-1, description="Return entries after this sequence"),
    limit: int = Query(100, ge=1, le=1000),
) -> AuditEntryListResponse:
    """List one page of an entity's audit stream in chain order."""
    items: list[AuditEntryResponse] = []
    async for entry in trail.stream_for(
        entity_type, entity_id, after_sequence=after_sequence, until_sequence=after_sequence + limit
    ):
        items.append(AuditEntryResponse.model_validate(entry))

    next_after = items[-1].chain_sequence if len(items) == limit else None
    return AuditEntryListResponse(
        entity_type=entity_type,
        entity_id=entity_id,
        items=items,
        next_after_sequence=next_after,
    )


@router.get(
    "/streams/{entity_type}/{entity_id}/verify",
    response_model=ChainVerificationResponse,
)
async def verify_stream(
    trail: Trail,
    entity_type: str,
    entity_id: str,
) -> ChainVerificationResponse:
    """Verify the hash chain of an entity's audit stream."""
    try:
        result = await trail.verify_chain(entity_type, entity_id)
    except AuditTrailError as exc:
        raise _http_error(exc) from exc

    return _chain_response(entity_type, entity_id, result)


@router.post("/verify-batch", response_model=BatchVerificationResponse)
async def verify_streams(
    trail: Trail, body: BatchVerificationRequest
) -> BatchVerificationResponse:
    """Verify several entity streams at once."""
    batch = await trail.verify_chains(
        (stream.entity_type, stream.entity_id) for stream in body.streams
    )
    return BatchVerificationResponse(
        is_valid=batch.is_valid,
        total_entries=batch.total_entries,
        merkle_root=batch.merkle_root,
        streams=[
            _chain_response(stream.entity_type, stream.entity_id, stream.result)
            for stream in batch.streams
        ],
        missing=[
            StreamRef(entity_type=entity_type, entity_id=entity_id)
            for entity_type, entity_id in batch.missing
        ],
    )


@router.get("/actors/{actor_id}/entries", response_model=ActorEntryListResponse)
async def list_actor_entries(
    trail: Trail,
    actor_id: str,
    entity_type: str | None = None,
    event_type: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> ActorEntryListResponse:
    """List the entries an actor recorded, newest first."""
    entries = await trail.entries_by_actor(
        actor_id, limit=limit, offset=offset, entity_type=entity_type, event_type=event_type
    )
    return ActorEntryListResponse(
        actor_id=actor_id,
        items=[AuditEntryResponse.model_validate(entry) for entry in entries],
        limit=limit,
        offset=offset,
    )


@router.get("/entries/{entry_id}", response_model=AuditEntryResponse)
async def get_entry(trail: Trail, entry_id: UUID) -> AuditEntryResponse:
    """Fetch a single audit entry."""
    try:
        entry = await trail.get_entry(entry_id)
    except AuditTrailError as exc:
        raise _http_error(exc) from exc
    return AuditEntryResponse.model_validate(entry)


@router.get(
    "/entries/{entry_id}/inclusion",
    response_model=InclusionVerificationResponse,
)
async def verify_entry_inclusion(trail: Trail, entry_id: UUID) -> InclusionVerificationResponse:
    """Verify an entry against the Merkle root it was anchored under."""
    try:
        result = await trail.verify_inclusion(entry_id)
    except AuditTrailError as exc:
        raise _http_error(exc) from exc

    return InclusionVerificationResponse(
        is_valid=result.is_valid,
        entry_id=result.entry_id,
        snapshot_id=result.snapshot_id,
        leaf_hash=result.leaf_hash,
        merkle_root=result.merkle_root,
        proof=[
            ProofStepResponse(sibling_hash=step.sibling_hash, side=step.side)
            for step in result.proof
        ],
        receipt_verified=result.receipt_verified,
        errors=result.errors,
    )


@router.get(
    "/entries/{entry_id}/certificate",
    response_model=CertificateDataResponse,
)
async def get_certificate_data(trail: Trail, entry_id: UUID) -> CertificateDataResponse:
    """Return the data for an anchoring certificate of one entry."""
    try:
        certificate = await trail.certificate_data(entry_id)
    except AuditTrailError as exc:
        raise _http_error(exc) from exc
    return CertificateDataResponse.model_validate(certificate)


@router.get("/snapshots", response_model=AnchorSnapshotListResponse)
async def list_snapshots(
    trail: Trail,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> AnchorSnapshotListResponse:
    """List anchored Merkle batches, newest first."""
    snapshots = await trail.list_snapshots(limit=limit, offset=offset)
    return AnchorSnapshotListResponse(
        items=[_snapshot_response(snapshot) for snapshot in snapshots],
        limit=limit,
        offset=offset,
    )

@router.get("/snapshots/{snapshot_id}", response_model=AnchorSnapshotResponse)
async def get_snapshot(trail: Trail, snapshot_id: UUID) -> AnchorSnapshotResponse:
    """Fetch an anchored Merkle batch."""
    try:
        snapshot = await trail.get_snapshot(snapshot_id)
    except AuditTrailError as exc:
        raise _http_error(exc) from exc
    return _snapshot_response(snapshot)


@router.post("/anchor", response_model=AnchorCycleResponse)
async def run_anchor_cycle(trail: Trail) -> AnchorCycleResponse:
    """Run one anchor cycle now."""
    try:
        result = await trail.run_anchor_cycle()
    except AuditTrailError as exc:
        logger.warning("audit_anchor_failed", error=str(exc), exc_info=True)
        raise _http_error(exc) from exc

    return AnchorCycleResponse(
        status=result.status,
        pending_count=result.pending_count,
        anchored_count=result.anchored_count,
        snapshot=_snapshot_response(result.snapshot) if result.snapshot is not None else None,
    )
