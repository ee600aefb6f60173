"""Tests for anchoring certificate data."""

from __future__ import annotations

import dataclasses
from uuid import uuid4

import pytest

from herdledger.modules.audit.errors import EntryNotAnchoredError, IntegrityError, NotFoundError
from herdledger.modules.audit.facade import AuditTrail
from herdledger.modules.audit.memory import InMemoryAuditRepository
from herdledger.modules.audit.records import Actor


@pytest.mark.asyncio
async def test_certificate_for_anchored_entry(audit_trail: AuditTrail, vet: Actor) -> None:
    treated = await audit_trail.append(
        "Animal", "42", "TREATED", {"drug": "penicillin", "dose_ml": 12}, vet
    )
    await audit_trail.append("Animal", "42", "WEIGHED", {"weight_kg": 415}, vet)
    snapshot = (await audit_trail.run_anchor_cycle()).snapshot
    assert snapshot is not None

    data = await audit_trail.certificate_data(treated.id)

    assert data.entry_id == treated.id
    assert data.entity_type == "Animal"
    assert data.entity_id == "42"
    assert data.event_type == "TREATED"
    assert data.actor_id == "vet-1"
    assert data.actor_role == "VETERINARIAN"
    assert data.timestamp == treated.created_at
    assert data.current_hash == treated.current_hash
    assert data.snapshot_id == snapshot.id
    assert data.merkle_root == snapshot.merkle_root
    assert data.ledger == "memory"
    assert data.transaction_id == snapshot.transaction_id
    assert data.block_reference == snapshot.block_reference
    assert data.explorer_url == snapshot.explorer_url
    assert data.anchored_at == snapshot.confirmed_at
    assert data.snapshot_entry_count == 2
    assert data.inclusion_verified


@pytest.mark.asyncio
async def test_unanchored_entry_is_refused(audit_trail: AuditTrail, farmer: Actor) -> None:
    entry = await audit_trail.append("Animal", "42", "REGISTERED", {}, farmer)
    with pytest.raises(EntryNotAnchoredError, match="not anchored"):
        await audit_trail.certificate_data(entry.id)


@pytest.mark.asyncio
async def test_unknown_entry_is_refused(audit_trail: AuditTrail) -> None:
    with pytest.raises(NotFoundError):
        await audit_trail.certificate_data(uuid4())


@pytest.mark.asyncio
async def test_tampered_entry_is_refused(
    audit_trail: AuditTrail, repository: InMemoryAuditRepository, farmer: Actor
) -> None:
    first = await audit_trail.append("Animal", "42", "REGISTERED", {"breed": "Angus"}, farmer)
    await audit_trail.append("Animal", "42", "WEIGHED", {"weight_kg": 300}, farmer)
    await audit_trail.run_anchor_cycle()

    repository._entries[first.id] = dataclasses.replace(
        repository._entries[first.id], payload={"breed": "Wagyu"}
    )

    with pytest.raises(IntegrityError, match="Inclusion proof failed"):
        await audit_trail.certificate_data(first.id)
