"""Tests for the audit trail HTTP endpoints."""

from __future__ import annotations

import dataclasses
from collections.abc import AsyncGenerator
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from herdledger.core.config import Settings
from herdledger.core.ledger.base import LedgerClientError, LedgerReceipt
from herdledger.main import create_application
from herdledger.modules.audit.facade import AuditTrail
from herdledger.modules.audit.memory import InMemoryAuditRepository
from herdledger.modules.audit.records import Actor

PREFIX = "/api/v1/audit"


class DownLedger:
    name = "down"

    async def submit_root(self, merkle_root: str) -> LedgerReceipt:
        raise LedgerClientError("Ledger gateway request failed: 503")

    def build_explorer_url(self, transaction_id: str) -> str | None:
        return None


def _client(trail: AuditTrail | None) -> httpx.AsyncClient:
    app = create_application(audit_trail=trail)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def client(audit_trail: AuditTrail) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with _client(audit_trail) as http_client:
        yield http_client


class TestStreams:
    @pytest.mark.asyncio
    async def test_list_entries_pages(
        self, client: httpx.AsyncClient, audit_trail: AuditTrail, farmer: Actor
    ) -> None:
        for i in range(5):
            await audit_trail.append("Animal", "42", "WEIGHED", {"weight_kg": 400 + i}, farmer)

        response = await client.get(f"{PREFIX}/streams/Animal/42/entries", params={"limit": 3})
        assert response.status_code == 200
        body = response.json()
        assert [item["chain_sequence"] for item in body["items"]] == [0, 1, 2]
        assert body["next_after_sequence"] == 2
        assert body["items"][0]["payload"] == {"weight_kg": 400}

        response = await client.get(
            f"{PREFIX}/streams/Animal/42/entries",
            params={"limit": 3, "after_sequence": body["next_after_sequence"]},
        )
        body = response.json()
        assert [item["chain_sequence"] for item in body["items"]] == [3, 4]
        assert body["next_after_sequence"] is None

    @pytest.mark.asyncio
    async def test_unknown_stream_lists_nothing(self, client: httpx.AsyncClient) -> None:
        response = await client.get(f"{PREFIX}/streams/Animal/none/entries")
        assert response.status_code == 200
        assert response.json()["items"] == []

    @pytest.mark.asyncio
    async def test_verify_intact_stream(
        self, client: httpx.AsyncClient, audit_trail: AuditTrail, farmer: Actor
    ) -> None:
        for i in range(3):
            await audit_trail.append("Animal", "42", "WEIGHED", {"weight_kg": i}, farmer)

        response = await client.get(f"{PREFIX}/streams/Animal/42/verify")
        assert response.status_code == 200
        body = response.json()
        assert body["is_valid"] is True
        assert body["total_entries"] == 3
        assert body["broken_at_index"] is None

    @pytest.mark.asyncio
    async def test_verify_broken_stream(
        self,
        client: httpx.AsyncClient,
        audit_trail: AuditTrail,
        repository: InMemoryAuditRepository,
        farmer: Actor,
    ) -> None:
        entries = [
            await audit_trail.append("Animal", "42", "WEIGHED", {"weight_kg": i}, farmer)
            for i in range(3)
        ]
        repository._entries[entries[1].id] = dataclasses.replace(
            repository._entries[entries[1].id], payload={"weight_kg": 999}
        )

        body = (await client.get(f"{PREFIX}/streams/Animal/42/verify")).json()
        assert body["is_valid"] is False
        assert body["broken_at_index"] == 1
        assert body["broken_at_entry_id"] == str(entries[1].id)

    @pytest.mark.asyncio
    async def test_verify_unknown_stream_is_404(self, client: httpx.AsyncClient) -> None:
        response = await client.get(f"{PREFIX}/streams/Animal/none/verify")
        assert response.status_code == 404


    @pytest.mark.asyncio
    async def test_verify_batch(
        self,
        client: httpx.AsyncClient,
        audit_trail: AuditTrail,
        repository: InMemoryAuditRepository,
        farmer: Actor,
    ) -> None:
        await audit_trail.append("Animal", "42", "REGISTERED", {}, farmer)
        tampered = await audit_trail.append("Animal", "43", "REGISTERED", {}, farmer)
        repository._entries[tampered.id] = dataclasses.replace(
            repository._entries[tampered.id], payload={"forged": True}
        )

        response = await client.post(
            f"{PREFIX}/verify-batch",
            json={
                "streams": [
                    {"entity_type": "Animal", "entity_id": "42"},
                    {"entity_type": "Animal", "entity_id": "43"},
                    {"entity_type": "Animal", "entity_id": "44"},
                ]
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["is_valid"] is False
        assert body["total_entries"] == 2
        assert len(body["merkle_root"]) == 64
        assert [s["is_valid"] for s in body["streams"]] == [True, False]
        assert body["missing"] == [{"entity_type": "Animal", "entity_id": "44"}]

    @pytest.mark.asyncio
    async def test_verify_batch_needs_streams(self, client: httpx.AsyncClient) -> None:
        response = await client.post(f"{PREFIX}/verify-batch", json={"streams": []})
        assert response.status_code == 422


class TestEntries:
    @pytest.mark.asyncio
    async def test_get_entry(
        self, client: httpx.AsyncClient, audit_trail: AuditTrail, farmer: Actor
    ) -> None:
        entry = await audit_trail.append("Animal", "42", "REGISTERED", {"breed": "Angus"}, farmer)

        response = await client.get(f"{PREFIX}/entries/{entry.id}")
        assert response.status_code == 200
        body = response.json()
        assert body["current_hash"] == entry.current_hash
        assert body["anchor_snapshot_id"] is None

    @pytest.mark.asyncio
    async def test_unknown_entry_is_404(self, client: httpx.AsyncClient) -> None:
        response = await client.get(f"{PREFIX}/entries/{uuid4()}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_inclusion_and_certificate(
        self, client: httpx.AsyncClient, audit_trail: AuditTrail, farmer: Actor
    ) -> None:
        entry = await audit_trail.append("Animal", "42", "REGISTERED", {}, farmer)
        await audit_trail.append("Animal", "42", "WEIGHED", {"weight_kg": 300}, farmer)
        snapshot = (await audit_trail.run_anchor_cycle()).snapshot
        assert snapshot is not None

        inclusion = (await client.get(f"{PREFIX}/entries/{entry.id}/inclusion")).json()
        assert inclusion["is_valid"] is True
        assert inclusion["merkle_root"] == snapshot.merkle_root
        assert len(inclusion["proof"]) == 1
        assert inclusion["proof"][0]["side"] in ("left", "right")

        certificate = await client.get(f"{PREFIX}/entries/{entry.id}/certificate")
        assert certificate.status_code == 200
        assert certificate.json()["transaction_id"] == snapshot.transaction_id
        assert certificate.json()["inclusion_verified"] is True

    @pytest.mark.asyncio
    async def test_certificate_for_unanchored_entry_is_409(
        self, client: httpx.AsyncClient, audit_trail: AuditTrail, farmer: Actor
    ) -> None:
        entry = await audit_trail.append("Animal", "42", "REGISTERED", {}, farmer)

        response = await client.get(f"{PREFIX}/entries/{entry.id}/certificate")
        assert response.status_code == 409

        inclusion = (await client.get(f"{PREFIX}/entries/{entry.id}/inclusion")).json()
        assert inclusion["is_valid"] is False
        assert inclusion["errors"] == ["Entry is not anchored yet"]

    @pytest.mark.asyncio
    async def test_certificate_for_tampered_entry_is_422(
        self,
        client: httpx.AsyncClient,
        audit_trail: AuditTrail,
        repository: InMemoryAuditRepository,
        farmer: Actor,
    ) -> None:
        entry = await audit_trail.append("Animal", "42", "REGISTERED", {}, farmer)
        await audit_trail.append("Animal", "42", "WEIGHED", {}, farmer)
        await audit_trail.run_anchor_cycle()
        repository._entries[entry.id] = dataclasses.replace(
            repository._entries[entry.id], event_type="DECEASED"
        )

        response = await client.get(f"{PREFIX}/entries/{entry.id}/certificate")
        assert response.status_code == 422


    @pytest.mark.asyncio
    async def test_actor_entries(
        self, client: httpx.AsyncClient, audit_trail: AuditTrail, farmer: Actor, vet: Actor
    ) -> None:
        await audit_trail.append("Animal", "42", "REGISTERED", {}, farmer)
        await audit_trail.append("Herd", "north", "CREATED", {}, farmer)
        await audit_trail.append("Animal", "42", "TREATED", {}, vet)

        response = await client.get(f"{PREFIX}/actors/farmer-1/entries")
        assert response.status_code == 200
        body = response.json()
        assert body["actor_id"] == "farmer-1"
        assert {item["entity_type"] for item in body["items"]} == {"Animal", "Herd"}

        response = await client.get(
            f"{PREFIX}/actors/farmer-1/entries", params={"entity_type": "Herd", "limit": 1}
        )
        assert [item["event_type"] for item in response.json()["items"]] == ["CREATED"]

    @pytest.mark.asyncio
    async def test_actor_entries_rejects_bad_page(self, client: httpx.AsyncClient) -> None:
        response = await client.get(f"{PREFIX}/actors/farmer-1/entries", params={"offset": -1})
        assert response.status_code == 422


class TestAnchoring:
    @pytest.mark.asyncio
    async def test_manual_anchor_cycle(
        self, client: httpx.AsyncClient, audit_trail: AuditTrail, farmer: Actor
    ) -> None:
        for i in range(3):
            await audit_trail.append("Animal", "42", "WEIGHED", {"weight_kg": i}, farmer)

        response = await client.post(f"{PREFIX}/anchor")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "anchored"
        assert body["anchored_count"] == 3
        snapshot_id = body["snapshot"]["id"]

        snapshot = (await client.get(f"{PREFIX}/snapshots/{snapshot_id}")).json()
        assert snapshot["entry_count"] == 3
        assert snapshot["signature_kid"] == "test-audit-key"
        assert snapshot["receipt_token_present"] is False

    @pytest.mark.asyncio
    async def test_anchor_skipped_below_minimum(self, client: httpx.AsyncClient) -> None:
        body = (await client.post(f"{PREFIX}/anchor")).json()
        assert body == {
            "status": "skipped",
            "pending_count": 0,
            "anchored_count": 0,
            "snapshot": None,
        }

    @pytest.mark.asyncio
    async def test_ledger_failure_is_502(
        self, repository: InMemoryAuditRepository, settings: Settings, farmer: Actor
    ) -> None:
        trail = AuditTrail(repository, ledger_client=DownLedger(), settings=settings)
        for i in range(2):
            await trail.append("Animal", "42", "WEIGHED", {"weight_kg": i}, farmer)

        async with _client(trail) as http_client:
            response = await http_client.post(f"{PREFIX}/anchor")
        assert response.status_code == 502
        assert await repository.count_unanchored() == 2

    @pytest.mark.asyncio
    async def test_list_snapshots(
        self, client: httpx.AsyncClient, audit_trail: AuditTrail, farmer: Actor
    ) -> None:
        for i in range(2):
            await audit_trail.append("Animal", "42", "WEIGHED", {"weight_kg": i}, farmer)
        anchored = (await client.post(f"{PREFIX}/anchor")).json()["snapshot"]

        response = await client.get(f"{PREFIX}/snapshots", params={"limit": 10})
        assert response.status_code == 200
        body = response.json()
        assert [item["id"] for item in body["items"]] == [anchored["id"]]
        assert body["limit"] == 10
        assert body["offset"] == 0

    @pytest.mark.asyncio
    async def test_unknown_snapshot_is_404(self, client: httpx.AsyncClient) -> None:
        response = await client.get(f"{PREFIX}/snapshots/{uuid4()}")
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_uninitialized_trail_is_503() -> None:
    async with _client(None) as http_client:
        response = await http_client.get(f"{PREFIX}/entries/{uuid4()}")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_health_reports_ledger(client: httpx.AsyncClient) -> None:
    body = (await client.get("/health")).json()
    assert body["status"] == "healthy"
    assert body["checks"]["ledger"] == "memory"
    assert body["checks"]["anchor_scheduler"] == "stopped"
