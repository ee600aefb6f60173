"""Tests for crypto chain verification module."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from herdledger.core.crypto.hash_chain import GENESIS_HASH
from herdledger.core.crypto.verification import (
    ChainVerifier,
    recompute_entry_hash,
    verify_entry,
    verify_hash_chain,
)


def _make_chain(length: int) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    prev = GENESIS_HASH
    start = datetime(2024, 3, 1, tzinfo=UTC)
    for i in range(length):
        entry: dict[str, Any] = {
            "id": str(uuid4()),
            "entity_type": "Animal",
            "entity_id": "42",
            "event_type": "UPDATE",
            "actor_id": "farmer-1",
            "actor_role": "FARMER",
            "timestamp": start + timedelta(minutes=i),
            "chain_sequence": i,
            "payload": {"weight_kg": 400 + i},
            "previous_hash": prev,
        }
        entry["current_hash"] = recompute_entry_hash(entry, prev)
        prev = entry["current_hash"]
        entries.append(entry)
    return entries


class TestVerifyEntry:
    def test_genesis_entry_with_none_previous(self) -> None:
        entry = _make_chain(1)[0]
        assert verify_entry(entry, None)

    def test_wrong_previous_hash_fails(self) -> None:
        entry = _make_chain(1)[0]
        assert not verify_entry(entry, "f" * 64)

    def test_missing_hash_fails(self) -> None:
        entry = _make_chain(1)[0]
        entry["current_hash"] = None
        assert not verify_entry(entry, None)


class TestVerifyHashChain:
    def test_intact_chain(self) -> None:
        result = verify_hash_chain(_make_chain(5))
        assert result.is_valid
        assert result.total_entries == 5
        assert result.verified_count == 5
        assert result.broken_at_index is None
        assert result.errors == []

    def test_empty_chain_is_valid(self) -> None:
        result = verify_hash_chain([])
        assert result.is_valid
        assert result.total_entries == 0

    def test_tampered_payload_reports_that_entry(self) -> None:
        chain = _make_chain(5)
        chain[2]["payload"] = {"weight_kg": 999}
        result = verify_hash_chain(chain)
        assert not result.is_valid
        assert result.broken_at_index == 2
        assert result.broken_at_entry_id == chain[2]["id"]
        assert result.verified_count == 2
        assert result.total_entries == 5
        assert "hash mismatch" in result.errors[0]

    def test_tampered_stored_hash_reports_that_entry(self) -> None:
        chain = _make_chain(5)
        chain[2]["current_hash"] = "e" * 64
        result = verify_hash_chain(chain)
        assert result.broken_at_index == 2

    def test_consistent_rehash_reports_next_entry(self) -> None:
        chain = _make_chain(5)
        chain[2]["payload"] = {"weight_kg": 999}
        chain[2]["current_hash"] = recompute_entry_hash(chain[2], chain[2]["previous_hash"])
        result = verify_hash_chain(chain)
        assert result.broken_at_index == 3
        assert result.broken_at_entry_id == chain[3]["id"]
        assert "previous_hash mismatch" in result.errors[0]

    def test_sequence_gap_detected(self) -> None:
        chain = _make_chain(4)
        del chain[1]
        result = verify_hash_chain(chain)
        assert result.broken_at_index == 1
        assert "chain_sequence mismatch" in result.errors[0]

    def test_unknown_algorithm_is_a_break(self) -> None:
        chain = _make_chain(2)
        chain[0]["hash_algorithm"] = "md5"
        result = verify_hash_chain(chain)
        assert result.broken_at_index == 0
        assert "cannot recompute" in result.errors[0]


class TestChainVerifier:
    def test_stops_checking_after_break(self) -> None:
        chain = _make_chain(3)
        chain[0]["payload"] = {"forged": True}
        verifier = ChainVerifier()
        assert verifier.feed(chain[0]) is False
        assert verifier.broken
        assert verifier.feed(chain[1]) is False
        assert verifier.result.total_entries == 2
        assert len(verifier.result.errors) == 1
