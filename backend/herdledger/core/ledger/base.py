"""Narrow client interface for anchoring Merkle roots to an external ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable


class LedgerClientError(RuntimeError):
    """Raised when a ledger is unreachable or rejects a submission."""


@dataclass(frozen=True, slots=True)
class LedgerReceipt:
    """What the ledger returned for one submitted root."""

    transaction_id: str
    block_reference: str
    confirmed_at: datetime
    confirmed: bool = True
    receipt_token: bytes | None = None


@runtime_checkable
class LedgerClient(Protocol):
    """Submit a Merkle root and describe where it can be looked up."""

    name: str

    async def submit_root(self, merkle_root: str) -> LedgerReceipt:
        """Anchor ``merkle_root``; raise :class:`LedgerClientError` on failure."""
        ...

    def build_explorer_url(self, transaction_id: str) -> str | None:
        """Return a public link for ``transaction_id`` if the ledger has one."""
        ...
