"""In-process ledger for development and tests."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime

from herdledger.core.ledger.base import LedgerReceipt


class InMemoryLedgerClient:
    """Records submitted roots in a list; each submission is its own block."""

    name = "memory"

    def __init__(self, *, explorer_base_url: str = "") -> None:
        self._explorer_base_url = explorer_base_url.rstrip("/")
        self.submitted_roots: list[str] = []

    async def submit_root(self, merkle_root: str) -> LedgerReceipt:
        self.submitted_roots.append(merkle_root)
        block_number = len(self.submitted_roots)
        transaction_id = (
            "0x" + hashlib.sha256(f"{merkle_root}:{block_number}".encode()).hexdigest()
        )
        return LedgerReceipt(
            transaction_id=transaction_id,
            block_reference=str(block_number),
            confirmed_at=datetime.now(UTC),
        )

    def build_explorer_url(self, transaction_id: str) -> str | None:
        if not self._explorer_base_url:
            return None
        return f"{self._explorer_base_url}/tx/{transaction_id}"
