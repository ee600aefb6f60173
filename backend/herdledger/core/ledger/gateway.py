"""HTTP anchoring-gateway ledger client.

The gateway wraps the on-chain anchoring contract: it accepts a Merkle root,
submits the transaction, waits for confirmation and answers with
``{"transactionId", "blockNumber", "confirmedAt", "status"}``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx

from herdledger.core.ledger.base import LedgerClientError, LedgerReceipt
from herdledger.core.logging import get_logger

logger = get_logger(__name__)

_CONFIRMED_STATUSES = frozenset({"confirmed", "mined", "success"})


def _parse_confirmed_at(raw: Any) -> datetime:
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError as exc:
            raise LedgerClientError(f"Gateway returned invalid confirmedAt: {raw!r}") from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, tz=UTC)
    return datetime.now(UTC)


class HttpGatewayLedgerClient:
    """Ledger client that anchors roots through a JSON HTTP gateway."""

    name = "http-gateway"

    def __init__(
        self,
        base_url: str,
        *,
        api_token: str = "",
        explorer_base_url: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required for the HTTP gateway ledger client")
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._explorer_base_url = explorer_base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def submit_root(self, merkle_root: str) -> LedgerReceipt:
        root_bytes32 = merkle_root if merkle_root.startswith("0x") else f"0x{merkle_root}"
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    "/anchors",
                    json={"merkleRoot": root_bytes32},
                    headers=self._headers(),
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as exc:
            logger.warning("ledger_gateway_request_failed", error=str(exc))
            raise LedgerClientError(f"Ledger gateway request failed: {exc}") from exc
        except ValueError as exc:
            raise LedgerClientError("Ledger gateway returned a non-JSON body") from exc

        if not isinstance(body, dict):
            raise LedgerClientError("Ledger gateway returned an unexpected payload")

        transaction_id = body.get("transactionId") or body.get("transactionHash")
        block_number = body.get("blockNumber")
        if not transaction_id or block_number is None:
            raise LedgerClientError("Ledger gateway response is missing transaction details")

        status_value = str(body.get("status", "")).lower()
        return LedgerReceipt(
            transaction_id=str(transaction_id),
            block_reference=str(block_number),
            confirmed_at=_parse_confirmed_at(body.get("confirmedAt")),
            confirmed=status_value in _CONFIRMED_STATUSES,
        )

    def build_explorer_url(self, transaction_id: str) -> str | None:
        if not self._explorer_base_url:
            return None
        return f"{self._explorer_base_url}/tx/{transaction_id}"
