"""
External ledger clients used to anchor Merkle roots.

- **memory**: in-process ledger for development and tests
- **rfc3161**: RFC 3161 Timestamp Authority
- **http**: JSON anchoring gateway in front of the on-chain contract
"""

from herdledger.core.config import Settings
from herdledger.core.ledger.base import LedgerClient, LedgerClientError, LedgerReceipt
from herdledger.core.ledger.gateway import HttpGatewayLedgerClient
from herdledger.core.ledger.memory import InMemoryLedgerClient
from herdledger.core.ledger.tsa import TimestampAuthorityLedgerClient


def build_ledger_client(settings: Settings) -> LedgerClient:
    """Instantiate the ledger client selected by ``settings.ledger_backend``."""
    if settings.ledger_backend == "rfc3161":
        return TimestampAuthorityLedgerClient(
            settings.tsa_url,
            timeout=settings.anchor_submit_timeout_seconds,
        )
    if settings.ledger_backend == "http":
        return HttpGatewayLedgerClient(
            settings.ledger_api_url,
            api_token=settings.ledger_api_token,
            explorer_base_url=settings.ledger_explorer_base_url,
            timeout=settings.anchor_submit_timeout_seconds,
        )
    return InMemoryLedgerClient()


__all__ = [
    "LedgerClient",
    "LedgerClientError",
    "LedgerReceipt",
    "HttpGatewayLedgerClient",
    "InMemoryLedgerClient",
    "TimestampAuthorityLedgerClient",
    "build_ledger_client",
]
