"""
RFC 3161 Timestamp Authority (TSA) ledger client.

Anchors a Merkle root by obtaining a signed timestamp token over its SHA-256
digest. The token's serial number serves as the transaction id and its
``genTime`` as the block reference; the raw token is kept as the receipt so
the imprint can be re-checked later.
"""

from __future__ import annotations

import hashlib
import os
from datetime import UTC, datetime

import httpx
from asn1crypto import algos, core, tsp  # type: ignore[import-untyped]

from herdledger.core.ledger.base import LedgerClientError, LedgerReceipt
from herdledger.core.logging import get_logger

logger = get_logger(__name__)


def _build_ts_request(digest: bytes) -> bytes:
    """Build an RFC 3161 TimeStampReq ASN.1 structure.

    Parameters
    ----------
    digest:
        Raw SHA-256 digest bytes (32 bytes) to timestamp.

    Returns
    -------
    bytes
        DER-encoded TimeStampReq.
    """
    message_imprint = tsp.MessageImprint(
        {
            "hash_algorithm": algos.DigestAlgorithm({"algorithm": "sha256"}),
            "hashed_message": core.OctetString(digest),
        }
    )

    nonce = int.from_bytes(os.urandom(8))

    ts_request = tsp.TimeStampReq(
        {
            "version": 1,
            "message_imprint": message_imprint,
            "nonce": nonce,
            "cert_req": True,
        }
    )

    return bytes(ts_request.dump())


def hash_for_timestamping(data: str) -> bytes:
    """Compute a SHA-256 digest suitable for TSA timestamping.

    Parameters
    ----------
    data:
        String data (typically a Merkle root hash) to digest.

    Returns
    -------
    bytes
        Raw 32-byte SHA-256 digest.
    """
    return hashlib.sha256(data.encode("utf-8")).digest()


def _tst_info(ts_resp: tsp.TimeStampResp) -> tsp.TSTInfo:
    encap = ts_resp["time_stamp_token"]["content"]["encap_content_info"]
    return encap["content"].parsed


def _receipt_from_response(content: bytes) -> LedgerReceipt:
    """Parse a DER TimeStampResp into a :class:`LedgerReceipt`."""
    try:
        ts_resp = tsp.TimeStampResp.load(content)
        status_value = ts_resp["status"]["status"].native
    except (KeyError, ValueError, TypeError) as exc:
        raise LedgerClientError("TSA returned an unparseable response") from exc

    if status_value not in ("granted", "granted_with_mods"):
        raise LedgerClientError(f"TSA rejected the request (status={status_value})")

    try:
        tst_info = _tst_info(ts_resp)
        serial_number = tst_info["serial_number"].native
        gen_time = tst_info["gen_time"].native
    except (KeyError, ValueError, TypeError) as exc:
        raise LedgerClientError("TSA response carries no usable TSTInfo") from exc

    confirmed_at = gen_time if isinstance(gen_time, datetime) else datetime.now(UTC)
    return LedgerReceipt(
        transaction_id=str(serial_number),
        block_reference=confirmed_at.isoformat(),
        confirmed_at=confirmed_at,
        confirmed=True,
        receipt_token=bytes(content),
    )


def verify_timestamp_token(token: bytes, merkle_root: str) -> bool:
    """Verify that a TSA token covers the digest of ``merkle_root``.

    Checks that the embedded message imprint matches the expected digest.
    Does NOT verify the TSA's certificate chain (that would require a
    trust store configuration beyond this module's scope).
    """
    try:
        imprint = _tst_info(tsp.TimeStampResp.load(token))["message_imprint"]
        hashed_message = imprint["hashed_message"].native
    except (KeyError, ValueError, TypeError):
        logger.warning("tsa_verify_failed", exc_info=True)
        return False
    return bool(hashed_message == hash_for_timestamping(merkle_root))


class TimestampAuthorityLedgerClient:
    """Ledger client backed by an RFC 3161 Timestamp Authority."""

    name = "rfc3161"

    def __init__(
        self,
        tsa_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not tsa_url:
            raise ValueError("tsa_url is required for the RFC 3161 ledger client")
        self._tsa_url = tsa_url
        self._timeout = timeout
        self._transport = transport

    async def submit_root(self, merkle_root: str) -> LedgerReceipt:
        ts_req = _build_ts_request(hash_for_timestamping(merkle_root))
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self._tsa_url,
                    content=ts_req,
                    headers={"Content-Type": "application/timestamp-query"},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("tsa_request_failed", tsa_url=self._tsa_url, error=str(exc))
            raise LedgerClientError(f"TSA request failed: {exc}") from exc

        receipt = _receipt_from_response(response.content)
        logger.info(
            "tsa_timestamp_granted",
            tsa_url=self._tsa_url,
            serial_number=receipt.transaction_id,
        )
        return receipt

    def build_explorer_url(self, transaction_id: str) -> str | None:
        return None
