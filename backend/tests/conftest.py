"""
Pytest fixtures for backend testing.
Provides settings, repositories, ledger doubles and a wired audit trail.
"""

import base64
import os
from collections.abc import AsyncGenerator, Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from asn1crypto import algos, cms, tsp  # type: ignore[import-untyped]
from sqlalchemy.ext.asyncio import AsyncEngine

from herdledger.core.config import Settings, get_settings
from herdledger.core.crypto.signing import generate_signing_keypair
from herdledger.core.ledger.memory import InMemoryLedgerClient
from herdledger.core.ledger.tsa import hash_for_timestamping
from herdledger.db.models import Base
from herdledger.db.session import build_engine, build_session_factory, create_schema
from herdledger.modules.audit.facade import AuditTrail
from herdledger.modules.audit.memory import InMemoryAuditRepository
from herdledger.modules.audit.records import Actor
from herdledger.modules.audit.sql import SqlAuditRepository

# Test database URL
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def master_key_b64() -> str:
    """Generate a valid 256-bit master key (base64-encoded)."""
    return base64.b64encode(os.urandom(32)).decode("ascii")


@pytest.fixture(scope="session")
def platform_signing_key() -> tuple[str, str]:
    return generate_signing_keypair()


@pytest.fixture
def settings(master_key_b64: str, platform_signing_key: tuple[str, str]) -> Settings:
    return Settings(
        environment="development",
        database_url=TEST_DATABASE_URL or "sqlite+aiosqlite:///:memory:",
        encryption_master_key=master_key_b64,
        audit_signing_key=platform_signing_key[0],
        audit_signing_key_id="test-audit-key",
        audit_append_lock_timeout_seconds=5.0,
        audit_stream_page_size=7,
        anchor_enabled=False,
        anchor_min_batch_size=2,
        anchor_max_batch_size=100,
        anchor_submit_timeout_seconds=1.0,
        ledger_backend="memory",
    )


@pytest.fixture
def repository() -> InMemoryAuditRepository:
    return InMemoryAuditRepository()


@pytest.fixture
def ledger() -> InMemoryLedgerClient:
    return InMemoryLedgerClient(explorer_base_url="https://amoy.polygonscan.com")


@pytest.fixture
def audit_trail(
    repository: InMemoryAuditRepository,
    ledger: InMemoryLedgerClient,
    settings: Settings,
) -> AuditTrail:
    return AuditTrail(repository, ledger_client=ledger, settings=settings)


@pytest.fixture
def farmer() -> Actor:
    return Actor(actor_id="farmer-1", role="FARMER", display_name="Jo Farmer")


@pytest.fixture
def vet() -> Actor:
    return Actor(actor_id="vet-1", role="VETERINARIAN")


@pytest_asyncio.fixture
async def sql_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a throwaway database with the audit schema."""
    engine = build_engine(TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}")
    await create_schema(engine)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_repository(sql_engine: AsyncEngine) -> SqlAuditRepository:
    return SqlAuditRepository(build_session_factory(sql_engine))


def build_tsa_response(
    merkle_root: str,
    *,
    serial_number: int = 4711,
    status: str = "granted",
    gen_time: datetime = datetime(2024, 3, 1, 12, 0, tzinfo=UTC),
) -> bytes:
    """DER TimeStampResp over ``merkle_root``, as an RFC 3161 TSA returns it (unsigned)."""
    if status != "granted":
        return bytes(tsp.TimeStampResp({"status": tsp.PKIStatusInfo({"status": status})}).dump())

    sha256 = algos.DigestAlgorithm({"algorithm": "sha256"})
    tst_info = tsp.TSTInfo(
        {
            "version": "v1",
            "policy": "1.2.3.4.1",
            "message_imprint": tsp.MessageImprint(
                {"hash_algorithm": sha256, "hashed_message": hash_for_timestamping(merkle_root)}
            ),
            "serial_number": serial_number,
            "gen_time": gen_time,
        }
    )
    signed_data = cms.SignedData(
        {
            "version": "v3",
            "digest_algorithms": [sha256],
            "encap_content_info": cms.EncapsulatedContentInfo(
                {"content_type": "tst_info", "content": tst_info}
            ),
            "signer_infos": [],
        }
    )
    response = tsp.TimeStampResp(
        {
            "status": tsp.PKIStatusInfo({"status": "granted"}),
            "time_stamp_token": cms.ContentInfo(
                {"content_type": "signed_data", "content": signed_data}
            ),
        }
    )
    return bytes(response.dump())


@pytest.fixture
def tsa_response() -> Callable[..., bytes]:
    return build_tsa_response
