"""Database package."""

from herdledger.db.models import ActorKeyPairRow, AnchorSnapshotRow, AuditEntryRow, Base
from herdledger.db.session import (
    build_engine,
    build_session_factory,
    close_db,
    create_schema,
    get_background_session,
    get_session_factory,
    init_db,
)

__all__ = [
    "init_db",
    "close_db",
    "build_engine",
    "build_session_factory",
    "create_schema",
    "get_session_factory",
    "get_background_session",
    "Base",
    "AuditEntryRow",
    "AnchorSnapshotRow",
    "ActorKeyPairRow",
]
