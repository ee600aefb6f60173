"""Audit trail service errors."""


class AuditTrailError(Exception):
    """Base class for audit trail service errors."""


class NotFoundError(AuditTrailError):
    """Raised when an entry, stream, snapshot or key does not exist."""


class EntryNotAnchoredError(NotFoundError):
    """Raised when anchoring data is requested for an entry not anchored yet."""


class IntegrityError(AuditTrailError):
    """Raised when stored data fails a cryptographic check."""


class AnchorSubmissionError(AuditTrailError):
    """Raised when a Merkle root could not be anchored to the ledger."""


class ConcurrencyConflictError(AuditTrailError):
    """Raised when a concurrent writer won a race for the same stream or batch."""


class KeyCustodyError(AuditTrailError):
    """Raised when a custodial signing key cannot be stored or released."""
