# dualseal/core/errors.py
"""
Error taxonomy shared by the record store, the ciphers and the reconciliation pipeline.

Every error carries an ErrorKind so callers can decide on retry behaviour
without matching on exception classes.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    INVALID_TRANSITION = "invalid_transition"
    UNAUTHORIZED = "unauthorized"
    ACCESS_DENIED = "access_denied"
    DECRYPTION_DENIED = "decryption_denied"
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"
    PAYLOAD_MISSING = "payload_missing"
    PAYLOAD_CORRUPTED = "payload_corrupted"
    INTEGRITY_MISMATCH = "integrity_mismatch"
    AUTHENTICATION = "authentication"
    INVALID_PROOF = "invalid_proof"
    TIMEOUT = "timeout"

    @property
    def transient(self) -> bool:
        """May succeed later without the caller changing anything."""
        return self in _TRANSIENT

    @property
    def fatal(self) -> bool:
        """Cryptographic verification outcome; retrying cannot change it."""
        return self in _FATAL


_TRANSIENT = frozenset({
    ErrorKind.NOT_FOUND,
    ErrorKind.NOT_READY,
    ErrorKind.PAYLOAD_MISSING,
    ErrorKind.TIMEOUT,
})

_FATAL = frozenset({
    ErrorKind.PAYLOAD_CORRUPTED,
    ErrorKind.INTEGRITY_MISMATCH,
})


class DualSealError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


# ── record store guards

class ValidationError(DualSealError):
    """Bad input shape; rejected before any state mutation."""
    kind = ErrorKind.VALIDATION


class InvalidTransition(DualSealError):
    """Event is not legal in the record's current state."""
    kind = ErrorKind.INVALID_TRANSITION


class Unauthorized(DualSealError):
    kind = ErrorKind.UNAUTHORIZED


class NotFound(DualSealError):
    kind = ErrorKind.NOT_FOUND


class NotReady(DualSealError):
    kind = ErrorKind.NOT_READY


class Reverted(DualSealError):
    """Raised by the ledger host when a submitted transition fails its guards."""

    def __init__(self, reason: str, cause: Optional[DualSealError] = None):
        super().__init__(reason, cause.kind if cause is not None else ErrorKind.VALIDATION)
        self.reason = reason
        self.cause = cause


# ── crypto

class AuthenticationError(DualSealError):
    """AEAD tag did not verify: tampered blob or wrong passphrase."""
    kind = ErrorKind.AUTHENTICATION


class InvalidInputProof(DualSealError):
    kind = ErrorKind.INVALID_PROOF


class AccessDenied(DualSealError):
    kind = ErrorKind.ACCESS_DENIED


# ── off-ledger storage

class BlobNotFound(DualSealError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, namespace: str, key: str):
        super().__init__(f"No blob stored at {namespace}/{key}")
        self.namespace = namespace
        self.key = key


# ── reconciliation

class ReconciliationError(DualSealError):
    """Reconciliation failed; `kind` tells why. Never carries plaintext."""

    def __init__(self, kind: ErrorKind, message: str, record_id: Optional[int] = None):
        super().__init__(message, kind)
        self.record_id = record_id

    def __str__(self):
        prefix = f"record {self.record_id}: " if self.record_id is not None else ""
        return f"{prefix}{self.kind.value}: {self.args[0]}"
