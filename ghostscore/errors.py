"""
GhostScore error taxonomy.

Batch-level failures (NetworkError) propagate to the caller, per-item
failures (ParseError) are logged and skipped by the indexer, and
ValidationError is always raised before any state is mutated.
"""

from typing import Optional


class GhostScoreError(Exception):
    """Base exception for all GhostScore errors."""

    code = "GHOSTSCORE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(f"[{self.code}] {message}")


class ConfigurationError(GhostScoreError):
    """Raised when required configuration is missing or invalid."""

    code = "CONFIGURATION_ERROR"


class NetworkError(GhostScoreError):
    """
    A ledger query failed or timed out.

    Retryable by the caller. Never swallowed at the batch level.
    """

    code = "NETWORK_ERROR"

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class RequestTimeoutError(NetworkError):
    """A single ledger request exceeded the configured timeout."""

    code = "REQUEST_TIMEOUT"


class ParseError(GhostScoreError):
    """A single transaction or memo did not decode as expected."""

    code = "PARSE_ERROR"

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.signature = signature


class ValidationError(GhostScoreError):
    """Input rejected before any state mutation."""

    code = "VALIDATION_ERROR"


class AuthorizationError(GhostScoreError):
    """Caller is not allowed to perform the operation."""

    code = "AUTHORIZATION_ERROR"


class TamperEvidenceError(GhostScoreError):
    """
    Commitment mismatch on decrypt.

    Decryption aborts without returning plaintext. Treat as a security
    event, not a transient failure.
    """

    code = "TAMPER_EVIDENCE"
