"""
Exception handling utilities.

Defines the indexer exception hierarchy and error categories.
"""

import aiohttp
from web3.exceptions import Web3Exception


class IndexerError(Exception):
    """Base exception for indexer errors."""
    pass


class ShutdownInProgressError(IndexerError):
    """Raised when new work is submitted during shutdown."""
    pass


class SessionAlreadyActiveError(IndexerError):
    """Raised when a user already has an active indexing session."""
    pass


class SessionNotFoundError(IndexerError):
    """Raised when a user has no indexing session."""
    pass


class InvalidStateTransitionError(IndexerError):
    """Raised when a session operation is not allowed in its current state."""
    pass


class ContractNotFoundError(IndexerError):
    """Raised when no contract code exists at the address, even at chain head."""
    pass


class ChunkFetchError(IndexerError):
    """Raised when a block range could not be fetched after all retries."""
    pass


class RPCError(IndexerError):
    """Raised when an upstream RPC call fails."""
    pass


class RPCTimeoutError(RPCError):
    """Raised when an upstream RPC call times out."""
    pass


class NoEndpointsConfiguredError(IndexerError):
    """Raised when a chain has no registered RPC endpoints."""
    pass


class CircuitBreakerOpenError(IndexerError):
    """Raised when a call is rejected by an open circuit breaker."""
    pass


class PersistenceError(IndexerError):
    """Raised when a snapshot could not be stored or loaded."""
    pass


class UnsupportedChainError(IndexerError, ValueError):
    """Raised for chain identifiers without configuration."""
    pass


class InsecureEndpointError(IndexerError, ValueError):
    """Raised when a non-HTTPS endpoint is used in production."""
    pass


# Exception categories based on handling strategy

# Retried with backoff, endpoint demoted past the failure threshold
TRANSIENT_ERRORS = (
    aiohttp.ClientError,
    TimeoutError,
    ConnectionError,
    Web3Exception,
    RPCError,
    CircuitBreakerOpenError,
)

# Halt the session that raised them
FATAL_SESSION_ERRORS = (
    ContractNotFoundError,
    UnsupportedChainError,
)


def is_transient(exc: BaseException) -> bool:
    """
    Check if exception is a transient upstream failure.

    Args:
        exc: Exception to check

    Returns:
        True if the operation may succeed when retried
    """
    return isinstance(exc, TRANSIENT_ERRORS)


def is_fatal_for_session(exc: BaseException) -> bool:
    """
    Check if exception must halt the session.

    Args:
        exc: Exception to check

    Returns:
        True if the session cannot continue
    """
    return isinstance(exc, FATAL_SESSION_ERRORS)
