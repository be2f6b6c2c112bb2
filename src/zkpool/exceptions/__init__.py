"""Custom exceptions for the shielded pool client."""

from typing import Any, Optional


class PoolError(Exception):
    """Base exception for all pool client errors."""
    pass


# Validation Errors
class ValidationError(PoolError):
    """Raised when a request field is malformed or out of range.

    Attributes:
        field: Name of the offending field (if known)
        bound: The bound that was violated (if any)
    """

    def __init__(self, message: str, field: Optional[str] = None, bound: Any = None):
        super().__init__(message)
        self.field = field
        self.bound = bound


class RangeError(ValidationError):
    """Raised when an account field is negative or exceeds the field modulus."""
    pass


# Operation Errors
class OperationRejectedError(PoolError):
    """Base exception for semantic rejections of an operation."""
    pass


class NegativeBalanceError(OperationRejectedError):
    """Raised when an operation would leave a negative amount or debt."""

    def __init__(self, message: str, field: Optional[str] = None, current: int = 0, delta: int = 0):
        super().__init__(message)
        self.field = field
        self.current = current
        self.delta = delta


class RateOverstatedError(OperationRejectedError):
    """Raised when the supplied conversion rate fails the overstatement bound."""

    def __init__(self, message: str, supplied: int = 0, expected: int = 0):
        super().__init__(message)
        self.supplied = supplied
        self.expected = expected


class UndercollateralizedError(OperationRejectedError):
    """Raised when the resulting debt is not covered by the resulting amount."""
    pass


class FeeExceedsDeltaError(OperationRejectedError):
    """Raised when a relayer fee is larger than the delta it is paid from."""
    pass


class AccountInFlightError(OperationRejectedError):
    """Raised when an account is already being spent by another operation."""
    pass


class NullifierReuseError(PoolError):
    """Raised when the input account's nullifier hash is already spent."""

    def __init__(self, message: str, nullifier_hash: Optional[int] = None):
        super().__init__(message)
        self.nullifier_hash = nullifier_hash


# Cryptography Errors
class CryptoError(PoolError):
    """Base exception for cryptographic errors."""
    pass


class EncryptionError(CryptoError):
    """Raised when encryption fails."""
    pass


class DecryptionError(CryptoError):
    """Raised when decryption fails."""
    pass


# Merkle Tree Errors
class MerkleTreeError(PoolError):
    """Base exception for Merkle tree errors."""
    pass


class TreeFullError(MerkleTreeError):
    """Raised when the tree has no room for another leaf."""
    pass


class IndexOutOfRangeError(MerkleTreeError):
    """Raised when a leaf index is invalid."""
    pass


class TreeSyncError(MerkleTreeError):
    """Raised when the chain's leaf stream is inconsistent with local state."""
    pass


# Proof Errors
class ProverError(PoolError):
    """Raised when the external proving backend fails."""
    pass


class ProverTimeoutError(ProverError):
    """Raised when proof generation exceeds its timeout."""
    pass


class ProofCancelledError(ProverError):
    """Raised when the caller cancels an operation while its proof is running."""
    pass


# Storage Errors
class StorageError(PoolError):
    """Base exception for storage errors."""
    pass
