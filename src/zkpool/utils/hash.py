"""Field-element hash utilities."""

import hashlib
import secrets
from typing import Protocol, Union

# BN254 scalar field modulus
FIELD_SIZE = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# keccak256("tornado") % FIELD_SIZE, the empty leaf of the account tree
ZERO_VALUE = 21663839004416932945382355908790599225266501822907911457504978515578255421292


class FieldHasher(Protocol):
    """Collision-resistant hash over field elements.

    The circuits use Poseidon; any implementation matching the circuit can be
    injected wherever a hasher is accepted.
    """

    def hash(self, *inputs: int) -> int:
        ...


def sha256(data: Union[bytes, str]) -> bytes:
    """
    Compute SHA-256 hash of data.

    Args:
        data: Bytes or string to hash

    Returns:
        bytes: 32-byte SHA-256 hash
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


class Sha256FieldHasher:
    """
    Default field hasher: SHA-256 over 32-byte big-endian words, reduced
    modulo the field.
    """

    def hash(self, *inputs: int) -> int:
        if not inputs:
            raise ValueError("At least one input is required")

        concatenated = b""
        for value in inputs:
            if not isinstance(value, int) or value < 0 or value >= FIELD_SIZE:
                raise ValueError(f"Input is not a field element: {value!r}")
            concatenated += value.to_bytes(32, 'big')
        return int.from_bytes(sha256(concatenated), 'big') % FIELD_SIZE

    def __repr__(self) -> str:
        return "Sha256FieldHasher()"


def default_hasher() -> FieldHasher:
    """Return a new instance of the default hasher."""
    return Sha256FieldHasher()


def random_field_element() -> int:
    """
    Sample a random field element.

    31 bytes keep the value strictly below FIELD_SIZE without rejection
    sampling.
    """
    return int.from_bytes(secrets.token_bytes(31), 'big')


def is_field_element(value: int) -> bool:
    """Check that value is an int in [0, FIELD_SIZE)."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < FIELD_SIZE
