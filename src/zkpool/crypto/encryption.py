"""Hybrid public-key encryption of account notes.

Every operation publishes its output note encrypted for the owner, so the
owner (and only the owner) can recover it from chain events later.

Scheme:
    1. Generate an ephemeral X25519 key pair
    2. X25519(ephemeral_sk, recipient_pk) -> shared secret
    3. HKDF-SHA256(shared secret, salt = ephemeral_pk || recipient_pk) -> 32-byte key
    4. ChaCha20-Poly1305(key, nonce) over amount || debt || secret || nullifier

Wire format (188 bytes, stable - changing it breaks recovery of old blobs):

    +----------------------+-----------+------------------+-----------+
    | ephemeral public key | nonce     | ciphertext       | tag       |
    | 32 bytes             | 12 bytes  | 128 bytes        | 16 bytes  |
    +----------------------+-----------+------------------+-----------+
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from zkpool.core.account import Account
from zkpool.utils.encoding import bytes_to_hex, hex_to_bytes, int_to_bytes, bytes_to_int
from zkpool.utils.hash import FieldHasher, default_hasher
from zkpool.exceptions import DecryptionError, EncryptionError, RangeError

logger = logging.getLogger(__name__)

# Constants
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
FIELD_BYTES = 32
PLAINTEXT_SIZE = 4 * FIELD_BYTES
PACKED_SIZE = KEY_SIZE + NONCE_SIZE + PLAINTEXT_SIZE + TAG_SIZE
HKDF_INFO = b"zkpool-account-v1"


@dataclass(frozen=True)
class EncryptedMessage:
    """The four logical fields of an encrypted account blob."""

    ephemeral_public_key: bytes
    nonce: bytes
    ciphertext: bytes
    tag: bytes

    def pack(self) -> bytes:
        return pack(self)

    def to_dict(self) -> dict:
        return {
            "ephemeral_public_key": bytes_to_hex(self.ephemeral_public_key),
            "nonce": bytes_to_hex(self.nonce),
            "ciphertext": bytes_to_hex(self.ciphertext),
            "tag": bytes_to_hex(self.tag),
        }


def generate_keypair() -> Tuple[bytes, bytes]:
    """
    Generate a new encryption key pair.

    Returns:
        Tuple[bytes, bytes]: (private_key, public_key), 32 raw bytes each
    """
    private_key = X25519PrivateKey.generate()
    return _private_bytes(private_key), _public_bytes(private_key.public_key())


def get_encryption_public_key(private_key: bytes) -> bytes:
    """
    Derive the public encryption key for a raw private key.

    Raises:
        ValueError: If private_key is not 32 bytes
    """
    return _public_bytes(_load_private_key(private_key).public_key())


def encrypt(account: Account, recipient_public_key: bytes) -> EncryptedMessage:
    """
    Encrypt an account note for the holder of recipient_public_key.

    Args:
        account: Note to encrypt
        recipient_public_key: Raw 32-byte X25519 public key

    Returns:
        EncryptedMessage: Fresh ephemeral key and nonce on every call

    Raises:
        EncryptionError: If the key or the account is invalid
    """
    try:
        account.validate()
        recipient = _load_public_key(recipient_public_key)

        ephemeral = X25519PrivateKey.generate()
        ephemeral_public = _public_bytes(ephemeral.public_key())
        key = _derive_key(ephemeral.exchange(recipient), ephemeral_public, recipient_public_key)

        nonce = os.urandom(NONCE_SIZE)
        sealed = ChaCha20Poly1305(key).encrypt(nonce, _serialize(account), ephemeral_public)
    except (ValueError, TypeError, RangeError) as e:
        logger.warning("Account encryption failed: %s", e)
        raise EncryptionError(f"Failed to encrypt account: {e}")

    return EncryptedMessage(
        ephemeral_public_key=ephemeral_public,
        nonce=nonce,
        ciphertext=sealed[:-TAG_SIZE],
        tag=sealed[-TAG_SIZE:],
    )


def decrypt(
    private_key: bytes,
    message: Union[EncryptedMessage, bytes, bytearray, str],
    hasher: Optional[FieldHasher] = None,
) -> Account:
    """
    Recover an account note.

    Args:
        private_key: Raw 32-byte X25519 private key
        message: EncryptedMessage, packed bytes (or bytearray), or packed '0x' hex
        hasher: Hasher for the recovered account's commitment

    Returns:
        Account: The decrypted note

    Raises:
        DecryptionError: On a wrong key, a corrupted blob or a malformed
            plaintext. No partial plaintext is ever returned.
    """
    if isinstance(message, str):
        message = unpack_hex(message)
    elif isinstance(message, (bytes, bytearray)):
        message = unpack(bytes(message))
    elif not isinstance(message, EncryptedMessage):
        raise DecryptionError(f"Unsupported encrypted account type: {type(message).__name__}")

    try:
        recipient = _load_private_key(private_key)
        recipient_public = _public_bytes(recipient.public_key())
        ephemeral = _load_public_key(message.ephemeral_public_key)
        key = _derive_key(
            recipient.exchange(ephemeral), message.ephemeral_public_key, recipient_public
        )
        plaintext = ChaCha20Poly1305(key).decrypt(
            message.nonce, message.ciphertext + message.tag, message.ephemeral_public_key
        )
    except InvalidTag:
        logger.debug("Blob with ephemeral key %s is not ours", message.ephemeral_public_key.hex()[:16])
        raise DecryptionError("Authentication tag mismatch (wrong key or corrupted blob)")
    except (ValueError, TypeError) as e:
        raise DecryptionError(f"Failed to decrypt account: {e}")

    return _deserialize(plaintext, hasher or default_hasher())


def pack(message: EncryptedMessage) -> bytes:
    """
    Serialize an EncryptedMessage into the on-chain blob.

    Raises:
        EncryptionError: If any field has the wrong length
    """
    expected = (
        ("ephemeral_public_key", message.ephemeral_public_key, KEY_SIZE),
        ("nonce", message.nonce, NONCE_SIZE),
        ("ciphertext", message.ciphertext, PLAINTEXT_SIZE),
        ("tag", message.tag, TAG_SIZE),
    )
    for name, value, size in expected:
        if not isinstance(value, bytes) or len(value) != size:
            raise EncryptionError(f"{name} must be {size} bytes")

    return message.ephemeral_public_key + message.nonce + message.ciphertext + message.tag


def unpack(blob: bytes) -> EncryptedMessage:
    """
    Split an on-chain blob into its four fields.

    Raises:
        DecryptionError: If the blob has the wrong length
    """
    if not isinstance(blob, bytes) or len(blob) != PACKED_SIZE:
        size = len(blob) if isinstance(blob, bytes) else type(blob).__name__
        raise DecryptionError(f"Encrypted account must be {PACKED_SIZE} bytes, got {size}")

    offset = 0
    fields = []
    for size in (KEY_SIZE, NONCE_SIZE, PLAINTEXT_SIZE, TAG_SIZE):
        fields.append(blob[offset:offset + size])
        offset += size

    return EncryptedMessage(*fields)


def pack_hex(message: EncryptedMessage) -> str:
    """Packed blob as the '0x' hex string carried in the NewAccount event."""
    return bytes_to_hex(pack(message))


def unpack_hex(value: str) -> EncryptedMessage:
    """Inverse of pack_hex."""
    try:
        blob = hex_to_bytes(value)
    except ValueError as e:
        raise DecryptionError(f"Encrypted account is not valid hex: {e}")
    return unpack(blob)


def _serialize(account: Account) -> bytes:
    return b"".join(
        int_to_bytes(value, FIELD_BYTES)
        for value in (account.amount, account.debt, account.secret, account.nullifier)
    )


def _deserialize(plaintext: bytes, hasher: FieldHasher) -> Account:
    if len(plaintext) != PLAINTEXT_SIZE:
        raise DecryptionError("Decrypted payload has unexpected length")

    values = [
        bytes_to_int(plaintext[i:i + FIELD_BYTES])
        for i in range(0, PLAINTEXT_SIZE, FIELD_BYTES)
    ]
    account = Account(
        amount=values[0], debt=values[1], secret=values[2], nullifier=values[3], hasher=hasher
    )
    try:
        account.validate()
    except RangeError as e:
        raise DecryptionError(f"Decrypted account is malformed: {e}")
    return account


def _derive_key(shared_secret: bytes, ephemeral_public: bytes, recipient_public: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=ephemeral_public + recipient_public,
        info=HKDF_INFO,
    ).derive(shared_secret)


def _load_private_key(private_key: bytes) -> X25519PrivateKey:
    if not isinstance(private_key, bytes) or len(private_key) != KEY_SIZE:
        raise ValueError("Private key must be 32 bytes")
    return X25519PrivateKey.from_private_bytes(private_key)


def _load_public_key(public_key: bytes) -> X25519PublicKey:
    if not isinstance(public_key, bytes) or len(public_key) != KEY_SIZE:
        raise ValueError("Public key must be 32 bytes")
    return X25519PublicKey.from_public_bytes(public_key)


def _private_bytes(key: X25519PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _public_bytes(key: X25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
