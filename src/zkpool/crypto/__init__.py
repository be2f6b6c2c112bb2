"""Cryptographic primitives module"""

from zkpool.crypto.encryption import (
    EncryptedMessage,
    generate_keypair,
    get_encryption_public_key,
    encrypt,
    decrypt,
    pack,
    unpack,
    pack_hex,
    unpack_hex,
)

__all__ = [
    'EncryptedMessage',
    'generate_keypair',
    'get_encryption_public_key',
    'encrypt',
    'decrypt',
    'pack',
    'unpack',
    'pack_hex',
    'unpack_hex',
]
