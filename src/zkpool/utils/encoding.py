"""Encoding and decoding utilities."""

from typing import Union


def bytes_to_hex(data: bytes) -> str:
    """
    Convert bytes to hexadecimal string.

    Args:
        data: Bytes to convert

    Returns:
        str: Hexadecimal string with '0x' prefix
    """
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """
    Convert hexadecimal string to bytes.

    Args:
        hex_str: Hexadecimal string (with or without '0x' prefix)

    Returns:
        bytes: Decoded bytes

    Raises:
        ValueError: If hex string is invalid
    """
    if hex_str.startswith("0x"):
        hex_str = hex_str[2:]

    if len(hex_str) % 2 != 0:
        raise ValueError("Hex string must have even number of characters")

    return bytes.fromhex(hex_str)


def to_fixed_hex(value: Union[int, bytes], length: int = 32) -> str:
    """
    Encode an integer or byte string as a zero-padded '0x' hex word.

    Args:
        value: Non-negative integer or bytes
        length: Width in bytes

    Returns:
        str: '0x' followed by exactly 2 * length hex characters

    Raises:
        ValueError: If the value does not fit in length bytes
    """
    if isinstance(value, bytes):
        if len(value) > length:
            raise ValueError(f"Value is {len(value)} bytes, expected at most {length}")
        return "0x" + value.rjust(length, b"\x00").hex()
    if value < 0:
        raise ValueError("Value must be non-negative")
    return "0x" + int_to_bytes(value, length).hex()


def hex_to_int(value: Union[int, str]) -> int:
    """Decode a '0x' hex string (or pass through an int)."""
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise TypeError(f"Expected int or str, got {type(value)}")
    stripped = value[2:] if value.startswith("0x") else value
    if not stripped:
        raise ValueError("Empty hex string")
    return int(stripped, 16)


def int_to_bytes(value: int, length: int = 32) -> bytes:
    """Big-endian fixed-width encoding."""
    try:
        return value.to_bytes(length, 'big')
    except OverflowError:
        raise ValueError(f"Value does not fit in {length} bytes")


def bytes_to_int(data: bytes) -> int:
    """Big-endian decoding."""
    return int.from_bytes(data, 'big')
