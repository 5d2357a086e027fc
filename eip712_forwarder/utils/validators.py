"""
Input validation utilities.

Validates addresses, hex payloads, integers and keys before they reach the
encoder or the signer.
"""

import re
from typing import Any

from eth_utils import is_address, to_canonical_address, to_checksum_address

from ..exceptions import MalformedInputError, TypeMismatchError


_HEX_RE = re.compile(r"0x[0-9a-fA-F]*")
_HEX_DIGITS_RE = re.compile(r"[0-9a-fA-F]+")
_DECIMAL_RE = re.compile(r"-?[0-9]+")
_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")
_PRIVATE_KEY_RE = re.compile(r"[0-9a-fA-F]{64}")

# Longest digit strings a 256-bit integer can need
MAX_DECIMAL_DIGITS = 78
MAX_HEX_DIGITS = 64


def validate_address(address: Any) -> str:
    """
    Validate Ethereum address.

    Mixed-case input must carry a valid EIP-55 checksum.

    Args:
        address: Ethereum address (0x-prefixed hex or 20 raw bytes)

    Returns:
        Checksummed address

    Raises:
        TypeMismatchError: If address is not a string or bytes
        MalformedInputError: If address is invalid
    """
    return to_checksum_address(address_to_bytes(address))


def address_to_bytes(address: Any) -> bytes:
    """
    Convert an address to its 20 canonical bytes.

    Raises:
        TypeMismatchError: If address is not a string or bytes
        MalformedInputError: If address is invalid
    """
    if isinstance(address, (bytes, bytearray)):
        if len(address) != 20:
            raise MalformedInputError(
                f"Address must be 20 bytes, got {len(address)}",
                {"length": len(address)},
            )
        return bytes(address)

    if not isinstance(address, str):
        raise TypeMismatchError(
            f"Address must be string, got {type(address).__name__}",
            declared="address",
            actual=type(address).__name__,
        )

    if not _ADDRESS_RE.fullmatch(address) or not is_address(address):
        raise MalformedInputError(f"Invalid Ethereum address: {address[:80]!r}")

    return to_canonical_address(address)


def validate_hex_bytes(value: Any, declared: str = "bytes") -> bytes:
    """
    Validate a 0x-prefixed hex string (or raw bytes) and decode it.

    Args:
        value: Hex string or bytes
        declared: Declared type, used in error messages

    Returns:
        Decoded bytes

    Raises:
        TypeMismatchError: If value is neither str nor bytes
        MalformedInputError: If the hex is malformed
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)

    if not isinstance(value, str):
        raise TypeMismatchError(
            f"{declared} value must be hex string or bytes, got {type(value).__name__}",
            declared=declared,
            actual=type(value).__name__,
        )

    if not _HEX_RE.fullmatch(value):
        raise MalformedInputError(f"{declared} value must be 0x-prefixed hex, got {value!r}")

    if len(value) % 2 != 0:
        raise MalformedInputError(f"{declared} hex has odd length: {value!r}")

    try:
        return bytes.fromhex(value[2:])
    except ValueError as e:
        raise MalformedInputError(f"{declared} hex is not decodable: {value!r}") from e


def validate_text(value: Any, declared: str = "string") -> bytes:
    """
    Validate a text value and return its UTF-8 encoding.

    Raises:
        TypeMismatchError: If value is not a string
        MalformedInputError: If value has no UTF-8 encoding (lone surrogates)
    """
    if not isinstance(value, str):
        raise TypeMismatchError(
            f"{declared} value must be string, got {type(value).__name__}",
            declared=declared,
            actual=type(value).__name__,
        )
    try:
        return value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise MalformedInputError(
            f"{declared} value is not valid UTF-8 text (position {e.start})",
            {"declared": declared, "position": e.start},
        ) from e


def validate_integer(value: Any, declared: str = "uint256") -> int:
    """
    Validate an integer given as int, decimal string or 0x-hex string.

    Booleans are rejected even though bool subclasses int.

    Raises:
        TypeMismatchError: If value is not int or str
        MalformedInputError: If the string is not a number
    """
    if isinstance(value, bool):
        raise TypeMismatchError(
            f"{declared} value must be integer, got bool",
            declared=declared,
            actual="bool",
        )

    if isinstance(value, int):
        return value

    if not isinstance(value, str):
        raise TypeMismatchError(
            f"{declared} value must be integer, got {type(value).__name__}",
            declared=declared,
            actual=type(value).__name__,
        )

    if value.startswith("0x") or value.startswith("0X"):
        digits = value[2:]
        if not _HEX_DIGITS_RE.fullmatch(digits):
            raise MalformedInputError(f"Invalid hex integer for {declared}: {value[:80]!r}")
        if len(digits) > MAX_HEX_DIGITS:
            raise MalformedInputError(
                f"Hex integer for {declared} has {len(digits)} digits, max {MAX_HEX_DIGITS}"
            )
        return int(digits, 16)

    if not _DECIMAL_RE.fullmatch(value):
        raise MalformedInputError(f"Invalid integer for {declared}: {value[:80]!r}")

    if len(value.lstrip("-")) > MAX_DECIMAL_DIGITS:
        raise MalformedInputError(
            f"Integer for {declared} has {len(value.lstrip('-'))} digits, max {MAX_DECIMAL_DIGITS}"
        )

    try:
        return int(value, 10)
    except ValueError as e:
        raise MalformedInputError(f"Invalid integer for {declared}: {value[:80]!r}") from e


def validate_private_key(private_key: str) -> str:
    """
    Validate private key format.

    Args:
        private_key: Private key hex string

    Returns:
        Normalized private key

    Raises:
        MalformedInputError: If private key is invalid
    """
    if not isinstance(private_key, str):
        raise MalformedInputError(f"Private key must be string, got {type(private_key)}")

    # Remove 0x prefix if present
    key = private_key[2:] if private_key.startswith("0x") else private_key

    # Validate hex format and length (32 bytes = 64 hex chars)
    if not _PRIVATE_KEY_RE.fullmatch(key):
        raise MalformedInputError("Invalid private key format")

    return f"0x{key.lower()}"
