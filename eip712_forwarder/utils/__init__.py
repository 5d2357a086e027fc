"""Utility modules for the EIP-712 forwarder."""

from .validators import (
    validate_address,
    validate_hex_bytes,
    validate_integer,
    validate_private_key,
    validate_text,
)
from .cache import LRUCache

__all__ = [
    "validate_address",
    "validate_hex_bytes",
    "validate_integer",
    "validate_private_key",
    "validate_text",
    "LRUCache",
]
