"""
EIP-712 signing digest assembly.

digest = keccak256(0x19 ‖ 0x01 ‖ domainSeparator ‖ structHash)
"""

from typing import Any, Mapping, Union

from eth_utils import keccak

from ..exceptions import MalformedInputError
from ..models import DOMAIN_TYPE_NAME, StructuredRequest
from .domain import DomainSeparatorBuilder, check_domain_type
from .encoder import DEFAULT_MAX_VALUE_DEPTH, StructHasher
from .registry import TypeRegistry

# EIP-191 version byte 0x01 marks structured data
EIP712_PREFIX = b"\x19\x01"


def assemble_digest(domain_separator: bytes, struct_hash: bytes) -> bytes:
    """
    Combine domain separator and struct hash into the signing digest.

    Args:
        domain_separator: 32-byte domain separator
        struct_hash: 32-byte struct hash of the primary message

    Returns:
        32-byte digest

    Raises:
        MalformedInputError: If either input is not 32 bytes
    """
    if not isinstance(domain_separator, (bytes, bytearray)) or len(domain_separator) != 32:
        raise MalformedInputError("Domain separator must be 32 bytes")
    if not isinstance(struct_hash, (bytes, bytearray)) or len(struct_hash) != 32:
        raise MalformedInputError("Struct hash must be 32 bytes")
    return keccak(EIP712_PREFIX + bytes(domain_separator) + bytes(struct_hash))


def hash_typed_data(request: Union[StructuredRequest, Mapping[str, Any]],
                    max_depth: int = DEFAULT_MAX_VALUE_DEPTH) -> bytes:
    """
    Digest of a self-describing typed-data request.

    Types come from the request itself, the way a wallet hashes
    eth_signTypedData input. No registration is involved.

    Raises:
        MalformedInputError: If the request has no types or is malformed
        UnknownTypeError: If a referenced type is missing from the request
        TypeConflictError: If a declared EIP712Domain type disagrees with the domain
    """
    request = StructuredRequest.from_wire(request)
    if not request.types:
        raise MalformedInputError("Request carries no types to hash against")
    if DOMAIN_TYPE_NAME in request.types:
        check_domain_type(request.domain, request.types[DOMAIN_TYPE_NAME])

    registry = TypeRegistry.from_types(request.types)
    struct_hash = StructHasher(registry, max_depth=max_depth).struct_hash(
        request.primary_type, request.message
    )
    domain_separator = DomainSeparatorBuilder(cache_size=1).build(request.domain)
    return assemble_digest(domain_separator, struct_hash)
