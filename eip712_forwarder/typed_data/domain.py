"""
EIP-712 domain separator construction.

The domain type is EIP712Domain restricted to exactly the fields the domain
record sets, in canonical order (name, version, chainId, verifyingContract,
salt). A deployment that only uses a subset must hash with that subset, or its
separators will not match the contract's.
"""

from typing import Any, Mapping, Union
import logging

from eth_utils import keccak
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import MalformedInputError, TypeConflictError
from ..models import DOMAIN_TYPE_NAME, DomainRecord, TypeProperty
from ..utils.cache import LRUCache
from .encoder import StructHasher
from .registry import TypeRegistry, normalize_fields

logger = logging.getLogger(__name__)

DomainLike = Union[DomainRecord, Mapping[str, Any]]


def as_domain_record(domain: DomainLike) -> DomainRecord:
    """
    Coerce a wire domain mapping to a DomainRecord.

    Raises:
        MalformedInputError: If the domain is invalid
    """
    if isinstance(domain, DomainRecord):
        return domain
    if not isinstance(domain, Mapping):
        raise MalformedInputError(f"Domain must be a mapping, got {type(domain).__name__}")
    try:
        return DomainRecord.model_validate(dict(domain))
    except PydanticValidationError as e:
        raise MalformedInputError(
            f"Invalid domain: {e.error_count()} validation error(s)",
            {"errors": [err["msg"] for err in e.errors()]},
        ) from e


def domain_type_fields(domain: DomainLike) -> tuple[TypeProperty, ...]:
    """EIP712Domain fields for the subset of fields the domain sets."""
    return as_domain_record(domain).type_fields()


def domain_type_string(domain: DomainLike) -> str:
    """
    Canonical EIP712Domain type string for this domain.

    Example:
        >>> domain_type_string({"name": "GasFreeERC20", "version": "1",
        ...                     "chainId": 31337,
        ...                     "verifyingContract": "0x5FbDB2315678afecb367f032d93F642f64180aa3"})
        'EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)'
    """
    fields = domain_type_fields(domain)
    return f"{DOMAIN_TYPE_NAME}({','.join(p.encode() for p in fields)})"


def check_domain_type(domain: DomainLike, declared: Any) -> None:
    """
    Check a supplied EIP712Domain type against the fields the domain sets.

    Signers hash the domain with the type they are given, so a declared type
    with another subset or order describes a different separator.

    Raises:
        TypeConflictError: If the declared fields differ from the domain's
    """
    expected = domain_type_fields(domain)
    try:
        supplied = normalize_fields(declared)
    except MalformedInputError as e:
        raise TypeConflictError(
            f"Declared {DOMAIN_TYPE_NAME} type is malformed", type_name=DOMAIN_TYPE_NAME
        ) from e
    if supplied != expected:
        raise TypeConflictError(
            f"Declared {DOMAIN_TYPE_NAME}({','.join(p.encode() for p in supplied)}) "
            f"does not match domain fields {domain_type_string(domain)}",
            type_name=DOMAIN_TYPE_NAME,
        )


class DomainSeparatorBuilder:
    """
    Builds domain separators, caching them per distinct DomainRecord.

    Thread-safe: computation is pure and the cache is locked.
    """

    def __init__(self, cache_size: int = 256):
        """
        Initialize builder.

        Args:
            cache_size: Maximum cached separators
        """
        # Domain fields are all atomic types, so an empty registry suffices
        self._hasher = StructHasher(TypeRegistry())
        self._cache = LRUCache(max_size=cache_size)

    def build(self, domain: DomainLike) -> bytes:
        """
        Compute the 32-byte domain separator.

        Raises:
            MalformedInputError: If the domain is invalid
        """
        record = as_domain_record(domain)
        return self._cache.get_or_compute(record, lambda: self._compute(record))

    def _compute(self, record: DomainRecord) -> bytes:
        type_hash = keccak(text=domain_type_string(record))
        separator = self._hasher.hash_fields(
            type_hash, record.type_fields(), record.values(), DOMAIN_TYPE_NAME
        )
        logger.debug(f"Computed domain separator 0x{separator.hex()} for {record!r}")
        return separator

    def cache_stats(self) -> dict[str, int]:
        return self._cache.stats()
