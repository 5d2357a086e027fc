"""EIP-712 typed structured data: types, values, hashing."""

from .types import SolidityType, TypeCategory, parse_solidity_type
from .values import (
    AddressValue,
    ArrayValue,
    BoolValue,
    BytesValue,
    FixedBytesValue,
    IntValue,
    StringValue,
    StructValue,
    UintValue,
    Value,
    coerce_value,
)
from .registry import TypeDefinition, TypeRegistry
from .encoder import StructHasher, ValueEncoder
from .domain import DomainSeparatorBuilder, as_domain_record, domain_type_string
from .digest import EIP712_PREFIX, assemble_digest, hash_typed_data

__all__ = [
    "SolidityType",
    "TypeCategory",
    "parse_solidity_type",
    "AddressValue",
    "ArrayValue",
    "BoolValue",
    "BytesValue",
    "FixedBytesValue",
    "IntValue",
    "StringValue",
    "StructValue",
    "UintValue",
    "Value",
    "coerce_value",
    "TypeDefinition",
    "TypeRegistry",
    "StructHasher",
    "ValueEncoder",
    "DomainSeparatorBuilder",
    "as_domain_record",
    "domain_type_string",
    "EIP712_PREFIX",
    "assemble_digest",
    "hash_typed_data",
]
