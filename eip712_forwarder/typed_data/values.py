"""
Tagged field values for typed structured data.

Callers may hand the encoder either explicit tagged values (AddressValue,
UintValue, ...) or raw wire values as they appear in a JSON request. Raw
values are coerced against the declared field type here, so the encoder only
ever sees tagged values whose category it can check.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Optional, Union

from eth_utils import to_checksum_address

from ..exceptions import TypeMismatchError
from ..utils.validators import address_to_bytes, validate_hex_bytes, validate_integer
from .types import SolidityType, TypeCategory, parse_solidity_type


class TypedValue:
    """Base class for tagged values."""
    category: ClassVar[TypeCategory]


@dataclass(frozen=True)
class AddressValue(TypedValue):
    """20-byte account address."""
    value: bytes
    category: ClassVar[TypeCategory] = TypeCategory.ADDRESS

    @classmethod
    def from_hex(cls, address: str) -> "AddressValue":
        return cls(address_to_bytes(address))

    @property
    def checksum(self) -> str:
        return to_checksum_address(self.value)


@dataclass(frozen=True)
class BoolValue(TypedValue):
    value: bool
    category: ClassVar[TypeCategory] = TypeCategory.BOOL


@dataclass(frozen=True)
class UintValue(TypedValue):
    value: int
    category: ClassVar[TypeCategory] = TypeCategory.UINT


@dataclass(frozen=True)
class IntValue(TypedValue):
    value: int
    category: ClassVar[TypeCategory] = TypeCategory.INT


@dataclass(frozen=True)
class FixedBytesValue(TypedValue):
    """bytesN value; length is checked against N at encode time."""
    value: bytes
    category: ClassVar[TypeCategory] = TypeCategory.FIXED_BYTES


@dataclass(frozen=True)
class BytesValue(TypedValue):
    value: bytes
    category: ClassVar[TypeCategory] = TypeCategory.BYTES


@dataclass(frozen=True)
class StringValue(TypedValue):
    value: str
    category: ClassVar[TypeCategory] = TypeCategory.STRING


@dataclass(frozen=True)
class StructValue(TypedValue):
    """
    Nested struct value.

    Field values may themselves be raw or tagged. type_name is optional; when
    set it must match the declared struct type.
    """
    fields: Mapping[str, Any] = field(default_factory=dict)
    type_name: Optional[str] = None
    category: ClassVar[TypeCategory] = TypeCategory.STRUCT


@dataclass(frozen=True)
class ArrayValue(TypedValue):
    items: tuple = ()
    category: ClassVar[TypeCategory] = TypeCategory.ARRAY


Value = Union[
    AddressValue,
    BoolValue,
    UintValue,
    IntValue,
    FixedBytesValue,
    BytesValue,
    StringValue,
    StructValue,
    ArrayValue,
]


def _mismatch(declared: SolidityType, raw: Any) -> TypeMismatchError:
    actual = type(raw).__name__
    return TypeMismatchError(
        f"Value of type {actual} does not match declared type {declared.raw}",
        declared=declared.raw,
        actual=actual,
    )


def coerce_value(declared: Union[str, SolidityType], raw: Any) -> Value:
    """
    Coerce a raw or tagged value to a tagged value of the declared type.

    Only the outer shape is coerced; struct fields and array items are
    coerced lazily by the encoder, which knows their declared types.

    Args:
        declared: Declared Solidity type (string or parsed)
        raw: Raw wire value or tagged value

    Returns:
        Tagged value

    Raises:
        TypeMismatchError: If the value's tag or shape does not fit the type
        MalformedInputError: If a string payload cannot be decoded
    """
    sol_type = parse_solidity_type(declared) if isinstance(declared, str) else declared
    category = sol_type.category

    if isinstance(raw, TypedValue):
        if raw.category != category:
            raise TypeMismatchError(
                f"{type(raw).__name__} supplied for declared type {sol_type.raw}",
                declared=sol_type.raw,
                actual=type(raw).__name__,
            )
        if (
            isinstance(raw, StructValue)
            and raw.type_name is not None
            and raw.type_name != sol_type.raw
        ):
            raise TypeMismatchError(
                f"Struct {raw.type_name} supplied for declared type {sol_type.raw}",
                declared=sol_type.raw,
                actual=raw.type_name,
            )
        return raw

    if category == TypeCategory.ADDRESS:
        return AddressValue(address_to_bytes(raw))

    if category == TypeCategory.BOOL:
        if not isinstance(raw, bool):
            raise _mismatch(sol_type, raw)
        return BoolValue(raw)

    if category == TypeCategory.UINT:
        return UintValue(validate_integer(raw, sol_type.raw))

    if category == TypeCategory.INT:
        return IntValue(validate_integer(raw, sol_type.raw))

    if category == TypeCategory.FIXED_BYTES:
        return FixedBytesValue(validate_hex_bytes(raw, sol_type.raw))

    if category == TypeCategory.BYTES:
        return BytesValue(validate_hex_bytes(raw, sol_type.raw))

    if category == TypeCategory.STRING:
        if not isinstance(raw, str):
            raise _mismatch(sol_type, raw)
        return StringValue(raw)

    if category == TypeCategory.STRUCT:
        if not isinstance(raw, Mapping):
            raise _mismatch(sol_type, raw)
        return StructValue(fields=dict(raw), type_name=sol_type.raw)

    # ARRAY
    if not isinstance(raw, (list, tuple)):
        raise _mismatch(sol_type, raw)
    return ArrayValue(tuple(raw))
