"""
EIP-712 value encoding and struct hashing.

ValueEncoder turns one field value into its 32-byte encodeData word;
StructHasher combines a type hash with the encoded fields of a struct, in
registered field order, and hashes the result.
"""

from typing import Any, Iterable, Mapping, Union

from eth_utils import keccak

from ..exceptions import MalformedInputError, MissingFieldError, TypeMismatchError
from ..models import TypeProperty
from .registry import TypeRegistry
from .types import SolidityType, TypeCategory, parse_solidity_type
from ..utils.validators import validate_text
from .values import StructValue, coerce_value

WORD_SIZE = 32
DEFAULT_MAX_VALUE_DEPTH = 32


def _require_int(value: Any, sol_type: SolidityType) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedInputError(f"{sol_type.raw} value must be int, got {type(value).__name__}")
    return value


def _require_bytes(value: Any, sol_type: SolidityType) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise MalformedInputError(f"{sol_type.raw} value must be bytes, got {type(value).__name__}")
    return bytes(value)


def _describe(number: int) -> str:
    # str() of very large ints is refused by the interpreter
    if number.bit_length() > 512:
        return f"of {number.bit_length()} bits"
    return str(number)


class ValueEncoder:
    """
    Encodes single field values into 32-byte words.

    Static types are packed into a word, dynamic types are replaced by the
    keccak256 of their content, structs by their struct hash and arrays by the
    hash of their concatenated element encodings.
    """

    def __init__(self, hasher: "StructHasher"):
        self.hasher = hasher

    def encode(self, solidity_type: Union[str, SolidityType], value: Any, depth: int = 0) -> bytes:
        """
        Encode one value.

        Args:
            solidity_type: Declared type
            value: Raw or tagged value
            depth: Current nesting depth

        Returns:
            32-byte word

        Raises:
            TypeMismatchError: If the value does not fit the declared category
            MalformedInputError: If the value has a bad length or range
        """
        if depth > self.hasher.max_depth:
            raise MalformedInputError(
                f"Value nesting exceeds maximum depth {self.hasher.max_depth}"
            )

        sol_type = (
            parse_solidity_type(solidity_type) if isinstance(solidity_type, str) else solidity_type
        )
        tagged = coerce_value(sol_type, value)
        category = sol_type.category

        if category == TypeCategory.ADDRESS:
            raw = _require_bytes(tagged.value, sol_type)
            if len(raw) != 20:
                raise MalformedInputError(f"Address must be 20 bytes, got {len(raw)}")
            return raw.rjust(WORD_SIZE, b"\x00")

        if category == TypeCategory.BOOL:
            if not isinstance(tagged.value, bool):
                raise MalformedInputError(f"bool value must be bool, got {type(tagged.value).__name__}")
            return int(tagged.value).to_bytes(WORD_SIZE, "big")

        if category == TypeCategory.UINT:
            number = _require_int(tagged.value, sol_type)
            if number < 0 or number >= 1 << sol_type.size:
                raise MalformedInputError(
                    f"Value {_describe(number)} out of range for {sol_type.raw}",
                    {"declared": sol_type.raw},
                )
            return number.to_bytes(WORD_SIZE, "big")

        if category == TypeCategory.INT:
            number = _require_int(tagged.value, sol_type)
            bound = 1 << (sol_type.size - 1)
            if number < -bound or number >= bound:
                raise MalformedInputError(
                    f"Value {_describe(number)} out of range for {sol_type.raw}",
                    {"declared": sol_type.raw},
                )
            # Two's complement, sign-extended to 256 bits
            return (number % (1 << 256)).to_bytes(WORD_SIZE, "big")

        if category == TypeCategory.FIXED_BYTES:
            raw = _require_bytes(tagged.value, sol_type)
            if len(raw) != sol_type.size:
                raise MalformedInputError(
                    f"{sol_type.raw} value must be {sol_type.size} bytes, got {len(raw)}",
                    {"declared": sol_type.raw, "length": len(raw)},
                )
            return raw.ljust(WORD_SIZE, b"\x00")

        if category == TypeCategory.BYTES:
            return keccak(_require_bytes(tagged.value, sol_type))

        if category == TypeCategory.STRING:
            if not isinstance(tagged.value, str):
                raise MalformedInputError(f"string value must be str, got {type(tagged.value).__name__}")
            return keccak(validate_text(tagged.value, sol_type.raw))

        if category == TypeCategory.STRUCT:
            return self.hasher.struct_hash(sol_type.raw, tagged.fields, depth=depth + 1)

        # ARRAY
        items = tagged.items
        if sol_type.length is not None and len(items) != sol_type.length:
            raise MalformedInputError(
                f"{sol_type.raw} expects {sol_type.length} items, got {len(items)}",
                {"declared": sol_type.raw, "length": len(items)},
            )
        return keccak(b"".join(self.encode(sol_type.element, item, depth + 1) for item in items))


class StructHasher:
    """
    Computes EIP-712 struct hashes against a type registry.

    The registry is authoritative: exactly the registered fields are hashed,
    in registered order. Extra keys in the supplied values are ignored.
    """

    def __init__(self, registry: TypeRegistry, max_depth: int = DEFAULT_MAX_VALUE_DEPTH):
        """
        Initialize struct hasher.

        Args:
            registry: Type registry used to resolve struct types
            max_depth: Maximum nesting depth of struct/array values
        """
        self.registry = registry
        self.max_depth = max_depth
        self.encoder = ValueEncoder(self)

    def struct_hash(self, type_name: str, values: Union[Mapping[str, Any], StructValue],
                    depth: int = 0) -> bytes:
        """
        hashStruct(value) = keccak256(typeHash ‖ encodeData(value)).

        Raises:
            UnknownTypeError: If the type (or a nested type) is not registered
            MissingFieldError: If a registered field has no value
            TypeMismatchError: If a value does not fit its declared type
            MalformedInputError: If a value has a bad length or range
        """
        return keccak(self.encode_data(type_name, values, depth))

    def encode_data(self, type_name: str, values: Union[Mapping[str, Any], StructValue],
                    depth: int = 0) -> bytes:
        """typeHash followed by every encoded field, before hashing."""
        definition = self.registry.get(type_name)
        type_hash = self.registry.type_hash(type_name)
        return self._encode_fields(type_hash, definition.fields, values, type_name, depth)

    def hash_fields(self, type_hash: bytes, fields: Iterable[TypeProperty],
                    values: Union[Mapping[str, Any], StructValue], type_name: str = "") -> bytes:
        """
        Struct hash for an explicit field list and type hash.

        Used for types that live outside the registry, like the domain type.
        """
        return keccak(self._encode_fields(type_hash, fields, values, type_name, 0))

    def _encode_fields(self, type_hash: bytes, fields: Iterable[TypeProperty],
                       values: Union[Mapping[str, Any], StructValue], type_name: str,
                       depth: int) -> bytes:
        if isinstance(values, StructValue):
            values = values.fields
        if not isinstance(values, Mapping):
            raise TypeMismatchError(
                f"Struct {type_name} value must be a mapping, got {type(values).__name__}",
                declared=type_name,
                actual=type(values).__name__,
            )

        encoded = [type_hash]
        for prop in fields:
            if prop.name not in values:
                raise MissingFieldError(
                    f"Missing field {prop.name!r} for type {type_name}",
                    type_name=type_name,
                    field_name=prop.name,
                )
            encoded.append(self.encoder.encode(prop.solidity_type, values[prop.name], depth))
        return b"".join(encoded)
