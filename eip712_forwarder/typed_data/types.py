"""
Solidity type parsing for EIP-712 field declarations.

Turns a declared field type ("uint256", "bytes32", "Person[]", ...) into a
SolidityType describing how values of that type are encoded.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional

from ..exceptions import MalformedInputError


class TypeCategory(str, Enum):
    """Encoding category of a Solidity type."""
    ADDRESS = "address"
    BOOL = "bool"
    UINT = "uint"
    INT = "int"
    FIXED_BYTES = "fixed_bytes"
    BYTES = "bytes"
    STRING = "string"
    STRUCT = "struct"
    ARRAY = "array"


# Categories encoded in place as a single 32-byte word
STATIC_CATEGORIES = frozenset({
    TypeCategory.ADDRESS,
    TypeCategory.BOOL,
    TypeCategory.UINT,
    TypeCategory.INT,
    TypeCategory.FIXED_BYTES,
})

# Categories replaced by the hash of their content
DYNAMIC_CATEGORIES = frozenset({TypeCategory.BYTES, TypeCategory.STRING})

_ARRAY_RE = re.compile(r"(?P<base>.+)\[(?P<length>[0-9]*)\]")
_INTEGER_RE = re.compile(r"(?P<kind>u?int)(?P<bits>[0-9]*)")
_FIXED_BYTES_RE = re.compile(r"bytes(?P<size>[0-9]+)")
IDENTIFIER_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")

MAX_ARRAY_DIMENSIONS = 32
# Fixed array lengths beyond this many digits are not meaningful
MAX_LENGTH_DIGITS = 9


@dataclass(frozen=True)
class SolidityType:
    """
    Parsed Solidity type.

    Attributes:
        raw: Declared type string, exactly as registered
        category: Encoding category
        size: Bit width for (u)intN, byte width for bytesN
        element: Element type for arrays
        length: Fixed array length (None for dynamic arrays)
    """
    raw: str
    category: TypeCategory
    size: Optional[int] = None
    element: Optional["SolidityType"] = None
    length: Optional[int] = None

    @property
    def struct_name(self) -> Optional[str]:
        """Referenced struct name, looking through arrays."""
        if self.category == TypeCategory.STRUCT:
            return self.raw
        if self.element is not None:
            return self.element.struct_name
        return None

    @property
    def is_static(self) -> bool:
        return self.category in STATIC_CATEGORIES


@lru_cache(maxsize=1024)
def parse_solidity_type(type_str: str) -> SolidityType:
    """
    Parse a declared Solidity type.

    Args:
        type_str: Type as it appears in a type definition

    Returns:
        Parsed SolidityType

    Raises:
        MalformedInputError: If the type is not a valid EIP-712 type
    """
    if not isinstance(type_str, str) or not type_str:
        raise MalformedInputError(f"Type must be a non-empty string, got {type_str!r}")

    if type_str != type_str.strip() or " " in type_str:
        raise MalformedInputError(f"Type must not contain whitespace: {type_str!r}")

    if type_str.count("[") > MAX_ARRAY_DIMENSIONS:
        raise MalformedInputError(
            f"Type has more than {MAX_ARRAY_DIMENSIONS} array dimensions: {type_str[:80]!r}"
        )

    array_match = _ARRAY_RE.fullmatch(type_str)
    if array_match:
        element = parse_solidity_type(array_match.group("base"))
        length_str = array_match.group("length")
        length = None
        if length_str:
            if len(length_str) > MAX_LENGTH_DIGITS:
                raise MalformedInputError(f"Invalid fixed array length in {type_str[:80]!r}")
            length = int(length_str)
            if length < 1 or length_str != str(length):
                raise MalformedInputError(f"Invalid fixed array length in {type_str!r}")
        return SolidityType(type_str, TypeCategory.ARRAY, element=element, length=length)

    if type_str == "address":
        return SolidityType(type_str, TypeCategory.ADDRESS)
    if type_str == "bool":
        return SolidityType(type_str, TypeCategory.BOOL)
    if type_str == "string":
        return SolidityType(type_str, TypeCategory.STRING)
    if type_str == "bytes":
        return SolidityType(type_str, TypeCategory.BYTES)

    integer_match = _INTEGER_RE.fullmatch(type_str)
    if integer_match:
        bits_str = integer_match.group("bits")
        if not bits_str:
            # Canonical type strings need the explicit width
            raise MalformedInputError(
                f"Type {type_str!r} must declare its width, e.g. {type_str}256"
            )
        if len(bits_str) > 3:
            raise MalformedInputError(f"Invalid integer width in {type_str[:80]!r}")
        bits = int(bits_str)
        if bits < 8 or bits > 256 or bits % 8 != 0 or bits_str != str(bits):
            raise MalformedInputError(f"Invalid integer width in {type_str!r}")
        category = TypeCategory.UINT if integer_match.group("kind") == "uint" else TypeCategory.INT
        return SolidityType(type_str, category, size=bits)

    bytes_match = _FIXED_BYTES_RE.fullmatch(type_str)
    if bytes_match:
        size_str = bytes_match.group("size")
        if len(size_str) > 2:
            raise MalformedInputError(f"Invalid fixed bytes width in {type_str[:80]!r}")
        size = int(size_str)
        if size < 1 or size > 32 or size_str != str(size):
            raise MalformedInputError(f"Invalid fixed bytes width in {type_str!r}")
        return SolidityType(type_str, TypeCategory.FIXED_BYTES, size=size)

    if IDENTIFIER_RE.fullmatch(type_str):
        return SolidityType(type_str, TypeCategory.STRUCT)

    raise MalformedInputError(f"Unrecognized Solidity type: {type_str[:80]!r}")
