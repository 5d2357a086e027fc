"""
Struct type registry.

Stores immutable struct type definitions and produces their canonical EIP-712
type strings and type hashes.

Thread safety: registration is serialized behind a lock and publishes a new
copy-on-write snapshot of the definitions, so readers never lock.
"""

import threading
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Union
import logging

from eth_utils import keccak

from ..exceptions import (
    MalformedInputError,
    RegistryCorruptionError,
    TypeConflictError,
    UnknownTypeError,
)
from ..models import DOMAIN_TYPE_NAME, TypeProperty
from .types import IDENTIFIER_RE, SolidityType, TypeCategory, parse_solidity_type

logger = logging.getLogger(__name__)

FieldSpec = Union[TypeProperty, Mapping[str, str], tuple[str, str]]


@dataclass(frozen=True)
class TypeDefinition:
    """Named, ordered list of struct fields."""
    name: str
    fields: tuple[TypeProperty, ...]

    def encode(self) -> str:
        """Encoding of this type alone: Name(type1 field1,type2 field2)."""
        return f"{self.name}({','.join(p.encode() for p in self.fields)})"

    def parsed_fields(self) -> list[tuple[TypeProperty, SolidityType]]:
        return [(p, parse_solidity_type(p.solidity_type)) for p in self.fields]

    def referenced_structs(self) -> set[str]:
        """Struct names referenced directly by this type's fields."""
        refs = set()
        for _, sol_type in self.parsed_fields():
            struct_name = sol_type.struct_name
            if struct_name is not None:
                refs.add(struct_name)
        return refs


def normalize_fields(fields: Iterable[FieldSpec]) -> tuple[TypeProperty, ...]:
    """
    Normalize field specs to TypeProperty tuples.

    Accepts TypeProperty instances, {"name": ..., "type": ...} mappings and
    (name, type) pairs.

    Raises:
        MalformedInputError: If a field spec is invalid
    """
    if isinstance(fields, (str, bytes)) or isinstance(fields, Mapping):
        raise MalformedInputError("Fields must be a sequence of field specs")

    normalized = []
    for spec in fields:
        if isinstance(spec, TypeProperty):
            prop = spec
        elif isinstance(spec, Mapping):
            name, sol_type = spec.get("name"), spec.get("type")
            if not isinstance(name, str) or not isinstance(sol_type, str):
                raise MalformedInputError(f"Invalid field spec: {spec!r}")
            prop = TypeProperty(name=name, type=sol_type)
        elif isinstance(spec, tuple) and len(spec) == 2:
            name, sol_type = spec
            if not isinstance(name, str) or not isinstance(sol_type, str):
                raise MalformedInputError(f"Invalid field spec: {spec!r}")
            prop = TypeProperty(name=name, type=sol_type)
        else:
            raise MalformedInputError(f"Invalid field spec: {spec!r}")
        normalized.append(prop)
    return tuple(normalized)


class TypeRegistry:
    """
    Registry of struct type definitions.

    Canonical type strings and type hashes are pure functions of the
    registered definitions and are memoized per type name.
    """

    def __init__(self):
        self._definitions: dict[str, TypeDefinition] = {}
        self._type_strings: dict[str, str] = {}
        self._type_hashes: dict[str, bytes] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_types(cls, types: Mapping[str, Any]) -> "TypeRegistry":
        """
        Build a registry from a wire "types" object.

        The EIP712Domain entry is skipped; the domain type is derived from
        the domain record itself.
        """
        if not isinstance(types, Mapping):
            raise MalformedInputError("types must be a mapping of type name to fields")
        registry = cls()
        for name, fields in types.items():
            if name == DOMAIN_TYPE_NAME:
                continue
            registry.register(name, fields)
        return registry

    def register(self, name: str, fields: Iterable[FieldSpec]) -> TypeDefinition:
        """
        Register a struct type.

        Nested struct types may be registered before or after the types that
        reference them.

        Args:
            name: Struct type name
            fields: Ordered field specs

        Returns:
            The registered (or already identical) definition

        Raises:
            MalformedInputError: If the name or fields are invalid
            TypeConflictError: If name is registered with different fields
        """
        definition = self._build_definition(name, fields)

        with self._lock:
            existing = self._definitions.get(name)
            if existing is not None:
                if existing == definition:
                    logger.debug(f"Type {name} already registered (identical)")
                    return existing
                raise TypeConflictError(
                    f"Type {name} already registered with a different definition: "
                    f"{existing.encode()} != {definition.encode()}",
                    type_name=name,
                )

            snapshot = dict(self._definitions)
            snapshot[name] = definition
            self._definitions = snapshot

        logger.info(f"Registered type {definition.encode()}")
        return definition

    def _build_definition(self, name: str, fields: Iterable[FieldSpec]) -> TypeDefinition:
        if not isinstance(name, str) or not IDENTIFIER_RE.fullmatch(name):
            raise MalformedInputError(f"Invalid type name: {name!r}")
        if name == DOMAIN_TYPE_NAME:
            raise MalformedInputError(f"Type name {name!r} is reserved")
        if parse_solidity_type(name).category != TypeCategory.STRUCT:
            raise MalformedInputError(f"Type name {name!r} collides with a built-in type")

        props = normalize_fields(fields)
        seen = set()
        for prop in props:
            if not IDENTIFIER_RE.fullmatch(prop.name):
                raise MalformedInputError(f"Invalid field name {prop.name!r} in type {name}")
            if prop.name in seen:
                raise MalformedInputError(f"Duplicate field {prop.name!r} in type {name}")
            seen.add(prop.name)
            # Raises MalformedInputError for unparseable types
            parse_solidity_type(prop.solidity_type)

        return TypeDefinition(name=name, fields=props)

    def get(self, name: str) -> TypeDefinition:
        """
        Get a registered definition.

        Raises:
            UnknownTypeError: If name is not registered
        """
        definition = self._definitions.get(name)
        if definition is None:
            raise UnknownTypeError(f"Type {name} is not registered", type_name=name)
        return definition

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def names(self) -> list[str]:
        return sorted(self._definitions)

    def dependencies(self, name: str) -> list[str]:
        """
        Struct types transitively referenced by name, sorted, excluding name.

        Raises:
            UnknownTypeError: If name or any referenced type is unregistered
        """
        definitions = self._definitions
        if name not in definitions:
            raise UnknownTypeError(f"Type {name} is not registered", type_name=name)

        found: set[str] = set()
        pending = [name]
        while pending:
            current = pending.pop()
            definition = definitions.get(current)
            if definition is None:
                raise UnknownTypeError(
                    f"Type {current} referenced by {name} is not registered",
                    type_name=current,
                )
            for ref in definition.referenced_structs():
                if ref != name and ref not in found:
                    found.add(ref)
                    pending.append(ref)

        return sorted(found)

    def canonical_type_string(self, name: str) -> str:
        """
        Canonical EIP-712 encodeType string for name.

        The primary type comes first, followed by every referenced struct
        type sorted by name.

        Raises:
            UnknownTypeError: If name or any referenced type is unregistered
        """
        cached = self._type_strings.get(name)
        if cached is not None:
            return cached

        encoded = self._encode_type(name)
        self._type_strings[name] = encoded
        return encoded

    def _encode_type(self, name: str) -> str:
        definitions = self._definitions
        deps = self.dependencies(name)
        return definitions[name].encode() + "".join(definitions[dep].encode() for dep in deps)

    def type_hash(self, name: str) -> bytes:
        """
        keccak256 of the canonical type string.

        Raises:
            UnknownTypeError: If name or any referenced type is unregistered
        """
        cached = self._type_hashes.get(name)
        if cached is not None:
            return cached

        type_hash = keccak(text=self.canonical_type_string(name))
        self._type_hashes[name] = type_hash
        return type_hash

    def verify_integrity(self) -> None:
        """
        Recompute every cached type string and hash.

        Raises:
            RegistryCorruptionError: If any cached value disagrees with its definition
        """
        for name, cached in list(self._type_strings.items()):
            if name not in self._definitions:
                raise RegistryCorruptionError(
                    f"Cached type string for unregistered type {name}", {"type_name": name}
                )
            expected = self._encode_type(name)
            if cached != expected:
                raise RegistryCorruptionError(
                    f"Cached type string for {name} is inconsistent with its definition",
                    {"type_name": name, "cached": cached, "expected": expected},
                )

        for name, cached_hash in list(self._type_hashes.items()):
            expected_hash = keccak(text=self._encode_type(name))
            if cached_hash != expected_hash:
                raise RegistryCorruptionError(
                    f"Cached type hash for {name} is inconsistent with its definition",
                    {"type_name": name},
                )

        logger.debug(f"Registry integrity verified ({len(self._definitions)} types)")
