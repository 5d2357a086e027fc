"""
Type definitions for the EIP-712 forwarder.

Uses Pydantic for runtime validation of wire requests and for immutable
domain/type records.
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ForwarderError, MalformedInputError, RejectionReason
from .utils.validators import validate_address, validate_hex_bytes, validate_integer, validate_text


# Canonical EIP-712 domain fields, in the order they appear in the domain type
DOMAIN_FIELDS: tuple[tuple[str, str, str], ...] = (
    # (wire name, python attribute, solidity type)
    ("name", "name", "string"),
    ("version", "version", "string"),
    ("chainId", "chain_id", "uint256"),
    ("verifyingContract", "verifying_contract", "address"),
    ("salt", "salt", "bytes32"),
)

DOMAIN_TYPE_NAME = "EIP712Domain"


class ValidationState(str, Enum):
    """Request validation progress."""
    RECEIVED = "received"
    DOMAIN_RESOLVED = "domain_resolved"
    TYPE_RESOLVED = "type_resolved"
    DIGEST_COMPUTED = "digest_computed"
    SIGNATURE_VERIFIED = "signature_verified"
    NONCE_CHECKED = "nonce_checked"
    EXPIRY_CHECKED = "expiry_checked"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class NoncePolicy(str, Enum):
    """How the nonce store decides whether a nonce is usable."""
    UNORDERED = "unordered"    # Any unused value, tracked as a set
    SEQUENTIAL = "sequential"  # Must equal the signer's next counter value


class TypeProperty(BaseModel):
    """One field of a struct type."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., description="Field name")
    solidity_type: str = Field(..., alias="type", description="Declared Solidity type")

    def encode(self) -> str:
        """Field as it appears in a canonical type string."""
        return f"{self.solidity_type} {self.name}"


class DomainRecord(BaseModel):
    """
    EIP-712 signing domain.

    Every field is optional; the domain type used for hashing is exactly the
    subset of fields that are set.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    version: Optional[str] = None
    chain_id: Optional[int] = Field(None, alias="chainId", ge=0, lt=2**256)
    verifying_contract: Optional[str] = Field(None, alias="verifyingContract")
    salt: Optional[str] = None

    @field_validator("name", "version", mode="before")
    @classmethod
    def validate_text_field(cls, v: Any) -> Optional[str]:
        """Domain strings are hashed as UTF-8."""
        if v is None or not isinstance(v, str):
            return v
        try:
            validate_text(v)
        except ForwarderError as e:
            raise ValueError(e.message) from e
        return v

    @field_validator("chain_id", mode="before")
    @classmethod
    def validate_chain_id(cls, v: Any) -> Optional[int]:
        """Accept ints and decimal/hex strings."""
        if v is None:
            return None
        try:
            chain_id = validate_integer(v, "uint256")
        except ForwarderError as e:
            raise ValueError(e.message) from e
        if not 0 <= chain_id < 2**256:
            raise ValueError("chainId out of uint256 range")
        return chain_id

    @field_validator("verifying_contract", mode="before")
    @classmethod
    def validate_verifying_contract(cls, v: Any) -> Optional[str]:
        """Normalize to checksum address."""
        if v is None:
            return None
        try:
            return validate_address(v)
        except ForwarderError as e:
            raise ValueError(e.message) from e

    @field_validator("salt", mode="before")
    @classmethod
    def validate_salt(cls, v: Any) -> Optional[str]:
        """Salt must be exactly 32 bytes."""
        if v is None:
            return None
        try:
            raw = validate_hex_bytes(v, "bytes32")
        except ForwarderError as e:
            raise ValueError(e.message) from e
        if len(raw) != 32:
            raise ValueError(f"Domain salt must be 32 bytes, got {len(raw)}")
        return "0x" + raw.hex()

    @model_validator(mode="after")
    def check_not_empty(self) -> "DomainRecord":
        if all(getattr(self, attr) is None for _, attr, _ in DOMAIN_FIELDS):
            raise ValueError("Domain must set at least one field")
        return self

    def type_fields(self) -> tuple[TypeProperty, ...]:
        """Domain type fields for the subset of fields that are set."""
        return tuple(
            TypeProperty(name=wire_name, type=sol_type)
            for wire_name, attr, sol_type in DOMAIN_FIELDS
            if getattr(self, attr) is not None
        )

    def values(self) -> dict[str, Any]:
        """Set fields keyed by wire name."""
        return {
            wire_name: getattr(self, attr)
            for wire_name, attr, _ in DOMAIN_FIELDS
            if getattr(self, attr) is not None
        }


class StructuredRequest(BaseModel):
    """
    Typed-data request as received on the wire.

    message values may be raw JSON values or tagged values from
    typed_data.values; they are checked against the registered type when
    hashed, never here.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    domain: DomainRecord
    primary_type: str = Field(..., alias="primaryType", min_length=1)
    message: dict[str, Any]
    types: Optional[dict[str, list[TypeProperty]]] = None

    @classmethod
    def from_wire(cls, data: Any) -> "StructuredRequest":
        """
        Parse a wire request.

        Raises:
            MalformedInputError: If the request shape is invalid
        """
        if isinstance(data, cls):
            return data
        if not isinstance(data, dict):
            raise MalformedInputError(
                f"Request must be a mapping, got {type(data).__name__}"
            )
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise MalformedInputError(
                f"Invalid request: {e.error_count()} validation error(s)",
                {"errors": [err["msg"] for err in e.errors()]},
            ) from e
        except (ValueError, UnicodeError) as e:
            raise MalformedInputError(f"Invalid request: {type(e).__name__}") from e

    def to_wire(self) -> dict[str, Any]:
        """Wire form, including the EIP712Domain type entry."""
        types: dict[str, list[dict[str, str]]] = {
            DOMAIN_TYPE_NAME: [p.model_dump(by_alias=True) for p in self.domain.type_fields()],
        }
        for name, fields in (self.types or {}).items():
            if name == DOMAIN_TYPE_NAME:
                continue
            types[name] = [p.model_dump(by_alias=True) for p in fields]
        return {
            "domain": self.domain.values(),
            "types": types,
            "primaryType": self.primary_type,
            "message": dict(self.message),
        }


class ValidationResult(BaseModel):
    """Outcome of validating one request."""
    model_config = ConfigDict(frozen=True)

    accepted: bool
    state: ValidationState = Field(..., description="Last state reached")
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None
    signer: Optional[str] = None
    digest: Optional[str] = None
    nonce: Optional[int] = None
    correlation_id: Optional[str] = Field(None, description="Id carried by this validation's log lines")

    @property
    def rejected(self) -> bool:
        return not self.accepted
