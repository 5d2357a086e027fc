"""
Custom exceptions for the EIP-712 forwarder.

Every failure the validator can hit on untrusted input has a typed exception
here. Each exception carries the RejectionReason it maps to, so the request
validator can turn it into a rejection without a lookup table.
"""

from enum import Enum
from typing import Optional, Any


class RejectionReason(str, Enum):
    """Reason attached to a rejected validation."""
    MALFORMED_INPUT = "malformed_input"
    MISSING_FIELD = "missing_field"
    TYPE_CONFLICT = "type_conflict"
    UNKNOWN_TYPE = "unknown_type"
    DOMAIN_CONFLICT = "domain_conflict"
    UNKNOWN_DOMAIN = "unknown_domain"
    TYPE_MISMATCH = "type_mismatch"
    INVALID_SIGNATURE_LENGTH = "invalid_signature_length"
    INVALID_RECOVERY_ID = "invalid_recovery_id"
    RECOVERY_FAILED = "recovery_failed"
    MALLEABLE_SIGNATURE = "malleable_signature"
    SIGNATURE_MISMATCH = "signature_mismatch"
    REPLAY = "replay"
    NONCE_OUT_OF_ORDER = "nonce_out_of_order"
    EXPIRED = "expired"
    REGISTRY_CORRUPTED = "registry_corrupted"


class ForwarderError(Exception):
    """Base exception for all forwarder errors."""

    reason: RejectionReason = RejectionReason.MALFORMED_INPUT
    fatal: bool = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Input shape errors
class MalformedInputError(ForwarderError):
    """Input has a bad length, range or shape."""
    reason = RejectionReason.MALFORMED_INPUT


class MissingFieldError(MalformedInputError):
    """A registered struct field has no value."""
    reason = RejectionReason.MISSING_FIELD

    def __init__(self, message: str, type_name: Optional[str] = None,
                 field_name: Optional[str] = None):
        super().__init__(message, {"type_name": type_name, "field_name": field_name})
        self.type_name = type_name
        self.field_name = field_name


class TypeMismatchError(ForwarderError):
    """Runtime value does not match the declared Solidity type category."""
    reason = RejectionReason.TYPE_MISMATCH

    def __init__(self, message: str, declared: Optional[str] = None,
                 actual: Optional[str] = None):
        super().__init__(message, {"declared": declared, "actual": actual})
        self.declared = declared
        self.actual = actual


# Registry errors
class TypeConflictError(ForwarderError):
    """Type name already registered with a different definition."""
    reason = RejectionReason.TYPE_CONFLICT

    def __init__(self, message: str, type_name: Optional[str] = None):
        super().__init__(message, {"type_name": type_name})
        self.type_name = type_name


class UnknownTypeError(ForwarderError):
    """Type name (or a type it references) is not registered."""
    reason = RejectionReason.UNKNOWN_TYPE

    def __init__(self, message: str, type_name: Optional[str] = None):
        super().__init__(message, {"type_name": type_name})
        self.type_name = type_name


class DomainConflictError(ForwarderError):
    """Domain id already bound to a different domain (or vice versa)."""
    reason = RejectionReason.DOMAIN_CONFLICT

    def __init__(self, message: str, domain_id: Optional[str] = None):
        super().__init__(message, {"domain_id": domain_id})
        self.domain_id = domain_id


class UnknownDomainError(ForwarderError):
    """Request domain separator is not registered."""
    reason = RejectionReason.UNKNOWN_DOMAIN

    def __init__(self, message: str, domain_separator: Optional[str] = None):
        super().__init__(message, {"domain_separator": domain_separator})
        self.domain_separator = domain_separator


class RegistryCorruptionError(ForwarderError):
    """
    Cached registry state is inconsistent with its definitions.

    Fatal: the validator re-raises it instead of producing a rejection.
    """
    reason = RejectionReason.REGISTRY_CORRUPTED
    fatal = True


# Signature errors
class SignatureError(ForwarderError):
    """Base exception for signature parsing and recovery."""
    reason = RejectionReason.RECOVERY_FAILED


class InvalidSignatureLengthError(SignatureError):
    """Signature is not exactly 65 bytes."""
    reason = RejectionReason.INVALID_SIGNATURE_LENGTH

    def __init__(self, message: str, length: Optional[int] = None):
        super().__init__(message, {"length": length})
        self.length = length


class InvalidRecoveryIdError(SignatureError):
    """Signature v byte is not one of the accepted values."""
    reason = RejectionReason.INVALID_RECOVERY_ID

    def __init__(self, message: str, v: Optional[int] = None):
        super().__init__(message, {"v": v})
        self.v = v


class RecoveryFailedError(SignatureError):
    """Public key could not be recovered from the signature."""
    reason = RejectionReason.RECOVERY_FAILED


class MalleableSignatureError(SignatureError):
    """Signature s value is in the upper half of the curve order."""
    reason = RejectionReason.MALLEABLE_SIGNATURE


class SignatureMismatchError(ForwarderError):
    """Recovered signer differs from the claimed sender."""
    reason = RejectionReason.SIGNATURE_MISMATCH

    def __init__(self, message: str, expected: Optional[str] = None,
                 recovered: Optional[str] = None):
        super().__init__(message, {"expected": expected, "recovered": recovered})
        self.expected = expected
        self.recovered = recovered


# Replay and expiry
class ReplayError(ForwarderError):
    """Nonce already consumed for this signer."""
    reason = RejectionReason.REPLAY

    def __init__(self, message: str, signer: Optional[str] = None,
                 nonce: Optional[int] = None):
        super().__init__(message, {"signer": signer, "nonce": nonce})
        self.signer = signer
        self.nonce = nonce


class NonceOutOfOrderError(ForwarderError):
    """Sequential nonce policy received a nonce ahead of the expected one."""
    reason = RejectionReason.NONCE_OUT_OF_ORDER

    def __init__(self, message: str, signer: Optional[str] = None,
                 nonce: Optional[int] = None, expected: Optional[int] = None):
        super().__init__(message, {"signer": signer, "nonce": nonce, "expected": expected})
        self.signer = signer
        self.nonce = nonce
        self.expected = expected


class ExpiryError(ForwarderError):
    """Request validity window has passed."""
    reason = RejectionReason.EXPIRED

    def __init__(self, message: str, valid_until: Optional[int] = None,
                 current_time: Optional[int] = None):
        super().__init__(message, {"valid_until": valid_until, "current_time": current_time})
        self.valid_until = valid_until
        self.current_time = current_time
