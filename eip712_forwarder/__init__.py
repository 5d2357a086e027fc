"""
EIP-712 Forwarder

Builds and verifies EIP-712 typed structured data signatures for
meta-transaction relaying: canonical type encoding, struct hashing, domain
separators, signer recovery, and a thread-safe request validator with replay
and expiry protection.
"""

from .config import ForwarderSettings, get_settings
from .models import (
    DomainRecord,
    NoncePolicy,
    StructuredRequest,
    TypeProperty,
    ValidationResult,
    ValidationState,
)
from .exceptions import (
    ForwarderError,
    RejectionReason,
    MalformedInputError,
    MissingFieldError,
    TypeMismatchError,
    TypeConflictError,
    UnknownTypeError,
    DomainConflictError,
    UnknownDomainError,
    RegistryCorruptionError,
    SignatureError,
    InvalidSignatureLengthError,
    InvalidRecoveryIdError,
    RecoveryFailedError,
    MalleableSignatureError,
    SignatureMismatchError,
    ReplayError,
    NonceOutOfOrderError,
    ExpiryError,
)
from .typed_data import (
    TypeRegistry,
    StructHasher,
    ValueEncoder,
    DomainSeparatorBuilder,
    assemble_digest,
    hash_typed_data,
)
from .auth import NonceStore, ParsedSignature, SignatureVerifier
from .relay import FORWARD_REQUEST_FIELDS, RequestBuilder, RequestValidator
from .metrics import Metrics
from .logging_config import get_logger, setup_logging, setup_logging_from_settings

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "RequestValidator",
    "RequestBuilder",
    "FORWARD_REQUEST_FIELDS",

    # Configuration
    "ForwarderSettings",
    "get_settings",

    # Observability
    "Metrics",
    "get_logger",
    "setup_logging",
    "setup_logging_from_settings",

    # Types
    "DomainRecord",
    "NoncePolicy",
    "StructuredRequest",
    "TypeProperty",
    "ValidationResult",
    "ValidationState",

    # Hashing
    "TypeRegistry",
    "StructHasher",
    "ValueEncoder",
    "DomainSeparatorBuilder",
    "assemble_digest",
    "hash_typed_data",

    # Signatures and nonces
    "NonceStore",
    "ParsedSignature",
    "SignatureVerifier",

    # Exceptions
    "ForwarderError",
    "RejectionReason",
    "MalformedInputError",
    "MissingFieldError",
    "TypeMismatchError",
    "TypeConflictError",
    "UnknownTypeError",
    "DomainConflictError",
    "UnknownDomainError",
    "RegistryCorruptionError",
    "SignatureError",
    "InvalidSignatureLengthError",
    "InvalidRecoveryIdError",
    "RecoveryFailedError",
    "MalleableSignatureError",
    "SignatureMismatchError",
    "ReplayError",
    "NonceOutOfOrderError",
    "ExpiryError",
]
