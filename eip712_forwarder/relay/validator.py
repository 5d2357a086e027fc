"""
Request validation state machine.

RequestValidator owns the registered request types, the registered domains
and the nonce store of one forwarder. validate() walks a request through

    RECEIVED -> DOMAIN_RESOLVED -> TYPE_RESOLVED -> DIGEST_COMPUTED
    -> SIGNATURE_VERIFIED -> NONCE_CHECKED -> EXPIRY_CHECKED -> ACCEPTED

and stops at REJECTED with a reason as soon as a step fails. Untrusted input
never raises out of validate(); only registry corruption does.
"""

import threading
import time
from typing import Any, Iterable, Mapping, Optional, Union

from ..auth.nonces import NonceStore
from ..auth.signature import SignatureVerifier
from ..config import ForwarderSettings, get_settings
from ..exceptions import (
    DomainConflictError,
    ExpiryError,
    ForwarderError,
    MalformedInputError,
    RegistryCorruptionError,
    SignatureMismatchError,
    TypeConflictError,
    UnknownDomainError,
    UnknownTypeError,
)
from ..metrics import Metrics
from ..models import (
    DOMAIN_TYPE_NAME,
    DomainRecord,
    StructuredRequest,
    ValidationResult,
    ValidationState,
)
from ..typed_data.digest import assemble_digest
from ..typed_data.domain import (
    DomainLike,
    DomainSeparatorBuilder,
    as_domain_record,
    check_domain_type,
)
from ..typed_data.encoder import StructHasher
from ..typed_data.registry import FieldSpec, TypeDefinition, TypeRegistry, normalize_fields
from ..typed_data.types import TypeCategory, parse_solidity_type
from ..typed_data.values import coerce_value
from ..utils.structured_logging import (
    StructuredLogger,
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from ..utils.validators import validate_address

# Fields every request type must declare
FROM_FIELD = "from"
NONCE_FIELD = "nonce"
VALID_UNTIL_FIELD = "validUntil"

REQUIRED_FIELD_CATEGORIES = {
    FROM_FIELD: TypeCategory.ADDRESS,
    NONCE_FIELD: TypeCategory.UINT,
    VALID_UNTIL_FIELD: TypeCategory.UINT,
}


class RequestValidator:
    """
    Verifies signed typed-data requests for a forwarder.

    Thread-safe: registrations are serialized and publish copy-on-write
    snapshots; validations only lock the nonce of the signer being checked.
    """

    def __init__(
        self,
        settings: Optional[ForwarderSettings] = None,
        registry: Optional[TypeRegistry] = None,
        nonce_store: Optional[NonceStore] = None,
        metrics: Optional[Metrics] = None,
        verifier: Optional[SignatureVerifier] = None
    ):
        """
        Initialize validator.

        Args:
            settings: Forwarder settings (loaded from env if None)
            registry: Type registry (a fresh one if None)
            nonce_store: Nonce store (policy from settings if None)
            metrics: Metrics collector (enabled per settings if None)
            verifier: Signature verifier (policy from settings if None)
        """
        self.settings = settings or get_settings()
        self.registry = registry or TypeRegistry()
        self.nonces = nonce_store or NonceStore(self.settings.nonce_policy)
        self.metrics = metrics or Metrics(enabled=self.settings.enable_metrics)
        self.verifier = verifier or SignatureVerifier(
            enforce_low_s=self.settings.enforce_low_s,
            allow_zero_one_v=self.settings.allow_zero_one_v,
        )

        self._hasher = StructHasher(self.registry, max_depth=self.settings.max_value_depth)
        self._domain_builder = DomainSeparatorBuilder(cache_size=self.settings.domain_cache_size)

        self._lock = threading.RLock()
        self._request_types: frozenset[str] = frozenset()
        self._domains: dict[str, DomainRecord] = {}
        self._separators: dict[bytes, str] = {}

        self._log = StructuredLogger(__name__)

    # ========== Administration ==========

    def register_request_type(self, name: str, fields: Iterable[FieldSpec]) -> TypeDefinition:
        """
        Register a primary request type.

        The type must declare from: address, nonce: uintN and
        validUntil: uintN. Nested struct types it references are registered
        with register_struct_type().

        Raises:
            MalformedInputError: If the definition is invalid or lacks a generic field
            TypeConflictError: If name is registered with different fields
        """
        props = normalize_fields(fields)
        declared = {p.name: p.solidity_type for p in props}
        for field_name, category in REQUIRED_FIELD_CATEGORIES.items():
            if field_name not in declared:
                raise MalformedInputError(
                    f"Request type {name} must declare field {field_name!r}",
                    {"type_name": name, "field_name": field_name},
                )
            if parse_solidity_type(declared[field_name]).category != category:
                raise MalformedInputError(
                    f"Field {field_name!r} of {name} must be {category.value}, "
                    f"got {declared[field_name]}",
                    {"type_name": name, "field_name": field_name},
                )

        definition = self.registry.register(name, props)
        with self._lock:
            self._request_types = self._request_types | {name}

        self.metrics.track_registration("request_type")
        self._log.info("request_type_registered", type_name=name, encoded=definition.encode())
        return definition

    def register_struct_type(self, name: str, fields: Iterable[FieldSpec]) -> TypeDefinition:
        """
        Register a nested struct type used by request types.

        Raises:
            MalformedInputError: If the definition is invalid
            TypeConflictError: If name is registered with different fields
        """
        definition = self.registry.register(name, fields)
        self.metrics.track_registration("struct_type")
        self._log.debug("struct_type_registered", type_name=name, encoded=definition.encode())
        return definition

    def register_domain_separator(self, domain_id: str, domain: DomainLike) -> bytes:
        """
        Register a signing domain under an id.

        Re-registering the same domain under the same id is a no-op.

        Returns:
            32-byte domain separator

        Raises:
            MalformedInputError: If the id or domain is invalid
            DomainConflictError: If the id is bound to another domain, or the
                domain to another id
        """
        if not isinstance(domain_id, str) or not domain_id:
            raise MalformedInputError("Domain id must be a non-empty string")

        record = as_domain_record(domain)
        separator = self._domain_builder.build(record)

        with self._lock:
            existing = self._domains.get(domain_id)
            if existing is not None:
                if existing == record:
                    return separator
                raise DomainConflictError(
                    f"Domain id {domain_id} already bound to a different domain",
                    domain_id=domain_id,
                )
            bound_id = self._separators.get(separator)
            if bound_id is not None:
                raise DomainConflictError(
                    f"Domain already registered as {bound_id}",
                    domain_id=domain_id,
                )

            domains = dict(self._domains)
            domains[domain_id] = record
            separators = dict(self._separators)
            separators[separator] = domain_id
            self._domains, self._separators = domains, separators

        self.metrics.track_registration("domain")
        self._log.info(
            "domain_registered",
            domain_id=domain_id,
            domain_separator="0x" + separator.hex(),
        )
        return separator

    def get_domain(self, domain_id: str) -> DomainRecord:
        """
        Registered domain for an id.

        Raises:
            UnknownDomainError: If the id is not registered
        """
        record = self._domains.get(domain_id)
        if record is None:
            raise UnknownDomainError(f"Domain {domain_id} is not registered")
        return record

    def request_types(self) -> list[str]:
        return sorted(self._request_types)

    # ========== Validation ==========

    def validate(
        self,
        request: Union[StructuredRequest, Mapping[str, Any]],
        signature: Union[bytes, str],
        current_time: Optional[int] = None
    ) -> ValidationResult:
        """
        Validate a signed request and consume its nonce on success.

        Args:
            request: Wire request or StructuredRequest
            signature: 65-byte signature (bytes or 0x-hex)
            current_time: Unix time for the expiry check (now if None)

        Returns:
            ValidationResult, accepted or rejected with a reason

        Raises:
            RegistryCorruptionError: If cached registry state is inconsistent
        """
        # Every log line of one validation carries the same correlation id
        correlation_id = get_correlation_id()
        owns_correlation_id = correlation_id is None
        if owns_correlation_id:
            correlation_id = set_correlation_id()
        try:
            return self._validate(request, signature, current_time, correlation_id)
        finally:
            if owns_correlation_id:
                clear_correlation_id()

    def _validate(
        self,
        request: Union[StructuredRequest, Mapping[str, Any]],
        signature: Union[bytes, str],
        current_time: Optional[int],
        correlation_id: str
    ) -> ValidationResult:
        started = time.perf_counter()
        state = ValidationState.RECEIVED
        signer: Optional[str] = None
        digest: Optional[str] = None
        nonce: Optional[int] = None

        try:
            parsed = StructuredRequest.from_wire(request)

            domain_separator = self._resolve_domain(parsed.domain)
            state = ValidationState.DOMAIN_RESOLVED

            definition = self._resolve_type(parsed)
            state = ValidationState.TYPE_RESOLVED

            struct_hash = self._hasher.struct_hash(parsed.primary_type, parsed.message)
            digest_bytes = assemble_digest(domain_separator, struct_hash)
            digest = "0x" + digest_bytes.hex()
            state = ValidationState.DIGEST_COMPUTED

            claimed = self._field_value(definition, parsed.message, FROM_FIELD).checksum
            nonce = self._field_value(definition, parsed.message, NONCE_FIELD).value
            valid_until = self._field_value(definition, parsed.message, VALID_UNTIL_FIELD).value

            recovered = self.verifier.recover_signer(digest_bytes, signature)
            if recovered != claimed:
                raise SignatureMismatchError(
                    f"Signature recovers {recovered}, request is from {claimed}",
                    expected=claimed,
                    recovered=recovered,
                )
            signer = recovered
            state = ValidationState.SIGNATURE_VERIFIED

            with self.nonces.claim(signer, nonce):
                state = ValidationState.NONCE_CHECKED
                self._check_expiry(valid_until, current_time)
                state = ValidationState.EXPIRY_CHECKED

            state = ValidationState.ACCEPTED

        except ForwarderError as e:
            if e.fatal:
                self._log.exception(
                    "registry_corrupted", e.message, state=state.value, details=e.details
                )
                raise
            return self._reject(e, state, started, signer, digest, nonce, correlation_id)

        duration = time.perf_counter() - started
        self.metrics.track_validation("accepted", "none", duration)
        self._log.info(
            "request_accepted",
            signer=signer,
            nonce=nonce,
            digest=digest,
            duration_ms=round(duration * 1000, 3),
        )
        return ValidationResult(
            accepted=True, state=state, signer=signer, digest=digest, nonce=nonce,
            correlation_id=correlation_id,
        )

    def _resolve_domain(self, domain: DomainRecord) -> bytes:
        separator = self._domain_builder.build(domain)
        if separator not in self._separators:
            raise UnknownDomainError(
                "Request domain is not registered",
                domain_separator="0x" + separator.hex(),
            )
        return separator

    def _resolve_type(self, request: StructuredRequest) -> TypeDefinition:
        name = request.primary_type
        if name not in self._request_types:
            raise UnknownTypeError(f"{name[:80]!r} is not a registered request type", type_name=name)

        registered = self.registry.canonical_type_string(name)
        if request.types is not None:
            if DOMAIN_TYPE_NAME in request.types:
                check_domain_type(request.domain, request.types[DOMAIN_TYPE_NAME])
            try:
                supplied = TypeRegistry.from_types(request.types).canonical_type_string(name)
            except UnknownTypeError as e:
                raise TypeConflictError(
                    f"Request types do not fully describe {name}", type_name=name
                ) from e
            if supplied != registered:
                raise TypeConflictError(
                    f"Request types encode {name} as {supplied}, registered {registered}",
                    type_name=name,
                )
        return self.registry.get(name)

    @staticmethod
    def _field_value(definition: TypeDefinition, message: Mapping[str, Any], field_name: str):
        declared = next(p.solidity_type for p in definition.fields if p.name == field_name)
        return coerce_value(declared, message[field_name])

    def _check_expiry(self, valid_until: int, current_time: Optional[int]) -> None:
        if valid_until == 0 and self.settings.zero_valid_until_never_expires:
            return
        now = int(time.time()) if current_time is None else current_time
        if valid_until < now:
            raise ExpiryError(
                f"Request expired at {valid_until} (now {now})",
                valid_until=valid_until,
                current_time=now,
            )

    def _reject(
        self,
        error: ForwarderError,
        state: ValidationState,
        started: float,
        signer: Optional[str],
        digest: Optional[str],
        nonce: Optional[int],
        correlation_id: str
    ) -> ValidationResult:
        duration = time.perf_counter() - started
        self.metrics.track_validation("rejected", error.reason.value, duration)
        self._log.warning(
            "request_rejected",
            error.message,
            reason=error.reason.value,
            state=state.value,
            signer=signer,
            nonce=nonce,
            digest=digest,
        )
        return ValidationResult(
            accepted=False,
            state=state,
            reason=error.reason,
            message=error.message,
            signer=signer,
            digest=digest,
            nonce=nonce,
            correlation_id=correlation_id,
        )

    # ========== Queries ==========

    def next_nonce(self, signer: str) -> int:
        """Nonce the signer should use for its next request."""
        return self.nonces.next_nonce(validate_address(signer))

    def verify_integrity(self) -> None:
        """
        Check cached type hashes and domain separators against their sources.

        Raises:
            RegistryCorruptionError: If anything cached is inconsistent
        """
        self.registry.verify_integrity()

        fresh = DomainSeparatorBuilder(cache_size=1)
        for separator, domain_id in list(self._separators.items()):
            record = self._domains.get(domain_id)
            if record is None or fresh.build(record) != separator:
                raise RegistryCorruptionError(
                    f"Domain separator for {domain_id} is inconsistent with its domain",
                    {"domain_id": domain_id},
                )
