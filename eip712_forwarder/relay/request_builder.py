"""
Forward request builder with EIP-712 signing.

Builds wire-compatible typed-data requests for a forwarder domain and signs
their digests, the client-side counterpart of RequestValidator.
"""

import time
from typing import Any, Iterable, Mapping, Optional, Union
import logging

from eth_account import Account

from ..config import ForwarderSettings, get_settings
from ..exceptions import MalformedInputError
from ..models import DomainRecord, StructuredRequest, TypeProperty
from ..typed_data.digest import assemble_digest
from ..typed_data.domain import DomainLike, DomainSeparatorBuilder, as_domain_record
from ..typed_data.encoder import StructHasher
from ..typed_data.registry import FieldSpec, TypeRegistry
from ..utils.validators import validate_address, validate_hex_bytes, validate_private_key

logger = logging.getLogger(__name__)


FORWARD_REQUEST_TYPE = "ForwardRequest"

FORWARD_REQUEST_FIELDS: tuple[TypeProperty, ...] = (
    TypeProperty(name="from", type="address"),
    TypeProperty(name="to", type="address"),
    TypeProperty(name="value", type="uint256"),
    TypeProperty(name="gas", type="uint256"),
    TypeProperty(name="nonce", type="uint256"),
    TypeProperty(name="data", type="bytes"),
    TypeProperty(name="validUntil", type="uint256"),
)

# Default values
DEFAULT_GAS = 21000
DEFAULT_VALIDITY_SECONDS = 30 * 24 * 60 * 60  # 30 days
NEVER_EXPIRES = 2**256 - 1


class RequestBuilder:
    """
    Builds and signs typed-data requests for one domain.

    Handles:
    - Request construction (ForwardRequest by default)
    - Validity window defaults
    - Digest computation
    - EIP-712 signing
    """

    def __init__(
        self,
        domain: DomainLike,
        type_name: str = FORWARD_REQUEST_TYPE,
        fields: Iterable[FieldSpec] = FORWARD_REQUEST_FIELDS,
        struct_types: Optional[Mapping[str, Iterable[FieldSpec]]] = None
    ):
        """
        Initialize request builder.

        Args:
            domain: Signing domain
            type_name: Primary type of built requests
            fields: Fields of the primary type
            struct_types: Nested struct types referenced by the primary type
        """
        self.domain: DomainRecord = as_domain_record(domain)
        self.type_name = type_name
        self.registry = TypeRegistry()
        self.registry.register(type_name, fields)
        for name, struct_fields in (struct_types or {}).items():
            self.registry.register(name, struct_fields)

        self._hasher = StructHasher(self.registry)
        self._domain_builder = DomainSeparatorBuilder(cache_size=8)

    @classmethod
    def for_forwarder(
        cls,
        name: str,
        version: str,
        verifying_contract: str,
        chain_id: Optional[int] = None,
        settings: Optional[ForwarderSettings] = None
    ) -> "RequestBuilder":
        """
        Builder for a ForwardRequest domain.

        Args:
            name: Domain name
            version: Domain version
            verifying_contract: Forwarder contract address
            chain_id: Chain ID (settings.chain_id if None)
            settings: Forwarder settings
        """
        if chain_id is None:
            chain_id = (settings or get_settings()).chain_id
        domain = DomainRecord(
            name=name,
            version=version,
            chainId=chain_id,
            verifyingContract=verifying_contract,
        )
        return cls(domain)

    def types(self) -> dict[str, list[TypeProperty]]:
        """Wire "types" object for the primary type and every nested type."""
        names = [self.type_name] + self.registry.dependencies(self.type_name)
        return {name: list(self.registry.get(name).fields) for name in names}

    def build_message(self, message: Mapping[str, Any]) -> StructuredRequest:
        """
        Wrap an arbitrary message in a request for this builder's type.

        Values are checked when the request is hashed, not here.
        """
        return StructuredRequest(
            domain=self.domain,
            primaryType=self.type_name,
            message=dict(message),
            types=self.types(),
        )

    def build_request(
        self,
        from_address: str,
        to: str,
        nonce: int,
        data: Union[bytes, str] = b"",
        value: int = 0,
        gas: int = DEFAULT_GAS,
        valid_until: Optional[int] = None,
        **extra: Any
    ) -> StructuredRequest:
        """
        Build a forward request.

        Args:
            from_address: Signer address
            to: Target contract
            nonce: Signer nonce
            data: Call data
            value: Wei forwarded with the call
            gas: Gas limit
            valid_until: Expiry timestamp (now + 30 days if None)
            **extra: Values of additional fields of a custom type

        Returns:
            StructuredRequest carrying its own types

        Raises:
            MalformedInputError: If an address or data is invalid
        """
        if nonce < 0:
            raise MalformedInputError(f"Nonce must be >= 0, got {nonce}")

        if valid_until is None:
            valid_until = int(time.time()) + DEFAULT_VALIDITY_SECONDS

        message = {
            "from": validate_address(from_address),
            "to": validate_address(to),
            "value": value,
            "gas": gas,
            "nonce": nonce,
            "data": "0x" + validate_hex_bytes(data, "bytes").hex(),
            "validUntil": valid_until,
        }
        message.update(extra)

        logger.debug(
            f"Built {self.type_name}: from={message['from']} to={message['to']} nonce={nonce}"
        )
        return self.build_message(message)

    def digest(self, request: Union[StructuredRequest, Mapping[str, Any]]) -> bytes:
        """
        Signing digest of a request built for this builder's type.

        Raises:
            MalformedInputError: If the request is malformed
            UnknownTypeError: If the primary type is not this builder's
        """
        request = StructuredRequest.from_wire(request)
        struct_hash = self._hasher.struct_hash(request.primary_type, request.message)
        separator = self._domain_builder.build(request.domain)
        return assemble_digest(separator, struct_hash)

    def sign(self, request: Union[StructuredRequest, Mapping[str, Any]], private_key: str) -> bytes:
        """
        Sign a request.

        Args:
            request: Request to sign
            private_key: Signer's private key

        Returns:
            65-byte r ‖ s ‖ v signature, v in {27, 28}
        """
        key = validate_private_key(private_key)
        digest = self.digest(request)
        signed = Account.unsafe_sign_hash(digest, key)
        return bytes(signed.signature)

    def build_and_sign(
        self,
        private_key: str,
        to: str,
        nonce: int,
        data: Union[bytes, str] = b"",
        value: int = 0,
        gas: int = DEFAULT_GAS,
        valid_until: Optional[int] = None,
        **extra: Any
    ) -> tuple[StructuredRequest, bytes]:
        """
        Build a request from the key's address and sign it.

        Returns:
            (request, signature)
        """
        key = validate_private_key(private_key)
        from_address = Account.from_key(key).address
        request = self.build_request(
            from_address, to, nonce,
            data=data, value=value, gas=gas, valid_until=valid_until, **extra
        )
        signature = self.sign(request, key)

        logger.info(f"Signed {self.type_name} for {from_address} (nonce={nonce})")
        return request, signature
