"""
Signature parsing and signer recovery.

Parses 65-byte r ‖ s ‖ v signatures and recovers the signing address from a
digest with eth_keys' secp256k1 public key recovery.
"""

from dataclasses import dataclass
from typing import Any, Union
import logging

from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError as EthValidationError

from ..exceptions import (
    ForwarderError,
    InvalidRecoveryIdError,
    InvalidSignatureLengthError,
    MalformedInputError,
    MalleableSignatureError,
    RecoveryFailedError,
)
from ..utils.validators import validate_address, validate_hex_bytes

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65

# secp256k1 group order
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

# Ethereum convention: v = recovery id + 27
V_OFFSET = 27


@dataclass(frozen=True)
class ParsedSignature:
    """
    Signature components.

    Attributes:
        r: r component
        s: s component
        v: Recovery id (0 or 1), already normalized
    """
    r: int
    s: int
    v: int

    def to_bytes(self) -> bytes:
        """65-byte r ‖ s ‖ v form with v in {27, 28}."""
        return (
            self.r.to_bytes(32, "big")
            + self.s.to_bytes(32, "big")
            + bytes([self.v + V_OFFSET])
        )


class SignatureVerifier:
    """
    Parses signatures and recovers signers.

    Stateless: safe to share across threads.
    """

    def __init__(self, enforce_low_s: bool = True, allow_zero_one_v: bool = False):
        """
        Initialize verifier.

        Args:
            enforce_low_s: Reject signatures with s > n/2 (malleable twins)
            allow_zero_one_v: Also accept raw recovery ids 0/1 as v
        """
        self.enforce_low_s = enforce_low_s
        self.allow_zero_one_v = allow_zero_one_v

    def parse(self, signature: Union[bytes, str]) -> ParsedSignature:
        """
        Parse a 65-byte signature.

        Args:
            signature: Raw bytes or 0x-prefixed hex

        Returns:
            ParsedSignature with v normalized to a recovery id

        Raises:
            InvalidSignatureLengthError: If not exactly 65 bytes
            InvalidRecoveryIdError: If v is not an accepted value
            MalleableSignatureError: If low-s is enforced and s > n/2
            MalformedInputError: If a hex signature cannot be decoded
        """
        try:
            raw = validate_hex_bytes(signature, "signature")
        except (ValueError, UnicodeError) as e:
            raise MalformedInputError(f"Signature is not decodable: {type(e).__name__}") from e
        if len(raw) != SIGNATURE_LENGTH:
            raise InvalidSignatureLengthError(
                f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}",
                length=len(raw),
            )

        r = int.from_bytes(raw[0:32], "big")
        s = int.from_bytes(raw[32:64], "big")
        v = raw[64]

        if v in (27, 28):
            recovery_id = v - V_OFFSET
        elif v in (0, 1) and self.allow_zero_one_v:
            recovery_id = v
        else:
            raise InvalidRecoveryIdError(f"Invalid signature v value: {v}", v=v)

        if self.enforce_low_s and s > SECP256K1_HALF_N:
            raise MalleableSignatureError(
                "Signature s value is in the upper half of the curve order",
                {"s": hex(s)},
            )

        return ParsedSignature(r=r, s=s, v=recovery_id)

    def recover(self, digest: bytes, r: int, s: int, v: int) -> str:
        """
        Recover the signer address.

        Args:
            digest: 32-byte signed digest
            r: r component
            s: s component
            v: Recovery id (0 or 1)

        Returns:
            Checksummed signer address

        Raises:
            MalformedInputError: If digest is not 32 bytes
            RecoveryFailedError: If no public key can be recovered
        """
        if not isinstance(digest, (bytes, bytearray)) or len(digest) != 32:
            raise MalformedInputError("Digest must be 32 bytes")
        if v not in (0, 1):
            raise RecoveryFailedError(f"Recovery id must be 0 or 1, got {v}", {"v": v})
        if not 0 < r < SECP256K1_N:
            raise RecoveryFailedError("Signature r value out of range", {"r": hex(r)})
        if not 0 < s < SECP256K1_N:
            raise RecoveryFailedError("Signature s value out of range", {"s": hex(s)})

        try:
            public_key = keys.Signature(vrs=(v, r, s)).recover_public_key_from_msg_hash(
                bytes(digest)
            )
        except (BadSignature, EthValidationError, ValueError) as e:
            logger.debug(f"Public key recovery failed: {type(e).__name__}: {e}")
            raise RecoveryFailedError(f"Signature recovery failed: {e}") from e

        return public_key.to_checksum_address()

    def recover_signer(self, digest: bytes, signature: Union[bytes, str]) -> str:
        """Parse signature and recover its signer."""
        parsed = self.parse(signature)
        return self.recover(digest, parsed.r, parsed.s, parsed.v)

    def verify(self, expected_signer: Any, digest: bytes, signature: Union[bytes, str]) -> bool:
        """
        Check that signature over digest was produced by expected_signer.

        Returns:
            True if the recovered signer matches, False on mismatch or any
            signature error
        """
        try:
            expected = validate_address(expected_signer)
            recovered = self.recover_signer(digest, signature)
        except ForwarderError as e:
            logger.debug(f"Signature verification failed: {e.reason.value}")
            return False
        return recovered == expected
