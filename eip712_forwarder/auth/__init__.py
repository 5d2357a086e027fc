"""Signature recovery and replay protection."""

from .signature import ParsedSignature, SignatureVerifier
from .nonces import NonceStore

__all__ = ["ParsedSignature", "SignatureVerifier", "NonceStore"]
