"""Forwarder-side request validation and client-side request building."""

from .validator import RequestValidator
from .request_builder import FORWARD_REQUEST_FIELDS, FORWARD_REQUEST_TYPE, RequestBuilder

__all__ = [
    "RequestValidator",
    "RequestBuilder",
    "FORWARD_REQUEST_FIELDS",
    "FORWARD_REQUEST_TYPE",
]
