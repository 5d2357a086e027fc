"""
Configuration management for the EIP-712 forwarder.

Loads settings from environment variables with validation.
"""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import NoncePolicy


class ForwarderSettings(BaseSettings):
    """
    Forwarder settings.

    Loads from environment variables with EIP712_FORWARDER_ prefix.
    """
    model_config = SettingsConfigDict(
        env_prefix="EIP712_FORWARDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Chain configuration
    chain_id: int = Field(default=31337, ge=0, description="Chain ID used for new domains")

    # Signature policy
    enforce_low_s: bool = Field(
        default=True,
        description="Reject signatures with s in the upper half of the curve order"
    )
    allow_zero_one_v: bool = Field(
        default=False,
        description="Accept raw recovery ids 0/1 as v in addition to 27/28"
    )

    # Replay and expiry
    nonce_policy: NoncePolicy = Field(
        default=NoncePolicy.UNORDERED,
        description="unordered (set of used nonces) or sequential (counter)"
    )
    zero_valid_until_never_expires: bool = Field(
        default=False,
        description="Treat validUntil == 0 as no expiry"
    )

    # Encoding limits
    max_value_depth: int = Field(default=32, ge=1, le=256,
                                 description="Max struct/array nesting depth of values")
    domain_cache_size: int = Field(default=256, ge=1, description="Cached domain separators")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="JSON log output")
    log_structured: bool = Field(
        default=False, description="Structured event JSON with correlation ids"
    )
    log_file: Optional[str] = Field(None, description="Optional log file path")

    # Metrics
    enable_metrics: bool = Field(default=False, description="Enable Prometheus metrics")
    metrics_port: int = Field(default=9090, ge=1024, le=65535, description="Metrics server port")

    def __repr__(self) -> str:
        """Short repr."""
        return (
            f"ForwarderSettings("
            f"chain_id={self.chain_id}, "
            f"nonce_policy={self.nonce_policy.value}, "
            f"enforce_low_s={self.enforce_low_s}"
            ")"
        )


def get_settings() -> ForwarderSettings:
    """
    Get forwarder settings.

    Returns:
        Validated settings instance
    """
    return ForwarderSettings()
