"""Environment-driven configuration using pydantic-settings."""

from __future__ import annotations

import warnings
from typing import Literal
from urllib.parse import urlsplit

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

TransportName = Literal["usb", "nfc", "ble", "internal", "hybrid"]


class ConfigurationError(RuntimeError):
    """Raised when the relying-party identity does not match the deployment origin."""


class Settings(BaseSettings):
    """Central configuration. Every value can be overridden via ``KEYCEREMONY_*`` env vars."""

    model_config = SettingsConfigDict(
        env_prefix="KEYCEREMONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- environment ---
    env: str = "development"

    # --- relying party ---
    rp_name: str = "WebAuthn Demo"
    rp_id: str = ""
    origin: str = ""

    # --- ceremony policy ---
    challenge_ttl_seconds: int = Field(300, gt=0)
    challenge_bytes: int = Field(32, ge=16, le=64)
    user_verification: Literal["required", "preferred", "discouraged"] = "preferred"
    resident_key: Literal["required", "preferred", "discouraged"] = "required"
    authenticator_attachment: Literal["platform", "cross-platform"] | None = "platform"
    attestation: Literal["none", "indirect", "direct", "enterprise"] = "none"
    default_transports: list[TransportName] = ["internal"]
    allow_counterless_authenticators: bool = False

    # --- storage ---
    store_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite:///./keyceremony.db"

    # --- transport ---
    cors_origins: list[str] = []

    def effective_rp_id(self) -> str:
        """Return the WebAuthn relying party ID."""
        if self.rp_id:
            return self.rp_id
        if self.env == "production":
            raise RuntimeError("KEYCEREMONY_RP_ID must be set in production mode.")
        warnings.warn(
            "Using 'localhost' as WebAuthn RP ID. Set KEYCEREMONY_RP_ID for production.",
            UserWarning,
            stacklevel=2,
        )
        return "localhost"

    def effective_origin(self) -> str:
        """Return the expected WebAuthn origin."""
        if self.origin:
            return self.origin
        if self.env == "production":
            raise RuntimeError("KEYCEREMONY_ORIGIN must be set in production mode.")
        warnings.warn(
            "Using 'http://localhost:5173' as WebAuthn origin. "
            "Set KEYCEREMONY_ORIGIN for production.",
            UserWarning,
            stacklevel=2,
        )
        return "http://localhost:5173"

    def effective_cors_origins(self) -> list[str]:
        """Return allowed CORS origins, defaulting to the expected WebAuthn origin."""
        if self.cors_origins:
            return list(self.cors_origins)
        return [self.effective_origin()]

    def validate_relying_party(self) -> None:
        """Fail fast when RP ID and origin cannot produce a verifiable ceremony.

        Raises ConfigurationError listing every problem found.
        """
        problems = relying_party_problems(self.effective_rp_id(), self.effective_origin())
        if problems:
            raise ConfigurationError("; ".join(problems))


def relying_party_problems(rp_id: str, origin: str) -> list[str]:
    """Return human-readable reasons why *rp_id* and *origin* do not fit together."""
    problems: list[str] = []
    parts = urlsplit(origin)
    host = (parts.hostname or "").lower()

    if parts.scheme not in ("https", "http"):
        problems.append(f"origin {origin!r} must use https")
    elif parts.scheme == "http" and host != "localhost":
        problems.append(f"origin {origin!r} uses http, which browsers only allow on localhost")
    if not host:
        problems.append(f"origin {origin!r} has no host")
    if parts.path or parts.query or parts.fragment:
        problems.append(f"origin {origin!r} must not contain a path, query or fragment")

    rp = rp_id.lower()
    if not rp or any(c in rp for c in ":/") or rp.startswith(".") or rp.endswith("."):
        problems.append(f"RP ID {rp_id!r} must be a bare host name")
    elif host and host != rp and not host.endswith("." + rp):
        problems.append(f"RP ID {rp_id!r} is neither the origin host {host!r} nor a suffix of it")
    return problems
