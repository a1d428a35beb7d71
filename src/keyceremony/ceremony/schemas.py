"""Pydantic schemas for the ceremony endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# -- Options --


class OptionsRequest(BaseModel):
    # Optional so a missing username reaches the issuer and is answered
    # with "Username required" instead of a validation error.
    username: str | None = Field(None, description="Human-facing account name.")


# -- Verification --


class RegisterVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str | None = Field(None, description="Username the options were issued for.")
    att_resp: dict[str, Any] | None = Field(
        None,
        validation_alias=AliasChoices("attResp", "attestationResponse"),
        description="Browser PublicKeyCredential (attestation) response as JSON.",
    )


class LoginVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str | None = Field(None, description="Username the options were issued for.")
    auth_resp: dict[str, Any] | None = Field(
        None,
        validation_alias=AliasChoices("authResp", "assertionResponse"),
        description="Browser PublicKeyCredential (assertion) response as JSON.",
    )


class VerifyResponse(BaseModel):
    verified: bool = Field(..., description="Whether the ceremony completed successfully.")
    error: str | None = Field(None, description="Generic failure reason.")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Health status string.")
