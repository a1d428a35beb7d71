"""Ceremony API router: registration and login, each as an options/verify pair."""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from keyceremony.ceremony import schemas
from keyceremony.ceremony.errors import CeremonyError
from keyceremony.ceremony.orchestrator import CeremonyOrchestrator
from keyceremony.ceremony.types import CeremonyResult

router = APIRouter(tags=["webauthn"])

_OPTIONS_ERRORS = {
    400: {
        "content": {"text/plain": {}},
        "description": "Username missing, or (login) the user holds no credentials.",
    }
}
_VERIFY_ERRORS = {
    400: {
        "model": schemas.VerifyResponse,
        "description": "Ceremony failed. The error string is deliberately generic.",
    }
}


def _orchestrator(request: Request) -> CeremonyOrchestrator:
    orchestrator: CeremonyOrchestrator = request.app.state.orchestrator
    return orchestrator


def _verify_response(result: CeremonyResult) -> JSONResponse:
    code = status.HTTP_200_OK if result.verified else status.HTTP_400_BAD_REQUEST
    return JSONResponse(result.to_payload(), status_code=code)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post(
    "/register/options",
    summary="Begin registration",
    description=(
        "Issue a single-use registration challenge for the user and return "
        "WebAuthn PublicKeyCredentialCreationOptions."
    ),
    responses=_OPTIONS_ERRORS,
)
async def register_options(body: schemas.OptionsRequest, request: Request):
    try:
        return await _orchestrator(request).begin_registration(body.username)
    except CeremonyError as exc:
        return PlainTextResponse(exc.client_message, status_code=status.HTTP_400_BAD_REQUEST)


@router.post(
    "/register/verify",
    response_model=schemas.VerifyResponse,
    summary="Complete registration",
    description="Verify the attestation and store the resulting credential.",
    responses=_VERIFY_ERRORS,
)
async def register_verify(body: schemas.RegisterVerifyRequest, request: Request):
    result = await _orchestrator(request).register(body.username, body.att_resp)
    return _verify_response(result)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@router.post(
    "/login/options",
    summary="Begin login",
    description=(
        "Issue a single-use authentication challenge and return WebAuthn "
        "PublicKeyCredentialRequestOptions listing the user's credentials."
    ),
    responses=_OPTIONS_ERRORS,
)
async def login_options(body: schemas.OptionsRequest, request: Request):
    try:
        return await _orchestrator(request).begin_authentication(body.username)
    except CeremonyError as exc:
        return PlainTextResponse(exc.client_message, status_code=status.HTTP_400_BAD_REQUEST)


@router.post(
    "/login/verify",
    response_model=schemas.VerifyResponse,
    summary="Complete login",
    description="Verify the assertion and advance the credential's signature counter.",
    responses=_VERIFY_ERRORS,
)
async def login_verify(body: schemas.LoginVerifyRequest, request: Request):
    result = await _orchestrator(request).authenticate(body.username, body.auth_resp)
    return _verify_response(result)
