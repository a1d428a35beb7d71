"""Application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from keyceremony.ceremony.errors import CLIENT_MESSAGES, FailureReason, UsernameRequired
from keyceremony.ceremony.orchestrator import CeremonyOrchestrator
from keyceremony.ceremony.router import router as ceremony_router
from keyceremony.ceremony.schemas import HealthResponse
from keyceremony.ceremony.store import CredentialStore, build_credential_store
from keyceremony.config import Settings
from keyceremony.obs.settings import ObservabilitySettings
from keyceremony.obs.setup import init_observability
from keyceremony.version import __version__ as KEYCEREMONY_VERSION

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    store: CredentialStore | None = None,
    observability: ObservabilitySettings | None = None,
) -> FastAPI:
    """Create the ceremony API. Raises ConfigurationError if RP ID and origin disagree."""
    if settings is None:
        settings = Settings()

    settings.validate_relying_party()
    if store is None:
        store = build_credential_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await store.init_schema()
        logger.info(
            "serving RP %r (id=%s, origin=%s) with %s store",
            settings.rp_name,
            settings.effective_rp_id(),
            settings.effective_origin(),
            type(store).__name__,
        )
        yield
        await store.close()

    app = FastAPI(
        title="keyceremony",
        description="WebAuthn relying-party ceremonies: registration and authentication.",
        version=KEYCEREMONY_VERSION,
        lifespan=lifespan,
    )

    # Store on app.state for route access.
    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = CeremonyOrchestrator(store, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.effective_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    init_observability(app, observability)

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> Response:
        logger.info("rejected malformed request to %s: %s", request.url.path, exc.errors())
        if request.url.path.endswith("/options"):
            return PlainTextResponse(UsernameRequired(str(exc)).client_message, status_code=400)
        return JSONResponse(
            {"verified": False, "error": CLIENT_MESSAGES[FailureReason.INVALID_INPUT]},
            status_code=400,
        )

    app.include_router(ceremony_router)

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health",
        description="Basic health check for the app.",
    )
    def health() -> HealthResponse:
        return HealthResponse(status="healthy")

    return app
