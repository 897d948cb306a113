"""
The Link Phone - Backend Entrypoint

FastAPI application factory and server configuration.
Run with: uvicorn main:app --reload  (from the backend/ directory)
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from linkphone import __version__
from linkphone.config import Settings, get_settings
from linkphone.api import health, routes
from linkphone.core.exceptions import LinkPhoneError
from linkphone.core.logging import setup_structured_logging
from linkphone.telephony.api_client import LinkApiClient
from linkphone.telephony.providers import create_provider
from linkphone.telephony.providers.base import AdapterFactory, PermissionsFactory
from linkphone.telephony.registry import PhoneRegistry

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    adapter_factory: Optional[AdapterFactory] = None,
    permissions_factory: Optional[PermissionsFactory] = None,
) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Overrides the environment-loaded settings
        transport: httpx transport for the backend API client (tests)
        adapter_factory: Overrides the configured provider's adapter factory
        permissions_factory: Overrides the configured provider's permissions
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup:
            - Configure structured logging
            - Create the backend API client and phone registry

        Shutdown:
            - Hang up and stop every phone (pending call logs are awaited)
            - Close the backend API client
        """
        # === Startup ===
        setup_structured_logging(settings.app_log_level, settings.log_json_format)
        logger.info("The Link Phone starting in %s mode", settings.app_env)

        provider_adapters, provider_permissions = create_provider(settings)
        api_client = LinkApiClient.from_settings(settings, transport=transport)
        registry = PhoneRegistry(
            settings,
            api_client,
            adapter_factory or provider_adapters,
            permissions_factory or provider_permissions,
        )
        await registry.start()

        # Store in app state for dependency injection
        app.state.settings = settings
        app.state.api_client = api_client
        app.state.registry = registry

        logger.info(
            "Phone service ready: provider=%s, backend=%s, max_phones=%d",
            settings.telephony_provider,
            api_client.base_url,
            settings.max_phones,
        )

        yield

        # === Shutdown ===
        logger.info("The Link Phone shutting down")
        await registry.stop()
        await api_client.aclose()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="The Link Phone",
        description="Embeddable softphone service with client call logging",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Errors ---
    @app.exception_handler(LinkPhoneError)
    async def link_phone_error_handler(request: Request, exc: LinkPhoneError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    # --- Routes ---
    app.include_router(routes.router, prefix="/api")
    app.include_router(health.router)

    @app.get("/")
    async def root():
        """Root health check."""
        return {
            "service": "The Link Phone",
            "status": "operational",
            "version": __version__,
        }

    return app


# Create app instance
app = create_app()
