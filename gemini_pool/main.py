#!/usr/bin/env python3
"""
Gemini Key Pool Proxy
Fronts the Gemini API with a pool of API keys, picking one at random for each
request and keeping per-key statistics and a bounded log of failures.
"""

import random
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger

from . import admin
from .config import Constants, Settings, configure_logging
from .forwarder import InboundRequest, ProxyForwarder
from .selector import KeySelector
from .state import PoolState

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]
CATCH_ALL_METHODS = PROXY_METHODS + ["OPTIONS"]


# ===========================
# Proxy Endpoints
# ===========================

async def proxy_endpoint(request: Request) -> Response:
    """Forward any proxied path upstream with a pooled key."""
    inbound = await InboundRequest.from_request(request)
    return await request.app.state.forwarder.forward(inbound)


async def fallback_endpoint(request: Request) -> Response:
    """Answer CORS preflight on any path; everything else is not found."""
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=Constants.PREFLIGHT_HEADERS)
    return JSONResponse({"error": "Not found"}, status_code=404)


def build_proxy_router(settings: Settings) -> APIRouter:
    """Register proxy routes for the local prefix and each pass-through prefix."""
    router = APIRouter()
    for prefix in [settings.proxy_prefix] + settings.passthrough_prefixes:
        router.add_api_route(
            f"{prefix}/{{path:path}}",
            proxy_endpoint,
            methods=PROXY_METHODS,
            include_in_schema=False,
        )
    return router


# ===========================
# FastAPI Application
# ===========================

def create_app(
    settings: Optional[Settings] = None,
    state: Optional[PoolState] = None,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    """Wire the pool state, selector and forwarder into a FastAPI app."""
    settings = settings or Settings()
    state = state or PoolState(settings.error_log_capacity)
    if rng is None:
        rng = random.Random(settings.random_seed)

    @asynccontextmanager
    async def lifespan(app_: FastAPI) -> AsyncGenerator[None, None]:
        """Manage the shared HTTP client and the forwarder built on it."""
        app_.state.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout),
            limits=httpx.Limits(
                max_keepalive_connections=Constants.MAX_KEEPALIVE_CONNECTIONS,
                max_connections=Constants.MAX_CONNECTIONS,
            ),
        )
        app_.state.forwarder = ProxyForwarder(
            state, KeySelector(state.registry, rng), settings, app_.state.http_client
        )
        logger.info(
            f"Key pool proxy is ready! {len(state.registry)} key(s), upstream {settings.upstream_base_url}"
        )

        yield

        await app_.state.http_client.aclose()

    app = FastAPI(
        title="Gemini Key Pool Proxy",
        description="Reverse proxy for the Gemini API that spreads requests across a pool of API keys",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pool = state

    added = state.seed_keys(settings.keys)
    if added:
        logger.info(f"Loaded {added} API key(s) from configuration.")
    else:
        logger.warning("No API keys configured. Add keys through /admin/keys.")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "keys": len(state.registry),
            "enabled_keys": len(state.registry.enabled()),
            "timestamp": int(time.time()),
        }

    app.include_router(admin.router)
    app.include_router(build_proxy_router(settings))
    app.add_api_route(
        "/{path:path}", fallback_endpoint, methods=CATCH_ALL_METHODS, include_in_schema=False
    )
    return app


def build_app(settings: Optional[Settings] = None) -> FastAPI:
    """Load config.yaml, set up logging and build the app (``uvicorn --factory``)."""
    settings = settings or Settings.from_file()
    configure_logging(settings.log_level)
    return create_app(settings)


def main() -> None:
    settings = Settings.from_file()
    uvicorn.run(build_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
