"""Midjourney Bridge - FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
Route handlers hold no logic of their own; each one delegates to one of two
objects stored on ``app.state`` by the lifespan handler:

- ``app.state.connection`` - :class:`~mjbridge.core.connection.ConnectionManager`,
  started in the background so the server answers immediately, even while
  the backend is still connecting or has failed.
- ``app.state.orchestrator`` - :class:`~mjbridge.core.orchestrator.SessionOrchestrator`,
  owner of the single session result.

Errors raised by the core are :class:`~mjbridge.core.errors.BridgeError`
subclasses and are rendered by one exception handler using the status code
each error carries.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/``                         Readiness status
GET       ``/health``                   Readiness plus current result summary
GET       ``/result``                   Current session result
POST      ``/imagine``                  Start a new generation
POST      ``/upscale``                  Upscale image ``index`` (1-4)
POST      ``/variation``                Vary image ``index`` (1-4)
POST      ``/action``                   Run any action by label query
POST      ``/<preset>``                 vary-subtle, vary-strong, zoom-2x,
                                        zoom-1-5x, pan-{left,right,up,down},
                                        animate-{high,low}, reroll
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    mjbridge

Direct invocation::

    python -m mjbridge.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mjbridge import __version__
from mjbridge.api.models import (
    ActionRequest,
    HealthResponse,
    ImagineRequest,
    IndexRequest,
    ResultResponse,
    StatusResponse,
)
from mjbridge.core.actions import PRESETS
from mjbridge.core.config import BridgeConfig, config
from mjbridge.core.connection import ConnectionManager, ConnectionPhase
from mjbridge.core.errors import BridgeError, InvalidRequestError, NoActiveSessionError
from mjbridge.core.orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Application lifecycle - backend connection setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Creates the :class:`ConnectionManager` and the
        :class:`SessionOrchestrator`, stores both on ``app.state`` and starts
        the backend connection in the background.  The server accepts
        requests while the connection is still being established.

    On shutdown:
        Cancels a pending connection retry and closes the backend handle.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    # --- Startup -----------------------------------------------------------
    connection = ConnectionManager(config, config_loader=BridgeConfig)
    app.state.connection = connection
    app.state.orchestrator = SessionOrchestrator(
        connection,
        timeout=config.backend_timeout,
        busy_policy=config.busy_policy,
    )
    connection.start()
    logger.info("Backend connection started in the background.")

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    await connection.close()
    logger.info("Backend connection closed on shutdown.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Midjourney Bridge",
    description="HTTP facade over an asynchronous Midjourney generation session.",
    version=__version__,
    lifespan=lifespan,
)

# Allow cross-origin requests so browser tools on other origins can call the
# API.  In production, restrict ``allow_origins`` to the actual callers.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    """Render a core error with the status code it carries."""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def _connection() -> ConnectionManager:
    return app.state.connection


def _orchestrator() -> SessionOrchestrator:
    return app.state.orchestrator


# ---------------------------------------------------------------------------
# Status routes.
# ---------------------------------------------------------------------------


@app.get("/", response_model=StatusResponse)
async def index() -> dict:
    """Report backend readiness.

    Returns:
        Dictionary with ``status`` (``ok``, ``initializing`` or ``error``),
        a human-readable ``message`` and the last connection ``error``.
    """
    connection = _connection()
    if connection.is_ready():
        return {"status": "ok", "message": "Midjourney API ready", "error": None}
    if connection.phase is ConnectionPhase.FAILED:
        return {
            "status": "error",
            "message": "Midjourney client failed to initialize",
            "error": connection.last_failure(),
        }
    return {
        "status": "initializing",
        "message": "Midjourney client not initialized yet",
        "error": None,
    }


@app.get("/health", response_model=HealthResponse)
async def health() -> dict:
    """Report readiness together with a summary of the current result.

    Never waits for an in-flight generation; the summary may be superseded
    as soon as it is returned.
    """
    connection = _connection()
    orchestrator = _orchestrator()
    return {
        "ready": connection.is_ready(),
        "phase": connection.phase.value,
        "busy": orchestrator.is_busy,
        "error": connection.last_failure(),
        "lastResultSummary": orchestrator.summary(),
    }


@app.get("/result", response_model=ResultResponse)
async def current_result() -> dict:
    """Return the current session result.

    Raises:
        NoActiveSessionError: 400 before the first generation.
    """
    result = _orchestrator().snapshot()
    if result is None:
        raise NoActiveSessionError()
    return result.to_dict()


# ---------------------------------------------------------------------------
# Generation and action routes.
# ---------------------------------------------------------------------------


@app.post("/imagine", response_model=ResultResponse)
async def imagine(req: ImagineRequest | None = None) -> dict:
    """Start a new generation; its result becomes the current result."""
    req = req or ImagineRequest()
    result = await _orchestrator().generate(req.prompt)
    return result.to_dict()


@app.post("/upscale", response_model=ResultResponse)
async def upscale(req: IndexRequest | None = None) -> dict:
    """Upscale image ``index`` (1-4) of the current result."""
    req = req or IndexRequest()
    result = await _orchestrator().run_preset("upscale", req.index)
    return result.to_dict()


@app.post("/variation", response_model=ResultResponse)
async def variation(req: IndexRequest | None = None) -> dict:
    """Create variations of image ``index`` (1-4) of the current result."""
    req = req or IndexRequest()
    result = await _orchestrator().run_preset("variation", req.index)
    return result.to_dict()


@app.post("/action", response_model=ResultResponse)
async def action(req: ActionRequest | None = None) -> dict:
    """Run any action of the current result by label query."""
    req = req or ActionRequest()
    if not req.label:
        raise InvalidRequestError("label is required")
    result = await _orchestrator().apply_action(req.label)
    return result.to_dict()


def _add_preset_route(name: str) -> None:
    """Register ``POST /<name>`` for a body-less preset."""

    async def run_preset() -> dict:
        result = await _orchestrator().run_preset(name)
        return result.to_dict()

    run_preset.__doc__ = f"Run the '{name}' action on the current result."
    app.add_api_route(
        f"/{name}",
        run_preset,
        methods=["POST"],
        response_model=ResultResponse,
        name=name,
    )


for _preset in PRESETS.values():
    if not _preset.indexed:
        _add_preset_route(_preset.name)


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~mjbridge.core.config.config`
    (``MJBRIDGE_SERVER_HOST``, ``PORT`` / ``MJBRIDGE_SERVER_PORT``,
    ``MJBRIDGE_LOG_LEVEL``).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``mjbridge`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Midjourney API running on port %d", config.server_port)

    uvicorn.run(
        "mjbridge.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
