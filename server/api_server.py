"""FastAPI application entry point for the parts desk API."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.realtime.RealtimeClientInterface import RealtimeClientInterface
from shared.clients.backend.BackendClientManager import BackendClientManager
from shared.clients.realtime.RealtimeClientManager import RealtimeClientManager
from shared.models.errors import AuthorizationError, BackendError, ValidationError
from server.core.LiveViewRegistry import LiveViewRegistry
from server.routers.PartsRouter import router as parts_router
from server.routers.DocumentsRouter import router as documents_router
from server.routers.BillingRouter import router as billing_router
from server.routers.WebhookRouter import router as webhook_router
from server.routers.LangRouter import router as lang_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)

    backend_client = BackendClientManager(helper_config=app.state.helper_config).get_client()
    realtime_client = RealtimeClientManager(helper_config=app.state.helper_config).get_client()

    logging.info("Booting all clients...")
    for client in [backend_client, realtime_client]:
        await client.boot()
    logging.info("All clients booted successfully.")

    app.state.backend_client = backend_client
    app.state.realtime_client = realtime_client
    app.state.registry = LiveViewRegistry(
        helper_config=app.state.helper_config,
        backend_client=backend_client,
        realtime_client=realtime_client,
    )

    await check_connections(backend_client, realtime_client)

    # while the app is running...
    yield

    # when the app shuts down, close the live views first, then the clients
    logging.info("Shutting down, closing live views and clients...")
    await app.state.registry.do_close()
    for client in [realtime_client, backend_client]:
        await client.close()
    logging.info("All clients closed.")


app = FastAPI(
    title="parts_desk",
    description=(
        "Multi-tenant workspace for engineering drawings. Uploaded documents are processed "
        "into parts; GET /parts serves the live, filterable parts list of an organization. "
        "Row changes arrive over the realtime feed or via POST /webhook/changes."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(parts_router)
app.include_router(documents_router)
app.include_router(billing_router)
app.include_router(webhook_router)
app.include_router(lang_router)


##########################################
############ ERROR MAPPING ###############
##########################################

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError) -> JSONResponse:
    """Map backend failures: auth errors keep their 401/403, missing rows 404, anything else 502."""
    if isinstance(exc, AuthorizationError):
        status_code = exc.status_code if exc.status_code in (401, 403) else 401
    elif exc.status_code == 404:
        status_code = 404
    else:
        logging.error("Backend error on %s %s: %s", request.method, request.url.path, exc.message)
        status_code = 502
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


async def check_connections(backend_client: BackendClientInterface, realtime_client: RealtimeClientInterface) -> None:
    """Check connectivity to the backend on startup.

    Realtime failures are non-fatal (lists are still served, just not live).
    Backend failures are fatal, nothing can be served without it.

    Raises:
        Exception: If the backend is not reachable.
    """
    try:
        await realtime_client.do_healthcheck()
    except BackendError as e:
        logging.warning("Realtime client '%s' is not reachable: %s. Lists will not update live.", realtime_client.__class__.__name__, e.message)

    try:
        await backend_client.do_healthcheck()
    except BackendError as e:
        raise Exception(f"Backend client '{backend_client.__class__.__name__}' is not reachable: {e.message}. Cannot serve requests.") from e


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting parts_desk API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
