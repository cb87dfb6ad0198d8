import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from gateway import __version__
from gateway.api.accounts import router as accounts_router
from gateway.api.endpoints import router as api_router
from gateway.api.orchestrator import GatewayOrchestrator
from gateway.api.services.error_handling import ErrorResponseBuilder, gateway_error_from_oauth
from gateway.core.config import Config
from gateway.core.container import Container, build_container
from gateway.core.errors import GatewayError, StreamAborted
from gateway.core.oauth.exceptions import OAuthError

logger = logging.getLogger(__name__)


async def _refresh_loop(container: Container) -> None:
    """Periodically refresh OAuth tokens that are close to expiry."""
    interval = container.config.token_refresh_interval
    threshold = container.config.token_refresh_threshold
    while True:
        await asyncio.sleep(interval)
        try:
            await container.lifecycle.refresh_expiring(threshold)
        except Exception as e:  # keep the loop alive across store hiccups
            logger.warning("Proactive token refresh pass failed: %s", e)


def create_app(container: Container | None = None) -> FastAPI:
    """Build the gateway app.

    Args:
        container: Pre-built services (tests inject one); built from the
            environment when omitted.

    Raises:
        ConfigurationError: GATEWAY_SECRET is unset and no container was given
    """
    container = container or build_container(Config())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        refresher: asyncio.Task[None] | None = None
        if container.config.sync_model_catalogs:
            await container.sync_model_catalogs()
        if container.config.token_refresh_interval > 0:
            refresher = asyncio.create_task(_refresh_loop(container), name="token-refresh")
        try:
            yield
        finally:
            if refresher is not None:
                refresher.cancel()
                await asyncio.gather(refresher, return_exceptions=True)
            await container.aclose()

    app = FastAPI(title="Provider Gateway", version=__version__, lifespan=lifespan)
    app.state.container = container
    app.state.orchestrator = GatewayOrchestrator(container)

    @app.exception_handler(StreamAborted)
    async def _stream_aborted(request: Request, exc: StreamAborted) -> Response:
        # The caller is gone; there is nobody to read an error body
        return Response(status_code=exc.status_code)

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %r", request.method, request.url.path, exc)
        return ErrorResponseBuilder.for_path(exc, request.url.path)

    @app.exception_handler(OAuthError)
    async def _oauth_error(request: Request, exc: OAuthError) -> JSONResponse:
        # Credential failures that escape the routes, e.g. a refresh whose
        # tokens could not be stored
        logger.error("%s %s credential failure: %s", request.method, request.url.path, exc)
        return ErrorResponseBuilder.for_path(gateway_error_from_oauth(exc), request.url.path)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = [str(part) for part in first.get("loc", ()) if part != "body"]
        return ErrorResponseBuilder.invalid_parameter(
            ".".join(location) or "body", first.get("msg", "invalid value"), request.url.path
        )

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("%s %s crashed", request.method, request.url.path)
        return ErrorResponseBuilder.internal_error(request.url.path)

    app.include_router(api_router)
    app.include_router(accounts_router)
    return app


def main() -> None:
    if len(sys.argv) > 1 and sys.argv[1] == "--help":
        print(f"Provider Gateway v{__version__}")
        print("")
        print("Usage: python -m gateway.main")
        print("       or: gateway start")
        print("")
        print("Required environment variables:")
        print("  GATEWAY_SECRET - Passphrase used to encrypt stored provider tokens")
        print("")
        print("Optional environment variables:")
        print("  GATEWAY_API_KEYS - Bootstrap gateway keys as key=user_id pairs")
        print("  ACCOUNTS_FILE - JSON file holding linked provider accounts")
        print("  HOST - Server host (default: 0.0.0.0)")
        print("  PORT - Server port (default: 8082)")
        print("  LOG_LEVEL - Logging level (default: INFO)")
        print("  REQUEST_TIMEOUT - Request timeout in seconds (default: 90)")
        print("  SYNC_MODEL_CATALOGS - Narrow dynamic catalogs to upstream listings at startup")
        sys.exit(0)

    config = Config()

    # Configuration summary
    print(f"Provider Gateway v{__version__}")
    print(f"   Secret  : {config.secret_hash}")
    print(f"   Accounts: {config.accounts_file or '(in memory)'}")
    print(f"   Request Timeout : {config.request_timeout}s")
    print(f"   Server: {config.host}:{config.port}")
    print("")

    log_level = config.log_level.split()[0].lower()
    if log_level not in ("debug", "info", "warning", "error", "critical"):
        log_level = "info"

    uvicorn.run(
        create_app(build_container(config)),
        host=config.host,
        port=config.port,
        log_level=log_level,
        access_log=log_level == "debug",
    )


if __name__ == "__main__":
    main()
