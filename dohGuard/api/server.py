"""FastAPI application entrypoint for the dohGuard proxy."""
from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dohGuard.api.models import error_response
from dohGuard.api.routes import doh, health
from dohGuard.api.utils.state import close_resources, init_resources
from dohGuard.config import ProxySettings
from dohGuard.logging_config import reset_request_id, set_request_id, setup_logging

logger = setup_logging("api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting dohGuard", extra={"state": "startup", "upstream": app.state.settings.upstream.url})
    await init_resources(app)
    logger.info(
        "dohGuard startup complete",
        extra={"state": "ready", "blocklist_size": len(app.state.blocklist)}
    )
    try:
        yield
    finally:
        logger.info("Shutting down dohGuard", extra={"state": "shutdown"})
        await close_resources(app)
        logger.info("dohGuard shutdown complete", extra={"state": "stopped"})


def create_app(settings: Optional[ProxySettings] = None) -> FastAPI:
    app = FastAPI(
        title="dohGuard",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings or ProxySettings.from_env()
    app.state.blocklist = None
    app.state.resolver = None

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        """Log all HTTP requests with timing and outcome."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = set_request_id(request_id)
        start_time = time.time()

        try:
            response = await call_next(request)
            duration = time.time() - start_time
            logger.info(
                "Request completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration": round(duration * 1000, 2),
                    "outcome": "success" if response.status_code < 400 else "error",
                }
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as exc:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {str(exc)}",
                exc_info=True,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration": round(duration * 1000, 2),
                    "outcome": "exception",
                    "error_type": type(exc).__name__,
                }
            )
            raise
        finally:
            reset_request_id(token)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return PlainTextResponse("Not Found", status_code=404)
        if exc.status_code == 405 and request.url.path == doh.DOH_PATH:
            return error_response(400, doh.INVALID_REQUEST)
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return error_response(500, "Internal server error")

    app.include_router(doh.router)
    app.include_router(health.router)

    return app


app = create_app()


def main() -> None:
    import uvicorn

    server = ProxySettings.from_env().server
    uvicorn.run(
        "dohGuard.api.server:app",
        host=server.host,
        port=server.port,
        reload=server.reload,
    )


if __name__ == "__main__":
    main()
