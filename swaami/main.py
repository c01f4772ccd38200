"""Swaami: trust-gated neighbourhood favour exchange."""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from swaami.api.router import api_router
from swaami.config import settings
from swaami.content import render_error, render_response
from swaami.database import close_db, init_db, sqlite_url
from swaami.errors import SwaamiError, ValidationError
from swaami.events import event_bus
from swaami.rate_limit import limiter
from swaami.retry import translate_store_error

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("swaami")

_HTTP_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found", 501: "not_configured"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_url = sqlite_url(settings.database_url)
    await init_db(db_url)
    safe_url = re.sub(r"://[^:]+:[^@]+@", "://***:***@", db_url)
    logger.info("Database connected: %s", safe_url)

    yield

    event_bus.close()
    await close_db()
    logger.info("Database closed")


app = FastAPI(
    title="Swaami",
    description="Trust-gated favour exchange between neighbours",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.include_router(api_router)


@app.exception_handler(SwaamiError)
async def swaami_error_handler(request: Request, exc: SwaamiError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return render_error(request, exc)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    # Store errors that escaped a bounded call; never leak the statement
    return render_error(request, translate_store_error(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("query", "path", "body"))
    message = first.get("msg", "Invalid request")
    return render_error(request, ValidationError(f"{field}: {message}" if field else message))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return render_response(
        request,
        {"error": exc.detail, "code": _HTTP_CODES.get(exc.status_code, "error")},
        status_code=exc.status_code,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return render_response(
        request,
        {"error": "Too many requests, slow down", "code": "rate_limited"},
        status_code=429,
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


def main():
    import uvicorn

    uvicorn.run(
        "swaami.main:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
