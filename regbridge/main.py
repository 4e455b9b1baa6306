from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from regbridge.api.router import router
from regbridge.core.config import get_settings
from regbridge.core.telemetry import setup_logging, setup_telemetry
from regbridge.services.failures import ValidationError
from regbridge.services.site_directory import DirectoryCache


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    # One pooled client for the store API and the directory sheet
    http = httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout_seconds))
    app.state.http = http
    app.state.directory = DirectoryCache(
        http=http,
        csv_url=settings.sheet_csv_url,
        ttl_seconds=settings.directory_ttl_seconds,
        fallback_path=settings.site_directory_fallback_path,
    )
    try:
        yield
    finally:
        await http.aclose()


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Callers always get a parseable {ok: false} body, never a bare 422
    field = None
    for err in exc.errors():
        loc = [p for p in err.get("loc", ()) if p != "body"]
        if loc and isinstance(loc[-1], str):
            field = loc[-1]
            break
    failure = ValidationError(error="Invalid request", field=field)
    return JSONResponse(status_code=200, content=failure.to_payload())


settings = get_settings()
setup_logging(settings)

app = FastAPI(title="Registration Bridge", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)
app.add_exception_handler(RequestValidationError, request_validation_handler)

setup_telemetry(app, settings)
app.include_router(router)
