from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

load_dotenv()  # Load environment variables from .env if present (MISTRAL_API_KEY, PORT, etc.)

from ..core.settings import get_settings
from ..domain.errors import DeepThinkError, QueryRequired
from ..observability.metrics import metrics_middleware_factory
from .routers.chat import router as chat_router
from .routers.diag import router as diag_router

settings = get_settings()

app = FastAPI(title="DeepThink Stream API", version="0.1.0")

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

# Routers
app.include_router(chat_router)
app.include_router(diag_router)

# CORS for the browser client
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.allowed_origins),
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


@app.exception_handler(DeepThinkError)
async def _deepthink_error(request: Request, exc: DeepThinkError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> Response:
    # Malformed submissions are reported like a missing query
    if request.url.path == "/chat":
        err = QueryRequired()
        return JSONResponse(status_code=err.status_code, content={"message": err.message})
    return await request_validation_exception_handler(request, exc)


@app.get("/")
def root():
    return {"name": "DeepThink Stream API", "version": "0.1.0"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "query_store": "in-memory",
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    # Expose Prometheus metrics
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
