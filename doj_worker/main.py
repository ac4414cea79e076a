import json
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from . import handlers
from .auth import SIGNATURE_HEADER, require_worker_signature
from .browser_pool import destroy_browser_pool, get_prewarm_interval_seconds
from .config import debug_print, get_config, is_proxy_enabled
from .errors import InputValidationError, WorkerError
from .rate_limit import rate_limiter

SERVICE_NAME = "doj-worker"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Resource-Policy": "same-origin",
}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    config = get_config()
    if not config.get("shared_secret"):
        debug_print("⚠️  WORKER_SHARED_SECRET not configured; signed routes will answer 500")
    interval = get_prewarm_interval_seconds(config)
    debug_print(
        f"🚀 {SERVICE_NAME} starting (proxy: {'on' if is_proxy_enabled(config) else 'off'}, "
        f"prewarm interval: {interval // 60} min)"
    )
    try:
        yield
    finally:
        await destroy_browser_pool()


app = FastAPI(lifespan=lifespan)

_startup_config = get_config()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_startup_config["allowed_origins"],
    allow_methods=["POST", "GET"],
    allow_headers=["Content-Type", SIGNATURE_HEADER, "Authorization"],
)


@app.middleware("http")
async def access_log_and_security_headers(request: Request, call_next):
    started_at = time.monotonic()
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    duration_ms = int((time.monotonic() - started_at) * 1000)
    safe_path = str(request.url.path or "").replace("\r", "").replace("\n", "")
    debug_print(f"[worker] {request.method} {safe_path} -> {response.status_code} ({duration_ms}ms)")
    return response


# --- Error mapping: every error body is {"error": "..."} ---


@app.exception_handler(WorkerError)
async def worker_error_handler(_request: Request, exc: WorkerError):
    return JSONResponse(exc.to_payload(), status_code=exc.status_code, headers=exc.headers or None)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    debug_print(f"❌ Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def parse_json_object(body: bytes) -> dict:
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        raise InputValidationError("Invalid JSON body") from None
    if not isinstance(payload, dict):
        raise InputValidationError("JSON body must be an object")
    return payload


search_limiter = rate_limiter("search", "search_rate_limit")
analyze_limiter = rate_limiter("analyze", "analyze_rate_limit")


# --- Routes ---


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/")
async def root():
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "endpoints": ["/health", "/search", "/analyze", "/refresh"],
    }


@app.post("/search", dependencies=[Depends(search_limiter)])
async def search(body: bytes = Depends(require_worker_signature)):
    payload = parse_json_object(body)
    data = await handlers.handle_search(
        payload.get("query"),
        payload.get("from", 0),
        payload.get("size", handlers.MAX_SEARCH_SIZE),
    )
    return JSONResponse(data)


@app.post("/analyze", dependencies=[Depends(analyze_limiter)])
async def analyze(body: bytes = Depends(require_worker_signature)):
    payload = parse_json_object(body)
    return await handlers.handle_analyze(payload.get("fileUri"))


@app.post("/refresh", dependencies=[Depends(search_limiter)])
async def refresh(body: bytes = Depends(require_worker_signature)):
    payload = parse_json_object(body)
    return await handlers.handle_refresh(
        payload.get("query"),
        payload.get("batchSize", handlers.MAX_SEARCH_SIZE),
    )


def run() -> None:
    config = get_config()
    debug_print(f"PDF worker listening on :{config['port']}")
    uvicorn.run(app, host="0.0.0.0", port=config["port"])


if __name__ == "__main__":
    run()
