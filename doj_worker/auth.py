import hashlib
import hmac
from typing import Mapping, Optional

from fastapi import Request

from .config import debug_print, get_config
from .errors import WorkerError

SIGNATURE_HEADER = "X-Worker-Signature"
BEARER_PREFIX = "Bearer "


def extract_worker_signature(headers: Mapping[str, str]) -> Optional[str]:
    """
    Pull the request signature out of the headers.

    `X-Worker-Signature` wins over `Authorization: Bearer <sig>` when both are sent.
    """
    signature_header = headers.get(SIGNATURE_HEADER) or headers.get(SIGNATURE_HEADER.lower())
    auth_header = headers.get("Authorization") or headers.get("authorization")

    bearer_token = None
    if auth_header and auth_header.startswith(BEARER_PREFIX):
        bearer_token = auth_header[len(BEARER_PREFIX):]

    return signature_header or bearer_token or None


def _as_bytes(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def compute_worker_signature(payload, shared_secret: str) -> str:
    """Hex HMAC-SHA256 of `payload` (str or bytes) keyed with `shared_secret`."""
    return hmac.new(_as_bytes(shared_secret), _as_bytes(payload), hashlib.sha256).hexdigest()


def verify_worker_signature(payload, signature: str, shared_secret: str) -> bool:
    expected = compute_worker_signature(payload, shared_secret)
    provided = _as_bytes(signature or "")
    # compare_digest leaks length anyway; bail out before it on a size mismatch.
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(provided, expected.encode("ascii"))


async def require_worker_signature(request: Request) -> bytes:
    """
    FastAPI dependency guarding every mutating route.

    The HMAC covers the raw request body exactly as received. Returns that body.
    """
    config = get_config()
    shared_secret = config.get("shared_secret")
    if not shared_secret:
        debug_print("❌ WORKER_SHARED_SECRET not configured")
        raise WorkerError("Server misconfigured", status_code=500)

    signature = extract_worker_signature(request.headers)
    if not signature:
        raise WorkerError("Missing authentication signature", status_code=401)

    body = await request.body()
    if len(body) > int(config.get("max_body_bytes") or 0):
        raise WorkerError("Request body too large", status_code=413)

    if not verify_worker_signature(body, signature, shared_secret):
        raise WorkerError("Invalid signature", status_code=403)

    return body
