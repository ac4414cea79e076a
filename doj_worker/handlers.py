import asyncio
import base64
import re
import time
from datetime import datetime, timezone
from urllib.parse import urlencode

from playwright.async_api import Error as PlaywrightError

from .browser_pool import get_pool, prewarm_akamai
from .config import debug_print
from .errors import InputValidationError, UpstreamError, WorkerError
from .page_fetch import FetchFailure, close_quietly, fetch_base64_in_page, fetch_json_in_page
from .pdf_extract import extract_pdf_text
from .ssrf import build_safe_justice_gov_url

# ============================================================
# CONSTANTS
# ============================================================
SEARCH_URL = "https://www.justice.gov/multimedia-search"
MAX_SEARCH_SIZE = 100
SEARCH_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 1.5

ANALYZE_GOTO_TIMEOUT_MS = 60000
AGE_GATE_CLICK_TIMEOUT_MS = 15000
AGE_GATE_PDF_WAIT_MS = 30000
AGE_VERIFY_MARKER = "/age-verify"
AGE_GATE_BUTTON_RE = re.compile(r"I\s*am\s*18(\s*years)?(\s*of\s*age)?", re.IGNORECASE)
PDF_URL_RE = re.compile(r"\.pdf", re.IGNORECASE)

DEFAULT_REFRESH_QUERY = "epstein"
REFRESH_BATCH_PAUSE_SECONDS = 1.0


def _coerce_int(value, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def build_search_url(query: str, from_=0, size=MAX_SEARCH_SIZE) -> str:
    offset = max(0, _coerce_int(from_, 0))
    page_size = max(0, min(_coerce_int(size, MAX_SEARCH_SIZE), MAX_SEARCH_SIZE))
    params = urlencode({"keys": str(query), "from": offset, "size": page_size})
    return f"{SEARCH_URL}?{params}"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ============================================================
# SEARCH
# ============================================================


async def handle_search(query, from_=0, size=MAX_SEARCH_SIZE):
    """
    Run a DOJ multimedia search from inside a pooled page.

    Up to three attempts, each on a fresh page from the shared context. Attempts
    after the first re-prewarm that page, since a failure usually means the
    Akamai session went stale. Returns the DOJ JSON untouched.
    """
    if not query:
        raise InputValidationError("query is required")

    try:
        pool = await get_pool()
    except Exception as e:
        raise WorkerError(str(e) or "Unknown error", status_code=500) from e
    search_url = build_search_url(query, from_, size)

    last_error: Exception | None = None
    for attempt in range(1, SEARCH_ATTEMPTS + 1):
        page = None
        try:
            page = await pool.context.new_page()
            if attempt > 1:
                await prewarm_akamai(page)
                pool.last_prewarm = time.time()

            result = await fetch_json_in_page(page, search_url)
            if isinstance(result, FetchFailure):
                raise UpstreamError(result.describe("DOJ search failed with"), status=result.status)
            return result.data
        except Exception as e:
            last_error = e
            debug_print(f"⚠️ Search attempt {attempt}/{SEARCH_ATTEMPTS} failed: {e}")
        finally:
            await close_quietly(page)

        if attempt < SEARCH_ATTEMPTS:
            # Give bot protection time to settle.
            await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)

    message = str(last_error) if last_error is not None else "Unknown error"
    raise WorkerError(message or "Unknown error", status_code=500)


# ============================================================
# ANALYZE
# ============================================================


async def pass_age_gate(page) -> bool:  # noqa: ANN001
    """
    Click through the DOJ age-verification interstitial.

    Returns False when the button never shows up; the session cookies may
    already satisfy the gate, so callers carry on either way.
    """
    button = page.get_by_role("button", name=AGE_GATE_BUTTON_RE)
    try:
        await button.click(timeout=AGE_GATE_CLICK_TIMEOUT_MS)
        await page.wait_for_load_state("domcontentloaded")
        await page.wait_for_url(PDF_URL_RE, timeout=AGE_GATE_PDF_WAIT_MS)
    except PlaywrightError as e:
        debug_print(f"⚠️ Age gate not passed, continuing with current session: {e}")
        return False
    return True


async def handle_analyze(file_uri) -> dict:
    """Download a justice.gov PDF through the browser session and extract its text."""
    if not file_uri:
        raise InputValidationError("fileUri is required")

    # Raises JusticeGovUrlError (400/403) before any browser work happens.
    safe_url = build_safe_justice_gov_url(str(file_uri))

    try:
        pool = await get_pool()
        page = await pool.context.new_page()
        try:
            await page.goto(safe_url, wait_until="domcontentloaded", timeout=ANALYZE_GOTO_TIMEOUT_MS)
            if AGE_VERIFY_MARKER in str(page.url or ""):
                await pass_age_gate(page)

            result = await fetch_base64_in_page(page, safe_url)
            if isinstance(result, FetchFailure):
                raise UpstreamError(
                    result.describe("PDF download failed:", include_body=False),
                    status=result.status,
                )

            raw_bytes = base64.b64decode(result.data or "")
            parsed = extract_pdf_text(raw_bytes)
        finally:
            await close_quietly(page)
    except WorkerError:
        raise
    except Exception as e:
        debug_print(f"❌ Analyze failed: {e}")
        raise WorkerError(str(e) or "Unknown error", status_code=500) from e

    return {
        "text": parsed.text or "",
        "pages": parsed.pages or 0,
        "metadata": {
            "fileSize": len(raw_bytes),
            "extractedAt": _utc_timestamp(),
            "info": parsed.info,
        },
    }


# ============================================================
# REFRESH (FULL CRAWL)
# ============================================================


def _total_value(total) -> int:
    if isinstance(total, dict):
        total = total.get("value")
    return max(0, _coerce_int(total, 0))


async def handle_refresh(query=None, batch_size=MAX_SEARCH_SIZE) -> dict:
    """
    Page through the DOJ search index and collect every hit.

    A failure after at least one good batch returns what was collected so far
    plus `error`. A failure on the first batch is a 502 with an empty result.
    """
    query = query or DEFAULT_REFRESH_QUERY
    batch_size = max(1, min(_coerce_int(batch_size, MAX_SEARCH_SIZE), MAX_SEARCH_SIZE))

    try:
        pool = await get_pool()
        page = await pool.context.new_page()
    except Exception as e:
        raise WorkerError(str(e) or "Unknown error", status_code=500) from e

    documents: list = []
    total = 0
    batches = 0
    offset = 0
    try:
        while True:
            try:
                result = await fetch_json_in_page(page, build_search_url(query, offset, batch_size))
            except Exception as e:
                result = FetchFailure(status=0, status_text="FETCH_ERROR", body=str(e))

            if isinstance(result, FetchFailure):
                message = result.describe("DOJ search failed with")
                if batches == 0:
                    raise WorkerError(
                        message,
                        status_code=502,
                        body={"total": 0, "documents": [], "batches": 0},
                    )
                debug_print(f"⚠️ Refresh stopped after {batches} batch(es): {message}")
                return {"total": total, "documents": documents, "batches": batches, "error": message}

            data = result.data if isinstance(result.data, dict) else {}
            hits_block = data.get("hits") if isinstance(data.get("hits"), dict) else {}
            total = _total_value(hits_block.get("total"))
            hits = hits_block.get("hits") if isinstance(hits_block.get("hits"), list) else []

            documents.extend(hits)
            batches += 1
            offset += batch_size

            if not hits or len(documents) >= total:
                break
            await asyncio.sleep(REFRESH_BATCH_PAUSE_SECONDS)
    finally:
        await close_quietly(page)

    debug_print(f"✅ Refresh collected {len(documents)}/{total} documents in {batches} batch(es)")
    return {"total": total, "documents": documents, "batches": batches}
