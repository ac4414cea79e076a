import asyncio
import enum
import random
import time
from typing import Optional

from playwright.async_api import async_playwright

from .config import debug_print, get_config, is_proxy_enabled
from .page_fetch import close_quietly
from .stealth import (
    PREWARM_WAIT_UNTIL,
    PREWARM_WAIT_UNTIL_PROXIED,
    STEALTH_INIT_SCRIPT,
    StealthFingerprint,
    build_akamai_delay_ms,
    build_fingerprint,
    get_stealth_context_options,
    get_stealth_launch_options,
)

JUSTICE_GOV_HOME = "https://www.justice.gov/"
PREWARM_TIMEOUT_MS = 30000
DEFAULT_PREWARM_INTERVAL_MINUTES = 10

# Akamai cookies come from JS execution, not from images/fonts/css.
BLOCKED_RESOURCE_PATTERN = "**/*.{png,jpg,jpeg,gif,svg,webp,woff,woff2,ttf,eot,css}"


class PoolState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    REINITIALIZING = "reinitializing"
    DESTROYED = "destroyed"


def get_prewarm_interval_seconds(config: Optional[dict] = None) -> int:
    """
    How often to re-prewarm the shared context.

    `PREWARM_INTERVAL_MINUTES` wins when it is a non-negative integer. Otherwise
    periodic prewarm is off when a proxy is configured (saves proxy bandwidth;
    request retries still prewarm on demand) and every 10 minutes without one.
    """
    cfg = config if config is not None else get_config()
    raw = cfg.get("prewarm_interval_minutes")
    if raw is not None and str(raw).strip() != "":
        try:
            minutes = int(str(raw).strip())
        except ValueError:
            minutes = -1
        if minutes >= 0:
            return minutes * 60
    return 0 if is_proxy_enabled(cfg) else DEFAULT_PREWARM_INTERVAL_MINUTES * 60


async def _abort_route(route) -> None:  # noqa: ANN001
    await route.abort()


async def prewarm_akamai(page, config: Optional[dict] = None) -> None:  # noqa: ANN001
    """Visit the justice.gov homepage so the context picks up Akamai session cookies."""
    cfg = config if config is not None else get_config()
    proxied = is_proxy_enabled(cfg)
    if proxied:
        await page.route(BLOCKED_RESOURCE_PATTERN, _abort_route)

    await page.goto(
        JUSTICE_GOV_HOME,
        wait_until=PREWARM_WAIT_UNTIL_PROXIED if proxied else PREWARM_WAIT_UNTIL,
        timeout=PREWARM_TIMEOUT_MS,
    )

    # Minimal human-looking interaction for behavioural checks.
    await page.mouse.move(300 + random.random() * 400, 200 + random.random() * 300)
    await page.evaluate("(dy) => window.scrollBy(0, dy)", 100 + random.random() * 200)

    await page.wait_for_timeout(build_akamai_delay_ms())


async def create_stealth_context(browser, fp: StealthFingerprint):  # noqa: ANN001
    context = await browser.new_context(**get_stealth_context_options(fp))
    await context.add_init_script(STEALTH_INIT_SCRIPT)
    return context


class BrowserPool:
    """
    One browser process + one stealth context shared by every request.

    All pages come from `context`, so they share the cookie jar holding the
    challenge tokens picked up during prewarm.
    """

    def __init__(self, playwright, browser, context, fingerprint: StealthFingerprint, config: dict) -> None:  # noqa: ANN001
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.fingerprint = fingerprint
        self.last_prewarm = time.time()
        self.prewarm_task: Optional[asyncio.Task] = None
        self._config = config

    def is_connected(self) -> bool:
        try:
            return bool(self.browser.is_connected())
        except Exception:
            return False

    async def new_page(self):
        return await self.context.new_page()

    def start_periodic_prewarm(self, interval_seconds: int) -> None:
        if interval_seconds <= 0 or self.prewarm_task is not None:
            return
        self.prewarm_task = asyncio.create_task(self._periodic_prewarm(interval_seconds))

    async def _periodic_prewarm(self, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            page = None
            try:
                page = await self.context.new_page()
                await prewarm_akamai(page, self._config)
                self.last_prewarm = time.time()
                debug_print("🔄 Periodic prewarm refreshed Akamai session")
            except Exception as e:
                debug_print(f"⚠️ Prewarm refresh failed: {e}")
            finally:
                await close_quietly(page)

    async def close(self) -> None:
        """Best-effort teardown. Cancels the prewarm task before touching the context."""
        task = self.prewarm_task
        self.prewarm_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                pass
        await close_quietly(self.context)
        await close_quietly(self.browser)
        if self.playwright is not None:
            try:
                await self.playwright.stop()
            except Exception:
                pass


# ============================================================
# PROCESS-WIDE POOL
# ============================================================
_pool: Optional[BrowserPool] = None
_state: PoolState = PoolState.UNINITIALIZED
_pool_lock: Optional[asyncio.Lock] = None
_pool_lock_loop = None


def get_pool_state() -> PoolState:
    return _state


def _get_pool_lock() -> asyncio.Lock:
    global _pool_lock, _pool_lock_loop
    loop = asyncio.get_running_loop()
    if _pool_lock is None or _pool_lock_loop is not loop:
        _pool_lock = asyncio.Lock()
        _pool_lock_loop = loop
    return _pool_lock


async def destroy_browser_pool() -> None:
    """Tear down the pool (timer first, then context, then browser). Never raises."""
    global _pool, _state
    pool = _pool
    _pool = None
    if pool is not None:
        await pool.close()
        debug_print("🧹 Browser pool destroyed")
    _state = PoolState.DESTROYED


async def init_browser_pool(config: Optional[dict] = None) -> BrowserPool:
    """Launch a fresh browser + stealth context, prewarm it and publish it as the pool."""
    global _pool, _state
    cfg = config if config is not None else get_config()
    reinit = _pool is not None or _state in (PoolState.READY, PoolState.REINITIALIZING)

    await destroy_browser_pool()
    _state = PoolState.REINITIALIZING if reinit else PoolState.INITIALIZING

    fp = build_fingerprint()
    playwright = None
    browser = None
    try:
        playwright = await async_playwright().start()
        browser = await playwright.chromium.launch(**get_stealth_launch_options(cfg))
        context = await create_stealth_context(browser, fp)

        page = await context.new_page()
        try:
            await prewarm_akamai(page, cfg)
        finally:
            await close_quietly(page)
    except BaseException:
        # No half-built pool: drop everything launched so far.
        await close_quietly(browser)
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception:
                pass
        _state = PoolState.UNINITIALIZED
        raise

    pool = BrowserPool(playwright, browser, context, fp, cfg)
    _pool = pool
    _state = PoolState.READY

    interval_seconds = get_prewarm_interval_seconds(cfg)
    if interval_seconds > 0:
        pool.start_periodic_prewarm(interval_seconds)
        debug_print(f"⏱️  Periodic prewarm enabled (every {interval_seconds // 60} min)")
    else:
        debug_print("⏱️  Periodic prewarm disabled (on-demand only via retry)")

    debug_print(f"✅ Browser pool initialised (fingerprint: {fp.user_agent[-30:]})")
    return pool


async def get_pool() -> BrowserPool:
    """Return the live pool, rebuilding it from scratch if missing or disconnected."""
    async with _get_pool_lock():
        if _pool is not None:
            if _pool.is_connected():
                return _pool
            debug_print("⚠️ Browser disconnected, reinitialising pool")
        return await init_browser_pool()
