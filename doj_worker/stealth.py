import random
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional
from urllib.parse import unquote, urlsplit

from .config import get_config, is_proxy_enabled

# ============================================================
# CONSTANTS
# ============================================================
# (user agent, sec-ch-ua-platform). Platform must match the UA's OS.
USER_AGENTS = (
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36",
        '"Windows"',
    ),
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/132.0.0.0 Safari/537.36",
        '"Windows"',
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36",
        '"macOS"',
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/132.0.0.0 Safari/537.36",
        '"macOS"',
    ),
    (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36",
        '"Linux"',
    ),
)

TIMEZONES = (
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
)

STEALTH_LOCALE = "en-US"
STEALTH_ACCEPT_LANGUAGE = "en-US,en;q=0.9"
STEALTH_USER_AGENT = USER_AGENTS[0][0]

PREWARM_WAIT_UNTIL = "networkidle"
PREWARM_WAIT_UNTIL_PROXIED = "domcontentloaded"

STEALTH_LAUNCH_ARGS = (
    "--headless=new",
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-infobars",
    "--window-size=1920,1080",
)

# Runs in every page before any site script.
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
if (!window.chrome) { window.chrome = {}; }
if (!window.chrome.runtime) { window.chrome.runtime = {}; }
"""

_CHROME_MAJOR_RE = re.compile(r"Chrome/(\d+)\.")

# ============================================================
# FINGERPRINT
# ============================================================


@dataclass(frozen=True)
class StealthFingerprint:
    user_agent: str
    headers: Mapping[str, str] = field(hash=False)
    viewport: Mapping[str, int] = field(hash=False)
    locale: str = STEALTH_LOCALE
    timezone_id: str = TIMEZONES[0]

    def __post_init__(self) -> None:
        # Stored as read-only copies of the given dicts.
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))
        object.__setattr__(self, "viewport", MappingProxyType(dict(self.viewport)))

    @property
    def chrome_major(self) -> str:
        match = _CHROME_MAJOR_RE.search(self.user_agent)
        return match.group(1) if match else ""


def build_client_hints(chrome_major: str) -> str:
    return f'"Chromium";v="{chrome_major}", "Google Chrome";v="{chrome_major}", "Not_A Brand";v="24"'


def build_fingerprint(rng: Optional[random.Random] = None) -> StealthFingerprint:
    """Build a randomised stealth fingerprint for a new browser context."""
    rng = rng or random
    user_agent, platform = rng.choice(USER_AGENTS)
    chrome_major = _CHROME_MAJOR_RE.search(user_agent).group(1)

    return StealthFingerprint(
        user_agent=user_agent,
        headers={
            "Accept-Language": STEALTH_ACCEPT_LANGUAGE,
            "sec-ch-ua": build_client_hints(chrome_major),
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": platform,
        },
        viewport={
            "width": 1900 + rng.randint(0, 20),
            "height": 1060 + rng.randint(0, 20),
        },
        locale=STEALTH_LOCALE,
        timezone_id=rng.choice(TIMEZONES),
    )


def build_akamai_delay_ms() -> int:
    """Human-like pause after the prewarm navigation, in [2000, 4000) ms."""
    return 2000 + random.randrange(2000)


# ============================================================
# LAUNCH / CONTEXT OPTIONS
# ============================================================


def parse_proxy_url(proxy_url: str) -> dict:
    """
    Parse a proxy URL into Playwright's proxy config format.

    Supports http://, https:// and socks5:// with optional credentials.
    """
    parts = urlsplit(str(proxy_url or "").strip())
    if not parts.scheme or not parts.hostname:
        raise ValueError("Invalid proxy URL: missing scheme or host")

    server = f"{parts.scheme}://{parts.hostname}"
    if parts.port:
        server += f":{parts.port}"
    result = {"server": server}
    if parts.username:
        result["username"] = unquote(parts.username)
    if parts.password:
        result["password"] = unquote(parts.password)
    return result


def get_stealth_launch_options(config: Optional[dict] = None) -> dict:
    cfg = config if config is not None else get_config()
    options = {
        "headless": True,
        "args": list(STEALTH_LAUNCH_ARGS),
    }
    if is_proxy_enabled(cfg):
        options["proxy"] = parse_proxy_url(cfg["proxy_url"])
    return options


def get_stealth_context_options(fp: Optional[StealthFingerprint] = None) -> dict:
    f = fp or build_fingerprint()
    return {
        "user_agent": f.user_agent,
        "extra_http_headers": dict(f.headers),
        "viewport": dict(f.viewport),
        "locale": f.locale,
        "timezone_id": f.timezone_id,
    }
