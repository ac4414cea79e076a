import enum
import ipaddress
import re
from urllib.parse import quote, urlsplit

from .errors import WorkerError

ALLOWED_ROOT_DOMAIN = "justice.gov"

_IPV4_LITERAL_RE = re.compile(r"^[0-9.]+$")
_LOOPBACK_NAMES = {"localhost", "127.0.0.1", "::1"}

# Characters a browser percent-encodes in each component. Everything else,
# including existing %XX escapes, is carried over unchanged.
_PATH_ESCAPED = frozenset(' "<>`{}')
_QUERY_ESCAPED = frozenset(" \"<>#'")
_FRAGMENT_ESCAPED = frozenset(' "<>`')


class UrlRejection(str, enum.Enum):
    INVALID_URL = "INVALID_URL"
    UNSAFE_PROTOCOL = "UNSAFE_PROTOCOL"
    DISALLOWED_PORT = "DISALLOWED_PORT"
    DISALLOWED_IP = "DISALLOWED_IP"
    UNALLOWED_HOST = "UNALLOWED_HOST"


class JusticeGovUrlError(WorkerError):
    """
    Rejection raised by `build_safe_justice_gov_url`.

    `reason` lets callers tell a forbidden host (403) apart from bad input (400)
    without matching on the message text.
    """

    def __init__(self, message: str, reason: UrlRejection) -> None:
        self.reason = UrlRejection(reason)
        status_code = 403 if self.reason is UrlRejection.UNALLOWED_HOST else 400
        super().__init__(message, status_code=status_code)

    @property
    def http_status(self) -> int:
        return self.status_code


class SafeUrl(str):
    """A URL rebuilt from validated parts. Only `build_safe_justice_gov_url` creates these."""

    __slots__ = ()


def _encode_component(text: str, escaped: frozenset) -> str:
    return "".join(
        quote(ch, safe="") if ch in escaped or ord(ch) <= 0x20 or ord(ch) >= 0x7F else ch
        for ch in text
    )


def _is_ip_address(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def is_allowed_justice_gov_host(hostname: str) -> bool:
    host = str(hostname or "").lower()

    # Localhost-style names are refused even if they somehow sit under justice.gov.
    if host in _LOOPBACK_NAMES or host.endswith(".localhost"):
        return False
    if _is_ip_address(host.strip("[]")):
        return False

    return host == ALLOWED_ROOT_DOMAIN or host.endswith("." + ALLOWED_ROOT_DOMAIN)


def build_safe_justice_gov_url(untrusted: str) -> SafeUrl:
    """
    Validate an externally supplied URL and rebuild it from its checked parts.

    The returned value never contains the caller's raw string: scheme and host
    are fixed/validated, credentials and ports are dropped, and only the path,
    query and fragment are carried over (percent-encoded where needed).
    """
    raw = str(untrusted if untrusted is not None else "").strip()
    if not raw:
        raise JusticeGovUrlError("URL must not be empty", UrlRejection.INVALID_URL)

    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        raise JusticeGovUrlError("Invalid URL", UrlRejection.INVALID_URL) from None

    if not parts.scheme or not parts.netloc:
        raise JusticeGovUrlError("Invalid URL", UrlRejection.INVALID_URL)

    if parts.scheme.lower() != "https":
        raise JusticeGovUrlError("Only HTTPS URLs are allowed", UrlRejection.UNSAFE_PROTOCOL)

    if port is not None and port != 443:
        raise JusticeGovUrlError("Explicit ports are not allowed", UrlRejection.DISALLOWED_PORT)

    # urlsplit strips IPv6 brackets from .hostname; look at the raw host part too.
    host_part = parts.netloc.rsplit("@", 1)[-1]
    bracketed = host_part.startswith("[")
    hostname = (parts.hostname or "").lower()
    if not hostname:
        raise JusticeGovUrlError("Invalid URL", UrlRejection.INVALID_URL)

    if bracketed or _IPV4_LITERAL_RE.match(hostname) or _is_ip_address(hostname):
        raise JusticeGovUrlError("Only justice.gov hosts are allowed", UrlRejection.DISALLOWED_IP)

    if not is_allowed_justice_gov_host(hostname):
        raise JusticeGovUrlError("Only justice.gov hosts are allowed", UrlRejection.UNALLOWED_HOST)

    safe = f"https://{hostname}{_encode_component(parts.path or '/', _PATH_ESCAPED)}"
    if parts.query:
        safe += "?" + _encode_component(parts.query, _QUERY_ESCAPED)
    if parts.fragment:
        safe += "#" + _encode_component(parts.fragment, _FRAGMENT_ESCAPED)
    return SafeUrl(safe)
