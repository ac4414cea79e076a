import builtins as _builtins
import json
import os
import sys

# ============================================================
# LOGGING HELPER
# ============================================================
DEBUG = str(os.environ.get("DEBUG", "1")).strip().lower() not in ("0", "false", "no", "off")


def _safe_print(*args, **kwargs) -> None:
    """
    Print without crashing on console encoding issues.
    """
    try:
        _builtins.print(*args, **kwargs)
    except UnicodeEncodeError:
        file = kwargs.get("file") or sys.stdout
        sep = kwargs.get("sep", " ")
        end = kwargs.get("end", "\n")
        flush = bool(kwargs.get("flush", False))

        try:
            text = sep.join(str(a) for a in args) + end
            encoding = getattr(file, "encoding", None) or getattr(sys.stdout, "encoding", None) or "utf-8"
            safe_text = text.encode(encoding, errors="backslashreplace").decode(encoding, errors="ignore")
            file.write(safe_text)
            if flush:
                try:
                    file.flush()
                except Exception:
                    pass
        except Exception:
            return


def debug_print(*args, **kwargs):
    if DEBUG:
        _safe_print(*args, **kwargs)


# ============================================================
# CONFIGURATION
# ============================================================
CONFIG_FILE = os.environ.get("DOJ_WORKER_CONFIG", "config.json")

DEFAULT_ALLOWED_ORIGINS = ["https://epstein-kappa.vercel.app"]

# env var -> config key
_ENV_KEYS = {
    "WORKER_SHARED_SECRET": "shared_secret",
    "ALLOWED_ORIGINS": "allowed_origins",
    "PROXY_URL": "proxy_url",
    "PREWARM_INTERVAL_MINUTES": "prewarm_interval_minutes",
    "PORT": "port",
}


def _split_origins(value) -> list:
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value or "").split(",")
    return [str(item).strip() for item in items if str(item).strip()]


def _coerce_int(value, default: int, *, minimum: int = 0) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number < minimum:
        return default
    return number


def get_config() -> dict:
    """
    Build the worker configuration.

    Precedence (lowest to highest): built-in defaults, `config.json`, environment.
    """
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            config = json.load(f)
        if not isinstance(config, dict):
            debug_print(f"⚠️  Config file {CONFIG_FILE} is not an object, using defaults")
            config = {}
    except FileNotFoundError:
        config = {}
    except json.JSONDecodeError as e:
        debug_print(f"⚠️  Config file error: {e}, using defaults")
        config = {}

    for env_name, key in _ENV_KEYS.items():
        value = os.environ.get(env_name)
        if value is not None and str(value).strip() != "":
            config[key] = value

    config.setdefault("shared_secret", "")
    config.setdefault("allowed_origins", list(DEFAULT_ALLOWED_ORIGINS))
    config.setdefault("proxy_url", "")
    config.setdefault("prewarm_interval_minutes", None)
    config.setdefault("port", 3000)
    config.setdefault("trust_proxy", True)
    config.setdefault("search_rate_limit", 50)
    config.setdefault("analyze_rate_limit", 30)
    config.setdefault("rate_limit_window_seconds", 15 * 60)
    config.setdefault("max_body_bytes", 2 * 1024 * 1024)

    config["shared_secret"] = str(config.get("shared_secret") or "")
    config["proxy_url"] = str(config.get("proxy_url") or "").strip()
    config["allowed_origins"] = _split_origins(config.get("allowed_origins")) or list(DEFAULT_ALLOWED_ORIGINS)
    config["port"] = _coerce_int(config.get("port"), 3000, minimum=1)
    config["search_rate_limit"] = _coerce_int(config.get("search_rate_limit"), 50, minimum=1)
    config["analyze_rate_limit"] = _coerce_int(config.get("analyze_rate_limit"), 30, minimum=1)
    config["rate_limit_window_seconds"] = _coerce_int(config.get("rate_limit_window_seconds"), 900, minimum=1)
    config["max_body_bytes"] = _coerce_int(config.get("max_body_bytes"), 2 * 1024 * 1024, minimum=1)
    return config


def is_proxy_enabled(config: dict | None = None) -> bool:
    cfg = config if config is not None else get_config()
    return bool(str(cfg.get("proxy_url") or "").strip())
