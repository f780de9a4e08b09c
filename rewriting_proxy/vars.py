import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "rewriting-proxy")

PROXY_PATH_SEGMENT = "proxy"
DEFAULT_TARGET_URL = os.environ.get("DEFAULT_TARGET_URL", "https://www.google.com")
PUBLIC_URL = os.environ.get("PUBLIC_URL", "").rstrip("/")  # Public-facing origin for rewrites


def _parse_timeout(raw: str):
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


# No timeout unless configured; the hosting server owns the deadline policy
PROXY_TIMEOUT = _parse_timeout(os.environ.get("PROXY_TIMEOUT", ""))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
