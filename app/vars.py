import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "browse-proxy")


def _normalize_route_prefix(raw: str) -> str:
    prefix = "/" + raw.strip().strip("/")
    if prefix == "/":
        raise ValueError("ROUTE_PREFIX must name a path segment, '/' is not allowed")
    return prefix + "/"


ROUTE_PREFIX = _normalize_route_prefix(os.getenv("ROUTE_PREFIX", "/browse/"))
PROXY_TIMEOUT = float(os.getenv("PROXY_TIMEOUT", "30"))
DEFAULT_USER_AGENT = os.getenv("DEFAULT_USER_AGENT", "Mozilla/5.0")
DISCONNECT_POLL_INTERVAL = float(os.getenv("DISCONNECT_POLL_INTERVAL", "0.5"))

# Path owned by the sibling tunnel subsystem (WebSocket/TCP); never routed here
TUNNEL_PATH = os.getenv("TUNNEL_PATH", "/wisp").rstrip("/")

REWRITE_HTML = os.getenv("REWRITE_HTML", "true").lower() == "true"
INJECT_NAV_SHIM = os.getenv("INJECT_NAV_SHIM", "true").lower() == "true"

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
