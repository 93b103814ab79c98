import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "relay-proxy")

# Route prefix the proxy answers on; rewritten links point at f"{origin}{prefix}/".
PROXY_PATH_PREFIX = "/" + os.environ.get("PROXY_PATH_PREFIX", "/p").strip("/")
# Public-facing origin, for deployments behind another reverse proxy
PUBLIC_URL = os.environ.get("PUBLIC_URL", "").rstrip("/")

APP_VERSION_DEFAULT = os.environ.get("APP_VERSION_DEFAULT", "0.0.0")
VERSION_PATH = os.environ.get("VERSION_PATH", "/VERSION")
VERSION_FILE = os.environ.get("VERSION_FILE", "VERSION")
VERSION_LOOKUP_TIMEOUT = float(os.environ.get("VERSION_LOOKUP_TIMEOUT", "2.0"))

PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "60"))
PROXY_MAX_REDIRECTS = int(os.environ.get("PROXY_MAX_REDIRECTS", "20"))
UPSTREAM_VERIFY_TLS = os.environ.get("UPSTREAM_VERIFY_TLS", "true").lower() == "true"

DEFAULT_USER_AGENT = os.environ.get(
    "DEFAULT_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
)

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
