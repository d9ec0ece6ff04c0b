import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "openai-key-relay")

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
UPSTREAM_ORIGIN = os.environ.get("UPSTREAM_ORIGIN", "https://api.openai.com")
ROUTE_PREFIX = os.environ.get("ROUTE_PREFIX", "/openai")
# Older callers post chat completions straight to this path
COMPAT_PATH = os.environ.get("COMPAT_PATH", "/openai")
COMPAT_UPSTREAM_PATH = os.environ.get("COMPAT_UPSTREAM_PATH", "/v1/chat/completions")
FEATURE_HEADER = os.environ.get("FEATURE_HEADER", "OpenAI-Beta")

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()
]

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
