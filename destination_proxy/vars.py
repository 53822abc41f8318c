import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "cf-destination-proxy")

UAA_INSTANCE_NAME = os.getenv("CFDP_UAA_INSTANCE_NAME", "cf-destination-proxy-uaa")
DESTINATION_INSTANCE_NAME = os.getenv(
    "CFDP_DESTINATION_INSTANCE_NAME", "cf-destination-proxy-destination"
)

DEFAULT_PORT = int(os.getenv("CFDP_DEFAULT_PORT", "8887"))
DEFAULT_ENV_PATH = os.getenv("CFDP_DEFAULT_ENV_PATH", ".")
PROXY_HOST = os.getenv("CFDP_PROXY_HOST", "http://127.0.0.1")
LISTEN_HOST = os.getenv("CFDP_LISTEN_HOST", "127.0.0.1")

# Name of the variable the bind command writes and the run command reads
TARGET_VARIABLE = "CFDP_TARGET"

PROXY_PREFIX = os.getenv("CFDP_PROXY_PREFIX", "/proxy")
FORWARDED_AUTH_HEADER = os.getenv(
    "CFDP_FORWARDED_AUTH_HEADER", "x-approuter-authorization"
).lower()

CF_COMMAND = os.getenv("CFDP_CF_COMMAND", "cf")

# Seconds; unset means upstream calls are never cut short by the proxy
TIMEOUT_VARIABLE = "PROXY_TIMEOUT"

AUTH_ALLOW_UNSAFE_CERT = os.getenv("AUTH_ALLOW_UNSAFE_CERT", "false").lower() == "true"

METRICS_ENABLED = os.getenv("CFDP_METRICS", "false").lower() == "true"
METRICS_PATH = os.getenv("CFDP_METRICS_PATH", "/__cfdp/metrics")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Extra destination catalog attributes copied into the generated destinations list
DESTINATION_ATTRIBUTES = [
    a.strip()
    for a in os.getenv("CFDP_DESTINATION_ATTRIBUTES", "").split(",")
    if a.strip()
]
