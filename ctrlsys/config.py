import os

# Storage
DATABASE_URL: str = os.getenv("CTRLSYS_DATABASE_URL", "sqlite+aiosqlite:///ctrlsys.db")
STORE_BACKEND: str = os.getenv("CTRLSYS_STORE_BACKEND", "sql").lower()

# Background sweeper / streaming
SWEEP_INTERVAL_SECONDS: float = float(os.getenv("SWEEP_INTERVAL_SECONDS", "1.0"))
WS_PUSH_INTERVAL_SECONDS: float = float(os.getenv("WS_PUSH_INTERVAL_SECONDS", "1.0"))
HUB_BUFFER_SIZE: int = int(os.getenv("HUB_BUFFER_SIZE", "100"))

# Completed/cancelled timers older than this are hidden from the default listing
LIST_RETENTION_HOURS: int = int(os.getenv("LIST_RETENTION_HOURS", "24"))

# Comma separated bearer tokens; empty disables the check
API_TOKENS: list[str] = [t.strip() for t in os.getenv("API_TOKENS", "").split(",") if t.strip()]

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Feature toggles
ENABLE_PROMETHEUS: bool = os.getenv("ENABLE_PROMETHEUS", "true").lower() == "true"
ENABLE_OTEL: bool = os.getenv("ENABLE_OTEL", "false").lower() == "true"

# OpenTelemetry exporter endpoint
OTEL_EXPORTER_ENDPOINT: str = os.getenv(
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "http://localhost:4318/v1/traces",
)
