"""
Prometheus metric definitions  +  /metrics route (multiprocess-ready)
--------------------------------------------------------------------
• Metrics always live on the default registry; with
  PROMETHEUS_MULTIPROC_DIR set they are also written to .db files.
• With PROMETHEUS_MULTIPROC_DIR=<dir> set, /metrics serves a separate
  registry whose multiprocess collector aggregates those files.
• Otherwise /metrics serves the default registry.
"""

import os

from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
    multiprocess,
)

router = APIRouter()

# ────────── Registry ───────────────────────────────────────
if os.getenv("PROMETHEUS_MULTIPROC_DIR"):
    _SCRAPE_REGISTRY: CollectorRegistry = CollectorRegistry()
    multiprocess.MultiProcessCollector(_SCRAPE_REGISTRY)
else:
    _SCRAPE_REGISTRY = REGISTRY
# ───────────────────────────────────────────────────────────

# ────────── Metric definitions ─────────────────────────────
timers_created = Counter(
    "ctrlsys_timers_created_total",
    "Timers created through the API",
)

timer_transitions = Counter(
    "ctrlsys_timer_transitions_total",
    "Timer state transitions",
    ["status"],
)

sweeper_ticks = Counter(
    "ctrlsys_sweeper_ticks_total",
    "Expiration sweeps executed",
)

sweeper_errors = Counter(
    "ctrlsys_sweeper_errors_total",
    "Expiration sweeps that failed and will be retried next tick",
)

hub_events_dropped = Counter(
    "ctrlsys_hub_events_dropped_total",
    "Broadcast events dropped because a subscriber buffer was full",
)

stream_subscribers = Gauge(
    "ctrlsys_stream_subscribers",
    "Live broadcast hub subscriptions",
    multiprocess_mode="livesum",
)

completion_reports = Counter(
    "ctrlsys_completion_reports_total",
    "Timer job completion reports, by outcome",
    ["outcome"],
)
# ───────────────────────────────────────────────────────────


# ────────── /metrics endpoint ──────────────────────────────
@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(generate_latest(_SCRAPE_REGISTRY), media_type=CONTENT_TYPE_LATEST)
