# routes_metrics.py

"""Prometheus metrics and /metrics endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

# Counters
catalog_import_rows_total = Counter(
    "catalog_import_rows_total",
    "Import rows processed by sheet and outcome",
    ["sheet", "outcome"],
)
catalog_import_rows_total.labels(sheet="category", outcome="created").inc(0)

catalog_outbox_tasks_total = Counter(
    "catalog_outbox_tasks_total",
    "Outbox tasks processed by kind and final status",
    ["kind", "status"],
)
catalog_outbox_tasks_total.labels(kind="availability.menu", status="done").inc(0)

catalog_cascade_updates_total = Counter(
    "catalog_cascade_updates_total",
    "Entities whose active flag was changed by the availability cascade",
    ["entity_type"],
)
catalog_cascade_updates_total.labels(entity_type="food_item").inc(0)

catalog_swallowed_errors_total = Counter(
    "catalog_swallowed_errors_total",
    "Background failures logged and not surfaced to any caller",
    ["entity_type", "error_kind"],
)
catalog_swallowed_errors_total.labels(entity_type="menu", error_kind="cascade").inc(0)

catalog_db_slow_queries_total = Counter(
    "catalog_db_slow_queries_total",
    "Statements slower than DB_SLOW_QUERY_MS by database label",
    ["db"],
)

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
