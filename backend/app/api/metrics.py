"""Prometheus-compatible metrics endpoint."""

from fastapi import APIRouter, Response

from app.monitoring.metrics import realtime_rooms
from app.monitoring.registry import registry
from connectrix.realtime.managers import get_room_router

router = APIRouter(tags=["metrics"])

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4"


@router.get("/metrics", response_class=Response)
def export_metrics() -> Response:
    """Expose relay metrics; room occupancy is sampled at scrape time."""

    realtime_rooms.set(get_room_router().room_count())
    return Response(content=registry.render(), media_type=PROMETHEUS_CONTENT_TYPE)
