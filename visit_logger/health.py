"""Health and metrics endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from visit_logger.database import CONNECTED, MongoConnection, describe_ready_state
from visit_logger.dependencies import get_connection
from visit_logger.metrics import render_metrics

router = APIRouter(tags=["Health"])


@router.get("/health")
def check(connection: MongoConnection = Depends(get_connection)) -> dict:
    """
    Report service health from the MongoDB connection state.

    Always answers 200; the body carries the verdict so the liveness probe
    does not restart pods during a database outage.
    """
    state = connection.ready_state()
    return {
        "status": "healthy" if state == CONNECTED else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": {
            "status": describe_ready_state(state),
            "readyState": state,
        },
    }


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    payload, content_type = render_metrics()
    return Response(content=payload, media_type=content_type)
