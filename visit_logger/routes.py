"""
Visitor routes
GET / records the visit, GET /version and GET /visits expose service data
"""

from typing import List

import structlog
from fastapi import APIRouter, Depends, Request

from visit_logger.database import MongoConnection
from visit_logger.dependencies import get_app_settings, get_connection, get_visits_service
from visit_logger.exceptions import VisitLoggerError
from visit_logger.metrics import VISITS_RECORDED_TOTAL
from visit_logger.settings import Settings
from visit_logger.visits import COLLECTION_NAME, Visit, VisitsService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Visits"])


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


@router.get("/")
def visitor_info(request: Request, connection: MongoConnection = Depends(get_connection)) -> dict:
    """Log the visit and echo the request line and user agent."""
    user_agent = request.headers.get("user-agent", "")
    visit = Visit(
        method=request.method,
        path=request.url.path,
        user_agent=user_agent,
        ip=_client_ip(request),
    )
    try:
        VisitsService(connection.collection(COLLECTION_NAME)).create(visit)
        VISITS_RECORDED_TOTAL.labels(status="success").inc()
    except VisitLoggerError as e:
        # The visitor still gets an answer when the store is down
        VISITS_RECORDED_TOTAL.labels(status="error").inc()
        logger.error("visit_not_recorded", reason=e.message, details=e.details)

    return {
        "request": f"[{visit.method}] {visit.path}",
        "user_agent": user_agent,
    }


@router.get("/version")
def get_version(settings: Settings = Depends(get_app_settings)) -> dict:
    return {
        "version": settings.app_version,
        "environment": settings.app_env,
    }


@router.get("/visits", response_model=List[Visit])
def list_visits(limit: int = 100, visits: VisitsService = Depends(get_visits_service)) -> List[Visit]:
    return visits.find_all(limit=min(max(limit, 1), 1000))
