"""FastAPI dependencies resolving objects held on app.state."""

from fastapi import Request

from visit_logger.database import MongoConnection
from visit_logger.settings import Settings
from visit_logger.visits import COLLECTION_NAME, VisitsService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_connection(request: Request) -> MongoConnection:
    return request.app.state.connection


def get_visits_service(request: Request) -> VisitsService:
    return VisitsService(request.app.state.connection.collection(COLLECTION_NAME))
