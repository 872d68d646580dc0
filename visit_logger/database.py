"""
MongoDB connection management

Tracks a connection state compatible with Mongoose's readyState so /health
reports the same numbers the original service did.
"""

from typing import Callable, Optional

import structlog
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from visit_logger.exceptions import DatabaseUnavailableError
from visit_logger.settings import Settings

logger = structlog.get_logger(__name__)

DISCONNECTED = 0
CONNECTED = 1
CONNECTING = 2
DISCONNECTING = 3

READY_STATES = {
    DISCONNECTED: "disconnected",
    CONNECTED: "connected",
    CONNECTING: "connecting",
    DISCONNECTING: "disconnecting",
}


def describe_ready_state(state: int) -> str:
    """Human readable name for a ready state, 'unknown' for anything else."""
    return READY_STATES.get(state, "unknown")


class MongoConnection:
    """Owns the MongoClient for the lifetime of the application."""

    def __init__(self, settings: Settings, client_factory: Callable[..., MongoClient] = MongoClient):
        self._settings = settings
        self._client_factory = client_factory
        self._client: Optional[MongoClient] = None
        self._state = DISCONNECTED

    @property
    def client(self) -> MongoClient:
        if self._client is None:
            raise DatabaseUnavailableError("MongoDB client is not initialised")
        return self._client

    @property
    def database(self) -> Database:
        return self.client[self._settings.database_name]

    def collection(self, name: str) -> Collection:
        return self.database[name]

    def connect(self) -> None:
        """Create the client and verify the server answers a ping.

        A failed ping or an invalid URI leaves the service running in a
        disconnected state. After a failed ping the driver keeps retrying
        server selection on the next operation.
        """
        self._state = CONNECTING
        try:
            self._client = self._client_factory(
                self._settings.mongo_uri,
                serverSelectionTimeoutMS=self._settings.mongo_server_selection_timeout_ms,
                appname="visit-logger",
            )
        except PyMongoError as e:
            # Bad URI or unresolvable mongodb+srv record
            logger.error("mongodb_client_init_failed", error=str(e))
            self._client = None
            self._state = DISCONNECTED
            return
        if self.ping():
            logger.info("mongodb_connected", database=self._settings.database_name)
        else:
            logger.warning("mongodb_unreachable_at_startup", host=self._settings.mongo_host)

    def ping(self) -> bool:
        """Run the ping command and update the ready state from the result."""
        if self._client is None:
            self._state = DISCONNECTED
            return False
        try:
            self._client.admin.command("ping")
        except PyMongoError as e:
            if self._state != DISCONNECTED:
                logger.error("mongodb_ping_failed", error=str(e))
            self._state = DISCONNECTED
            return False
        self._state = CONNECTED
        return True

    def ready_state(self) -> int:
        """Current ready state, refreshed with a ping when a client exists."""
        if self._client is not None and self._state in (CONNECTED, DISCONNECTED):
            self.ping()
        return self._state

    def close(self) -> None:
        if self._client is None:
            return
        self._state = DISCONNECTING
        self._client.close()
        self._client = None
        self._state = DISCONNECTED
        logger.info("mongodb_connection_closed")
