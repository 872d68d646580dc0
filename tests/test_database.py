"""
Unit tests for the MongoDB connection and the visits service
"""

import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock

from pymongo import DESCENDING
from pymongo.errors import ConfigurationError, PyMongoError, ServerSelectionTimeoutError

from visit_logger.database import (
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    DISCONNECTING,
    MongoConnection,
    describe_ready_state,
)
from visit_logger.exceptions import DatabaseUnavailableError, VisitStoreError
from visit_logger.settings import Settings
from visit_logger.visits import Visit, VisitsService


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestReadyState(unittest.TestCase):

    def test_describe_known_states(self):
        self.assertEqual(describe_ready_state(0), "disconnected")
        self.assertEqual(describe_ready_state(1), "connected")
        self.assertEqual(describe_ready_state(2), "connecting")
        self.assertEqual(describe_ready_state(3), "disconnecting")

    def test_describe_unknown_state(self):
        self.assertEqual(describe_ready_state(99), "unknown")


class TestMongoConnection(unittest.TestCase):

    def setUp(self):
        self.client = MagicMock()
        self.client_factory = Mock(return_value=self.client)
        self.connection = MongoConnection(make_settings(mongo_database="visits"), self.client_factory)

    def test_disconnected_before_connect(self):
        self.assertEqual(self.connection.ready_state(), DISCONNECTED)
        with self.assertRaises(DatabaseUnavailableError):
            self.connection.collection("visits")

    def test_connect_pings_server(self):
        self.connection.connect()

        self.client_factory.assert_called_once_with(
            "mongodb://localhost:27017/visits?authSource=admin",
            serverSelectionTimeoutMS=2000,
            appname="visit-logger",
        )
        self.client.admin.command.assert_called_with("ping")
        self.assertEqual(self.connection.ready_state(), CONNECTED)

    def test_unreachable_server_reports_disconnected(self):
        self.client.admin.command.side_effect = ServerSelectionTimeoutError("no servers")

        self.connection.connect()

        self.assertEqual(self.connection.ready_state(), DISCONNECTED)

    def test_recovers_when_server_returns(self):
        self.client.admin.command.side_effect = [PyMongoError("down"), {"ok": 1}]

        self.connection.connect()
        self.assertEqual(self.connection.ready_state(), CONNECTED)

    def test_collection_uses_configured_database(self):
        self.connection.connect()
        self.connection.collection("visits")

        self.client.__getitem__.assert_called_with("visits")
        self.client.__getitem__.return_value.__getitem__.assert_called_with("visits")

    def test_collection_uses_database_from_uri(self):
        connection = MongoConnection(make_settings(mongodb_uri="mongodb://db.example:27017/other"),
                                     self.client_factory)
        connection.connect()
        connection.collection("visits")

        self.client.__getitem__.assert_called_with("other")

    def test_client_init_failure_leaves_service_disconnected(self):
        self.client_factory.side_effect = ConfigurationError("The DNS query name does not exist")

        self.connection.connect()

        self.assertEqual(self.connection.ready_state(), DISCONNECTED)
        with self.assertRaises(DatabaseUnavailableError):
            self.connection.collection("visits")
        self.connection.close()

    def test_connecting_state_while_client_is_created(self):
        observed = []

        def factory(*args, **kwargs):
            observed.append(self.connection.ready_state())
            return self.client

        self.connection = MongoConnection(make_settings(), factory)
        self.connection.connect()

        self.assertEqual(observed, [CONNECTING])
        self.assertEqual(self.connection.ready_state(), CONNECTED)

    def test_disconnecting_state_during_close(self):
        observed = []
        self.client.close.side_effect = lambda: observed.append(self.connection.ready_state())

        self.connection.connect()
        self.connection.close()

        self.assertEqual(observed, [DISCONNECTING])
        self.assertEqual(self.connection.ready_state(), DISCONNECTED)

    def test_close(self):
        self.connection.connect()
        self.connection.close()

        self.client.close.assert_called_once()
        self.assertEqual(self.connection.ready_state(), DISCONNECTED)


class TestVisitsService(unittest.TestCase):

    def setUp(self):
        self.collection = Mock()
        self.service = VisitsService(self.collection)

    def test_create_inserts_document(self):
        visit = Visit(method="GET", path="/", user_agent="curl/8.0")

        result = self.service.create(visit)

        self.assertIs(result, visit)
        document = self.collection.insert_one.call_args.args[0]
        self.assertEqual(document["method"], "GET")
        self.assertEqual(document["path"], "/")
        self.assertIsInstance(document["timestamp"], datetime)

    def test_create_wraps_driver_errors(self):
        self.collection.insert_one.side_effect = PyMongoError("write failed")

        with self.assertRaises(VisitStoreError) as ctx:
            self.service.create(Visit(method="GET", path="/"))
        self.assertEqual(ctx.exception.details, {"error": "write failed"})

    def test_find_all_newest_first(self):
        timestamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
        cursor = self.collection.find.return_value.sort.return_value
        cursor.limit.return_value = [{"method": "GET", "path": "/", "timestamp": timestamp}]

        visits = self.service.find_all(limit=10)

        self.collection.find.assert_called_once_with({}, {"_id": 0})
        self.collection.find.return_value.sort.assert_called_once_with("timestamp", DESCENDING)
        cursor.limit.assert_called_once_with(10)
        self.assertEqual(visits, [Visit(method="GET", path="/", timestamp=timestamp)])

    def test_count(self):
        self.collection.count_documents.return_value = 3
        self.assertEqual(self.service.count(), 3)
        self.collection.count_documents.assert_called_once_with({})


if __name__ == "__main__":
    unittest.main(verbosity=2)
