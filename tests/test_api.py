"""
API tests for the visit logger service
The MongoDB connection is mocked; lifespan connect/close run against the mock
"""

import unittest
from datetime import datetime
from unittest.mock import Mock, patch

from fastapi.testclient import TestClient
from pymongo.errors import ConfigurationError, PyMongoError

from visit_logger.database import CONNECTED, DISCONNECTED, MongoConnection
from visit_logger.main import create_app
from visit_logger.settings import Settings


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self.collection = Mock()
        self.connection = Mock()
        self.connection.collection.return_value = self.collection
        self.connection.ready_state.return_value = CONNECTED
        settings = Settings(_env_file=None, app_env="test", app_version="1.2.3")
        self.client = TestClient(create_app(settings, self.connection))
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)


class TestLifespan(unittest.TestCase):

    def test_connects_and_closes(self):
        connection = Mock()
        app = create_app(Settings(_env_file=None), connection)

        with TestClient(app):
            connection.connect.assert_called_once()
            connection.close.assert_not_called()
        connection.close.assert_called_once()

    def test_starts_when_client_cannot_be_created(self):
        factory = Mock(side_effect=ConfigurationError("The DNS query name does not exist"))
        settings = Settings(_env_file=None, mongodb_uri="mongodb+srv://missing.example.net/visits")
        app = create_app(settings, MongoConnection(settings, factory))

        with TestClient(app) as client:
            health = client.get("/health")
            visit = client.get("/", headers={"user-agent": "pytest-agent"})

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json()["database"], {"status": "disconnected", "readyState": 0})
        self.assertEqual(visit.status_code, 200)
        self.assertEqual(visit.json()["request"], "[GET] /")

    def test_create_app_configures_logging(self):
        with patch("visit_logger.main.configure_logging") as mock_configure:
            create_app(Settings(_env_file=None, log_level="DEBUG", log_json=False), Mock())

        mock_configure.assert_called_once_with("DEBUG", False)


class TestVisitorInfo(ApiTestCase):

    def test_returns_request_envelope(self):
        response = self.client.get("/", headers={"user-agent": "pytest-agent"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"request": "[GET] /", "user_agent": "pytest-agent"})

    def test_records_visit(self):
        self.client.get("/", headers={"user-agent": "pytest-agent", "x-forwarded-for": "203.0.113.7, 10.0.0.1"})

        self.connection.collection.assert_called_with("visits")
        document = self.collection.insert_one.call_args.args[0]
        self.assertEqual(document["method"], "GET")
        self.assertEqual(document["path"], "/")
        self.assertEqual(document["user_agent"], "pytest-agent")
        self.assertEqual(document["ip"], "203.0.113.7")
        self.assertIsInstance(document["timestamp"], datetime)

    def test_answers_when_store_fails(self):
        self.collection.insert_one.side_effect = PyMongoError("not primary")

        response = self.client.get("/", headers={"user-agent": "pytest-agent"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["request"], "[GET] /")


class TestVersion(ApiTestCase):

    def test_version(self):
        response = self.client.get("/version")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"version": "1.2.3", "environment": "test"})


class TestVisits(ApiTestCase):

    def test_lists_visits(self):
        cursor = self.collection.find.return_value.sort.return_value
        cursor.limit.return_value = [
            {"method": "GET", "path": "/", "timestamp": "2024-01-01T00:00:00+00:00"}
        ]

        response = self.client.get("/visits?limit=5000")

        self.assertEqual(response.status_code, 200)
        cursor.limit.assert_called_once_with(1000)
        self.assertEqual(response.json()[0]["method"], "GET")

    def test_store_failure_is_503(self):
        self.collection.find.side_effect = PyMongoError("timeout")

        response = self.client.get("/visits")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json(), {"error": "Failed to read visits", "path": "/visits"})


class TestHealth(ApiTestCase):

    def test_healthy_when_connected(self):
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "healthy")
        self.assertEqual(body["database"], {"status": "connected", "readyState": 1})
        self.assertIn("timestamp", body)

    def test_unhealthy_when_disconnected(self):
        self.connection.ready_state.return_value = DISCONNECTED

        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "unhealthy")
        self.assertEqual(body["database"], {"status": "disconnected", "readyState": 0})


class TestMetrics(ApiTestCase):

    def test_exposes_prometheus_metrics(self):
        self.client.get("/", headers={"user-agent": "pytest-agent"})

        response = self.client.get("/metrics")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/plain"))
        self.assertIn("visit_logger_http_requests_total", response.text)
        self.assertIn("visit_logger_http_request_duration_seconds_bucket", response.text)
        self.assertIn('visit_logger_visits_recorded_total{status="success"}', response.text)


if __name__ == "__main__":
    unittest.main(verbosity=2)
