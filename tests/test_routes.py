"""
API tests for the playground routes

The process-default pool is replaced through FastAPI's dependency overrides
with a pool over a temporary SQLite database.
"""

import os
import tempfile
import unittest
import sys
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient

from sqlplayground.config import PoolSettings
from sqlplayground.errors import ConnectionAcquireError, PoolInitializationError
from sqlplayground.main import app
from sqlplayground.playground_routes import get_pool
from sqlplayground.pool import ConnectionPool


class PlaygroundAPITestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "sandbox.db")
        self.pool = ConnectionPool(PoolSettings(database_url=f"sqlite:///{db_path}", min_size=1, max_size=3))
        app.dependency_overrides[get_pool] = lambda: self.pool
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        self.pool.close()
        self.tmpdir.cleanup()


class TestExecuteEndpoint(PlaygroundAPITestCase):

    def test_statement_failure_is_reported_not_raised(self):
        response = self.client.post("/api/playground/execute", json={
            "query": "CREATE TABLE t (id INT); INSERT INTO t VALUES (1); INSERT INTO bogus VALUES (1);"
        })

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertFalse(data["success"])
        self.assertEqual(data["mode"], "adhoc")
        self.assertEqual(len(data["results"]), 3)
        self.assertEqual([r["success"] for r in data["results"]], [True, True, False])
        self.assertIn("no such table", data["results"][2]["error"])
        self.assertEqual(data["results"][1]["rowsAffected"], 1)
        self.assertIn("executionTimeMs", data)

    def test_select_returns_rows(self):
        self.client.post("/api/playground/execute", json={
            "query": "CREATE TABLE t (id INT, name TEXT); INSERT INTO t VALUES (1, 'Ann');"
        })

        response = self.client.post("/api/playground/execute", json={"query": "SELECT id, name FROM t"})

        self.assertEqual(response.status_code, 200)
        result = response.json()["results"][0]
        self.assertEqual(result["columns"], ["id", "name"])
        self.assertEqual(result["rows"], [{"id": 1, "name": "Ann"}])

    def test_empty_query_is_bad_request(self):
        response = self.client.post("/api/playground/execute", json={"query": "   "})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Empty query")

    def test_unusable_session_id_is_bad_request(self):
        response = self.client.post("/api/playground/execute", json={"query": "SELECT 1", "sessionId": "!!!"})

        self.assertEqual(response.status_code, 400)

    def test_session_id_namespaces_objects(self):
        response = self.client.post("/api/playground/execute", json={
            "query": "CREATE TABLE t (id INT)", "sessionId": "alice_1"
        })

        data = response.json()
        self.assertTrue(data["success"])
        self.assertEqual(data["sessionToken"], "alice_1")
        self.assertEqual(data["results"][0]["statement"], "CREATE TABLE alice_1_t (id INT)")


class TestBackendUnavailable(unittest.TestCase):

    def tearDown(self):
        app.dependency_overrides.clear()

    def override(self, pool):
        app.dependency_overrides[get_pool] = lambda: pool
        return TestClient(app)

    def test_pool_initialization_failure_is_service_unavailable(self):
        pool = ConnectionPool(PoolSettings(
            database_url="sqlite:////nonexistent_sandbox_dir/missing/sandbox.db", min_size=1
        ))
        client = self.override(pool)

        response = client.post("/api/playground/execute", json={"query": "SELECT 1"})

        self.assertEqual(response.status_code, 503)

    def test_acquire_timeout_is_service_unavailable(self):
        pool = MagicMock()
        pool.adapter.transactional_ddl = True
        pool.acquire.side_effect = ConnectionAcquireError("No database connection available within 30 seconds")
        client = self.override(pool)

        response = client.post("/api/playground/execute", json={"query": "SELECT 1"})

        self.assertEqual(response.status_code, 503)
        self.assertIn("busy or unreachable", response.json()["detail"])

    def test_validate_reports_unavailable_backend(self):
        pool = MagicMock()
        pool.connection.side_effect = PoolInitializationError("backend down")
        client = self.override(pool)

        response = client.post("/api/playground/validate", json={"query": "SELECT 1"})

        self.assertEqual(response.status_code, 503)


class TestValidateEndpoint(PlaygroundAPITestCase):

    def test_valid_query(self):
        response = self.client.post("/api/playground/validate", json={"query": "SELECT 1"})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["valid"])

    def test_invalid_query(self):
        response = self.client.post("/api/playground/validate", json={"query": "SELEC 1"})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertFalse(data["valid"])
        self.assertIn("syntax error", data["error"])

    def test_validation_has_no_side_effects(self):
        self.client.post("/api/playground/validate", json={"query": "CREATE TABLE z (id INT)"})

        response = self.client.post("/api/playground/execute", json={"query": "SELECT * FROM z"})

        self.assertFalse(response.json()["success"])


class TestSetupEndpoint(PlaygroundAPITestCase):

    def test_setup_creates_session_objects(self):
        response = self.client.post(
            "/api/playground/setup",
            json={"scripts": [
                "CREATE TABLE employees (id INT, name TEXT);",
                "INSERT INTO employees VALUES (1, 'Ann');",
            ]},
            headers={"X-User-Id": "alice"},
        )

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data["success"])
        self.assertEqual(data["mode"], "setup")
        self.assertTrue(data["sessionId"].startswith("alice_"))

        query = self.client.post("/api/playground/execute", json={
            "query": "SELECT name FROM employees", "sessionId": data["sessionId"]
        })
        self.assertEqual(query.json()["results"][0]["rows"], [{"name": "Ann"}])

    def test_setup_from_generated_content(self):
        content = (
            "Here is your schema:\n\n"
            "```sql\nCREATE TABLE orders (id INT, total REAL);\n"
            "INSERT INTO orders VALUES (1, 9.5);\n```\n\n"
            "Now try:\n\n```sql\nSELECT * FROM orders;\n```\n"
        )

        response = self.client.post("/api/playground/setup", json={"content": content})

        data = response.json()
        self.assertTrue(data["success"])
        self.assertEqual(data["totalStatements"], 2)
        self.assertTrue(data["sessionId"].startswith("anonymous_"))

    def test_setup_failure_rolls_back(self):
        response = self.client.post("/api/playground/setup", json={"scripts": [
            "CREATE TABLE t (id INT); INSERT INTO t VALUES (1); INSERT INTO bogus VALUES (1);"
        ]})

        data = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertFalse(data["success"])
        self.assertTrue(data["rolledBack"])

        query = self.client.post("/api/playground/execute", json={
            "query": "SELECT * FROM t", "sessionId": data["sessionId"]
        })
        self.assertFalse(query.json()["success"])

    def test_setup_without_scripts_is_bad_request(self):
        response = self.client.post("/api/playground/setup", json={"scripts": ["  "]})

        self.assertEqual(response.status_code, 400)


class TestHealthEndpoints(PlaygroundAPITestCase):

    def test_pool_health(self):
        self.pool.open()

        response = self.client.get("/api/playground/health")

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["status"], "healthy")
        self.assertEqual(data["backend"], "sqlite")
        self.assertEqual(data["checkedIn"], 1)
        self.assertEqual(data["checkedOut"], 0)

    def test_pool_health_before_open(self):
        response = self.client.get("/api/playground/health")

        self.assertEqual(response.json()["status"], "unavailable")

    def test_service_health(self):
        response = self.client.get("/api/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")


if __name__ == '__main__':
    unittest.main()
