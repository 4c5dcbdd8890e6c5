import unittest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from settlement.api.main import api_router
from settlement.deps import get_db, get_redis


class StubSession:
    def __init__(self, error: Exception | None = None):
        self.error = error

    def exec(self, _statement):
        if self.error:
            raise self.error


class StubRedis:
    def __init__(self, healthy: bool = True):
        self.healthy = healthy

    async def ping(self) -> bool:
        return self.healthy


class TestHealthEndpoints(unittest.TestCase):
    def probe(self, path: str, session=None, redis=None):
        def override_get_db():
            yield session or StubSession()

        app = FastAPI()
        app.include_router(api_router, prefix="/api/v1")
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_redis] = lambda: redis or StubRedis()
        return TestClient(app).get(f"/api/v1/health/{path}")

    def test_live(self) -> None:
        response = self.probe("live")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "alive"})

    def test_ready_when_dependencies_respond(self) -> None:
        response = self.probe("ready")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")
        self.assertEqual(
            response.json()["checks"], {"database": "connected", "redis": "connected"}
        )

    def test_not_ready_when_a_dependency_fails(self) -> None:
        cases = [
            (
                {"redis": StubRedis(healthy=False)},
                {"database": "connected", "redis": "disconnected"},
            ),
            (
                {"session": StubSession(RuntimeError("db down"))},
                {"database": "error: db down", "redis": "connected"},
            ),
        ]
        for overrides, checks in cases:
            with self.subTest(checks=checks):
                response = self.probe("ready", **overrides)

                self.assertEqual(response.status_code, 503)
                self.assertEqual(response.json(), {"status": "not ready", "checks": checks})
