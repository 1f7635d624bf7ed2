import unittest

from fastapi.testclient import TestClient

from session_monitor.broadcaster import EventBroadcaster
from session_monitor.main import app


class HealthEndpointTests(unittest.TestCase):
    def test_reports_stopped_watcher_without_lifespan(self) -> None:
        client = TestClient(app)
        response = client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertEqual(response.json()["watcher"], "stopped")

    def test_counts_subscribers(self) -> None:
        broadcaster = EventBroadcaster()
        app.state.broadcaster = broadcaster
        self.addCleanup(delattr, app.state, "broadcaster")
        client = TestClient(app)

        self.assertEqual(client.get("/api/health").json()["subscribers"], 0)


if __name__ == "__main__":
    unittest.main()
