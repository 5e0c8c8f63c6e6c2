import asyncio
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from ticker_bridge.api.routes import _drain_outbound
from ticker_bridge.config.settings import Settings
from ticker_bridge.main import app
from ticker_bridge.services.message_bus import MessageBus, Method


class StubChartProvider:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def get_chart(self, symbol: str) -> dict:
        self.calls.append(symbol)
        return {
            "chart": {
                "result": [
                    {"meta": {"regularMarketPrice": 100.0, "regularMarketChangePercent": -1.5}}
                ]
            }
        }


class AppBusTest(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.state_path = Path(self._tmp.name) / "state.json"
        self.provider = StubChartProvider()
        self._original_get_settings = app.state.get_settings
        app.state.get_settings = lambda: Settings(
            STATE_PATH=str(self.state_path),
            REFRESH_ON_START=False,
            REFRESH_INTERVAL_SEC=3600,
            FANOUT="parallel",
        )
        app.state.provider = self.provider

    def tearDown(self):
        app.state.get_settings = self._original_get_settings
        app.state.provider = None
        self._tmp.cleanup()

    def test_http_bus_round_trip(self):
        with TestClient(app) as client:
            added = client.post("/v1/bus", json={"id": 1, "method": "ADD", "params": {"symbol": "tcs"}})
            listed = client.post("/v1/bus", json={"id": 2, "method": "GET_LIST"})
            unknown = client.post("/v1/bus", json={"method": "NOPE"})

        self.assertEqual(added.status_code, 200)
        self.assertIn("TCS.NS", added.json()["result"])
        self.assertEqual(listed.json()["id"], 2)
        self.assertIn("TCS.NS", listed.json()["result"]["watchlist"])
        self.assertEqual(unknown.json(), {"error": "UNKNOWN_METHOD"})
        self.assertIn("TCS.NS", self.state_path.read_text(encoding="utf-8"))

    def test_websocket_gets_push_before_response_for_mutation(self):
        with TestClient(app) as client:
            with client.websocket_connect("/v1/bus") as ws:
                ws.send_text("{not json")
                invalid = ws.receive_json()

                ws.send_json({"id": 1, "method": "DELETE", "params": {"index": 0}})
                first = ws.receive_json()
                second = ws.receive_json()

        self.assertEqual(first, ["TCS.NS", "INFY.NS"])
        self.assertEqual(second, {"id": 1, "result": ["TCS.NS", "INFY.NS"]})
        self.assertEqual(invalid, {"error": "INVALID_REQUEST"})

    def test_refresh_now_pushes_quote_lines_and_updates_snapshot(self):
        with TestClient(app) as client:
            with client.websocket_connect("/v1/bus") as ws:
                ws.send_json({"id": 9, "method": "REFRESH_NOW"})
                frames = [ws.receive_json(), ws.receive_json()]

            data = client.get("/v1/data").json()
            metrics = client.get("/v1/metrics/refresh").json()

        self.assertIn({"id": 9, "result": "accepted"}, frames)
        lines = ["RELIANCE  ₹100.00  -1.50%", "TCS  ₹100.00  -1.50%", "INFY  ₹100.00  -1.50%"]
        self.assertIn(lines, frames)
        self.assertEqual(data["lines"], lines)
        self.assertEqual(metrics["scheduler"]["cycles_completed"], 1)
        self.assertEqual(sorted(self.provider.calls), ["INFY.NS", "RELIANCE.NS", "TCS.NS"])

    def test_status_endpoint(self):
        with TestClient(app) as client:
            status = client.get("/v1/status").json()

        self.assertEqual(status["state"], "IDLE")
        self.assertTrue(status["running"])
        self.assertEqual(status["watchlist_count"], 3)


class BrokenSocket:
    def __init__(self) -> None:
        self.sent: list = []

    async def send_json(self, frame) -> None:
        if self.sent:
            raise RuntimeError("socket closed")
        self.sent.append(frame)


class OutboundDrainTest(unittest.IsolatedAsyncioTestCase):
    async def test_send_failure_unregisters_the_connection_sink(self):
        bus = MessageBus({m: (lambda params: "ok") for m in Method})
        outbound: asyncio.Queue = asyncio.Queue()
        sink = outbound.put_nowait
        bus.add_sink(sink)
        socket = BrokenSocket()

        bus.push(["A  ₹1.00  +0.00%"])
        bus.push(["B  ₹1.00  +0.00%"])
        await asyncio.wait_for(_drain_outbound(socket, outbound, bus, sink), timeout=1)

        self.assertEqual(socket.sent, [["A  ₹1.00  +0.00%"]])
        self.assertEqual(bus.sink_count, 0)
        self.assertEqual(bus.push(["C  ₹1.00  +0.00%"]), 0)
        self.assertTrue(outbound.empty())


if __name__ == "__main__":
    unittest.main()
