import unittest

from ticker_bridge.services.host_commands import HostCommandService
from ticker_bridge.services.message_bus import MessageBus
from ticker_bridge.services.push_format import PushFormatter
from ticker_bridge.services.state_store import InMemoryStateStore, load_config, load_watchlist, save_watchlist


class RecordingScheduler:
    def __init__(self) -> None:
        self.triggers: list[tuple[str, str | None]] = []

    def trigger(self, reason: str, *, symbol: str | None = None) -> bool:
        self.triggers.append((reason, symbol))
        return True

    def status(self) -> dict:
        return {"state": "IDLE", "running": True}


class HostCommandsTest(unittest.IsolatedAsyncioTestCase):
    def _make(self, *, mode="watchlist", push_format="legacy"):
        self.store = InMemoryStateStore()
        self.scheduler = RecordingScheduler()
        commands = HostCommandService(store=self.store, formatter=PushFormatter(push_format=push_format), mode=mode)
        bus = MessageBus(commands.handlers())
        commands.bind(bus=bus, scheduler=self.scheduler)
        self.pushes = []
        bus.add_sink(self.pushes.append)
        return bus

    async def test_add_then_get_list_returns_normalized_symbol(self):
        bus = self._make()

        added = await bus.dispatch({"method": "ADD", "params": {"symbol": "tcs"}})
        listed = await bus.dispatch({"method": "GET_LIST"})

        self.assertIn("TCS.NS", added.result)
        self.assertIn("TCS.NS", listed.result["watchlist"])
        self.assertNotIn("tcs", listed.result["watchlist"])
        self.assertEqual(listed.result["quotes"], [])

    async def test_add_persists_pushes_once_and_routes_refresh_through_gate(self):
        bus = self._make()
        save_watchlist(self.store, ["A.NS"])

        await bus.dispatch({"method": "ADD", "params": {"symbol": "b"}})

        self.assertEqual(load_watchlist(self.store), ["A.NS", "B.NS"])
        self.assertEqual(self.pushes, [["A.NS", "B.NS"]])
        self.assertEqual(self.scheduler.triggers, [("watchlist_add", None)])

    async def test_add_blank_symbol_is_rejected(self):
        bus = self._make()

        response = await bus.dispatch({"method": "ADD", "params": {"symbol": "  "}})

        self.assertEqual(response.error, "INVALID_SYMBOL")
        self.assertIsNone(self.store.get("watchlist"))
        self.assertEqual(self.pushes, [])

    async def test_delete_by_index(self):
        bus = self._make(push_format="typed")
        save_watchlist(self.store, ["A.NS", "B.NS", "C.NS"])

        response = await bus.dispatch({"method": "DELETE", "params": {"index": 1}})

        self.assertEqual(response.result, ["A.NS", "C.NS"])
        self.assertEqual(self.pushes, [{"kind": "WATCHLIST_UPDATE", "payload": ["A.NS", "C.NS"]}])

    async def test_delete_out_of_range_or_non_integer_is_rejected(self):
        bus = self._make()
        save_watchlist(self.store, ["A.NS"])

        for index in [5, -1, "0", True, None]:
            response = await bus.dispatch({"method": "DELETE", "params": {"index": index}})
            self.assertEqual(response.error, "INVALID_INDEX")
        self.assertEqual(load_watchlist(self.store), ["A.NS"])

    async def test_set_watchlist_replaces_list(self):
        bus = self._make()

        response = await bus.dispatch({"method": "SET_WATCHLIST", "params": {"symbols": ["sbin", "tcs.ns"]}})
        rejected = await bus.dispatch({"method": "SET_WATCHLIST", "params": {"symbols": "sbin"}})

        self.assertEqual(response.result, ["SBIN.NS", "TCS.NS"])
        self.assertEqual(rejected.error, "INVALID_SYMBOLS")

    async def test_refresh_now_and_fetch_symbol_are_acknowledged(self):
        bus = self._make()

        refresh = await bus.dispatch({"method": "REFRESH_NOW"})
        fetch = await bus.dispatch({"method": "FETCH_SYMBOL", "params": {"symbol": "infy"}})
        fetch_default = await bus.dispatch({"method": "FETCH_SYMBOL"})

        self.assertEqual(refresh.result, "accepted")
        self.assertEqual(fetch.result, "accepted")
        self.assertEqual(fetch_default.result, "accepted")
        self.assertEqual(
            self.scheduler.triggers,
            [("manual", None), ("fetch_symbol", "INFY.NS"), ("fetch_symbol", "RELIANCE.NS")],
        )

    async def test_set_config_validates_and_persists(self):
        bus = self._make(mode="single")

        response = await bus.dispatch({"method": "SET_CONFIG", "params": {"activeSymbol": "tcs"}})

        self.assertEqual(response.result["active_symbol"], "TCS.NS")
        self.assertEqual(load_config(self.store).active_symbol, "TCS.NS")
        self.assertEqual(self.scheduler.triggers, [("config_change", None)])

    async def test_set_config_same_symbol_does_not_trigger(self):
        bus = self._make(mode="single")
        await bus.dispatch({"method": "SET_CONFIG", "params": {"fields": {"active_symbol": "TCS"}}})
        self.scheduler.triggers.clear()

        await bus.dispatch({"method": "SET_CONFIG", "params": {"fields": {"refresh_interval_ms": 60000}}})

        self.assertEqual(self.scheduler.triggers, [])
        self.assertEqual(load_config(self.store).active_symbol, "TCS.NS")
        self.assertEqual(load_config(self.store).refresh_interval_ms, 60000)

    async def test_set_config_rejects_empty_symbol_and_bad_fields(self):
        bus = self._make(mode="single")

        for params in [
            {"active_symbol": ""},
            {"active_symbol": None},
            {"refresh_interval_ms": 0},
            {"colour": "red"},
            {"fields": "tcs"},
        ]:
            response = await bus.dispatch({"method": "SET_CONFIG", "params": params})
            self.assertIsNotNone(response.error, params)
        self.assertIsNone(self.store.get("config"))

    async def test_status_reports_scheduler_and_store(self):
        bus = self._make()
        save_watchlist(self.store, ["A.NS", "B.NS"])

        response = await bus.dispatch({"method": "STATUS"})

        self.assertEqual(response.result["state"], "IDLE")
        self.assertEqual(response.result["watchlist_count"], 2)


if __name__ == "__main__":
    unittest.main()
