import unittest
from unittest.mock import MagicMock

import requests

from ticker_bridge.errors import MalformedResponse, MissingField, NetworkFailure, RateLimited
from ticker_bridge.integrations.yahoo_chart import YahooChartClient, parse_chart_meta


def _chart(meta: dict) -> dict:
    return {"chart": {"result": [{"meta": meta}], "error": None}}


class TestYahooChartClient(unittest.TestCase):
    def test_get_chart_uses_chart_contract(self):
        session = MagicMock()
        response = MagicMock()
        response.status_code = 200
        response.raise_for_status.return_value = None
        response.json.return_value = _chart({"regularMarketPrice": 100.0})
        session.get.return_value = response

        client = YahooChartClient("https://example.test/chart/", session=session, timeout=3)
        payload = client.get_chart("TCS.NS")

        self.assertEqual(payload["chart"]["result"][0]["meta"]["regularMarketPrice"], 100.0)
        call = session.get.call_args
        self.assertEqual(call.args[0], "https://example.test/chart/TCS.NS")
        self.assertEqual(call.kwargs["params"], {"range": "1d", "interval": "1d"})
        self.assertEqual(call.kwargs["timeout"], 3)

    def test_status_429_maps_to_rate_limited(self):
        session = MagicMock()
        response = MagicMock()
        response.status_code = 429
        session.get.return_value = response

        client = YahooChartClient(session=session)

        with self.assertRaises(RateLimited):
            client.get_chart("TCS.NS")

    def test_transport_error_maps_to_network_failure(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("offline")

        client = YahooChartClient(session=session)

        with self.assertRaises(NetworkFailure):
            client.get_chart("TCS.NS")

    def test_http_error_maps_to_network_failure(self):
        session = MagicMock()
        response = MagicMock()
        response.status_code = 500
        response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        session.get.return_value = response

        client = YahooChartClient(session=session)

        with self.assertRaises(NetworkFailure):
            client.get_chart("TCS.NS")

    def test_invalid_body_maps_to_malformed_response(self):
        session = MagicMock()
        response = MagicMock()
        response.status_code = 200
        response.raise_for_status.return_value = None
        response.json.side_effect = ValueError("Expecting value")
        session.get.return_value = response

        client = YahooChartClient(session=session)

        with self.assertRaises(MalformedResponse):
            client.get_chart("TCS.NS")


class TestParseChartMeta(unittest.TestCase):
    def test_extracts_price_fields(self):
        meta = parse_chart_meta(
            _chart(
                {
                    "regularMarketPrice": 3512.456,
                    "regularMarketChangePercent": 1.234,
                    "chartPreviousClose": 3470.0,
                }
            )
        )
        self.assertEqual(meta, {"price": 3512.456, "change_pct": 1.234, "previous_close": 3470.0})

    def test_missing_price_is_missing_field(self):
        with self.assertRaises(MissingField):
            parse_chart_meta(_chart({"chartPreviousClose": 10.0}))

    def test_missing_result_is_malformed(self):
        with self.assertRaises(MalformedResponse):
            parse_chart_meta({"chart": {"result": []}})
        with self.assertRaises(MalformedResponse):
            parse_chart_meta(["not", "an", "object"])

    def test_optional_fields_default_to_none(self):
        meta = parse_chart_meta(_chart({"regularMarketPrice": "12.5"}))
        self.assertEqual(meta["price"], 12.5)
        self.assertIsNone(meta["change_pct"])
        self.assertIsNone(meta["previous_close"])


if __name__ == "__main__":
    unittest.main()
