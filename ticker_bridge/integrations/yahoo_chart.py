from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from ticker_bridge.errors import MalformedResponse, MissingField, NetworkFailure, RateLimited


def _to_float(value: Any, *, field_name: str) -> float:
    if value is None or value == "":
        raise MissingField(message=f"missing value for {field_name}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(message=f"invalid numeric value for {field_name}: {value!r}") from exc


def _to_float_or_none(value: Any) -> float | None:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_chart_meta(payload: Any) -> Dict[str, Any]:
    """Extract price fields from a chart API body: chart.result[0].meta."""
    if not isinstance(payload, dict):
        raise MalformedResponse(message="payload must be an object")

    chart = payload.get("chart")
    results = chart.get("result") if isinstance(chart, dict) else None
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        raise MalformedResponse(message="missing chart.result[0]")

    meta = results[0].get("meta")
    if not isinstance(meta, dict):
        raise MalformedResponse(message="missing chart.result[0].meta")

    return {
        "price": _to_float(meta.get("regularMarketPrice"), field_name="regularMarketPrice"),
        "change_pct": _to_float_or_none(meta.get("regularMarketChangePercent")),
        "previous_close": _to_float_or_none(meta.get("chartPreviousClose")),
    }


class YahooChartClient:
    """Chart endpoint client: GET {base_url}/{symbol}?range=1d&interval=1d."""

    _DEFAULT_HEADERS = {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        "Accept": "application/json",
    }

    def __init__(
        self,
        base_url: str = "https://query1.finance.yahoo.com/v8/finance/chart",
        *,
        session: Optional[Any] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests
        self.timeout = timeout

    def get_chart(self, symbol: str) -> Dict[str, Any]:
        try:
            response = self.session.get(
                f"{self.base_url}/{symbol}",
                headers=dict(self._DEFAULT_HEADERS),
                params={"range": "1d", "interval": "1d"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NetworkFailure(message=str(exc)) from exc

        if getattr(response, "status_code", None) == 429:
            raise RateLimited(message=f"provider throttled {symbol}")
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise NetworkFailure(message=str(exc)) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(message=f"invalid JSON body: {exc}") from exc
