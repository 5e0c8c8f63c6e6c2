from __future__ import annotations

from typing import Any

from ticker_bridge.schemas.message import PushEnvelope
from ticker_bridge.schemas.quote import Quote
from ticker_bridge.services.symbols import display_symbol

QUOTES_UPDATE = "QUOTES_UPDATE"
STOCK_UPDATE = "STOCK_UPDATE"
WATCHLIST_UPDATE = "WATCHLIST_UPDATE"

PushUpdate = list[str] | dict[str, Any]


def format_display_line(quote: Quote, *, suffix: str = ".NS", currency: str = "₹") -> str:
    sign = "-" if quote.change_percent < 0 else "+"
    return (
        f"{display_symbol(quote.symbol, suffix)}  "
        f"{currency}{quote.last_price:.2f}  "
        f"{sign}{abs(quote.change_percent):.2f}%"
    )


class PushFormatter:
    """Builds display pushes in the legacy (bare list) or typed envelope form."""

    def __init__(self, *, push_format: str = "legacy", suffix: str = ".NS", currency: str = "₹") -> None:
        if push_format not in {"legacy", "typed"}:
            raise ValueError("push_format must be one of: legacy, typed")
        self.push_format = push_format
        self.suffix = suffix
        self.currency = currency

    def line(self, quote: Quote) -> str:
        return format_display_line(quote, suffix=self.suffix, currency=self.currency)

    def lines(self, quotes: list[Quote]) -> list[str]:
        return [self.line(q) for q in quotes]

    def _row(self, quote: Quote) -> dict[str, Any]:
        return {**quote.model_dump(), "display": self.line(quote)}

    def quotes_update(self, quotes: list[Quote], *, single: bool = False) -> PushUpdate:
        if self.push_format == "legacy":
            return self.lines(quotes)
        if single:
            payload = self._row(quotes[0]) if quotes else None
            return PushEnvelope(kind=STOCK_UPDATE, payload=payload).model_dump()
        return PushEnvelope(kind=QUOTES_UPDATE, payload=[self._row(q) for q in quotes]).model_dump()

    def watchlist_update(self, symbols: list[str]) -> PushUpdate:
        if self.push_format == "legacy":
            return list(symbols)
        return PushEnvelope(kind=WATCHLIST_UPDATE, payload=list(symbols)).model_dump()
