from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from ticker_bridge.errors import FetchError, RateLimited
from ticker_bridge.integrations.yahoo_chart import parse_chart_meta
from ticker_bridge.schemas.quote import Quote, QuoteResult, Unavailable
from ticker_bridge.services.symbols import normalize_symbol


class QuoteFetcher:
    """Provider wrapper: every failure becomes an Unavailable marker."""

    def __init__(
        self,
        *,
        provider,
        suffix: str = ".NS",
        pacing_sec: float = 5.0,
        rate_limit_cooldown_sec: int = 30,
        meta_parser: Callable[[Any], dict] = parse_chart_meta,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.provider = provider
        self.suffix = suffix
        self.pacing_sec = pacing_sec
        self.rate_limit_cooldown_sec = rate_limit_cooldown_sec
        self.meta_parser = meta_parser
        self.sleep_fn = sleep_fn
        self.clock = clock
        self._cooldown_until: dict[str, float] = {}

        self.requests = 0
        self.succeeded = 0
        self.unavailable = 0
        self.rate_limited = 0
        self.last_batch_target = 0
        self.last_batch_available = 0

    def _prune_expired_cooldowns(self, now: float) -> None:
        expired = [s for s, until in self._cooldown_until.items() if until <= now]
        for s in expired:
            self._cooldown_until.pop(s, None)

    def _is_cooling_down(self, symbol: str, now: float) -> bool:
        return now < self._cooldown_until.get(symbol, 0)

    def _build_quote(self, symbol: str, meta: dict, now: float) -> Quote:
        price = meta["price"]
        previous_close = meta.get("previous_close")
        change_pct = meta.get("change_pct")

        change_abs = 0.0
        if previous_close:
            change_abs = price - previous_close
        if change_pct is None:
            change_pct = (change_abs / previous_close) * 100 if previous_close and previous_close > 0 else 0.0

        return Quote(
            symbol=symbol,
            last_price=round(price, 2),
            change_absolute=round(change_abs, 2) + 0.0,
            change_percent=round(change_pct, 2) + 0.0,
            fetched_at=int(now),
        )

    async def fetch_one(self, symbol: str) -> QuoteResult:
        try:
            symbol = normalize_symbol(symbol, self.suffix)
        except ValueError:
            self.unavailable += 1
            return Unavailable(symbol=str(symbol), reason="INVALID_SYMBOL")

        now = self.clock()
        self._prune_expired_cooldowns(now)
        if self._is_cooling_down(symbol, now):
            self.unavailable += 1
            return Unavailable(symbol=symbol, reason=RateLimited.code)

        self.requests += 1
        try:
            payload = await asyncio.to_thread(self.provider.get_chart, symbol)
            meta = self.meta_parser(payload)
            quote = self._build_quote(symbol, meta, self.clock())
        except FetchError as exc:
            if isinstance(exc, RateLimited):
                self.rate_limited += 1
                self._cooldown_until[symbol] = self.clock() + self.rate_limit_cooldown_sec
            self.unavailable += 1
            print(f"[FETCH][unavailable] symbol={symbol} reason={exc.code} error={exc}", flush=True)
            return Unavailable(symbol=symbol, reason=exc.code)
        except Exception as exc:
            self.unavailable += 1
            print(f"[FETCH][unavailable] symbol={symbol} reason=NETWORK_FAILURE error={exc!r}", flush=True)
            return Unavailable(symbol=symbol, reason="NETWORK_FAILURE")

        self.succeeded += 1
        return quote

    async def fetch_many(self, symbols: list[str], *, paced: bool = False) -> list[tuple[str, QuoteResult]]:
        """Fetch in input order; paced mode waits pacing_sec between requests."""
        symbols = list(symbols)
        if paced:
            results: list[QuoteResult] = []
            for index, symbol in enumerate(symbols):
                results.append(await self.fetch_one(symbol))
                if index < len(symbols) - 1 and self.pacing_sec > 0:
                    await self.sleep_fn(self.pacing_sec)
        else:
            results = list(await asyncio.gather(*(self.fetch_one(s) for s in symbols)))

        available = sum(1 for r in results if isinstance(r, Quote))
        self.last_batch_target = len(symbols)
        self.last_batch_available = available
        print(
            "[FETCH][batch_resolve] "
            f"paced={int(paced)} target_count={len(symbols)} available_count={available} "
            f"unavailable_count={len(symbols) - available}",
            flush=True,
        )
        return list(zip(symbols, results))

    def metrics(self) -> dict[str, int]:
        return {
            "requests": self.requests,
            "succeeded": self.succeeded,
            "unavailable": self.unavailable,
            "rate_limited": self.rate_limited,
            "cooling_down": len(self._cooldown_until),
            "batch_target_count": self.last_batch_target,
            "batch_available_count": self.last_batch_available,
        }
