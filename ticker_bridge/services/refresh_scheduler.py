from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable

from ticker_bridge.schemas.quote import Quote
from ticker_bridge.services.message_bus import MessageBus
from ticker_bridge.services.push_format import PushFormatter
from ticker_bridge.services.quote_fetcher import QuoteFetcher
from ticker_bridge.services.state_store import (
    DEFAULT_WATCHLIST,
    StateStore,
    load_config,
    load_watchlist,
    save_last_quotes,
)
from ticker_bridge.services.symbols import normalize_symbol

DEFAULT_INTERVAL_SEC = {"single": 30.0, "watchlist": 120.0}


class RefreshState(str, Enum):
    IDLE = "IDLE"
    REFRESHING = "REFRESHING"


class RefreshScheduler:
    """Owns the refresh timer and the Idle/Refreshing gate every trigger passes through.

    A trigger that arrives while a cycle is running is dropped, not queued.
    The interval is read once in start(); changing it needs a restart.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        fetcher: QuoteFetcher,
        bus: MessageBus,
        formatter: PushFormatter,
        mode: str = "watchlist",
        fanout: str = "paced",
        interval_sec: float | None = None,
        refresh_on_start: bool = True,
        default_watchlist: list[str] | None = None,
        default_symbol: str = "RELIANCE",
        suffix: str = ".NS",
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if mode not in DEFAULT_INTERVAL_SEC:
            raise ValueError("mode must be one of: single, watchlist")
        if fanout not in {"parallel", "paced"}:
            raise ValueError("fanout must be one of: parallel, paced")
        self.store = store
        self.fetcher = fetcher
        self.bus = bus
        self.formatter = formatter
        self.mode = mode
        self.fanout = fanout
        self.default_interval_sec = interval_sec or DEFAULT_INTERVAL_SEC[mode]
        self.refresh_on_start = refresh_on_start
        self.suffix = suffix
        self.default_watchlist = [
            normalize_symbol(s, suffix) for s in (default_watchlist if default_watchlist is not None else DEFAULT_WATCHLIST)
        ]
        self.default_symbol = normalize_symbol(default_symbol, suffix)
        self.sleep_fn = sleep_fn

        self.state = RefreshState.IDLE
        self.running = False
        self.interval_sec = self.default_interval_sec
        self._generation = 0
        self._timer_task: asyncio.Task | None = None
        self._cycle_task: asyncio.Task | None = None

        self.cycles_started = 0
        self.cycles_completed = 0
        self.cycles_discarded = 0
        self.cycles_failed = 0
        self.dropped_triggers = 0
        self.last_trigger: str | None = None
        self.last_cycle_target = 0
        self.last_cycle_pushed = 0
        self.last_completed_at: int | None = None

    def _resolve_interval(self) -> float:
        config = load_config(self.store)
        if config.refresh_interval_ms:
            return config.refresh_interval_ms / 1000.0
        return self.default_interval_sec

    def _resolve_targets(self, symbol: str | None) -> list[str]:
        if symbol is not None:
            return [normalize_symbol(symbol, self.suffix)]
        if self.mode == "single":
            config = load_config(self.store)
            if config.active_symbol:
                return [normalize_symbol(config.active_symbol, self.suffix)]
            return [self.default_symbol]
        return load_watchlist(self.store, default=self.default_watchlist, suffix=self.suffix)

    def _still_listed(self, quotes: list[Quote]) -> list[Quote]:
        # the watchlist may have been edited while the batch was in flight
        by_symbol = {q.symbol: q for q in quotes}
        current = load_watchlist(self.store, default=self.default_watchlist, suffix=self.suffix)
        return [by_symbol[s] for s in current if s in by_symbol]

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._generation += 1
        self.interval_sec = self._resolve_interval()
        self._timer_task = asyncio.get_running_loop().create_task(self._timer_loop(self.interval_sec))
        print(
            f"[REFRESH][scheduler_start] mode={self.mode} fanout={self.fanout} interval_sec={self.interval_sec}",
            flush=True,
        )
        if self.refresh_on_start:
            self.trigger("startup")

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self._generation += 1
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
        print(f"[REFRESH][scheduler_stop] in_flight={int(self.state is RefreshState.REFRESHING)}", flush=True)

    async def _timer_loop(self, interval_sec: float) -> None:
        while True:
            await self.sleep_fn(interval_sec)
            self.trigger("timer")

    def trigger(self, reason: str, *, symbol: str | None = None) -> bool:
        """Start a refresh cycle if idle. Returns False when the trigger is dropped."""
        if not self.running:
            print(f"[REFRESH][trigger_dropped] reason={reason} state=STOPPED", flush=True)
            return False
        if self.state is RefreshState.REFRESHING:
            self.dropped_triggers += 1
            print(f"[REFRESH][trigger_dropped] reason={reason} state=REFRESHING", flush=True)
            return False

        self.state = RefreshState.REFRESHING
        self.last_trigger = reason
        self.cycles_started += 1
        self._cycle_task = asyncio.get_running_loop().create_task(
            self._run_cycle(reason, symbol, self._generation)
        )
        return True

    async def _run_cycle(self, reason: str, symbol: str | None, generation: int) -> None:
        try:
            targets = self._resolve_targets(symbol)
            results = await self.fetcher.fetch_many(targets, paced=self.fanout == "paced")

            if not self.running or generation != self._generation:
                self.cycles_discarded += 1
                print(f"[REFRESH][cycle_discarded] reason={reason} target_count={len(targets)}", flush=True)
                return

            quotes = [r for _, r in results if isinstance(r, Quote)]
            if symbol is None and self.mode == "watchlist":
                quotes = self._still_listed(quotes)
            save_last_quotes(self.store, quotes)
            single = symbol is not None or self.mode == "single"
            self.bus.push(self.formatter.quotes_update(quotes, single=single))

            self.cycles_completed += 1
            self.last_cycle_target = len(targets)
            self.last_cycle_pushed = len(quotes)
            self.last_completed_at = int(time.time())
            print(
                f"[REFRESH][cycle_complete] reason={reason} target_count={len(targets)} pushed_count={len(quotes)}",
                flush=True,
            )
        except Exception as exc:
            self.cycles_failed += 1
            print(f"[REFRESH][cycle_error] reason={reason} error={exc!r}", flush=True)
        finally:
            self.state = RefreshState.IDLE
            self._cycle_task = None

    async def wait_idle(self) -> None:
        task = self._cycle_task
        if task is not None:
            await task

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "running": self.running,
            "mode": self.mode,
            "fanout": self.fanout,
            "interval_sec": self.interval_sec,
        }

    def metrics(self) -> dict:
        return {
            **self.status(),
            "cycles_started": self.cycles_started,
            "cycles_completed": self.cycles_completed,
            "cycles_discarded": self.cycles_discarded,
            "cycles_failed": self.cycles_failed,
            "dropped_triggers": self.dropped_triggers,
            "last_trigger": self.last_trigger,
            "last_cycle_target": self.last_cycle_target,
            "last_cycle_pushed": self.last_cycle_pushed,
            "last_completed_at": self.last_completed_at,
        }
