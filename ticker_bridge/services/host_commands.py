from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from ticker_bridge.errors import InvalidCommandParams
from ticker_bridge.schemas.config import ConfigUpdate
from ticker_bridge.services.message_bus import Handler, MessageBus, Method
from ticker_bridge.services.push_format import PushFormatter
from ticker_bridge.services.refresh_scheduler import RefreshScheduler
from ticker_bridge.services.state_store import (
    DEFAULT_WATCHLIST,
    StateStore,
    load_config,
    load_last_quotes,
    load_watchlist,
    save_config,
    save_watchlist,
)
from ticker_bridge.services.symbols import normalize_symbol

ACCEPTED = "accepted"


class HostCommandService:
    """Command handlers behind the message bus.

    Every mutation runs store write, push and refresh trigger without awaiting,
    so it cannot interleave with a refresh cycle's persist/push step.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        formatter: PushFormatter,
        mode: str = "watchlist",
        suffix: str = ".NS",
        default_watchlist: list[str] | None = None,
        default_symbol: str = "RELIANCE",
    ) -> None:
        self.store = store
        self.formatter = formatter
        self.mode = mode
        self.suffix = suffix
        self.default_watchlist = [
            normalize_symbol(s, suffix) for s in (default_watchlist if default_watchlist is not None else DEFAULT_WATCHLIST)
        ]
        self.default_symbol = normalize_symbol(default_symbol, suffix)
        self.bus: MessageBus | None = None
        self.scheduler: RefreshScheduler | None = None

    def bind(self, *, bus: MessageBus, scheduler: RefreshScheduler) -> None:
        self.bus = bus
        self.scheduler = scheduler

    def handlers(self) -> dict[Method, Handler]:
        return {
            Method.GET_LIST: self.get_list,
            Method.GET_QUOTES: self.get_quotes,
            Method.GET_CONFIG: self.get_config,
            Method.ADD: self.add,
            Method.DELETE: self.delete,
            Method.SET_WATCHLIST: self.set_watchlist,
            Method.REFRESH_NOW: self.refresh_now,
            Method.FETCH_SYMBOL: self.fetch_symbol,
            Method.SET_CONFIG: self.set_config,
            Method.STATUS: self.status,
        }

    def _watchlist(self) -> list[str]:
        return load_watchlist(self.store, default=self.default_watchlist, suffix=self.suffix)

    def _normalize(self, raw: Any) -> str:
        try:
            return normalize_symbol(raw, self.suffix)
        except ValueError as exc:
            raise InvalidCommandParams("INVALID_SYMBOL", str(exc)) from exc

    def _commit_watchlist(self, symbols: list[str], reason: str) -> list[str]:
        save_watchlist(self.store, symbols)
        if self.bus is not None:
            self.bus.push(self.formatter.watchlist_update(symbols))
        if self.scheduler is not None and self.mode == "watchlist":
            self.scheduler.trigger(reason)
        print(f"[BUS][watchlist_commit] reason={reason} size={len(symbols)}", flush=True)
        return symbols

    def get_list(self, params: dict) -> dict:
        return {
            "watchlist": self._watchlist(),
            "quotes": [q.model_dump() for q in load_last_quotes(self.store)],
        }

    def get_quotes(self, params: dict) -> list[dict]:
        return [q.model_dump() for q in load_last_quotes(self.store)]

    def get_config(self, params: dict) -> dict:
        return load_config(self.store).model_dump()

    def add(self, params: dict) -> list[str]:
        symbol = self._normalize(params.get("symbol"))
        return self._commit_watchlist([*self._watchlist(), symbol], "watchlist_add")

    def delete(self, params: dict) -> list[str]:
        index = params.get("index")
        watchlist = self._watchlist()
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(watchlist):
            raise InvalidCommandParams("INVALID_INDEX", f"index out of range: {index!r}")
        return self._commit_watchlist([s for i, s in enumerate(watchlist) if i != index], "watchlist_delete")

    def set_watchlist(self, params: dict) -> list[str]:
        symbols = params.get("symbols")
        if not isinstance(symbols, list):
            raise InvalidCommandParams("INVALID_SYMBOLS", "symbols must be a list")
        return self._commit_watchlist([self._normalize(s) for s in symbols], "watchlist_replace")

    def refresh_now(self, params: dict) -> str:
        if self.scheduler is not None:
            self.scheduler.trigger("manual")
        return ACCEPTED

    def fetch_symbol(self, params: dict) -> str:
        raw = params.get("symbol")
        if raw is None:
            symbol = load_config(self.store).active_symbol or self.default_symbol
        else:
            symbol = self._normalize(raw)
        if self.scheduler is not None:
            self.scheduler.trigger("fetch_symbol", symbol=symbol)
        return ACCEPTED

    def set_config(self, params: dict) -> dict:
        fields = params.get("fields", params)
        if not isinstance(fields, dict):
            raise InvalidCommandParams("INVALID_CONFIG", "fields must be an object")
        try:
            update = ConfigUpdate.model_validate(fields)
        except ValidationError as exc:
            raise InvalidCommandParams("INVALID_CONFIG", str(exc)) from exc

        changes: dict[str, Any] = {}
        if "active_symbol" in update.model_fields_set:
            changes["active_symbol"] = self._normalize(update.active_symbol)
        if "refresh_interval_ms" in update.model_fields_set:
            if update.refresh_interval_ms is None:
                raise InvalidCommandParams("INVALID_CONFIG", "refresh_interval_ms must be positive")
            changes["refresh_interval_ms"] = update.refresh_interval_ms

        current = load_config(self.store)
        updated = current.model_copy(update=changes)
        save_config(self.store, updated)

        symbol_changed = updated.active_symbol != current.active_symbol
        if symbol_changed and self.scheduler is not None and self.mode == "single":
            self.scheduler.trigger("config_change")
        return updated.model_dump()

    def status(self, params: dict) -> dict:
        scheduler_status = self.scheduler.status() if self.scheduler is not None else {}
        return {
            **scheduler_status,
            "watchlist_count": len(self._watchlist()),
            "last_quotes_count": len(load_last_quotes(self.store)),
        }
