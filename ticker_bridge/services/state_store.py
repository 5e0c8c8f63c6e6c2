from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ticker_bridge.errors import PersistedDataCorrupt
from ticker_bridge.schemas.config import Configuration
from ticker_bridge.schemas.quote import Quote, QuoteResult, quote_results_adapter
from ticker_bridge.services.symbols import normalize_symbol

WATCHLIST_KEY = "watchlist"
CONFIG_KEY = "config"
LAST_QUOTES_KEY = "lastQuotes"

DEFAULT_WATCHLIST = ["RELIANCE.NS", "TCS.NS", "INFY.NS"]


class StateStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class InMemoryStateStore:
    def __init__(self, rows: dict[str, str] | None = None) -> None:
        self._rows: dict[str, str] = dict(rows or {})
        self.writes = 0

    def get(self, key: str) -> str | None:
        return self._rows.get(key)

    def set(self, key: str, value: str) -> None:
        self._rows[key] = value
        self.writes += 1


class JsonFileStateStore:
    """Key/value store kept as one JSON document; every set() is flushed to disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._rows: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            decoded = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            print(f"[STORE][file_unreadable] path={self.path} error={exc}", flush=True)
            return {}
        if not isinstance(decoded, dict):
            print(f"[STORE][file_unreadable] path={self.path} error=not-an-object", flush=True)
            return {}
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in decoded.items()}

    def get(self, key: str) -> str | None:
        return self._rows.get(key)

    def set(self, key: str, value: str) -> None:
        self._rows[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(self._rows, ensure_ascii=False, indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def _decode(store: StateStore, key: str):
    raw = store.get(key)
    if raw is None:
        return None
    try:
        value = json.loads(raw)
        # older settings forms double-encoded the list
        if isinstance(value, str):
            value = json.loads(value)
    except json.JSONDecodeError as exc:
        raise PersistedDataCorrupt(message=f"{key}: {exc}") from exc
    return value


def _fallback(key: str, exc: Exception) -> None:
    print(f"[STORE][corrupt_fallback] key={key} error={exc}", flush=True)


def load_watchlist(
    store: StateStore,
    *,
    default: list[str] | None = None,
    suffix: str = ".NS",
) -> list[str]:
    fallback = list(default if default is not None else DEFAULT_WATCHLIST)
    try:
        value = _decode(store, WATCHLIST_KEY)
        if value is None:
            return fallback
        if not isinstance(value, list):
            raise PersistedDataCorrupt(message=f"{WATCHLIST_KEY}: expected array")
        return [normalize_symbol(s, suffix) for s in value]
    except (PersistedDataCorrupt, ValueError) as exc:
        _fallback(WATCHLIST_KEY, exc)
        return fallback


def save_watchlist(store: StateStore, symbols: list[str]) -> None:
    store.set(WATCHLIST_KEY, json.dumps(list(symbols)))


def load_config(store: StateStore) -> Configuration:
    try:
        value = _decode(store, CONFIG_KEY)
        if value is None:
            return Configuration()
        return Configuration.model_validate(value)
    except (PersistedDataCorrupt, ValidationError) as exc:
        _fallback(CONFIG_KEY, exc)
        return Configuration()


def save_config(store: StateStore, config: Configuration) -> None:
    store.set(CONFIG_KEY, config.model_dump_json())


def load_last_quotes(store: StateStore) -> list[QuoteResult]:
    try:
        value = _decode(store, LAST_QUOTES_KEY)
        if value is None:
            return []
        return quote_results_adapter.validate_python(value)
    except (PersistedDataCorrupt, ValidationError) as exc:
        _fallback(LAST_QUOTES_KEY, exc)
        return []


def save_last_quotes(store: StateStore, quotes: list[Quote]) -> None:
    store.set(LAST_QUOTES_KEY, quote_results_adapter.dump_json(list(quotes)).decode("utf-8"))
