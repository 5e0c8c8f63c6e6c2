import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field


def _csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [s.strip() for s in raw.split(",") if s.strip()]


class Settings(BaseModel):
    STATE_PATH: str = "data/state.json"
    SYMBOL_SUFFIX: str = ".NS"
    DEFAULT_WATCHLIST: list[str] = Field(default_factory=lambda: ["RELIANCE", "TCS", "INFY"])
    DEFAULT_SYMBOL: str = "RELIANCE"
    REFRESH_MODE: Literal["single", "watchlist"] = "watchlist"
    FANOUT: Literal["parallel", "paced"] = "paced"
    PACING_SEC: float = Field(default=5.0, ge=0.0)
    REFRESH_INTERVAL_SEC: float | None = Field(default=None, gt=0.0)
    REFRESH_ON_START: bool = True
    PROVIDER_URL: str = "https://query1.finance.yahoo.com/v8/finance/chart"
    PROVIDER_TIMEOUT_SEC: float = Field(default=10.0, gt=0.0)
    RATE_LIMIT_COOLDOWN_SEC: int = Field(default=30, ge=0)
    PUSH_FORMAT: Literal["legacy", "typed"] = "legacy"
    CURRENCY_SYMBOL: str = "₹"

    @classmethod
    def from_env(cls) -> "Settings":
        raw: dict = {
            "STATE_PATH": os.getenv("TICKER_STATE_PATH"),
            "SYMBOL_SUFFIX": os.getenv("TICKER_SYMBOL_SUFFIX"),
            "DEFAULT_SYMBOL": os.getenv("TICKER_DEFAULT_SYMBOL"),
            "REFRESH_MODE": os.getenv("TICKER_REFRESH_MODE"),
            "FANOUT": os.getenv("TICKER_FANOUT"),
            "PACING_SEC": os.getenv("TICKER_PACING_SEC"),
            "REFRESH_INTERVAL_SEC": os.getenv("TICKER_REFRESH_INTERVAL_SEC"),
            "REFRESH_ON_START": os.getenv("TICKER_REFRESH_ON_START"),
            "PROVIDER_URL": os.getenv("TICKER_PROVIDER_URL"),
            "PROVIDER_TIMEOUT_SEC": os.getenv("TICKER_PROVIDER_TIMEOUT_SEC"),
            "RATE_LIMIT_COOLDOWN_SEC": os.getenv("TICKER_RATE_LIMIT_COOLDOWN_SEC"),
            "PUSH_FORMAT": os.getenv("TICKER_PUSH_FORMAT"),
            "CURRENCY_SYMBOL": os.getenv("TICKER_CURRENCY_SYMBOL"),
        }
        watchlist = _csv(os.getenv("TICKER_DEFAULT_WATCHLIST"))
        if watchlist:
            raw["DEFAULT_WATCHLIST"] = watchlist

        # unset variables fall back to model defaults
        return cls.model_validate({k: v for k, v in raw.items() if v is not None})


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
