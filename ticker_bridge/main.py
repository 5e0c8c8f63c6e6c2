from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI

from ticker_bridge.api.routes import router
from ticker_bridge.config.settings import Settings, get_settings
from ticker_bridge.integrations.yahoo_chart import YahooChartClient
from ticker_bridge.services.host_commands import HostCommandService
from ticker_bridge.services.message_bus import MessageBus
from ticker_bridge.services.push_format import PushFormatter
from ticker_bridge.services.quote_fetcher import QuoteFetcher
from ticker_bridge.services.refresh_scheduler import RefreshScheduler
from ticker_bridge.services.state_store import JsonFileStateStore, StateStore


@dataclass
class HostRuntime:
    store: StateStore
    fetcher: QuoteFetcher
    formatter: PushFormatter
    bus: MessageBus
    scheduler: RefreshScheduler
    commands: HostCommandService


def build_runtime(settings: Settings, *, provider=None, store: StateStore | None = None) -> HostRuntime:
    store = store if store is not None else JsonFileStateStore(settings.STATE_PATH)
    provider = provider or YahooChartClient(settings.PROVIDER_URL, timeout=settings.PROVIDER_TIMEOUT_SEC)
    formatter = PushFormatter(
        push_format=settings.PUSH_FORMAT,
        suffix=settings.SYMBOL_SUFFIX,
        currency=settings.CURRENCY_SYMBOL,
    )
    fetcher = QuoteFetcher(
        provider=provider,
        suffix=settings.SYMBOL_SUFFIX,
        pacing_sec=settings.PACING_SEC,
        rate_limit_cooldown_sec=settings.RATE_LIMIT_COOLDOWN_SEC,
    )
    commands = HostCommandService(
        store=store,
        formatter=formatter,
        mode=settings.REFRESH_MODE,
        suffix=settings.SYMBOL_SUFFIX,
        default_watchlist=settings.DEFAULT_WATCHLIST,
        default_symbol=settings.DEFAULT_SYMBOL,
    )
    bus = MessageBus(commands.handlers())
    scheduler = RefreshScheduler(
        store=store,
        fetcher=fetcher,
        bus=bus,
        formatter=formatter,
        mode=settings.REFRESH_MODE,
        fanout=settings.FANOUT,
        interval_sec=settings.REFRESH_INTERVAL_SEC,
        refresh_on_start=settings.REFRESH_ON_START,
        default_watchlist=settings.DEFAULT_WATCHLIST,
        default_symbol=settings.DEFAULT_SYMBOL,
        suffix=settings.SYMBOL_SUFFIX,
    )
    commands.bind(bus=bus, scheduler=scheduler)
    return HostRuntime(
        store=store,
        fetcher=fetcher,
        formatter=formatter,
        bus=bus,
        scheduler=scheduler,
        commands=commands,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    runtime = build_runtime(settings, provider=app.state.provider, store=app.state.store)
    app.state.runtime = runtime
    runtime.scheduler.start()
    print(f"[APP][host_start] state_path={settings.STATE_PATH} push_format={settings.PUSH_FORMAT}", flush=True)

    try:
        yield
    finally:
        runtime.scheduler.stop()
        print("[APP][host_stop]", flush=True)


app = FastAPI(title="Ticker Bridge Host", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

# NOTE: lazy-loaded so app import does not require env during tests.
app.state.get_settings = get_settings
app.state.provider = None
app.state.store = None
