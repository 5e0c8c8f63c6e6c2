from __future__ import annotations

import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Union

from pydantic import ValidationError

from ticker_bridge.errors import InvalidCommandParams
from ticker_bridge.schemas.message import Request, Response

Handler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]
PushSink = Callable[[Any], None]


class Method(str, Enum):
    GET_LIST = "GET_LIST"
    GET_QUOTES = "GET_QUOTES"
    GET_CONFIG = "GET_CONFIG"
    ADD = "ADD"
    DELETE = "DELETE"
    SET_WATCHLIST = "SET_WATCHLIST"
    REFRESH_NOW = "REFRESH_NOW"
    FETCH_SYMBOL = "FETCH_SYMBOL"
    SET_CONFIG = "SET_CONFIG"
    STATUS = "STATUS"


class MessageBus:
    """Request/response dispatch keyed by Method plus a fire-and-forget push fan-out."""

    def __init__(self, handlers: Mapping[Method, Handler]) -> None:
        missing = [m.value for m in Method if m not in handlers]
        if missing:
            raise ValueError(f"no handler registered for: {', '.join(missing)}")
        self._handlers: dict[Method, Handler] = dict(handlers)
        self._sinks: list[PushSink] = []
        self.metrics_counters = {
            "requests": 0,
            "errors": 0,
            "pushes": 0,
            "push_failures": 0,
        }

    def _inc(self, key: str, value: int = 1) -> None:
        self.metrics_counters[key] = self.metrics_counters.get(key, 0) + value

    def _error(self, request_id: Any, code: str) -> Response:
        self._inc("errors")
        return Response(id=request_id, error=code)

    async def dispatch(self, message: Any) -> Response:
        self._inc("requests")
        request_id = message.get("id") if isinstance(message, dict) else None
        try:
            request = Request.model_validate(message)
        except ValidationError:
            return self._error(request_id, "INVALID_REQUEST")

        try:
            method = Method(request.method)
        except ValueError:
            print(f"[BUS][unknown_method] method={request.method}", flush=True)
            return self._error(request.id, "UNKNOWN_METHOD")

        handler = self._handlers[method]
        try:
            result = handler(request.params)
            if inspect.isawaitable(result):
                result = await result
        except InvalidCommandParams as exc:
            print(f"[BUS][invalid_params] method={method.value} code={exc.code} error={exc}", flush=True)
            return self._error(request.id, exc.code)
        except Exception as exc:
            print(f"[BUS][handler_error] method={method.value} error={exc!r}", flush=True)
            return self._error(request.id, "INTERNAL_ERROR")

        return Response(id=request.id, result=result)

    def add_sink(self, sink: PushSink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: PushSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    @property
    def sink_count(self) -> int:
        return len(self._sinks)

    def push(self, update: Any) -> int:
        """Deliver to every sink; failing sinks are dropped. Returns deliveries."""
        self._inc("pushes")
        delivered = 0
        for sink in list(self._sinks):
            try:
                sink(update)
                delivered += 1
            except Exception as exc:
                self._inc("push_failures")
                print(f"[BUS][push_failed] error={exc!r} action=drop_sink", flush=True)
                self.remove_sink(sink)
        return delivered

    def metrics(self) -> dict[str, int]:
        return {**self.metrics_counters, "sinks": len(self._sinks)}
