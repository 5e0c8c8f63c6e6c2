from __future__ import annotations

import itertools
import json
import os
import time
from typing import Any, Callable, Dict, Optional

from ticker_bridge.schemas.message import PushEnvelope, Response


def parse_frame(payload: Any) -> Response | PushEnvelope | list[str]:
    """Decode a host frame into a Response, a typed push, or a legacy line push."""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError("frame must be valid JSON") from exc

    if isinstance(payload, list):
        return [str(line) for line in payload]
    if not isinstance(payload, dict):
        raise ValueError("frame must be an object or an array")

    if "kind" in payload:
        return PushEnvelope.model_validate(payload)
    if "result" in payload or "error" in payload:
        return Response.model_validate(payload)
    raise ValueError("frame is neither a response nor a push")


class DisplayLinkClient:
    """Display-side websocket link to the host bus with request ids and reconnect."""

    def __init__(
        self,
        on_push: Optional[Callable[[Any], None]] = None,
        *,
        url: str | None = None,
        on_response: Optional[Callable[[Response], None]] = None,
        websocket_app_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._on_push = on_push
        self._on_response = on_response
        self.url = url or os.getenv("TICKER_HOST_WS_URL", "ws://127.0.0.1:8000/v1/bus")
        self.running = False
        self.last_error: str | None = None
        self.reconnect_count = 0
        self.pending: Dict[Any, str] = {}
        self.last_push: Any = None
        self._ids = itertools.count(1)
        self._ws_app: Any = None
        self._websocket_app_factory = websocket_app_factory or self._default_websocket_app_factory

    def _default_websocket_app_factory(self, *args: Any, **kwargs: Any) -> Any:
        from websocket import WebSocketApp

        return WebSocketApp(*args, **kwargs)

    def stop(self) -> None:
        self.running = False
        if self._ws_app is not None:
            self._ws_app.close()

    def build_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        request_id = next(self._ids)
        self.pending[request_id] = method
        return {"id": request_id, "method": method, "params": dict(params or {})}

    def send_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> int:
        if self._ws_app is None:
            raise RuntimeError("link is not connected")
        message = self.build_request(method, params)
        self._ws_app.send(json.dumps(message))
        return message["id"]

    def handle_raw_frame(self, payload: Any) -> Response | PushEnvelope | list[str]:
        frame = parse_frame(payload)
        if isinstance(frame, Response):
            self.pending.pop(frame.id, None)
            if self._on_response is not None:
                self._on_response(frame)
            return frame

        self.last_push = frame
        if self._on_push is not None:
            self._on_push(frame)
        return frame

    def connect(self, *, run_forever: bool = True, on_open: Optional[Callable[[], None]] = None) -> Any:
        print(f"[WS][link_connect] url={self.url}", flush=True)
        state = {"opened": False}

        def _on_open(_: Any) -> None:
            state["opened"] = True
            print("[WS][link_connect_result] status=open", flush=True)
            if on_open is not None:
                on_open()

        def _on_message(_: Any, raw_message: Any) -> None:
            try:
                self.handle_raw_frame(raw_message)
            except ValueError as exc:
                print(f"[WS][link_frame_skip] reason={exc}", flush=True)

        def _on_error(_: Any, error: Any) -> None:
            self.last_error = str(error)
            print(f"[WS][link_error] {self.last_error}", flush=True)

        def _on_close(_: Any, code: Any, reason: Any) -> None:
            print(f"[WS][link_close] code={code} reason={reason}", flush=True)

        self._ws_app = self._websocket_app_factory(
            self.url,
            on_open=_on_open,
            on_message=_on_message,
            on_error=_on_error,
            on_close=_on_close,
        )

        if run_forever:
            self._ws_app.run_forever()
            if not state["opened"]:
                raise RuntimeError("link_open_not_confirmed")

        return self._ws_app

    def run_with_reconnect(
        self,
        *,
        connect_once: Optional[Callable[[], None]] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        max_retries: int | None = None,
        backoff_base_sec: float = 1.0,
        backoff_cap_sec: float = 30.0,
    ) -> bool:
        """Keep the link up until stop().

        A connection that opened and later dropped resets the backoff and is
        redialed after the base delay. Failed attempts back off exponentially up
        to the cap. ``max_retries`` bounds consecutive failures and ``None``
        retries forever. Returns True when stopped, False after giving up.
        """
        connect_once = connect_once or self.connect
        self.running = True
        self.last_error = None
        self.reconnect_count = 0
        failures = 0

        while self.running:
            try:
                connect_once()
            except Exception as exc:
                self.last_error = str(exc)
                self.reconnect_count += 1
                failures += 1
                if not self.running:
                    break
                if max_retries is not None and failures >= max_retries:
                    print(f"[WS][link_give_up] failures={failures} error={self.last_error}", flush=True)
                    return False
                backoff = min(backoff_base_sec * (2 ** (failures - 1)), backoff_cap_sec)
                print(f"[WS][link_retry] attempt={failures} backoff_sec={backoff}", flush=True)
                sleep_fn(backoff)
                continue

            failures = 0
            self.last_error = None
            if self.running:
                self.reconnect_count += 1
                print("[WS][link_dropped] action=reconnect", flush=True)
                sleep_fn(backoff_base_sec)

        return True


def display_lines(frame: PushEnvelope | list[str]) -> list[str]:
    """Text rows a ticker face would show for a push."""
    if not isinstance(frame, PushEnvelope):
        return list(frame)
    payload = frame.payload
    if payload is None:
        return []
    rows = payload if isinstance(payload, list) else [payload]
    return [str(row.get("display", row.get("symbol", ""))) if isinstance(row, dict) else str(row) for row in rows]


def main() -> None:
    def _print_push(frame: Any) -> None:
        for line in display_lines(frame):
            print(line, flush=True)

    client = DisplayLinkClient(on_push=_print_push)
    try:
        client.run_with_reconnect()
    except KeyboardInterrupt:
        client.stop()


if __name__ == "__main__":
    main()
