import asyncio
import json
import time
from typing import Any

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from ticker_bridge.schemas.message import Response
from ticker_bridge.schemas.quote import Quote
from ticker_bridge.services.message_bus import MessageBus, PushSink
from ticker_bridge.services.state_store import load_last_quotes

router = APIRouter()


async def _drain_outbound(websocket: WebSocket, outbound: asyncio.Queue, bus: MessageBus, sink: PushSink) -> None:
    while True:
        frame = await outbound.get()
        try:
            await websocket.send_json(frame)
        except Exception as exc:
            bus.remove_sink(sink)
            print(f"[WS][send_failed] error={exc!r} action=drop_sink sinks={bus.sink_count}", flush=True)
            return


@router.websocket('/bus')
async def bus_socket(websocket: WebSocket):
    runtime = websocket.app.state.runtime
    await websocket.accept()

    # responses and pushes share one queue so the display sees them in host order
    outbound: asyncio.Queue = asyncio.Queue()
    sink = outbound.put_nowait
    runtime.bus.add_sink(sink)
    sender = asyncio.create_task(_drain_outbound(websocket, outbound, runtime.bus, sink))
    print(f"[WS][display_connected] sinks={runtime.bus.sink_count}", flush=True)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                outbound.put_nowait(Response(error='INVALID_REQUEST').to_wire())
                continue
            response = await runtime.bus.dispatch(message)
            outbound.put_nowait(response.to_wire())
    except WebSocketDisconnect as exc:
        print(f"[WS][display_disconnected] code={exc.code}", flush=True)
    finally:
        runtime.bus.remove_sink(sink)
        sender.cancel()


@router.post('/bus')
async def post_bus(message: dict[str, Any], request: Request):
    response = await request.app.state.runtime.bus.dispatch(message)
    return response.to_wire()


@router.get('/data')
def get_display_data(request: Request):
    runtime = request.app.state.runtime
    quotes = [q for q in load_last_quotes(runtime.store) if isinstance(q, Quote)]
    return {
        'lines': runtime.formatter.lines(quotes),
        'timestamp': int(time.time() * 1000),
    }


@router.get('/status')
def get_status(request: Request):
    return request.app.state.runtime.commands.status({})


@router.get('/metrics/refresh')
def refresh_metrics(request: Request):
    runtime = request.app.state.runtime
    return {
        'scheduler': runtime.scheduler.metrics(),
        'fetcher': runtime.fetcher.metrics(),
        'bus': runtime.bus.metrics(),
    }
