"""Websocket bridge between the hosting editor and the gesture store.

The host connects to ``/ws`` and exchanges JSON envelopes with the
store: console sensor data and visibility events flow in, requests
(init, data stream, read code, write code) flow out. One host is served
at a time.

Read-only endpoints expose the store for dashboards:
- /api/status    connection, tick, dirty flag
- /api/gestures  serialized catalog
- /api/readings  display window with match highlighting
- /metrics       Prometheus text format

Usage:
    python -m gesture_trainer.server --config trainer.yml
    # or
    uvicorn gesture_trainer.server:app --port 8766
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from gesture_trainer import __version__
from gesture_trainer.config import TrainerConfig, load_config
from gesture_trainer.store import GestureStore

logger = logging.getLogger("gesture_trainer.server")


# --- State ---

class ServerState:
    def __init__(self):
        self.config = TrainerConfig()
        self.store: Optional[GestureStore] = None
        self.outbox: Optional[asyncio.Queue] = None
        self.host: Optional[WebSocket] = None

    def send(self, message: dict):
        if self.outbox is not None:
            self.outbox.put_nowait(message)


state = ServerState()


def build_store(config: TrainerConfig) -> GestureStore:
    state.outbox = asyncio.Queue()
    return GestureStore(send=state.send, config=config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    state.store = build_store(state.config)
    state.host = None
    logger.info("Gesture store ready (history=%d, flush_delay=%.1fs)",
                state.config.history_limit, state.config.flush_delay)
    yield
    state.store.close()
    state.store = None
    state.outbox = None


app = FastAPI(title="GestureTrainer", version=__version__, lifespan=lifespan)


# --- API endpoints ---

@app.get("/api/status")
async def api_status():
    store = state.store
    return {
        "host_connected": state.host is not None,
        "streaming": store.connected if store else False,
        "tick": store.history.tick if store else 0,
        "gestures": len(store.catalog) if store else 0,
        "current_gesture": store.catalog.current_id if store else None,
        "dirty": store.persistence.dirty if store else False,
        "write_failed": store.write_failed if store else False,
    }


@app.get("/api/gestures")
async def list_gestures():
    if state.store:
        return {"gestures": state.store.catalog.serialize()}
    return {"gestures": []}


@app.get("/api/readings")
async def list_readings():
    if not state.store:
        return {"tick": 0, "readings": []}
    return {
        "tick": state.store.history.tick,
        "readings": [
            {"value": reading.to_list(), "match": matched}
            for reading, matched in state.store.readings()
        ],
    }


@app.get("/metrics")
async def metrics():
    if not state.store:
        return PlainTextResponse("", media_type="text/plain; version=0.0.4; charset=utf-8")
    state.store.metrics.set_connections(1 if state.host is not None else 0)
    return PlainTextResponse(
        state.store.metrics.render(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


# --- WebSocket: host channel ---

async def _drain_outbox(ws: WebSocket):
    while True:
        message = await state.outbox.get()
        await ws.send_text(json.dumps(message))


@app.websocket("/ws")
async def host_channel(ws: WebSocket):
    await ws.accept()
    if state.host is not None or state.store is None:
        logger.warning("Rejecting second host connection")
        await ws.close(code=1008)
        return

    state.host = ws
    logger.info("Host connected")
    sender = asyncio.create_task(_drain_outbox(ws))
    state.store.start()

    try:
        while True:
            text = await ws.receive_text()
            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                logger.warning("Dropping non-JSON host message: %s", e)
                continue
            if not isinstance(data, dict):
                logger.warning("Dropping host message of type %s", type(data).__name__)
                continue
            state.store.receive_message(data)
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        state.host = None
        if state.store:
            state.store.disconnect()
        logger.info("Host disconnected")


# --- Entry point ---

def main():
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="GestureTrainer host bridge")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--host", default=None, help="Bind address")
    parser.add_argument("--port", type=int, default=None, help="Port")
    args = parser.parse_args()

    config = load_config(args.config)
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    state.config = config

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level)


if __name__ == "__main__":
    main()
