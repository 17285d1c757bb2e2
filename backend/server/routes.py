"""
Route registration for the session API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire gateway to WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json

from fastapi import WebSocket, WebSocketDisconnect, FastAPI

from observability.logger import log_event, now_ms
from session.gateway import SessionGateway, GatewayResult


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        gateway = SessionGateway(
            config=app.state.config,
            controller_factory=app.state.controller_factory,
        )
        pump: asyncio.Task[None] | None = None

        try:
            result = await gateway.on_ws_connect()
            await _flush_gateway_result(ws, result)

            pump = asyncio.create_task(_pump_outbound(ws, gateway))

            while True:
                text = await ws.receive_text()
                result = await gateway.on_json_message(text)
                await _flush_gateway_result(ws, result)

        except WebSocketDisconnect:
            await gateway.on_ws_disconnect(reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_FATAL_ERROR",
                "session_id": gateway.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            await gateway.on_ws_disconnect(reason="server_error")

        finally:
            if pump is not None:
                pump.cancel()
                await asyncio.gather(pump, return_exceptions=True)


async def _pump_outbound(ws: WebSocket, gateway: SessionGateway) -> None:
    async for msg in gateway.outbound():
        await ws.send_text(json.dumps(msg))


async def _flush_gateway_result(
    ws: WebSocket,
    result: GatewayResult,
) -> None:
    for msg in result.outbound_json:
        await ws.send_text(json.dumps(msg))
