from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .models import (
    ConnectRequest,
    ConnectResult,
    PortDescriptor,
    ScaleConfig,
    ScaleEvent,
    ScaleStatus,
    SimulateRequest,
    StableWeightResponse,
    WeightReading,
)
from .service import ScaleService

logger = logging.getLogger(__name__)


class WeightHub:
    """Pushes a status snapshot to every WebSocket whenever the link changes."""

    def __init__(self, service: ScaleService):
        self.service = service
        self.active: List[WebSocket] = []
        self._unsubscribe = []
        self._pending = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active.append(websocket)
        if not self._unsubscribe:
            self._watch()
        logger.info(f"WebSocket connection accepted. Active connections: {len(self.active)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active:
            self.active.remove(websocket)
            logger.info(f"WebSocket disconnected. Active connections: {len(self.active)}")
        if not self.active:
            for unsubscribe in self._unsubscribe:
                unsubscribe()
            self._unsubscribe = []

    def _watch(self) -> None:
        state = self.service.state
        cells = (state.connection, state.current_weight, state.last_error, state.is_reading, state.reconnecting)
        self._unsubscribe = [cell.subscribe(self._changed) for cell in cells]

    def _changed(self, _value: Any) -> None:
        task = asyncio.get_running_loop().create_task(self.broadcast())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def broadcast(self):
        if not self.active:
            return

        dead = []
        data = self.service.status().model_dump(mode="json")

        for ws in list(self.active):
            try:
                await ws.send_json(data)
            except Exception as e:
                logger.warning(f"WebSocket send error: {str(e)}")
                dead.append(ws)

        for ws in dead:
            self.disconnect(ws)


def create_router(service: ScaleService) -> APIRouter:
    router = APIRouter()
    hub = WeightHub(service)

    @router.get("/api/ports", response_model=List[PortDescriptor])
    async def list_ports():
        return await asyncio.to_thread(service.list_available_ports)

    @router.get("/api/status", response_model=ScaleStatus)
    async def status():
        return service.status()

    @router.post("/api/connect", response_model=ConnectResult)
    async def connect(req: Optional[ConnectRequest] = None):
        return await service.connect(req.port_id if req else None)

    @router.post("/api/disconnect", response_model=ScaleStatus)
    async def disconnect():
        await service.disconnect()
        return service.status()

    @router.post("/api/stable-weight", response_model=StableWeightResponse)
    async def stable_weight():
        weight = await service.request_stable_weight()
        return StableWeightResponse(weight_kg=weight, last_error=service.last_error.value)

    @router.post("/api/simulate", response_model=WeightReading)
    async def simulate(req: SimulateRequest):
        return service.simulate_weight(req.grams)

    @router.get("/api/config", response_model=ScaleConfig)
    async def get_config():
        return service.cfg

    @router.post("/api/config", response_model=ScaleConfig)
    async def set_config(changes: Dict[str, Any]):
        return service.update_config(changes)

    @router.get("/api/events", response_model=List[ScaleEvent])
    async def events():
        return service.events.entries()

    @router.websocket("/ws/weight")
    async def ws_weight(websocket: WebSocket):
        client_ip = websocket.client.host if websocket.client else "unknown"
        await hub.connect(websocket)
        try:
            await websocket.send_json(service.status().model_dump(mode="json"))
            while True:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            logger.info(f"WebSocket client disconnected: {client_ip}")
        except Exception as e:
            logger.error(f"WebSocket error with {client_ip}: {str(e)}", exc_info=True)
        finally:
            hub.disconnect(websocket)

    return router
