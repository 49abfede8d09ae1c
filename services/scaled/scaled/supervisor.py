"""
Reconnection after read-loop failures.

    connected --read error--> reconnecting --reopen ok--> connected
                              reconnecting --reopen failed--> reconnecting (retry)

Explicit connect/disconnect bump the manager session and cancel any retry,
so a failure from an old session never resurrects the link.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Optional

from .connection import ConnectionManager
from .errors import ReadError, ScaleError
from .models import ConnectionState
from .state import ScaleState

logger = logging.getLogger(__name__)


class ReconnectionSupervisor:
    def __init__(self, manager: ConnectionManager, state: ScaleState) -> None:
        self.manager = manager
        self.state = state
        self._task: Optional[asyncio.Task] = None
        self.attempts = 0
        manager.supervisor = self

    @property
    def reconnecting(self) -> bool:
        return self.state.reconnecting.value

    async def handle_read_error(self, error: ReadError, session: int) -> None:
        manager = self.manager
        async with manager.lock:
            if session != manager.session:
                return
            port = manager.port_id
            config = manager.active_config
            await manager.release()
            self.state.current_weight.set(None)
            self.state.reconnecting.set(True)
            self.state.update_connection(state=ConnectionState.RECONNECTING)
            if port is None or config is None:
                return
            interval_s = config.reconnect_interval_ms / 1000.0
            if interval_s <= 0:
                message = f"Lost {port}; auto-reconnect disabled"
                logger.warning(message)
                self.state.events.add(message, level="warning")
                return
            self.attempts = 0
            self.state.events.add(f"Lost {port}; reconnecting every {config.reconnect_interval_ms} ms", level="warning")
            self._task = asyncio.create_task(
                self._retry_loop(port, config, interval_s, session), name=f"scale-reconnect-{port}"
            )

    async def _retry_loop(self, port, config, interval_s: float, session: int) -> None:
        manager = self.manager
        while True:
            await asyncio.sleep(interval_s)
            async with manager.lock:
                if session != manager.session:
                    return
                self.attempts += 1
                logger.info(f"Reconnect attempt {self.attempts} to {port}")
                try:
                    await manager.open_and_start(port, config)
                except ScaleError as e:
                    self.state.record_error(e)
                    self.state.update_connection(state=ConnectionState.RECONNECTING, port_id=port)
                    limit = config.max_reconnect_attempts
                    if limit and self.attempts >= limit:
                        message = f"Giving up on {port} after {self.attempts} attempts"
                        logger.error(message)
                        self.state.events.add(message, level="error")
                        self.state.reconnecting.set(False)
                        self.state.update_connection(state=ConnectionState.DISCONNECTED, port_id=None)
                        self._task = None
                        return
                    continue
                self.state.reconnecting.set(False)
                self.state.events.add(f"Reconnected to {port} after {self.attempts} attempt(s)")
                self._task = None
                return

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state.reconnecting.set(False)
