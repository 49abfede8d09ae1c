"""
Connection lifecycle and the continuous read loop.

The manager is the only owner of the transport handle. ``connect``,
``disconnect`` and the reconnection supervisor all go through ``_release``
so a previous read loop has always stopped before a new handle is opened.
"""
from __future__ import annotations
import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from . import discovery, protocol
from .errors import AlreadyOpen, DeviceNotFound, ReadError, ScaleError, classify_open_error
from .models import ConnectionState, ConnectResult, ScaleConfig
from .state import ScaleState
from .transport import SerialTransport, Transport

if TYPE_CHECKING:
    from .supervisor import ReconnectionSupervisor

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str, ScaleConfig], Transport]
ReadErrorHandler = Callable[[ReadError, int], Awaitable[None]]


class ConnectionManager:
    # idle pause between empty reads
    IDLE_WAIT_S = 0.05
    # how long disposal waits for the read loop to notice the stop signal
    STOP_GRACE_S = 1.0

    def __init__(
        self,
        state: ScaleState,
        config_getter: Callable[[], ScaleConfig],
        transport_factory: TransportFactory = SerialTransport,
        port_finder: Callable[[], Optional[str]] = discovery.find_default_port,
    ) -> None:
        self.state = state
        self._config_getter = config_getter
        self._transport_factory = transport_factory
        self._port_finder = port_finder
        self.supervisor: Optional["ReconnectionSupervisor"] = None
        self.lock = asyncio.Lock()
        self.session = 0
        self._transport: Optional[Transport] = None
        self._read_task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._write_lock = asyncio.Lock()
        self.port_id: Optional[str] = None
        self.active_config: Optional[ScaleConfig] = None

    @property
    def stop_signal(self) -> asyncio.Event:
        return self._stop

    @property
    def is_open(self) -> bool:
        return self._transport is not None and self._transport.is_open

    async def connect(self, port_id: Optional[str] = None) -> ConnectResult:
        async with self.lock:
            self.session += 1
            if self.supervisor is not None:
                await self.supervisor.cancel()
            await self._release()
            self.state.reset()
            config = self._config_getter()
            port = port_id or config.port or self._port_finder()
            try:
                if not port:
                    raise DeviceNotFound("No serial port selected and no scale detected")
                self.state.update_connection(
                    state=ConnectionState.CONNECTING, port_id=port, protocol=config.protocol, model=config.model
                )
                await self.open_and_start(port, config)
            except ScaleError as e:
                logger.warning(f"Connect to {port} failed: {e.message}")
                fault = self.state.record_error(e)
                self.state.update_connection(state=ConnectionState.DISCONNECTED, port_id=None)
                return ConnectResult(connected=False, state=ConnectionState.DISCONNECTED, error=fault)
            return ConnectResult(connected=True, state=ConnectionState.CONNECTED, port_id=port)

    async def disconnect(self) -> None:
        async with self.lock:
            self.session += 1
            if self.supervisor is not None:
                await self.supervisor.cancel()
            was_open = self._transport is not None
            await self._release()
            self.state.reset()
            if was_open:
                logger.info("Scale disconnected")
                self.state.events.add("Scale disconnected")

    async def open_and_start(self, port: str, config: ScaleConfig) -> None:
        """Open ``port`` and start a read loop. Caller holds ``lock``."""
        transport: Optional[Transport] = None
        try:
            transport = self._transport_factory(port, config)
            await asyncio.to_thread(transport.open)
        except Exception as exc:
            error = classify_open_error(exc, port)
            if not (isinstance(error, AlreadyOpen) and transport is not None and transport.is_open):
                raise error from exc
            logger.warning(f"{error.message}; reusing the open handle")
            self.state.events.add(error.message, level="warning")

        self._transport = transport
        self.port_id = port
        self.active_config = config
        self.state.clear_error()
        self.state.update_connection(
            state=ConnectionState.CONNECTED,
            port_id=port,
            protocol=config.protocol,
            model=config.model,
            simulated=False,
        )
        if not protocol.is_supported(config.protocol):
            message = f"Protocol {config.protocol.value} is not decoded yet; no weights will be read"
            logger.warning(message)
            self.state.events.add(message, level="warning")
        logger.info(f"Scale connected on {port} ({config.baud_rate} baud, {config.protocol.value})")
        self.state.events.add(f"Connected to {port}")
        self._read_task = asyncio.create_task(
            self._read_loop(transport, config, self._stop, self.session), name=f"scale-read-{port}"
        )

    async def release(self) -> None:
        """Stop the loop and close the handle. Caller holds ``lock``."""
        await self._release()

    async def _release(self) -> None:
        stop, self._stop = self._stop, asyncio.Event()
        stop.set()

        task, self._read_task = self._read_task, None
        if task is not None and task is not asyncio.current_task():
            done, _ = await asyncio.wait({task}, timeout=self.STOP_GRACE_S)
            if not done:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await asyncio.to_thread(transport.close)
            except Exception as e:
                logger.warning(f"Error closing {transport.port_id}: {e}")
        self.state.is_reading.set(False)

    async def send_weight_request(self) -> bool:
        transport = self._transport
        config = self.active_config
        if transport is None or config is None:
            return False
        command = protocol.weight_request(config.protocol)
        if command is None:
            return False
        await self._write(transport, command)
        return True

    async def _write(self, transport: Transport, payload: bytes) -> None:
        async with self._write_lock:
            try:
                await asyncio.to_thread(transport.write, payload)
            except Exception as e:
                raise ReadError(f"Write to {transport.port_id} failed: {e}", transport.port_id) from e

    async def _wait(self, stop: asyncio.Event, seconds: float) -> bool:
        """Sleep up to ``seconds``; True when the stop signal fired."""
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _read_loop(self, transport: Transport, config: ScaleConfig, stop: asyncio.Event, session: int) -> None:
        loop = asyncio.get_running_loop()
        framer = protocol.FrameBuffer()
        command = protocol.weight_request(config.protocol)
        poll_s = config.poll_interval_ms / 1000.0
        next_poll = 0.0
        self.state.is_reading.set(True)
        try:
            while not stop.is_set():
                if command is not None and loop.time() >= next_poll:
                    await self._write(transport, command)
                    next_poll = loop.time() + poll_s
                try:
                    chunk = await asyncio.to_thread(transport.read)
                except Exception as e:
                    raise ReadError(f"Read from {transport.port_id} failed: {e}", transport.port_id) from e
                if stop.is_set():
                    break
                if not chunk:
                    if await self._wait(stop, self.IDLE_WAIT_S):
                        break
                    continue
                for fragment in framer.feed(chunk):
                    self._handle_fragment(fragment, config)
                if framer.pending and self._handle_fragment(framer.pending, config, quiet=True):
                    framer.clear()
        except ReadError as e:
            if stop.is_set():
                return
            logger.error(f"Scale read loop failed: {e.message}")
            if self._read_task is asyncio.current_task():
                self._read_task = None
            self.state.is_reading.set(False)
            self.state.record_error(e)
            if self.supervisor is not None:
                await self.supervisor.handle_read_error(e, session)
            return
        finally:
            if self._read_task is None or self._read_task is asyncio.current_task():
                self.state.is_reading.set(False)

    def _handle_fragment(self, fragment: str, config: ScaleConfig, quiet: bool = False) -> bool:
        try:
            reading = protocol.decode(fragment, config.protocol)
        except ScaleError as e:
            if not quiet:
                logger.debug(f"Skipping frame: {e.message}")
            return False
        self.state.publish_reading(reading)
        return True
