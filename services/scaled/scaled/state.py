"""
Shared runtime state of one scale link.

Every cell is written from the event loop only and always holds a whole,
immutable model, so observers never see a half-updated reading.
"""
from __future__ import annotations
import logging
from collections import deque
from typing import Callable, Deque, Generic, List, Optional, TypeVar

from .errors import ScaleError
from .models import SIMULATED_SUFFIX, Connection, ConnectionState, ScaleEvent, ScaleFault, WeightReading

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Observable(Generic[T]):
    def __init__(self, value: T) -> None:
        self._value = value
        self._subscribers: List[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception as e:
                logger.warning(f"Observer {callback!r} failed: {e}", exc_info=True)

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe


class EventLog:
    """Bounded diagnostics log rendered by the diagnostics panel."""

    def __init__(self, maxlen: int = 200) -> None:
        self._entries: Deque[ScaleEvent] = deque(maxlen=maxlen)
        self.appended: Observable[Optional[ScaleEvent]] = Observable(None)

    def add(self, message: str, level: str = "info") -> ScaleEvent:
        event = ScaleEvent(level=level, message=message)
        self._entries.append(event)
        self.appended.set(event)
        return event

    def entries(self) -> List[ScaleEvent]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class ScaleState:
    def __init__(self) -> None:
        self.connection: Observable[Connection] = Observable(Connection())
        self.current_weight: Observable[Optional[WeightReading]] = Observable(None)
        self.last_error: Observable[Optional[ScaleFault]] = Observable(None)
        self.is_reading: Observable[bool] = Observable(False)
        self.reconnecting: Observable[bool] = Observable(False)
        self.events = EventLog()
        # survives disconnects; best-effort fallback for stable weight requests
        self.last_weight: Optional[WeightReading] = None

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.value.state

    def update_connection(self, **changes) -> Connection:
        conn = self.connection.value.model_copy(update=changes)
        self.connection.set(conn)
        return conn

    def publish_reading(self, reading: WeightReading) -> None:
        self.last_weight = reading
        self.current_weight.set(reading)

    def record_error(self, error: ScaleError) -> ScaleFault:
        fault = error.fault()
        self.last_error.set(fault)
        self.update_connection(last_error=fault.message)
        self.events.add(fault.message, level=fault.severity)
        return fault

    def clear_error(self) -> None:
        self.last_error.set(None)
        self.update_connection(last_error=None)

    def reset(self) -> None:
        """Back to a plain disconnected link, keeping last_error and last_weight."""
        conn = self.connection.value
        model = conn.model.removesuffix(SIMULATED_SUFFIX) if conn.simulated else conn.model
        self.connection.set(Connection(protocol=conn.protocol, model=model, last_error=conn.last_error))
        self.current_weight.set(None)
        self.is_reading.set(False)
        self.reconnecting.set(False)
