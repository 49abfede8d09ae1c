from __future__ import annotations
import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Optional

from .connection import ConnectionManager
from .errors import LowWeightAnomaly, NotConnected, ScaleError, StableTimeout
from .models import ConnectionState, ScaleConfig, WeightReading, utcnow
from .state import ScaleState

logger = logging.getLogger(__name__)


class StableWeightAcquirer:
    """
    Waits for the scale to settle before handing a weight to the till.

    Only readings published after the request was made are counted, each one
    once. A weight is confirmed once ``stable_samples`` consecutive readings
    are flagged stable by the scale and each lies within
    ``stable_tolerance_kg`` of the previous one. The wait is bounded by
    ``stable_weight_timeout_ms``; after that the best reading seen is returned
    unconfirmed, so a sale is never blocked on a vibrating counter.
    """

    def __init__(self, manager: ConnectionManager, state: ScaleState, config_getter: Callable[[], ScaleConfig]) -> None:
        self.manager = manager
        self.state = state
        self._config_getter = config_getter

    async def request_stable_weight(self) -> Optional[float]:
        if self.state.connection_state != ConnectionState.CONNECTED:
            self.state.record_error(NotConnected("Scale is not connected"))
            return None

        config = self._config_getter()
        stop = self.manager.stop_signal
        started = utcnow()
        arrived: Deque[WeightReading] = deque()

        def on_reading(reading: Optional[WeightReading]) -> None:
            if reading is not None and reading.timestamp >= started:
                arrived.append(reading)

        unsubscribe = self.state.current_weight.subscribe(on_reading)
        try:
            try:
                await self.manager.send_weight_request()
            except ScaleError as e:
                logger.warning(f"Weight request failed: {e.message}")
                self.state.record_error(e)
                return None
            return await self._collect(config, stop, arrived)
        finally:
            unsubscribe()

    async def _collect(self, config: ScaleConfig, stop: asyncio.Event, arrived: Deque[WeightReading]) -> Optional[float]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.stable_weight_timeout_ms / 1000.0
        poll_s = config.stable_poll_interval_ms / 1000.0
        consecutive = 0
        previous: Optional[WeightReading] = None
        observed: Optional[WeightReading] = None

        while True:
            while arrived:
                reading = arrived.popleft()
                observed = reading
                if not reading.stable:
                    consecutive = 0
                elif previous is not None and previous.stable and abs(reading.weight_kg - previous.weight_kg) < config.stable_tolerance_kg:
                    consecutive += 1
                else:
                    consecutive = 1
                previous = reading

                if consecutive >= config.stable_samples:
                    return self._confirmed(reading, config)

            if stop.is_set() or self.state.connection_state != ConnectionState.CONNECTED:
                logger.info("Stable weight request cancelled")
                return None

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=min(poll_s, remaining))
            except asyncio.TimeoutError:
                pass

        return self._best_effort(observed)

    def _confirmed(self, reading: WeightReading, config: ScaleConfig) -> Optional[float]:
        if reading.weight_kg < config.min_weight_kg:
            grams = reading.weight_kg * 1000
            self.state.record_error(
                LowWeightAnomaly(f"Stable weight {grams:.0f} g is below {config.min_weight_kg * 1000:.0f} g; place the item again")
            )
            return None
        logger.info(f"Stable weight {reading.weight_kg:.3f} kg")
        return reading.weight_kg

    def _best_effort(self, observed: Optional[WeightReading]) -> Optional[float]:
        fallback = observed or self.state.last_weight
        if fallback is None:
            self.state.record_error(StableTimeout("No weight received from the scale"))
            return None
        self.state.record_error(
            StableTimeout(f"Weight {fallback.weight_kg:.3f} kg was not confirmed stable; using last reading")
        )
        return fallback.weight_kg
