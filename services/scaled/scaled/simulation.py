from __future__ import annotations
import logging

from .models import SIMULATED_SUFFIX, ConnectionState, WeightReading
from .state import ScaleState

logger = logging.getLogger(__name__)

SIMULATED_PORT = "SIMULATED"


class SimulationSource:
    """Feeds synthetic stable readings for machines without a scale attached."""

    def __init__(self, state: ScaleState) -> None:
        self.state = state

    def simulate_weight(self, grams: float) -> WeightReading:
        reading = WeightReading(weight_kg=grams / 1000.0, stable=True, unit="kg")
        if self.state.connection_state == ConnectionState.DISCONNECTED:
            model = self.state.connection.value.model
            self.state.update_connection(
                state=ConnectionState.CONNECTED,
                port_id=SIMULATED_PORT,
                model=f"{model}{SIMULATED_SUFFIX}",
                simulated=True,
            )
            self.state.events.add("Simulated scale connected")
        self.state.publish_reading(reading)
        logger.debug(f"Simulated weight {grams} g")
        return reading
