from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from . import config as config_store
from . import discovery
from .acquirer import StableWeightAcquirer
from .connection import ConnectionManager, TransportFactory
from .errors import InvalidConfig
from .models import ConnectResult, PortDescriptor, ScaleConfig, ScaleStatus, WeightReading
from .mqtt_client import MQTTClient, WeightPublisher
from .simulation import SimulationSource
from .state import ScaleState
from .supervisor import ReconnectionSupervisor
from .transport import SerialTransport

logger = logging.getLogger(__name__)

_MQTT_FIELDS = ("mqtt_host", "mqtt_port", "mqtt_user", "mqtt_pass", "weight_topic", "status_topic")


class ScaleService:
    """
    The scale link as seen by the rest of the point of sale.

    Public methods never raise: failures end up in ``last_error`` and the
    event log, and the return value says what is usable.
    """

    def __init__(
        self,
        cfg: Optional[ScaleConfig] = None,
        config_path: Optional[Path] = None,
        transport_factory: TransportFactory = SerialTransport,
        port_finder: Callable[[], Optional[str]] = discovery.find_default_port,
        persist: bool = True,
    ) -> None:
        self.config_path = config_path
        self.persist = persist
        self.cfg = cfg or config_store.load_config(config_path)
        self.state = ScaleState()
        self.manager = ConnectionManager(self.state, lambda: self.cfg, transport_factory, port_finder)
        self.supervisor = ReconnectionSupervisor(self.manager, self.state)
        self.acquirer = StableWeightAcquirer(self.manager, self.state, lambda: self.cfg)
        self.simulation = SimulationSource(self.state)
        self.mqtt = self._make_mqtt(self.cfg)
        self._unsubscribe: List[Callable[[], None]] = []

    # -- observables -------------------------------------------------------

    @property
    def connection(self):
        return self.state.connection

    @property
    def current_weight(self):
        return self.state.current_weight

    @property
    def last_error(self):
        return self.state.last_error

    @property
    def is_reading(self):
        return self.state.is_reading

    @property
    def reconnecting(self):
        return self.state.reconnecting

    @property
    def events(self):
        return self.state.events

    def status(self) -> ScaleStatus:
        return ScaleStatus(
            connection=self.state.connection.value,
            current_weight=self.state.current_weight.value,
            last_error=self.state.last_error.value,
            is_reading=self.state.is_reading.value,
            reconnecting=self.state.reconnecting.value,
        )

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        self._attach_publisher()
        self.mqtt.start()
        if self.cfg.auto_connect and self.cfg.port:
            await self.connect(self.cfg.port)

    async def stop(self) -> None:
        await self.disconnect()
        self._detach_publisher()
        self.mqtt.stop()

    # -- operations --------------------------------------------------------

    def list_available_ports(self) -> List[PortDescriptor]:
        return discovery.list_available_ports(self.cfg.mock_ports_when_empty)

    async def connect(self, port_id: Optional[str] = None) -> ConnectResult:
        result = await self.manager.connect(port_id)
        if result.connected and result.port_id != self.cfg.port:
            self.update_config({"port": result.port_id})
        return result

    async def disconnect(self) -> None:
        try:
            await self.manager.disconnect()
        except Exception as e:
            logger.error(f"Error while disconnecting scale: {e}", exc_info=True)

    async def request_stable_weight(self) -> Optional[float]:
        return await self.acquirer.request_stable_weight()

    def simulate_weight(self, grams: float) -> WeightReading:
        return self.simulation.simulate_weight(grams)

    def update_config(self, changes: Dict[str, Any]) -> ScaleConfig:
        """Merge ``changes`` into the config; applies from the next connect or request."""
        old_cfg = self.cfg
        try:
            new_cfg = ScaleConfig(**{**old_cfg.model_dump(), **changes})
        except ValidationError as e:
            self.state.record_error(InvalidConfig(f"Invalid scale settings: {e.error_count()} error(s)"))
            logger.warning(f"Rejected config update {changes}: {e}")
            return old_cfg
        self.cfg = new_cfg
        if self.persist:
            try:
                config_store.save_config(new_cfg, self.config_path)
            except OSError as e:
                logger.error(f"Could not persist scale config: {e}")
        if any(getattr(old_cfg, f) != getattr(new_cfg, f) for f in _MQTT_FIELDS):
            self._restart_mqtt(new_cfg)
        return new_cfg

    # -- MQTT --------------------------------------------------------------

    def _make_mqtt(self, cfg: ScaleConfig) -> MQTTClient:
        return MQTTClient(host=cfg.mqtt_host, port=cfg.mqtt_port, username=cfg.mqtt_user, password=cfg.mqtt_pass)

    def _attach_publisher(self) -> None:
        self._detach_publisher()
        publisher = WeightPublisher(self.mqtt, self.cfg.weight_topic, self.cfg.status_topic)
        self._unsubscribe = [
            self.state.current_weight.subscribe(publisher.on_reading),
            self.state.connection.subscribe(publisher.on_connection),
        ]

    def _detach_publisher(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _restart_mqtt(self, cfg: ScaleConfig) -> None:
        running = bool(self._unsubscribe)
        self.mqtt.stop()
        self.mqtt = self._make_mqtt(cfg)
        if running:
            self._attach_publisher()
            self.mqtt.start()
