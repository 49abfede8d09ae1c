from __future__ import annotations
import datetime as dt
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ProtocolVariant(str, Enum):
    PRT1 = "PRT1"
    PRT2 = "PRT2"
    PRT3 = "PRT3"
    PRT4 = "PRT4"
    PRT5 = "PRT5"


DEFAULT_MODEL = "Toledo Prix 3 Fit"
SIMULATED_SUFFIX = " (simulated)"


class WeightReading(BaseModel):
    model_config = ConfigDict(frozen=True)

    weight_kg: float
    stable: bool = False
    unit: Literal["kg", "g"] = "kg"
    timestamp: dt.datetime = Field(default_factory=utcnow)
    raw: Optional[str] = None  # frame the reading was decoded from


class Connection(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: ConnectionState = ConnectionState.DISCONNECTED
    port_id: Optional[str] = None
    protocol: ProtocolVariant = ProtocolVariant.PRT2
    model: str = DEFAULT_MODEL
    last_error: Optional[str] = None
    simulated: bool = False


class PortDescriptor(BaseModel):
    id: str
    name: str
    mock: bool = False


class ScaleFault(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    severity: Literal["warning", "error"] = "error"
    timestamp: dt.datetime = Field(default_factory=utcnow)


class ScaleEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: dt.datetime = Field(default_factory=utcnow)
    level: str = "info"
    message: str


class ConnectResult(BaseModel):
    connected: bool
    state: ConnectionState
    port_id: Optional[str] = None
    error: Optional[ScaleFault] = None


class ScaleConfig(BaseModel):
    # Serial transport; 4800 8N1 is what the Prix 3 Fit ships with
    port: Optional[str] = None  # last used port, e.g. /dev/ttyUSB0 or COM3
    baud_rate: int = Field(4800, gt=0)
    data_bits: Literal[7, 8] = 8
    stop_bits: Literal[1, 2] = 1
    parity: Literal["none", "even", "odd", "mark", "space"] = "none"
    flow_control: Literal["none", "hardware", "software"] = "none"
    protocol: ProtocolVariant = ProtocolVariant.PRT2
    model: str = DEFAULT_MODEL
    auto_connect: bool = False

    # 0 disables auto-reconnect; max_reconnect_attempts 0 means retry forever
    reconnect_interval_ms: int = Field(3000, ge=0)
    max_reconnect_attempts: int = Field(0, ge=0)

    # Stable weight acquisition
    stable_weight_timeout_ms: int = Field(5000, gt=0)
    poll_interval_ms: int = Field(1000, gt=0)
    stable_poll_interval_ms: int = Field(100, gt=0)
    stable_samples: int = Field(3, ge=1)
    stable_tolerance_kg: float = Field(0.005, ge=0)
    min_weight_kg: float = Field(0.010, ge=0)

    mock_ports_when_empty: bool = True

    # Optional MQTT sink for stable readings
    mqtt_host: Optional[str] = None
    mqtt_port: int = 1883
    mqtt_user: Optional[str] = None
    mqtt_pass: Optional[str] = None
    weight_topic: str = "scale/weight"
    status_topic: str = "scale/status"


class ConnectRequest(BaseModel):
    port_id: Optional[str] = None


class SimulateRequest(BaseModel):
    grams: float


class StableWeightResponse(BaseModel):
    weight_kg: Optional[float] = None
    last_error: Optional[ScaleFault] = None


class ScaleStatus(BaseModel):
    connection: Connection
    current_weight: Optional[WeightReading] = None
    last_error: Optional[ScaleFault] = None
    is_reading: bool = False
    reconnecting: bool = False
