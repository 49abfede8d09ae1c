from __future__ import annotations
import json
import os
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import ProtocolVariant, ScaleConfig

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("DATA_DIR", "/data"))
CONFIG_PATH = DATA_DIR / "scale_config.json"


def getenv_int(name: str, default: int) -> int:
    """Safely get an integer environment variable with fallback to default."""
    value = os.getenv(name)
    if not value or value.strip() == "":
        return default
    try:
        return int(value.strip())
    except ValueError:
        logger.warning(f"Invalid integer value for {name}='{value}', using default {default}")
        return default


def getenv_float(name: str, default: float) -> float:
    """Safely get a float environment variable with fallback to default."""
    value = os.getenv(name)
    if not value or value.strip() == "":
        return default
    try:
        return float(value.strip())
    except ValueError:
        logger.warning(f"Invalid float value for {name}='{value}', using default {default}")
        return default


def getenv_protocol(name: str, default: ProtocolVariant) -> ProtocolVariant:
    value = (os.getenv(name) or "").strip().upper()
    if not value:
        return default
    try:
        return ProtocolVariant(value)
    except ValueError:
        logger.warning(f"Unknown protocol {name}='{value}', using default {default.value}")
        return default


def default_config() -> ScaleConfig:
    return ScaleConfig(
        port=os.getenv("SCALE_PORT") or None,
        baud_rate=getenv_int("SCALE_BAUD", 4800),
        protocol=getenv_protocol("SCALE_PROTOCOL", ProtocolVariant.PRT2),
        auto_connect=os.getenv("SCALE_AUTO_CONNECT", "false").lower() == "true",
        reconnect_interval_ms=getenv_int("SCALE_RECONNECT_MS", 3000),
        max_reconnect_attempts=getenv_int("SCALE_MAX_RECONNECTS", 0),
        stable_weight_timeout_ms=getenv_int("SCALE_STABLE_TIMEOUT_MS", 5000),
        stable_tolerance_kg=getenv_float("SCALE_STABLE_TOLERANCE_KG", 0.005),
        min_weight_kg=getenv_float("SCALE_MIN_WEIGHT_KG", 0.010),
        mqtt_host=os.getenv("MQTT_HOST") or None,
        mqtt_port=getenv_int("MQTT_PORT", 1883),
        mqtt_user=os.getenv("MQTT_USER") or None,
        mqtt_pass=os.getenv("MQTT_PASS") or None,
        weight_topic=os.getenv("WEIGHT_TOPIC", "scale/weight"),
        status_topic=os.getenv("STATUS_TOPIC", "scale/status"),
    )


def load_config(path: Optional[Path] = None) -> ScaleConfig:
    path = path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        try:
            return ScaleConfig(**json.loads(path.read_text()))
        except (TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable config {path}: {e}")
    cfg = default_config()
    save_config(cfg, path)
    return cfg


def save_config(cfg: ScaleConfig, path: Optional[Path] = None) -> None:
    path = path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg.model_dump(mode="json"), indent=2))
