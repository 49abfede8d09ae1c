from __future__ import annotations
import json
import logging
import threading
from typing import Optional

import paho.mqtt.client as mqtt

from .models import Connection, WeightReading

logger = logging.getLogger(__name__)


class MQTTClient:
    def __init__(
        self,
        host: Optional[str],
        port: int,
        username: Optional[str],
        password: Optional[str],
        client_id: str = "scaled",
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.client_id = client_id
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id, clean_session=True)
        self._client.enable_logger(logger)
        if username and password:
            self._client.username_pw_set(username, password)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._connected = False
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def _on_connect(self, client, userdata, flags, reason_code, properties):  # type: ignore
        self._connected = not reason_code.is_failure
        if self._connected:
            logger.info(f"MQTT connected to {self.host}:{self.port}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):  # type: ignore
        self._connected = False

    def start(self) -> None:
        if not self.host:
            return
        def loop():
            backoff = 1
            while not self._stop.is_set():
                try:
                    self._client.connect(self.host, self.port, keepalive=30)
                    self._client.loop_forever(retry_first_connection=True)
                except Exception as e:
                    self._connected = False
                    logger.warning(f"MQTT connection to {self.host}:{self.port} failed: {e}")
                    self._stop.wait(backoff)
                    backoff = min(30, backoff * 2)
        self._thread = threading.Thread(target=loop, daemon=True, name="mqtt-publisher")
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        try:
            self._client.disconnect()
        except Exception as e:
            logger.debug(f"MQTT disconnect: {e}")
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)

    def publish(self, topic: str, payload: dict, qos: int = 0, retain: bool = False) -> None:
        if not self.host:
            return
        try:
            self._client.publish(topic, json.dumps(payload), qos=qos, retain=retain)
        except Exception as e:
            logger.warning(f"MQTT publish to {topic} failed: {e}")

    @property
    def connected(self) -> bool:
        return self._connected


class WeightPublisher:
    """Forwards stable readings and link status to MQTT."""

    def __init__(self, client: MQTTClient, weight_topic: str, status_topic: str) -> None:
        self.client = client
        self.weight_topic = weight_topic
        self.status_topic = status_topic

    def on_reading(self, reading: Optional[WeightReading]) -> None:
        if reading is None or not reading.stable or reading.weight_kg <= 0:
            return
        self.client.publish(
            self.weight_topic,
            {
                "weight_kg": reading.weight_kg,
                "unit": reading.unit,
                "ts": reading.timestamp.isoformat(),
            },
        )

    def on_connection(self, connection: Connection) -> None:
        self.client.publish(self.status_topic, connection.model_dump(mode="json"), retain=True)
