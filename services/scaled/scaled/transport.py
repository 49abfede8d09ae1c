from __future__ import annotations
import threading
from abc import ABC, abstractmethod
from typing import Optional

import serial

from .models import ScaleConfig

PARITY_MAP = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}

STOPBITS_MAP = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}

BYTESIZE_MAP = {
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


class Transport(ABC):
    """Blocking byte transport. Calls are made from worker threads."""

    port_id: str

    @abstractmethod
    def open(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def write(self, payload: bytes) -> None:
        raise NotImplementedError

    @abstractmethod
    def read(self) -> bytes:
        """Return whatever arrived, or b"" after a short timeout."""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_open(self) -> bool:
        raise NotImplementedError


class SerialTransport(Transport):
    def __init__(self, port_id: str, config: ScaleConfig, timeout: float = 0.1) -> None:
        self.port_id = port_id
        self.config = config
        self.timeout = timeout
        self._ser: Optional[serial.Serial] = None
        self._lock = threading.Lock()

    def open(self) -> None:
        with self._lock:
            if self._ser and self._ser.is_open:
                raise serial.SerialException(f"Port {self.port_id} is already open")
            self._ser = serial.Serial(
                port=self.port_id,
                baudrate=self.config.baud_rate,
                bytesize=BYTESIZE_MAP[self.config.data_bits],
                parity=PARITY_MAP[self.config.parity],
                stopbits=STOPBITS_MAP[self.config.stop_bits],
                rtscts=self.config.flow_control == "hardware",
                xonxoff=self.config.flow_control == "software",
                timeout=self.timeout,
                write_timeout=1.0,
            )

    def close(self) -> None:
        with self._lock:
            ser, self._ser = self._ser, None
        if ser is not None and ser.is_open:
            ser.close()

    def write(self, payload: bytes) -> None:
        ser = self._ser
        if ser is None or not ser.is_open:
            raise serial.SerialException("Serial port is not open")
        ser.write(payload)
        ser.flush()

    def read(self) -> bytes:
        ser = self._ser
        if ser is None or not ser.is_open:
            raise serial.SerialException("Serial port is not open")
        return ser.read(ser.in_waiting or 1)

    @property
    def is_open(self) -> bool:
        ser = self._ser
        return bool(ser and ser.is_open)
