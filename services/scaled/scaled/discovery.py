"""Serial port discovery with a labelled mock list for development machines."""
from __future__ import annotations
import logging
from typing import List, Optional, Sequence

from serial.tools import list_ports

from .models import PortDescriptor

logger = logging.getLogger(__name__)

MOCK_PORTS = (
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8",
    "/dev/ttyUSB0", "/dev/ttyS0", "/dev/ttyACM0",
)

# USB-serial adapters are far more likely to be the scale than onboard UARTs
PREFERRED_HINTS = ("usb", "acm", "ch340", "pl2303", "ftdi", "cp210")


def mock_ports() -> List[PortDescriptor]:
    return [PortDescriptor(id=p, name=f"{p} (mock)", mock=True) for p in MOCK_PORTS]


def _real_ports() -> List[PortDescriptor]:
    found = sorted(list_ports.comports(), key=lambda p: p.device)
    ports = []
    for info in found:
        name = info.description if info.description and info.description != "n/a" else info.device
        ports.append(PortDescriptor(id=info.device, name=name))
    return ports


def list_available_ports(mock_when_empty: bool = True) -> List[PortDescriptor]:
    """List serial ports; never raises."""
    try:
        ports = _real_ports()
    except Exception as e:
        logger.warning(f"Serial port listing unavailable, using mock ports: {e}")
        return mock_ports()
    if not ports and mock_when_empty:
        logger.info("No serial ports found, using mock ports")
        return mock_ports()
    return ports


def find_default_port(preferred: Optional[Sequence[str]] = None) -> Optional[str]:
    """Best guess at the scale's port among the real ports, or None."""
    try:
        ports = _real_ports()
    except Exception as e:
        logger.warning(f"Serial port listing failed: {e}")
        return None
    if not ports:
        return None
    for hint in preferred or PREFERRED_HINTS:
        for port in ports:
            if hint.lower() in f"{port.id} {port.name}".lower():
                return port.id
    return ports[0].id
