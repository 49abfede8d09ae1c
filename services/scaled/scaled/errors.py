"""
Error taxonomy for the scale link.

Errors are raised inside the subsystem and converted to ``ScaleFault`` values
at the public surface; nothing here is allowed to reach the host application
as an exception.
"""
from __future__ import annotations
import errno
from typing import Optional

import serial

from .models import ScaleFault


class ScaleError(Exception):
    code = "scale_error"
    severity = "error"

    def __init__(self, message: str, port_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.port_id = port_id

    def fault(self) -> ScaleFault:
        return ScaleFault(code=self.code, message=self.message, severity=self.severity)


class PortUnavailable(ScaleError):
    code = "port_unavailable"


class DeviceNotFound(PortUnavailable):
    code = "device_not_found"


class PermissionDenied(ScaleError):
    code = "permission_denied"


class AlreadyOpen(ScaleError):
    code = "already_open"
    severity = "warning"


class ParseFailure(ScaleError):
    code = "parse_failure"
    severity = "warning"


class ReadError(ScaleError):
    code = "read_error"


class StableTimeout(ScaleError):
    code = "stable_timeout"
    severity = "warning"


class LowWeightAnomaly(ScaleError):
    code = "low_weight"


class NotConnected(ScaleError):
    code = "not_connected"


class InvalidConfig(ScaleError):
    code = "invalid_config"


_NOT_FOUND_ERRNOS = {errno.ENOENT, errno.ENODEV, errno.ENXIO}
_DENIED_ERRNOS = {errno.EACCES, errno.EPERM}
_BUSY_ERRNOS = {errno.EBUSY}


def classify_open_error(exc: BaseException, port_id: Optional[str] = None) -> ScaleError:
    """Map an exception raised while opening a port onto the taxonomy."""
    if isinstance(exc, ScaleError):
        return exc
    text = str(exc)
    lowered = text.lower()
    code = getattr(exc, "errno", None)
    label = port_id or "?"

    if isinstance(exc, PermissionError) or code in _DENIED_ERRNOS or "access is denied" in lowered or "permission denied" in lowered:
        return PermissionDenied(f"Permission denied opening {label}: {text}", port_id)
    if code in _BUSY_ERRNOS or "already open" in lowered or "resource busy" in lowered:
        return AlreadyOpen(f"Port {label} is already open: {text}", port_id)
    if (
        isinstance(exc, FileNotFoundError)
        or code in _NOT_FOUND_ERRNOS
        or "no such file" in lowered
        or "cannot find the file" in lowered
        or "filenotfounderror" in lowered
    ):
        return DeviceNotFound(f"No scale found on {label}: {text}", port_id)
    if isinstance(exc, (serial.SerialException, OSError)):
        return PortUnavailable(f"Could not open {label}: {text}", port_id)
    return PortUnavailable(f"Unexpected error opening {label}: {text or type(exc).__name__}", port_id)
