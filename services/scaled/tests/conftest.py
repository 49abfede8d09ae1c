import asyncio
import time
from collections import deque

import pytest

from scaled.models import ScaleConfig
from scaled.service import ScaleService
from scaled.transport import Transport


class FakeScale:
    """In-memory stand-in for the scale on the far side of the cable."""

    def __init__(self, response=b"ST,GS,+00.150kg\r\n"):
        self.response = response
        self.incoming = deque()
        self.written = []
        self.open_error = None
        self.keeps_handle = False
        self.read_errors = 0
        self.opens = 0
        self.open_handles = 0
        self.max_open_handles = 0

    def factory(self, port_id, config):
        return FakeTransport(port_id, config, self)


class FakeTransport(Transport):
    def __init__(self, port_id, config, scale):
        self.port_id = port_id
        self.config = config
        self.scale = scale
        self._open = False

    def open(self):
        if self.scale.open_error is not None and not self.scale.keeps_handle:
            raise self.scale.open_error
        self._open = True
        self.scale.opens += 1
        self.scale.open_handles += 1
        self.scale.max_open_handles = max(self.scale.max_open_handles, self.scale.open_handles)
        if self.scale.open_error is not None:
            # driver complains but the handle is usable
            raise self.scale.open_error

    def close(self):
        if self._open:
            self._open = False
            self.scale.open_handles -= 1

    def write(self, payload):
        self.scale.written.append(payload)
        if self.scale.response:
            self.scale.incoming.append(self.scale.response)

    def read(self):
        if self.scale.read_errors > 0:
            self.scale.read_errors -= 1
            raise OSError(5, "Input/output error")
        if self.scale.incoming:
            return self.scale.incoming.popleft()
        time.sleep(0.002)
        return b""

    @property
    def is_open(self):
        return self._open


def fast_config(**overrides):
    values = dict(
        port="/dev/ttyUSB0",
        poll_interval_ms=30,
        stable_poll_interval_ms=10,
        stable_weight_timeout_ms=1000,
        reconnect_interval_ms=50,
    )
    values.update(overrides)
    return ScaleConfig(**values)


async def _eventually(predicate, timeout=2.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def fake_scale():
    return FakeScale()


@pytest.fixture
def make_service(fake_scale):
    def build(**overrides):
        return ScaleService(
            cfg=fast_config(**overrides),
            transport_factory=fake_scale.factory,
            port_finder=lambda: None,
            persist=False,
        )
    return build


@pytest.fixture
def eventually():
    return _eventually
