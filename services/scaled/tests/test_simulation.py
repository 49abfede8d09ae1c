import asyncio

import pytest

from scaled.models import ConnectionState
from scaled.simulation import SIMULATED_PORT


def test_simulate_weight_without_hardware(make_service):
    svc = make_service()
    reading = svc.simulate_weight(500)
    assert reading.weight_kg == pytest.approx(0.5)
    assert reading.stable is True
    assert reading.unit == "kg"
    assert svc.current_weight.value == reading
    assert svc.state.last_weight == reading
    conn = svc.connection.value
    assert conn.state == ConnectionState.CONNECTED
    assert conn.simulated is True
    assert conn.port_id == SIMULATED_PORT
    assert conn.model == "Toledo Prix 3 Fit (simulated)"


def test_simulate_weight_over_a_real_link(make_service, eventually):
    async def scenario():
        svc = make_service()
        await svc.connect()
        svc.simulate_weight(1250)
        current = svc.current_weight.value
        assert current.weight_kg == pytest.approx(1.25)
        assert svc.connection.value.simulated is False
        assert svc.connection.value.port_id == "/dev/ttyUSB0"
        assert svc.connection.value.model == "Toledo Prix 3 Fit"
        await svc.disconnect()

    asyncio.run(scenario())


def test_simulated_link_is_torn_down_by_disconnect(make_service):
    async def scenario():
        svc = make_service()
        svc.simulate_weight(300)
        await svc.disconnect()
        assert svc.connection.value.state == ConnectionState.DISCONNECTED
        assert svc.connection.value.simulated is False
        assert svc.current_weight.value is None
        assert svc.connection.value.model == "Toledo Prix 3 Fit"

        svc.simulate_weight(400)
        assert svc.connection.value.model == "Toledo Prix 3 Fit (simulated)"

    asyncio.run(scenario())
