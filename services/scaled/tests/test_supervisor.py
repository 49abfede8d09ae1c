import asyncio
import errno

from scaled.models import ConnectionState


def test_read_error_reconnects_to_same_port(make_service, fake_scale, eventually):
    async def scenario():
        svc = make_service()
        history = []
        svc.connection.subscribe(lambda c: history.append(c.state))
        await svc.connect()
        assert await eventually(lambda: svc.current_weight.value is not None)

        fake_scale.read_errors = 1
        assert await eventually(lambda: ConnectionState.RECONNECTING in history)
        assert await eventually(lambda: fake_scale.opens == 2)
        assert await eventually(lambda: svc.connection.value.state == ConnectionState.CONNECTED)
        assert svc.reconnecting.value is False
        assert svc.supervisor.reconnecting is False
        assert svc.connection.value.port_id == "/dev/ttyUSB0"
        assert fake_scale.max_open_handles == 1
        assert history.index(ConnectionState.RECONNECTING) < len(history) - 1
        await svc.disconnect()

    asyncio.run(scenario())


def test_reconnecting_keeps_the_error_visible(make_service, fake_scale, eventually):
    async def scenario():
        svc = make_service(reconnect_interval_ms=10_000)
        await svc.connect()
        assert await eventually(lambda: svc.current_weight.value is not None)
        fake_scale.read_errors = 1
        assert await eventually(lambda: svc.reconnecting.value)
        assert svc.connection.value.state == ConnectionState.RECONNECTING
        assert svc.current_weight.value is None
        assert svc.state.last_weight.weight_kg == 0.150
        assert svc.last_error.value.code == "read_error"
        assert svc.is_reading.value is False
        assert fake_scale.open_handles == 0
        await svc.disconnect()
        assert svc.reconnecting.value is False
        assert svc.connection.value.state == ConnectionState.DISCONNECTED

    asyncio.run(scenario())


def test_zero_interval_disables_reconnect(make_service, fake_scale, eventually):
    async def scenario():
        svc = make_service(reconnect_interval_ms=0)
        await svc.connect()
        fake_scale.read_errors = 1
        assert await eventually(lambda: svc.connection.value.state == ConnectionState.RECONNECTING)
        await asyncio.sleep(0.2)
        assert fake_scale.opens == 1
        assert svc.connection.value.state == ConnectionState.RECONNECTING
        assert svc.reconnecting.value is True
        assert svc.last_error.value.code == "read_error"
        await svc.disconnect()

    asyncio.run(scenario())


def test_failed_reopens_keep_retrying(make_service, fake_scale, eventually):
    async def scenario():
        svc = make_service(reconnect_interval_ms=20)
        await svc.connect()
        fake_scale.open_error = OSError(errno.ENOENT, "No such file or directory")
        fake_scale.read_errors = 1
        assert await eventually(lambda: svc.supervisor.attempts >= 3)
        assert svc.connection.value.state == ConnectionState.RECONNECTING
        assert svc.last_error.value.code == "device_not_found"

        fake_scale.open_error = None
        assert await eventually(lambda: svc.connection.value.state == ConnectionState.CONNECTED)
        assert svc.reconnecting.value is False
        assert svc.last_error.value is None
        await svc.disconnect()

    asyncio.run(scenario())


def test_bounded_attempts_give_up(make_service, fake_scale, eventually):
    async def scenario():
        svc = make_service(reconnect_interval_ms=20, max_reconnect_attempts=2)
        await svc.connect()
        fake_scale.open_error = OSError(errno.EACCES, "Permission denied")
        fake_scale.read_errors = 1
        assert await eventually(lambda: svc.connection.value.state == ConnectionState.DISCONNECTED)
        assert svc.supervisor.attempts == 2
        assert svc.reconnecting.value is False
        assert svc.last_error.value.code == "permission_denied"
        await asyncio.sleep(0.1)
        assert svc.supervisor.attempts == 2

    asyncio.run(scenario())


def test_disconnect_stops_pending_retries(make_service, fake_scale, eventually):
    async def scenario():
        svc = make_service(reconnect_interval_ms=30)
        await svc.connect()
        fake_scale.open_error = OSError(errno.ENOENT, "No such file or directory")
        fake_scale.read_errors = 1
        assert await eventually(lambda: svc.reconnecting.value)
        await svc.disconnect()
        attempts = svc.supervisor.attempts
        fake_scale.open_error = None
        await asyncio.sleep(0.15)
        assert svc.supervisor.attempts == attempts
        assert fake_scale.opens == 1
        assert svc.connection.value.state == ConnectionState.DISCONNECTED

    asyncio.run(scenario())
