from types import SimpleNamespace

from scaled import discovery


def _ports(*pairs):
    return [SimpleNamespace(device=d, description=desc) for d, desc in pairs]


def test_lists_real_ports_sorted(monkeypatch):
    monkeypatch.setattr(
        discovery.list_ports, "comports",
        lambda: _ports(("/dev/ttyUSB0", "USB-Serial Controller"), ("/dev/ttyS0", "n/a")),
    )
    ports = discovery.list_available_ports()
    assert [p.id for p in ports] == ["/dev/ttyS0", "/dev/ttyUSB0"]
    assert ports[0].name == "/dev/ttyS0"
    assert ports[1].name == "USB-Serial Controller"
    assert not any(p.mock for p in ports)


def test_empty_listing_falls_back_to_mock(monkeypatch):
    monkeypatch.setattr(discovery.list_ports, "comports", lambda: [])
    ports = discovery.list_available_ports()
    assert ports and all(p.mock for p in ports)
    assert all(p.name.endswith("(mock)") for p in ports)
    assert "/dev/ttyUSB0" in [p.id for p in ports]


def test_empty_listing_without_mock(monkeypatch):
    monkeypatch.setattr(discovery.list_ports, "comports", lambda: [])
    assert discovery.list_available_ports(mock_when_empty=False) == []


def test_listing_errors_never_escape(monkeypatch):
    def broken():
        raise OSError("no serial API here")

    monkeypatch.setattr(discovery.list_ports, "comports", broken)
    ports = discovery.list_available_ports()
    assert ports == discovery.mock_ports()
    assert discovery.find_default_port() is None


def test_default_port_prefers_usb_adapters(monkeypatch):
    monkeypatch.setattr(
        discovery.list_ports, "comports",
        lambda: _ports(("/dev/ttyS0", "n/a"), ("/dev/ttyACM0", "Toledo"), ("/dev/ttyUSB3", "CH340")),
    )
    assert discovery.find_default_port() == "/dev/ttyUSB3"
    assert discovery.find_default_port(["acm"]) == "/dev/ttyACM0"


def test_default_port_ignores_mock_list(monkeypatch):
    monkeypatch.setattr(discovery.list_ports, "comports", lambda: [])
    assert discovery.find_default_port() is None
