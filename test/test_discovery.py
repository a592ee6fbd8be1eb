import pytest

from thorpm import config
from thorpm.hw import discovery, visadevice
from thorpm.hw.discovery import PowerMeterDiscovery, discover
from thorpm.hw.drivers.thorlabsvisa import ThorlabsPM

from conftest import FakeResourceManager, PM100D_ADDRESS, PM16_ADDRESS


@pytest.fixture
def finder(monkeypatch):
    """Replace resource manager creation; returns the list of managers handed out."""
    managers = []

    def install(resources):
        def open_resource_manager(backend=None):
            rm = FakeResourceManager(resources=resources)
            managers.append(rm)
            return rm
        monkeypatch.setattr(visadevice, "open_resource_manager", open_resource_manager)
        return managers

    return install


def test_discover_lists_devices_in_order(finder):
    managers = finder([PM100D_ADDRESS, PM16_ADDRESS])
    assert discover() == [PM100D_ADDRESS, PM16_ADDRESS]
    assert len(managers) == 1
    assert managers[0].list_queries == ["?*::0x1313::?*::INSTR"]
    # the transient resource manager is released again
    assert managers[0].closed


def test_discover_custom_query(finder):
    managers = finder([PM16_ADDRESS])
    config.set("visa.discovery_query", "USB?*::INSTR")
    discover()
    discover(query="?*::INSTR")
    assert managers[0].list_queries == ["USB?*::INSTR"]
    assert managers[1].list_queries == ["?*::INSTR"]


def test_discover_swallows_finder_errors(finder):
    managers = finder(RuntimeError("no VISA library"))
    assert discover() == []
    assert managers[0].closed


def test_discover_when_resource_manager_cannot_be_created(monkeypatch):
    def broken(backend=None):
        raise OSError("Could not locate a VISA implementation")
    monkeypatch.setattr(visadevice, "open_resource_manager", broken)
    assert discover() == []


def test_power_meter_discovery(finder):
    finder([PM100D_ADDRESS, PM16_ADDRESS])
    found = PowerMeterDiscovery()
    assert found.number_of_devices == 2
    assert found.names_of_devices == [PM100D_ADDRESS, PM16_ADDRESS]
    assert found.first_device == PM100D_ADDRESS
    assert found.last_device == PM16_ADDRESS


def test_power_meter_discovery_is_a_snapshot(finder):
    managers = finder([PM100D_ADDRESS])
    found = PowerMeterDiscovery()
    found.names_of_devices.append("bogus")
    assert found.number_of_devices == 1
    assert found.names_of_devices == [PM100D_ADDRESS]
    assert len(managers) == 1


def test_power_meter_discovery_without_devices(finder):
    finder([])
    found = PowerMeterDiscovery()
    assert found.number_of_devices == 0
    assert found.names_of_devices == []
    assert found.first_device == ""
    assert found.last_device == ""


def test_list_available_uses_discovery(finder):
    finder([PM16_ADDRESS])
    assert ThorlabsPM.list_available() == [PM16_ADDRESS]
