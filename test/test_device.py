import pytest

from thorpm import config
from thorpm.hw import device, visadevice
from thorpm.hw.device import SettingEnum, intbool_conv, str_conv
from thorpm.hw.drivers.thorlabsvisa import AdapterType, ThorlabsPM

from conftest import FakeInstrument, FakeResourceManager, PM100D_ADDRESS, PM100D_RESPONSES


@pytest.fixture
def shared_rm(monkeypatch, no_settle):
    instrument = FakeInstrument(PM100D_RESPONSES)
    rm = FakeResourceManager({PM100D_ADDRESS: instrument})
    monkeypatch.setattr(visadevice, "_visa_rm", rm)
    return rm


def test_get_device_from_config(shared_rm):
    device.register_device("pm1", "thorlabsvisa.ThorlabsPM", address=PM100D_ADDRESS)
    pm = device.get_device("pm1")
    assert isinstance(pm, ThorlabsPM)
    assert pm.id == "pm1"
    assert pm.instrument_type == "PM100D"
    # a second call returns the open session
    assert device.get_device("pm1") is pm


def test_close_device_allows_reopening(shared_rm):
    device.register_device("pm1", "thorlabsvisa.ThorlabsPM", address=PM100D_ADDRESS)
    pm = device.get_device("pm1")
    device.close_device("pm1")
    assert not pm.is_open
    reopened = device.get_device("pm1")
    assert reopened is not pm
    assert reopened.is_open


def test_device_settings_reach_the_session(shared_rm):
    device.register_device("pm1", "thorlabsvisa.ThorlabsPM", address=PM100D_ADDRESS,
                           settings={"settle_time": 0.1})
    assert device.get_device("pm1").settle_time == 0.1


def test_registered_driver_class(shared_rm):
    class MyMeter(ThorlabsPM):
        pass

    device.register_driver_class("MyMeter", MyMeter)
    device.register_device("pm1", "MyMeter", address=PM100D_ADDRESS)
    assert type(device.get_device("pm1")) is MyMeter


def test_unqualified_driver_name_is_rejected(shared_rm):
    device.register_device("pm1", "ThorlabsPM", address=PM100D_ADDRESS)
    with pytest.raises(RuntimeError):
        device.get_device("pm1")


def test_double_connect_is_refused(shared_rm):
    device.register_device("pm1", "thorlabsvisa.ThorlabsPM", address=PM100D_ADDRESS)
    device.get_device("pm1")
    with pytest.raises(RuntimeError):
        ThorlabsPM("pm1", PM100D_ADDRESS)


def test_device_ids_cannot_contain_dots():
    with pytest.raises(ValueError):
        device.register_device("pm.1", "thorlabsvisa.ThorlabsPM")
    with pytest.raises(ValueError):
        device.register_driver_class("my.Meter", object)


def test_converters():
    assert str_conv('"S120C"') == "S120C"
    assert intbool_conv("1") is True
    assert intbool_conv("0") is False


def test_setting_enum_formats_as_value():
    assert str(AdapterType.THERMAL) == "THERMAL"
    assert f"INPUT:ADAPTER:TYPE {AdapterType.PYRO}" == "INPUT:ADAPTER:TYPE PYRO"
    assert isinstance(AdapterType.PYRO, SettingEnum)
