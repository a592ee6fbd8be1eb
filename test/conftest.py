import pytest
import pyvisa

from thorpm import config
from thorpm.hw import device, visadevice

PM100D_ADDRESS = "USB0::0x1313::0x8078::PM003835::INSTR"
PM16_ADDRESS = "USB0::0x1313::0x807B::230104202::INSTR"

PM100D_RESPONSES = {
    "*IDN?": "THORLABS,PM100D,PM003835,1.0.0",
    "SYSTEM:SENSOR:IDN?": "S120C,SN123,CAL1,1,2,19",
    "SYSTEM:ERROR:NEXT?": '+0,"No error"',
    "READ?": "1.000000E-05",
}


def visa_timeout():
    return pyvisa.errors.VisaIOError(pyvisa.constants.StatusCode.error_timeout)


class FakeInstrument:
    """Stands in for a pyvisa message based resource.

    Responses are looked up by the last query (a command containing ``?``) that was written. A response can be a
    string, an exception to raise on read, or a callable returning either.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.writes = []
        self.timeout = None
        self.write_termination = "\r\n"
        self.closed = False
        self.close_count = 0
        self._pending_query = None

    def write(self, command):
        if self.closed:
            raise pyvisa.errors.VisaIOError(pyvisa.constants.StatusCode.error_connection_lost)
        self.writes.append(command)
        if "?" in command:
            self._pending_query = command
        return len(command)

    def read_raw(self, size=None):
        query, self._pending_query = self._pending_query, None
        response = self.responses.get(query)
        if callable(response):
            response = response()
        if response is None:
            raise visa_timeout()
        if isinstance(response, Exception):
            raise response
        return (response + "\r\n").encode("ascii")

    def close(self):
        self.closed = True
        self.close_count += 1

    def writes_after(self, n):
        return self.writes[n:]


class FakeResourceManager:
    def __init__(self, instruments=None, resources=None):
        self.instruments = dict(instruments or {})
        self.resources = resources if resources is not None else tuple(self.instruments)
        self.list_queries = []
        self.closed = False

    def open_resource(self, address):
        if address not in self.instruments:
            raise pyvisa.errors.VisaIOError(pyvisa.constants.StatusCode.error_resource_not_found)
        return self.instruments[address]

    def list_resources(self, query="?*::INSTR"):
        self.list_queries.append(query)
        if isinstance(self.resources, Exception):
            raise self.resources
        return tuple(self.resources)

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    config.reset()
    device._connected_devices.clear()
    monkeypatch.setattr(visadevice, "_visa_rm", None)
    yield
    for dev in list(device._connected_devices.values()):
        dev.close()
    device._connected_devices.clear()
    config.reset()


@pytest.fixture
def no_settle(monkeypatch):
    sleeps = []
    monkeypatch.setattr(visadevice.time, "sleep", lambda t: sleeps.append(t))
    return sleeps


@pytest.fixture
def pm100d_instrument():
    return FakeInstrument(PM100D_RESPONSES)


@pytest.fixture
def fake_rm(pm100d_instrument):
    return FakeResourceManager({PM100D_ADDRESS: pm100d_instrument})


@pytest.fixture
def make_pm(no_settle):
    """Factory that opens a session on a fake instrument with the given responses."""
    from thorpm.hw.drivers.thorlabsvisa import ThorlabsPM

    sessions = []

    def _make(responses=None, **kw):
        instrument = FakeInstrument(PM100D_RESPONSES if responses is None else responses)
        rm = FakeResourceManager({PM100D_ADDRESS: instrument})
        pm = ThorlabsPM.open(PM100D_ADDRESS, resource_manager=rm, **kw)
        sessions.append(pm)
        return pm, instrument

    yield _make

    for pm in sessions:
        pm.close()
