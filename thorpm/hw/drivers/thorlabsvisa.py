"""Device drivers to control Thorlabs optical power and energy meters (PM100 series and USB power sensors)."""

import numpy as np
from enum import Enum, IntEnum, IntFlag
from typing import NamedTuple

from loguru import logger

from thorpm.hw import visadevice
from thorpm.hw.device import SettingEnum
from thorpm.hw.visadevice import visa_property, visa_command


class SessionInvalidatedError(RuntimeError):
    """Raised when a session is used after the input adapter mode was switched.

    The cached sensor capabilities no longer describe the instrument; close the session and open a new one.
    """
    pass


class SensorType(IntEnum):
    """Physical sensor principle, as reported in field 4 of ``SYSTEM:SENSOR:IDN?``."""
    NONE = 0x00
    PHOTODIODE = 0x01
    THERMOPILE = 0x02
    PYROELECTRIC = 0x03

    @classmethod
    def _missing_(cls, value):
        # sensor heads newer than this driver report types it does not know
        if isinstance(value, int):
            return cls.NONE
        return None


class SensorSubtype(IntEnum):
    """Sensor form factor, as reported in field 5 of ``SYSTEM:SENSOR:IDN?``."""
    NONE = 0x00                     # no detector
    ADAPTER = 0x01                  # detector adapter
    STANDARD = 0x02                 # detector
    HAS_FILTER = 0x03               # photodiode sensor with integrated filter identified by position
    HAS_TEMPERATURE_SENSOR = 0x12   # detector with temperature sensor

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, int):
            return cls.NONE
        return None


class SensorFlags(IntFlag):
    """Sensor capabilities, as reported in field 6 of ``SYSTEM:SENSOR:IDN?``. Bit values match the firmware."""
    NONE = 0
    IS_POWER_SENSOR = 0x0001
    IS_ENERGY_SENSOR = 0x0002
    IS_RESPONSIVITY_SETTABLE = 0x0010
    IS_WAVELENGTH_SETTABLE = 0x0020
    IS_TAU_SETTABLE = 0x0040
    HAS_TEMPERATURE_SENSOR = 0x0100


class MeasurementRange(Enum):
    """Current ranges of the PM100D console, from widest to narrowest.

    .. list-table::

        * - :data:`UNKNOWN`
          - not determined
        * - :data:`RANGE_OVERFLOW`
          - above 5.5 mA
        * - :data:`RANGE_03`
          - 5.5 mA - 0.55 mA
        * - :data:`RANGE_04`
          - 550 uA - 55 uA
        * - :data:`RANGE_05`
          - 55 uA - 5.5 uA
        * - :data:`RANGE_06`
          - 5.5 uA - 0.55 uA
        * - :data:`RANGE_07`
          - 550 nA - 55 nA
        * - :data:`RANGE_08`
          - 55 nA - 0 nA
    """
    UNKNOWN = 0
    RANGE_OVERFLOW = 1
    RANGE_03 = 2
    RANGE_04 = 3
    RANGE_05 = 4
    RANGE_06 = 5
    RANGE_07 = 6
    RANGE_08 = 7

    @property
    def upper_current(self):
        """Upper bound of the range in ampere: infinite for overflow, NaN if unknown."""
        return _RANGE_UPPER_CURRENTS[self]

    def increment(self):
        """The next wider range. Stays put at the widest range, overflow and unknown."""
        return increment_range(self)

    def decrement(self):
        """The next narrower range. Stays put at the narrowest range, overflow and unknown."""
        return decrement_range(self)

    @classmethod
    def estimate(cls, current):
        """Classify a current (in A) into the range that would be needed to measure it.

        A current exactly at a range's upper bound belongs to that range, i.e. the next narrower range than the
        one whose bound it exceeds. NaN gives :data:`UNKNOWN`.
        """
        if np.isnan(current):
            return cls.UNKNOWN
        current = abs(current)
        for threshold, measurement_range in _ESTIMATE_THRESHOLDS:
            if current > threshold:
                return measurement_range
        return cls.RANGE_08


_RANGE_UPPER_CURRENTS = {
    MeasurementRange.UNKNOWN: np.nan,
    MeasurementRange.RANGE_OVERFLOW: np.inf,
    MeasurementRange.RANGE_03: 5.5e-3,
    MeasurementRange.RANGE_04: 5.5e-4,
    MeasurementRange.RANGE_05: 5.5e-5,
    MeasurementRange.RANGE_06: 5.5e-6,
    MeasurementRange.RANGE_07: 5.5e-7,
    MeasurementRange.RANGE_08: 5.5e-8,
}

# a current above the threshold needs the listed range (or a wider one)
_ESTIMATE_THRESHOLDS = [
    (5.5e-3, MeasurementRange.RANGE_OVERFLOW),
    (5.5e-4, MeasurementRange.RANGE_03),
    (5.5e-5, MeasurementRange.RANGE_04),
    (5.5e-6, MeasurementRange.RANGE_05),
    (5.5e-7, MeasurementRange.RANGE_06),
    (5.5e-8, MeasurementRange.RANGE_07),
]


def increment_range(measurement_range):
    """Move one step towards a wider range. Anything that is not a :class:`MeasurementRange` gives ``UNKNOWN``."""
    if not isinstance(measurement_range, MeasurementRange):
        return MeasurementRange.UNKNOWN
    if measurement_range in (MeasurementRange.UNKNOWN, MeasurementRange.RANGE_OVERFLOW, MeasurementRange.RANGE_03):
        return measurement_range
    return MeasurementRange(measurement_range.value - 1)


def decrement_range(measurement_range):
    """Move one step towards a narrower range. Anything that is not a :class:`MeasurementRange` gives ``UNKNOWN``."""
    if not isinstance(measurement_range, MeasurementRange):
        return MeasurementRange.UNKNOWN
    if measurement_range in (MeasurementRange.UNKNOWN, MeasurementRange.RANGE_OVERFLOW, MeasurementRange.RANGE_08):
        return measurement_range
    return MeasurementRange(measurement_range.value + 1)


class Quantity(SettingEnum):
    """Scalar quantities that can be selected with ``CONFIGURE:SCALAR:<quantity>``."""
    POWER = "POWER"
    ENERGY = "ENERGY"
    CURRENT = "CURRENT"
    VOLTAGE = "VOLTAGE"
    TEMPERATURE = "TEMPERATURE"
    FREQUENCY = "FREQUENCY"


class AdapterType(SettingEnum):
    """Input adapter modes, set with ``INPUT:ADAPTER:TYPE``."""
    PHOTODIODE = "PHOTODIODE"
    THERMAL = "THERMAL"
    PYRO = "PYRO"


class Attribute(IntEnum):
    """Selects the present, minimum or maximum value of a setting in a query."""
    CURRENT = 0
    MINIMUM = 1
    MAXIMUM = 2

    @property
    def query_suffix(self):
        return _ATTRIBUTE_SUFFIXES[self]


_ATTRIBUTE_SUFFIXES = {
    Attribute.CURRENT: "?",
    Attribute.MINIMUM: "? MINIMUM",
    Attribute.MAXIMUM: "? MAXIMUM",
}


# values the instrument reports instead of a number
SCPI_POSITIVE_OVERFLOW = 9.9e37
SCPI_NEGATIVE_OVERFLOW = -9.9e37
SCPI_NOT_A_NUMBER = 9.91e37


def convert_scpi_inf(value):
    """Map the SCPI overflow and not-a-number markers to their float counterparts. Other values pass unchanged."""
    if value == SCPI_POSITIVE_OVERFLOW:
        return np.inf
    if value == SCPI_NEGATIVE_OVERFLOW:
        return -np.inf
    if value == SCPI_NOT_A_NUMBER:
        return np.nan
    return value


def parse_scpi_float(s):
    """Parse a numeric response. Anything that is not a number (including an empty response) gives NaN."""
    try:
        return float(s)
    except (TypeError, ValueError):
        return np.nan


class ReadingStatus(Enum):
    """Why a measurement did or did not produce a value.

    .. list-table::

        * - :data:`OK`
          - the instrument returned a number
        * - :data:`NOT_AVAILABLE`
          - the attached sensor cannot measure this quantity, the instrument was not contacted
        * - :data:`INSTRUMENT_FAULT`
          - the instrument reported an error after configuring the measurement
        * - :data:`NO_RESPONSE`
          - the read transaction failed or returned something that is not a number
    """
    OK = "ok"
    NOT_AVAILABLE = "not available"
    INSTRUMENT_FAULT = "instrument fault"
    NO_RESPONSE = "no response"


class Reading(NamedTuple):
    value: float
    status: ReadingStatus

    @property
    def ok(self):
        return self.status is ReadingStatus.OK

    def __float__(self):
        return float(self.value)


class ThorlabsPM(visadevice.VisaDevice):
    """Driver to communicate with a Thorlabs PM100 series power meter or a USB power sensor.

    On construction, the instrument and the attached sensor head are identified. The sensor type, subtype and flags
    decide which measurements are possible; measurements that the sensor does not support return NaN without
    contacting the instrument. Use :meth:`measure` to find out why a measurement gave no value.

    Example::

        from thorpm.hw.discovery import PowerMeterDiscovery
        from thorpm.hw.drivers.thorlabsvisa import ThorlabsPM

        found = PowerMeterDiscovery()
        with ThorlabsPM.open(found.last_device) as pm:
            pm.set_wavelength(633)
            print(pm.measure_power())
    """

    METADATA_FIELDS = [
        "address",
        "instrument_type",
        "instrument_serial_number",
        "instrument_firmware_version",
        "detector_type",
        "detector_serial_number",
        "detector_calibration",
        "sensor_type",
        "sensor_subtype",
        "wavelength",
    ]
    """"""  # remove superclass docstring

    RESPONSIVITY_QUERIES = {
        SensorType.PHOTODIODE: ("SENSE:CORRECTION:POWER:PDIODE:RESPONSE?", "A/W"),
        SensorType.THERMOPILE: ("SENSE:CORRECTION:POWER:THERMOPILE:RESPONSE?", "V/W"),
        SensorType.PYROELECTRIC: ("SENSE:CORRECTION:ENERGY:PYRO:RESPONSE?", "V/J"),
    }

    def __init__(self, id, address, resource_manager=None, **kw):
        self._invalidated = False

        self.driver_revision = ""
        self.instrument_manufacturer = ""
        self.instrument_type = ""
        self.instrument_serial_number = ""
        self.instrument_firmware_version = ""
        self.detector_type = ""
        self.detector_serial_number = ""
        self.detector_calibration = ""
        self.sensor_type = SensorType.NONE
        self.sensor_subtype = SensorSubtype.NONE
        self.sensor_flags = SensorFlags.NONE

        super().__init__(id, address, resource_manager=resource_manager, **kw)

        self._update_instrument_info()
        self._update_sensor_info()
        self._update_driver_revision()
        logger.info("Connected to {}, sensor {} ({}, {}, {})", self.instrument_id, self.detector_type,
                    self.sensor_type.name, self.sensor_subtype.name, int(self.sensor_flags))

    @classmethod
    def open(cls, address, **kw):
        """Open a session without a configuration entry, using the resource address as device id."""
        return cls(address, address, **kw)

    ## identification

    def _update_instrument_info(self):
        response = self.write_read("*IDN?")
        tokens = [t for t in response.split(",") if t]
        if len(tokens) != 4:
            logger.warning("Unexpected identification response from {}: '{}'", self.address, response)
            return
        (self.instrument_manufacturer, self.instrument_type,
         self.instrument_serial_number, self.instrument_firmware_version) = tokens

    def _update_sensor_info(self):
        response = self.write_read("SYSTEM:SENSOR:IDN?")
        tokens = [t for t in response.split(",") if t]
        if len(tokens) != 6:
            logger.warning("Unexpected sensor identification response from {}: '{}'", self.address, response)
            return
        try:
            raw_type, raw_subtype, raw_flags = (int(t) for t in tokens[3:])
        except ValueError as e:
            logger.warning("Could not parse sensor identification '{}' from {}: {}", response, self.address, e)
            return
        # unlisted type/subtype codes map to NONE; the flags still describe what the sensor can do
        sensor_type = SensorType(raw_type)
        sensor_subtype = SensorSubtype(raw_subtype)
        if sensor_type != raw_type or sensor_subtype != raw_subtype:
            logger.info("Unlisted sensor type/subtype {}/{} reported by {}", raw_type, raw_subtype, self.address)
        sensor_flags = SensorFlags(raw_flags)
        # all sensor fields come from the same response line, so they are only ever set together
        self.detector_type, self.detector_serial_number, self.detector_calibration = tokens[:3]
        self.sensor_type, self.sensor_subtype, self.sensor_flags = sensor_type, sensor_subtype, sensor_flags

    def _update_driver_revision(self):
        self.driver_revision = self.channel.revision_query().strip("\r\n")

    @property
    def instrument_id(self):
        return f"{self.instrument_type} v{self.instrument_firmware_version} SN:{self.instrument_serial_number} @ {self.address}"

    @property
    def responsivity_unit(self):
        if self.sensor_type in self.RESPONSIVITY_QUERIES:
            return self.RESPONSIVITY_QUERIES[self.sensor_type][1]
        return "a.u."

    def has_flag(self, flag: SensorFlags) -> bool:
        return bool(self.sensor_flags & flag)

    ## session validity

    @property
    def is_invalidated(self):
        return self._invalidated

    def _require_valid(self):
        if self._invalidated:
            raise SessionInvalidatedError(
                f"The adapter mode of {self.address} was changed; close this session and open a new one.")

    def write(self, command: str):
        self._require_valid()
        super().write(command)

    def transact(self, command: str, clear_first=True) -> visadevice.ScpiReply:
        self._require_valid()
        return super().transact(command, clear_first=clear_first)

    ## measurements

    def supports(self, quantity: Quantity) -> bool:
        """Check whether the attached sensor can measure ``quantity``."""
        if quantity is Quantity.POWER:
            return self.has_flag(SensorFlags.IS_POWER_SENSOR)
        if quantity is Quantity.ENERGY:
            return self.has_flag(SensorFlags.IS_ENERGY_SENSOR)
        if quantity is Quantity.CURRENT:
            return self.sensor_type == SensorType.PHOTODIODE
        if quantity is Quantity.VOLTAGE:
            return self.sensor_type in (SensorType.THERMOPILE, SensorType.PYROELECTRIC)
        if quantity is Quantity.TEMPERATURE:
            return (self.sensor_subtype == SensorSubtype.HAS_TEMPERATURE_SENSOR
                    or self.has_flag(SensorFlags.HAS_TEMPERATURE_SENSOR))
        if quantity is Quantity.FREQUENCY:
            return True
        return False

    def measure(self, quantity: Quantity) -> Reading:
        """Configure the instrument for ``quantity``, check for errors and read a value.

        :return: :class:`Reading` with the value (NaN if there is none) and the reason for a missing value
        """
        self._require_valid()
        quantity = Quantity(quantity)
        if not self.supports(quantity):
            return Reading(np.nan, ReadingStatus.NOT_AVAILABLE)

        self.write(f"CONFIGURE:SCALAR:{quantity}")
        if self.check_error():
            return Reading(np.nan, ReadingStatus.INSTRUMENT_FAULT)

        reply = self.transact("READ?")
        value = parse_scpi_float(reply.text)
        if not reply.ok or np.isnan(value):
            return Reading(np.nan, ReadingStatus.NO_RESPONSE)
        return Reading(convert_scpi_inf(value), ReadingStatus.OK)

    def measure_power(self):
        """Optical power in W, or NaN."""
        return self.measure(Quantity.POWER).value

    def measure_energy(self):
        """Pulse energy in J, or NaN."""
        return self.measure(Quantity.ENERGY).value

    def measure_current(self):
        """Photocurrent in A, or NaN."""
        return self.measure(Quantity.CURRENT).value

    def measure_voltage(self):
        """Thermopile or pyroelectric sensor voltage in V, or NaN."""
        return self.measure(Quantity.VOLTAGE).value

    def measure_temperature(self):
        """Sensor head temperature in degrees Celsius, or NaN."""
        return self.measure(Quantity.TEMPERATURE).value

    def measure_frequency(self):
        """Frequency of the input signal in Hz, or NaN."""
        return self.measure(Quantity.FREQUENCY).value

    def get_current(self):
        return self.measure_current()

    ## numeric queries

    def _query_value(self, visa_cmd, attribute=Attribute.CURRENT):
        try:
            attribute = Attribute(attribute)
        except ValueError:
            return np.nan
        response = self.write_read(f"{visa_cmd}{attribute.query_suffix}")
        return convert_scpi_inf(parse_scpi_float(response))

    ## wavelength

    def set_wavelength(self, wavelength):
        """Set the correction wavelength (nm). Ignored if the sensor does not allow it."""
        if self.has_flag(SensorFlags.IS_WAVELENGTH_SETTABLE):
            self.write(f"SENSE:CORRECTION:WAVELENGTH {wavelength}")

    def get_wavelength(self, attribute=Attribute.CURRENT):
        """Correction wavelength in nm, or NaN if the sensor has no settable wavelength."""
        if not self.has_flag(SensorFlags.IS_WAVELENGTH_SETTABLE):
            return np.nan
        return self._query_value("SENSE:CORRECTION:WAVELENGTH", attribute)

    def get_minimum_wavelength(self):
        return self.get_wavelength(Attribute.MINIMUM)

    def get_maximum_wavelength(self):
        return self.get_wavelength(Attribute.MAXIMUM)

    wavelength = property(get_wavelength, set_wavelength)
    """Correction wavelength (nm)."""

    ## responsivity

    def get_responsivity(self):
        """Responsivity of the sensor at the current wavelength, in :attr:`responsivity_unit`."""
        if self.sensor_type not in self.RESPONSIVITY_QUERIES:
            return np.nan
        visa_cmd = self.RESPONSIVITY_QUERIES[self.sensor_type][0]
        return convert_scpi_inf(parse_scpi_float(self.write_read(visa_cmd)))

    def get_responsivity_for_wavelength(self, wavelength):
        """Responsivity at ``wavelength``. The previous correction wavelength is restored afterwards."""
        old_wavelength = self.get_wavelength()
        self.set_wavelength(wavelength)
        try:
            return self.get_responsivity()
        finally:
            if not np.isnan(old_wavelength):
                self.set_wavelength(old_wavelength)

    ## power / energy range

    def get_range(self, attribute=Attribute.CURRENT):
        """Upper limit of the power range (W) for power sensors, or of the energy range (J) for energy sensors."""
        if self.has_flag(SensorFlags.IS_POWER_SENSOR):
            return self._query_value("SENSE:POWER:DC:RANGE:UPPER", attribute)
        if self.has_flag(SensorFlags.IS_ENERGY_SENSOR):
            return self._query_value("SENSE:ENERGY:RANGE:UPPER", attribute)
        return np.nan

    def get_minimum_range(self):
        return self.get_range(Attribute.MINIMUM)

    def get_maximum_range(self):
        return self.get_range(Attribute.MAXIMUM)

    ## current range (photodiodes)

    def get_current_range(self, attribute=Attribute.CURRENT):
        """Upper limit of the current range (A). NaN unless a photodiode is attached."""
        if self.sensor_type != SensorType.PHOTODIODE:
            return np.nan
        return self._query_value("SENSE:CURRENT:DC:RANGE:UPPER", attribute)

    def get_minimum_current_range(self):
        return self.get_current_range(Attribute.MINIMUM)

    def get_maximum_current_range(self):
        return self.get_current_range(Attribute.MAXIMUM)

    def set_current_range(self, value):
        """Select the current range that can measure up to ``value`` (A). Ignored unless a photodiode is attached."""
        if self.sensor_type == SensorType.PHOTODIODE:
            self.write(f"SENSE:CURRENT:DC:RANGE:UPPER {value}")

    # the range thresholds are those of the PM100D
    def set_measurement_range(self, measurement_range: MeasurementRange):
        if not isinstance(measurement_range, MeasurementRange):
            logger.warning("Ignoring measurement range {!r}: not a MeasurementRange", measurement_range)
            return
        if measurement_range in (MeasurementRange.UNKNOWN, MeasurementRange.RANGE_OVERFLOW):
            return
        self.set_current_range(measurement_range.upper_current)

    def get_measurement_range(self) -> MeasurementRange:
        return self.estimate_measurement_range(self.get_current_range())

    @staticmethod
    def estimate_measurement_range(current) -> MeasurementRange:
        return MeasurementRange.estimate(current)

    select_auto_range = visa_command("SENSE:CURRENT:RANGE:AUTO ON")
    """Let the instrument choose the current range."""

    deselect_auto_range = visa_command("SENSE:CURRENT:RANGE:AUTO OFF")
    """Keep the current range fixed."""

    ## other settings

    average_count = visa_property("SENSE:AVERAGE:COUNT", dtype=int)
    """Number of averages used for each reading."""

    adjust_zero = visa_command("SENSE:CORRECTION:COLLECT:ZERO:INITIATE")
    """Adjust the zero offset. The sensor must be covered."""

    ## adapter mode

    def set_adapter(self, adapter: AdapterType):
        """Switch the input adapter mode.

        The instrument re-identifies its sensor after this, so the cached capabilities of this session are stale.
        The session is invalidated: every further instrument operation raises :class:`SessionInvalidatedError`.
        Close it and open a new session.
        """
        adapter = AdapterType(adapter)
        self.write(f"INPUT:ADAPTER:TYPE {adapter}")
        self._invalidated = True
        logger.warning("Adapter of {} set to {}; this session must be reopened", self.address, adapter)

    def set_adapter_photodiode(self):
        self.set_adapter(AdapterType.PHOTODIODE)

    def set_adapter_thermal(self):
        self.set_adapter(AdapterType.THERMAL)

    def set_adapter_pyro(self):
        self.set_adapter(AdapterType.PYRO)
