"""SCPI transactions over a VISA connection.

:class:`VisaDevice` owns a single :class:`VisaChannel` for its lifetime and turns SCPI command strings into either an
instrument state change (:meth:`~VisaDevice.write`) or a response string (:meth:`~VisaDevice.write_read`).
The instruments driven here are half-duplex text devices without flow control, so every query follows the same
fixed pattern: optionally clear the status, send the command, wait a fixed settle time, then read.
"""

import time
from typing import NamedTuple, Optional

import pyvisa
from loguru import logger

from . import device

_visa_rm = None


class ChannelError(RuntimeError):
    """Raised when the VISA transport fails to send or receive."""
    pass


def get_resource_manager(backend=None):
    """Return the resource manager shared by all open sessions, creating it on first use.

    :param backend: pyvisa backend specifier (e.g. ``"@py"``). Defaults to the ``visa.backend`` config setting.
    """
    global _visa_rm
    if _visa_rm is None:
        _visa_rm = open_resource_manager(backend)
    return _visa_rm


def open_resource_manager(backend=None):
    """Create a new, private resource manager. The caller is responsible for closing it."""
    from .. import config
    if backend is None:
        backend = config.get("visa.backend", "")
    if backend:
        return pyvisa.ResourceManager(backend)
    return pyvisa.ResourceManager()


class VisaChannel:
    """Byte-level request/response channel to a single instrument.

    Wraps a pyvisa message-based resource. The handle is never handed out to callers of the session.
    """

    def __init__(self, resource, address):
        self._resource = resource
        self._address = address

    @property
    def address(self):
        return self._address

    @classmethod
    def open(cls, address, resource_manager=None, timeout=None, write_termination=None):
        if resource_manager is None:
            resource_manager = get_resource_manager()
        resource = resource_manager.open_resource(address)
        if timeout is not None:
            resource.timeout = timeout
        if write_termination is not None:
            resource.write_termination = write_termination
        logger.debug("Opened VISA resource {}", address)
        return cls(resource, address)

    @property
    def is_open(self):
        return self._resource is not None

    def _require_open(self):
        if self._resource is None:
            raise ChannelError(f"Channel to {self.address} is closed")
        return self._resource

    def write_raw(self, command: str):
        resource = self._require_open()
        try:
            resource.write(command)
        except pyvisa.errors.VisaIOError as e:
            raise ChannelError(f"Writing '{command}' to {self.address} failed: {e}") from e

    def read_raw(self, max_size: int) -> str:
        resource = self._require_open()
        try:
            data = resource.read_raw(max_size)
        except pyvisa.errors.VisaIOError as e:
            raise ChannelError(f"Reading from {self.address} failed: {e}") from e
        return data[:max_size].decode("ascii", errors="replace")

    def revision_query(self) -> str:
        """Revision of the driver stack talking to the instrument."""
        return f"PyVISA {pyvisa.__version__}"

    def close(self):
        if self._resource is None:
            return
        resource, self._resource = self._resource, None
        resource.close()
        logger.debug("Closed VISA resource {}", self.address)


class ScpiReply(NamedTuple):
    """Outcome of a single write/settle/read transaction.

    ``text`` is the trimmed response, or an empty string if the transaction failed; ``error`` holds the exception
    that ended the transaction, if any.
    """
    text: str
    error: Optional[Exception] = None

    @property
    def ok(self):
        return self.error is None


class VisaDevice(device.Device):
    """Base class for instruments that are controlled with SCPI commands over VISA.

    The constructor opens the channel; failures there propagate to the caller since a session without a live channel
    is meaningless. The channel is released exactly once, either by :meth:`close`, on leaving a ``with`` block, or
    when the object is garbage collected.

    A session is meant to be owned by a single thread: the clear/write/settle/read sequence is not atomic.
    """

    DEFAULT_SETTINGS = {
        "settle_time": None,
        "read_buffer_size": None,
        "timeout": None,
    }

    SUCCESS_PREFIX = "+0,"
    """Prefix of a ``SYSTEM:ERROR:NEXT?`` response that signals an empty error queue."""

    def __init__(self, id, address, resource_manager=None, **kw):
        super().__init__(id, **kw)
        from .. import config

        self._address = address
        self.settle_time = self._setting("settle_time", config.get("scpi.settle_time"))
        self.read_buffer_size = self._setting("read_buffer_size", config.get("scpi.read_buffer_size"))
        self.clear_command = config.get("scpi.clear_command")

        self._channel = None
        self._channel = VisaChannel.open(
            address,
            resource_manager=resource_manager,
            timeout=self._setting("timeout", config.get("visa.timeout")),
            write_termination=config.get("visa.write_termination"),
        )

    def _setting(self, key, fallback):
        value = self.settings.get(key)
        return fallback if value is None else value

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        if getattr(self, "_channel", None) is not None:
            self.close()

    def close(self):
        """Release the VISA channel. Calling this more than once has no further effect."""
        if self._channel is not None:
            self._channel.close()
            self._channel = None

    @property
    def address(self):
        """VISA resource address of the instrument. Fixed for the lifetime of the session."""
        return self._address

    @property
    def is_open(self):
        return self._channel is not None

    @property
    def channel(self) -> VisaChannel:
        if self._channel is None:
            raise ChannelError(f"Session to {self.address} has been closed")
        return self._channel

    @classmethod
    def list_available(cls):
        from . import discovery
        return discovery.discover()

    ## SCPI transaction engine

    def write(self, command: str):
        """Send a command. Channel failures propagate as :class:`ChannelError`."""
        logger.trace("{} <- {}", self.address, command)
        self.channel.write_raw(command)

    def read(self) -> str:
        """Read a response of at most ``read_buffer_size`` characters, trimming trailing CR, LF and spaces."""
        response = self.channel.read_raw(self.read_buffer_size).rstrip("\r\n ")
        logger.trace("{} -> {}", self.address, response)
        return response

    def transact(self, command: str, clear_first=True) -> ScpiReply:
        """Run one query transaction and report its outcome explicitly.

        :param command: SCPI query to send
        :param clear_first: send ``*CLS`` before the query
        :return: :class:`ScpiReply`; on any failure its text is empty and ``error`` holds the exception.
        """
        try:
            if clear_first:
                self.write(self.clear_command)
            self.write(command)
            time.sleep(self.settle_time)
            return ScpiReply(self.read())
        except Exception as e:
            logger.warning("SCPI transaction '{}' with {} failed: {}", command, self.address, e)
            return ScpiReply("", e)

    def write_read(self, command: str, clear_first=True) -> str:
        """Send a query and return its response, or an empty string if no usable response was received."""
        return self.transact(command, clear_first=clear_first).text

    def check_error(self) -> bool:
        """Pop the next entry of the instrument's error queue.

        :return: True unless the instrument reports success (``+0,...``). An empty response counts as an error.
        """
        status = self.write_read("SYSTEM:ERROR:NEXT?", clear_first=False)
        is_error = not status.startswith(self.SUCCESS_PREFIX)
        if is_error:
            logger.debug("{} reports error: '{}'", self.address, status)
        return is_error

    def get_identifier(self, sanitize=True):
        response = self.write_read("*IDN?")
        if sanitize:
            response = response.strip()
        return response

    def wait_until_done(self, visa_cmd=None):
        if visa_cmd is not None:
            cmd_string = f"{visa_cmd};*OPC?"
        else:
            cmd_string = "*OPC?"
        self.write(cmd_string)
        is_done = False
        while not is_done:
            try:
                result_code = self.read()
                is_done = True
            except ChannelError as e:
                cause = e.__cause__
                if not isinstance(cause, pyvisa.errors.VisaIOError) or cause.error_code != pyvisa.constants.StatusCode.error_timeout:
                    # re-raise anything other than a time-out
                    raise e
        return result_code

    DTYPE_CONVERTERS = {
        bool: (device.intbool_conv, int),
    }


def visa_property(visa_cmd: str, dtype=None, read_only=False, read_conv=str, write_conv=str, rw_conv=None):
    """Create a property that queries ``<visa_cmd>?`` on read and writes ``<visa_cmd> <value>`` on assignment."""
    if rw_conv is not None:
        read_conv = rw_conv
        write_conv = rw_conv

    if dtype is not None:
        if dtype in VisaDevice.DTYPE_CONVERTERS:
            read_conv, write_conv = VisaDevice.DTYPE_CONVERTERS[dtype]
        else:
            read_conv, write_conv = dtype, dtype
            if issubclass(dtype, device.SettingEnum):
                write_conv = str

    def visa_getter(self: VisaDevice):
        # doing this gives us access to object properties (eg channel id) that can be put in the command string
        fmt_visa_cmd = visa_cmd
        if hasattr(self, "query_params"):
            fmt_visa_cmd = fmt_visa_cmd.format(**self.query_params)
        response = self.write_read(f"{fmt_visa_cmd}?")
        response = read_conv(response.strip())
        return response

    if not read_only:
        def visa_setter(self: VisaDevice, value):
            fmt_visa_cmd = visa_cmd
            if hasattr(self, "query_params"):
                fmt_visa_cmd = fmt_visa_cmd.format(**self.query_params)
            cmd = f"{fmt_visa_cmd} {write_conv(value)}"
            self.write(cmd)
    else:
        visa_setter = None

    prop = property(visa_getter, visa_setter)

    return prop


def visa_command(visa_cmd, wait_until_done=False):
    """Create a method that sends ``visa_cmd``, formatted with the keyword arguments it is called with."""
    def visa_executer(self: VisaDevice, **kw):
        if hasattr(self, "query_params"):
            kw.update(self.query_params)

        fmt_visa_cmd = visa_cmd.format(**kw)
        if wait_until_done:
            return self.wait_until_done(fmt_visa_cmd)
        else:
            return self.write(fmt_visa_cmd)

    return visa_executer
