"""Find power meters that are attached to this computer.

Listing resources can take several seconds, so this is meant to be done once per program run.
"""

from loguru import logger

from . import visadevice


def discover(query=None, backend=None):
    """List the VISA resource identifiers of all attached power meters.

    A private resource manager is opened for the search and closed again before returning; it is never shared with a
    session. Discovery is best-effort: any failure of the resource finder results in an empty list.

    :param query: VISA resource query, defaults to the ``visa.discovery_query`` config setting (Thorlabs USB devices).
    :param backend: pyvisa backend, defaults to the ``visa.backend`` config setting.
    :return: list of resource identifier strings, in the order reported by VISA
    """
    from .. import config
    if query is None:
        query = config.get("visa.discovery_query")

    found_devices = []
    rm = None
    try:
        rm = visadevice.open_resource_manager(backend)
        found_devices = list(rm.list_resources(query))
    except Exception as e:
        logger.warning("Device discovery failed: {}", e)
        found_devices = []
    finally:
        if rm is not None:
            try:
                rm.close()
            except Exception as e:
                logger.warning("Closing the discovery resource manager failed: {}", e)

    logger.debug("Discovered {} device(s): {}", len(found_devices), found_devices)
    return found_devices


class PowerMeterDiscovery:
    """Snapshot of the attached power meters, taken once when the object is created."""

    def __init__(self, query=None, backend=None):
        self._found_devices = discover(query=query, backend=backend)

    @property
    def names_of_devices(self):
        return list(self._found_devices)

    @property
    def number_of_devices(self):
        return len(self._found_devices)

    @property
    def first_device(self):
        if self.number_of_devices > 0:
            return self._found_devices[0]
        return ""

    @property
    def last_device(self):
        if self.number_of_devices > 0:
            return self._found_devices[-1]
        return ""
