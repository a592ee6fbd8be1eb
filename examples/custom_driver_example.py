from thorpm.hw.drivers.thorlabsvisa import ThorlabsPM
from thorpm.hw.visadevice import visa_property
from thorpm.hw import device
from thorpm.hw.discovery import PowerMeterDiscovery


class BandwidthPM(ThorlabsPM):
    high_bandwidth = visa_property("INPUT:PDIODE:FILTER:LPASS:STATE", dtype=bool)


found = PowerMeterDiscovery()  # this can take a few seconds
if found.number_of_devices == 0:
    raise SystemExit("No power meter found!")

device.register_driver_class("BandwidthPM", BandwidthPM)
device.register_device("my_pm", driver="BandwidthPM", address=found.last_device)

meter = device.get_device('my_pm')

print(f"High bandwidth: {meter.high_bandwidth}")
meter.high_bandwidth = False
