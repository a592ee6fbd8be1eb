import time

import thorpm as pm
from thorpm.hw import device                                # load hardware modules
from thorpm.hw.drivers import thorlabsvisa                  # for type hinting

pm.config.use('experiment.toml')                            # load configuration file with device addresses

# connect to the power meter
meter: thorlabsvisa.ThorlabsPM = device.get_device('pm1')
print(f"Connected to {meter.instrument_id}, sensor {meter.detector_type} ({meter.sensor_type.name})")

meter.set_wavelength(633)

for i in range(3):
    time.sleep(0.5)
    print(f"power:   {meter.measure_power()} W")
    print(f"current: {meter.measure_current()} A")
    print(f"voltage: {meter.measure_voltage()} V")

# instrument settings are collected for storing alongside the measured data
print(meter.collect_metadata())
