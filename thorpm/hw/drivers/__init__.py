"""Instrument drivers. Modules here can be referenced by name in the ``driver`` setting of a device."""
