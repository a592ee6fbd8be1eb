"""thorpm is a Python package to control Thorlabs optical power and energy meters over VISA."""

from . import config

# note that this sets up a post config hook, so importing it here makes that robust
from . import log
