"""Virtual clock: in-page override module and its host-side handle."""

from vtcapture.clock.script import VIRTUAL_CLOCK_SCRIPT
from vtcapture.clock.virtual_clock import VirtualClock

__all__ = [
    "VIRTUAL_CLOCK_SCRIPT",
    "VirtualClock",
]
