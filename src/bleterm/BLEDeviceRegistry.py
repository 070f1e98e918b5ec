# MIT License
#
# Copyright (c) 2025 bleterm Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Registry of peripherals discovered during the current scan session.

Entries are unique by id and kept in discovery order. The first
advertisement seen for an id wins; later advertisements for the same id
are ignored, so name, RSSI and radio generation reflect first contact.

The registry is the only holder of each peripheral's platform handle.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bleterm.bluetooth_driver import APPLE_COMPANY_ID, Advertisement

UNKNOWN_NAME = "Unknown"
GENERATION_BLE = "BLE"
GENERATION_UNKNOWN = "Unknown"


def classify_radio_generation(manufacturer_data) -> str:
    """
    Coarse radio generation from advertisement manufacturer data.

    Only Apple's company identifier is recognised; everything else is
    reported as unknown.
    """
    if manufacturer_data and APPLE_COMPANY_ID in manufacturer_data:
        return GENERATION_BLE
    return GENERATION_UNKNOWN


@dataclass
class DiscoveredDevice:
    id: str
    display_name: str = UNKNOWN_NAME
    signal_strength: int = 0
    radio_generation: str = GENERATION_UNKNOWN
    is_connected: bool = False
    handle: Any = field(default=None, repr=False, compare=False)

    @classmethod
    def from_advertisement(cls, advertisement: Advertisement) -> "DiscoveredDevice":
        return cls(
            id=advertisement.id,
            display_name=advertisement.name or UNKNOWN_NAME,
            signal_strength=int(advertisement.rssi),
            radio_generation=classify_radio_generation(advertisement.manufacturer_data),
            handle=advertisement.handle,
        )

    def copy(self) -> "DiscoveredDevice":
        return dataclasses.replace(self)


class DeviceRegistry:
    """Ordered, id-unique collection of DiscoveredDevice entries."""

    def __init__(self):
        self._devices: Dict[str, DiscoveredDevice] = {}

    def add(self, device: DiscoveredDevice) -> bool:
        """
        Add a device if its id is not yet known.

        Returns:
            True if the device was added, False if the id was already present
        """
        if device.id in self._devices:
            return False
        self._devices[device.id] = device
        return True

    def get(self, device_id: str) -> Optional[DiscoveredDevice]:
        return self._devices.get(device_id)

    def set_connected(self, device_id: str, connected: bool) -> bool:
        """Update the connection flag; returns False if the id is unknown."""
        device = self._devices.get(device_id)
        if device is None:
            return False
        device.is_connected = connected
        return True

    def connected_devices(self) -> List[DiscoveredDevice]:
        return [d for d in self._devices.values() if d.is_connected]

    def clear(self):
        self._devices.clear()

    def snapshot(self) -> Tuple[DiscoveredDevice, ...]:
        """Copies of all entries in discovery order."""
        return tuple(d.copy() for d in self._devices.values())

    def __contains__(self, device_id) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[DiscoveredDevice]:
        return iter(list(self._devices.values()))

    def __repr__(self):
        return f"DeviceRegistry({len(self._devices)} devices)"
