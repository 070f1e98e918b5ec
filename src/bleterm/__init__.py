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
bleterm - BLE peripheral discovery, connection and notification terminal.

The session controller turns radio events into a device list, a single
active connection and a timestamped session log. Presentation code reads
that state and calls a handful of commands.
"""

__version__ = "0.1.0"

from bleterm.exceptions import (
    AdapterUnavailable,
    BLESessionError,
    CharacteristicDiscoveryFailed,
    ConnectFailed,
    DisconnectedWithError,
    NotifyUpdateFailed,
    PeripheralNotFound,
    ServiceDiscoveryFailed,
)
from bleterm.bluetooth_driver import AdapterState, BLEDriverInterface
from bleterm.BLEDeviceRegistry import DeviceRegistry, DiscoveredDevice
from bleterm.BLESessionLog import SessionLog
from bleterm.BLEEventDispatcher import BLEEventDispatcher
from bleterm.BLESessionController import (
    BLESessionController,
    ErrorState,
    SessionSnapshot,
    SessionState,
)


def create_session(configuration=None):
    """
    Build a controller wired to the bleak driver.

    Args:
        configuration: Dict or ConfigObj section shared by controller and driver

    Returns:
        BLESessionController (not yet started)
    """
    from bleterm.bleak_bluetooth_driver import BleakBluetoothDriver

    return BLESessionController(BleakBluetoothDriver(configuration), configuration)


__all__ = [
    "__version__",
    "create_session",
    "AdapterState",
    "AdapterUnavailable",
    "BLEDriverInterface",
    "BLEEventDispatcher",
    "BLESessionController",
    "BLESessionError",
    "CharacteristicDiscoveryFailed",
    "ConnectFailed",
    "DeviceRegistry",
    "DisconnectedWithError",
    "DiscoveredDevice",
    "ErrorState",
    "NotifyUpdateFailed",
    "PeripheralNotFound",
    "ServiceDiscoveryFailed",
    "SessionLog",
    "SessionSnapshot",
    "SessionState",
]
