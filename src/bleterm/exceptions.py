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
Error taxonomy for BLE session management.

Only AdapterUnavailable is ever raised to a caller (from the driver's
initialize()). Every other error is carried inside a driver event and ends
up as a session log line; connect failures are additionally surfaced through
the controller's error state.
"""


class BLESessionError(Exception):
    """Base class for all session-level BLE errors."""

    default_message = "BLE error"

    def __init__(self, reason=None):
        self.reason = reason
        super().__init__(reason if reason is not None else self.default_message)

    def __str__(self):
        if self.reason is None:
            return self.default_message
        return str(self.reason)


class AdapterUnavailable(BLESessionError):
    """The platform reports no usable Bluetooth adapter (unsupported)."""
    default_message = "Bluetooth is not supported on this device."


class PeripheralNotFound(BLESessionError):
    """A connect was requested for a peripheral the radio stack never saw."""

    def __init__(self, peripheral_id):
        self.peripheral_id = peripheral_id
        super().__init__(f"Peripheral {peripheral_id} not found")


class ConnectFailed(BLESessionError):
    """Link establishment failed; reason is the underlying radio error."""
    default_message = "Unknown error"


class ServiceDiscoveryFailed(BLESessionError):
    default_message = "Service discovery failed"


class CharacteristicDiscoveryFailed(BLESessionError):
    default_message = "Characteristic discovery failed"


class NotifyUpdateFailed(BLESessionError):
    default_message = "Notification update failed"


class DisconnectedWithError(BLESessionError):
    """Link dropped without a local disconnect request."""
    default_message = "Peripheral disconnected unexpectedly"
