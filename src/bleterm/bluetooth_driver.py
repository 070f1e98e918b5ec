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
BLE driver abstraction.

Defines the contract between the session controller and a platform radio
stack, together with the records and events that cross it. The controller
never talks to bleak or D-Bus directly; it issues commands on a
BLEDriverInterface and consumes the DriverEvent values the driver emits.

All events go through a single sink registered with initialize(). Drivers
may call the sink from any thread; the controller marshals events onto its
own dispatcher before touching state.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Union

# Apple's Bluetooth SIG company identifier
APPLE_COMPANY_ID = 0x004C


class AdapterState(enum.Enum):
    """Power/availability state of the local Bluetooth adapter."""
    POWERED_ON = "poweredOn"
    POWERED_OFF = "poweredOff"
    RESETTING = "resetting"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


class DriverState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"


@dataclass(frozen=True)
class Advertisement:
    """One advertisement as reported by the radio stack."""
    id: str
    name: Optional[str]
    rssi: int
    manufacturer_data: Dict[int, bytes] = field(default_factory=dict)
    service_uuids: Tuple[str, ...] = ()
    handle: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class ServiceInfo:
    uuid: str
    handle: int
    description: str = ""


@dataclass(frozen=True)
class CharacteristicInfo:
    uuid: str
    handle: int
    service_uuid: str
    properties: Tuple[str, ...] = ()

    @property
    def can_notify(self) -> bool:
        return "notify" in self.properties or "indicate" in self.properties


# ============================================================================
# Events
# ============================================================================

@dataclass(frozen=True)
class AdapterStateChanged:
    state: AdapterState


@dataclass(frozen=True)
class DeviceDiscovered:
    advertisement: Advertisement


@dataclass(frozen=True)
class PeripheralConnected:
    peripheral_id: str
    name: Optional[str] = None


@dataclass(frozen=True)
class PeripheralConnectFailed:
    peripheral_id: str
    name: Optional[str] = None
    error: Optional[Exception] = None


@dataclass(frozen=True)
class PeripheralDisconnected:
    peripheral_id: str
    name: Optional[str] = None
    error: Optional[Exception] = None


@dataclass(frozen=True)
class ServicesDiscovered:
    peripheral_id: str
    name: Optional[str] = None
    services: Tuple[ServiceInfo, ...] = ()
    error: Optional[Exception] = None


@dataclass(frozen=True)
class CharacteristicsDiscovered:
    peripheral_id: str
    name: Optional[str] = None
    service: Optional[ServiceInfo] = None
    characteristics: Tuple[CharacteristicInfo, ...] = ()
    error: Optional[Exception] = None


@dataclass(frozen=True)
class ValueUpdated:
    peripheral_id: str
    name: Optional[str] = None
    characteristic_id: str = ""
    data: Optional[bytes] = None
    error: Optional[Exception] = None


DriverEvent = Union[
    AdapterStateChanged,
    DeviceDiscovered,
    PeripheralConnected,
    PeripheralConnectFailed,
    PeripheralDisconnected,
    ServicesDiscovered,
    CharacteristicsDiscovered,
    ValueUpdated,
]

EventSink = Callable[[DriverEvent], None]


class BLEDriverInterface(ABC):
    """
    Contract for a platform radio stack.

    Every command is fire-and-forget: outcomes arrive later as events on the
    sink passed to initialize(). Only initialize() may raise, and only
    AdapterUnavailable.
    """

    on_event: Optional[EventSink] = None

    # --- Lifecycle ---

    @abstractmethod
    def initialize(self, event_sink: EventSink) -> AdapterState:
        """Acquire the radio stack, register the sink, emit the initial adapter state."""

    @abstractmethod
    def shutdown(self):
        """Stop scanning, drop links and release the radio stack."""

    # --- State ---

    @property
    @abstractmethod
    def state(self) -> DriverState:
        pass

    @property
    @abstractmethod
    def adapter_state(self) -> AdapterState:
        pass

    # --- Discovery ---

    @abstractmethod
    def start_scan(self):
        """Continuous discovery with no service filter. Idempotent."""

    @abstractmethod
    def stop_scan(self):
        pass

    # --- Connections ---

    @abstractmethod
    def connect(self, peripheral_id: str):
        pass

    @abstractmethod
    def disconnect(self, peripheral_id: str):
        pass

    # --- Capability negotiation ---

    @abstractmethod
    def discover_services(self, peripheral_id: str):
        pass

    @abstractmethod
    def discover_characteristics(self, peripheral_id: str, service: ServiceInfo):
        pass

    @abstractmethod
    def set_notify(self, peripheral_id: str, characteristic: CharacteristicInfo, enabled: bool = True):
        pass
