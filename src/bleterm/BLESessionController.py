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
BLESessionController - connection state and session management

Turns radio events from a BLEDriverInterface into a consistent view of:
- the peripherals discovered during the current scan (DeviceRegistry)
- the single active connection (ConnectionSession)
- the ordered, user-facing session log (SessionLog)

STATE MACHINE:
    idle --start_scanning()--> scanning --stop_scanning()--> idle
    connect_to_device() --> connecting --PeripheralConnected--> connected
    connected --disconnect() / PeripheralDisconnected--> idle or scanning

    The state is derived: connected if a session exists, connecting if a
    connect is pending, scanning if the scan flag is set, otherwise idle.

THREADING MODEL:
- Every mutation runs on the BLEEventDispatcher, one item at a time
- Public commands (start_scanning, connect_to_device, ...) only post work
- Driver events arrive through post_event() from the driver's thread
- state_lock guards registry, log and session so snapshots taken from
  other threads are consistent
- Listeners are called on the dispatcher thread after each item that
  changed published state

ERROR HANDLING:
- Asynchronous failures end the operation; nothing is retried
- Every failure is appended to the session log
- Connect failures are also surfaced through error_state
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import RNS

from bleterm.config import as_bool, get_config_obj
from bleterm.exceptions import AdapterUnavailable
from bleterm.bluetooth_driver import (
    AdapterState,
    AdapterStateChanged,
    BLEDriverInterface,
    CharacteristicsDiscovered,
    DeviceDiscovered,
    PeripheralConnected,
    PeripheralConnectFailed,
    PeripheralDisconnected,
    ServicesDiscovered,
    ValueUpdated,
)
from bleterm.BLEDeviceRegistry import UNKNOWN_NAME, DeviceRegistry, DiscoveredDevice
from bleterm.BLEEventDispatcher import BLEEventDispatcher
from bleterm.BLESessionLog import SessionLog

UNKNOWN_PERIPHERAL = "Unknown peripheral"
NOT_UTF8_MESSAGE = "Received data is not UTF-8 encoded"
NO_CONNECTED_DEVICE_MESSAGE = "No connected device to disconnect."

_ADAPTER_STATE_MESSAGES = {
    AdapterState.POWERED_OFF: ("Bluetooth is powered off.", RNS.LOG_NOTICE),
    AdapterState.RESETTING: ("Bluetooth is resetting.", RNS.LOG_NOTICE),
    AdapterState.UNAUTHORIZED: ("Bluetooth is not authorized.", RNS.LOG_WARNING),
    AdapterState.UNSUPPORTED: ("Bluetooth is not supported on this device.", RNS.LOG_ERROR),
    AdapterState.UNKNOWN: ("Bluetooth state is unknown.", RNS.LOG_NOTICE),
}


class SessionState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ErrorState:
    present: bool = False
    message: str = ""


@dataclass(frozen=True)
class ConnectionSession:
    """The active link. Holds the peripheral id, never its handle."""
    peripheral_id: str
    name: str


@dataclass(frozen=True)
class SessionSnapshot:
    devices: Tuple[DiscoveredDevice, ...]
    is_scanning: bool
    log_messages: Tuple[str, ...]
    error: ErrorState
    adapter_state: AdapterState
    state: SessionState
    connected_device_id: Optional[str]


class BLESessionController:
    """
    Owner of all mutable session state.

    Presentation code reads the published properties (or registers a
    listener) and calls start_scanning(), stop_scanning(),
    connect_to_device(), disconnect() and dismiss_error().
    """

    def __init__(self, driver: BLEDriverInterface, configuration=None,
                 dispatcher: Optional[BLEEventDispatcher] = None, clock=None):
        """
        Args:
            driver: Radio adapter gateway
            configuration: Dict or ConfigObj section with controller settings
            dispatcher: Dispatcher to serialise work on (one is created if None)
            clock: Optional epoch-nanosecond source for log timestamps
        """
        c = get_config_obj(configuration)

        self.name = c.get("name", "BLETerminal")
        self.auto_scan = as_bool(c.get("auto_scan"), default=True)
        self.log_undecodable_hex = as_bool(c.get("log_undecodable_hex"), default=False)

        self.driver = driver
        self.dispatcher = dispatcher or BLEEventDispatcher(name=f"BLE-Session-{self.name}")

        self.registry = DeviceRegistry()
        self.session_log = SessionLog(clock=clock) if clock else SessionLog()
        self.state_lock = threading.RLock()

        self._is_scanning = False
        self._adapter_state = AdapterState.UNKNOWN
        self._error = ErrorState()
        self._session: Optional[ConnectionSession] = None
        self._pending_peripheral_id: Optional[str] = None
        self._started = False

        self._listeners: List[Callable[[SessionSnapshot], None]] = []
        self._changed = False

        self._event_handlers = {
            AdapterStateChanged: self._handle_adapter_state_changed,
            DeviceDiscovered: self._handle_device_discovered,
            PeripheralConnected: self._handle_connected,
            PeripheralConnectFailed: self._handle_connect_failed,
            PeripheralDisconnected: self._handle_disconnected,
            ServicesDiscovered: self._handle_services_discovered,
            CharacteristicsDiscovered: self._handle_characteristics_discovered,
            ValueUpdated: self._handle_value_updated,
        }

        RNS.log(f"{self} created (auto_scan={self.auto_scan}, hex fallback={self.log_undecodable_hex})",
                RNS.LOG_DEBUG)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self, run_dispatcher: bool = True) -> bool:
        """
        Initialise the driver and begin consuming events.

        Args:
            run_dispatcher: Start the dispatcher worker thread. Pass False to
                pump events manually with process_pending().

        Returns:
            False if the adapter is unavailable, True otherwise
        """
        if self._started:
            RNS.log(f"{self} already started", RNS.LOG_DEBUG)
            return True

        try:
            adapter_state = self.driver.initialize(self.post_event)
        except AdapterUnavailable as e:
            RNS.log(f"{self} Bluetooth adapter unavailable: {e}", RNS.LOG_ERROR)
            self._submit(self._surface_adapter_unavailable, e)
            if run_dispatcher and not self.dispatcher.running:
                # Publish the error before returning so callers can show it
                self.dispatcher.drain()
                self.dispatcher.start()
            return False

        self._started = True
        RNS.log(f"{self} driver initialized, adapter state {adapter_state.value}", RNS.LOG_INFO)

        if run_dispatcher:
            self.dispatcher.start()
        return True

    def stop(self):
        """Shut down the driver and stop the dispatcher."""
        if self._started:
            try:
                self.driver.shutdown()
            except Exception as e:
                RNS.log(f"{self} error stopping driver: {e}", RNS.LOG_ERROR)
            self._started = False
        self.dispatcher.stop()
        RNS.log(f"{self} stopped", RNS.LOG_INFO)

    def process_pending(self) -> int:
        """Handle all queued commands and events on the calling thread."""
        return self.dispatcher.drain()

    # ========================================================================
    # Published state
    # ========================================================================

    @property
    def discovered_devices(self) -> Tuple[DiscoveredDevice, ...]:
        with self.state_lock:
            return self.registry.snapshot()

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    @property
    def log_messages(self) -> Tuple[str, ...]:
        with self.state_lock:
            return self.session_log.messages

    @property
    def error_state(self) -> ErrorState:
        return self._error

    @property
    def adapter_state(self) -> AdapterState:
        return self._adapter_state

    @property
    def connected_device(self) -> Optional[ConnectionSession]:
        return self._session

    @property
    def has_active_connection(self) -> bool:
        return self._session is not None

    @property
    def state(self) -> SessionState:
        if self._session is not None:
            return SessionState.CONNECTED
        if self._pending_peripheral_id is not None:
            return SessionState.CONNECTING
        if self._is_scanning:
            return SessionState.SCANNING
        return SessionState.IDLE

    def snapshot(self) -> SessionSnapshot:
        with self.state_lock:
            return SessionSnapshot(
                devices=self.registry.snapshot(),
                is_scanning=self._is_scanning,
                log_messages=self.session_log.messages,
                error=self._error,
                adapter_state=self._adapter_state,
                state=self.state,
                connected_device_id=self._session.peripheral_id if self._session else None,
            )

    def add_listener(self, callback: Callable[[SessionSnapshot], None]):
        """Register a callback receiving a SessionSnapshot after every change."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[SessionSnapshot], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ========================================================================
    # Commands (any thread)
    # ========================================================================

    def start_scanning(self):
        self._submit(self._start_scanning)

    def stop_scanning(self):
        self._submit(self._stop_scanning)

    def connect_to_device(self, device_id: str):
        self._submit(self._connect_to_device, device_id)

    def disconnect(self):
        self._submit(self._disconnect)

    def dismiss_error(self):
        self._submit(self._dismiss_error)

    def post_event(self, event):
        """Event sink handed to the driver. Safe to call from any thread."""
        self._submit(self._handle_event, event)

    # ========================================================================
    # Dispatcher plumbing
    # ========================================================================

    def _submit(self, handler, *args):
        self.dispatcher.post(self._apply, handler, args)

    def _apply(self, handler, args):
        with self.state_lock:
            handler(*args)
            if not self._changed:
                return
            self._changed = False
            snapshot = self.snapshot()

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                RNS.log(f"{self} error in state listener: {type(e).__name__}: {e}", RNS.LOG_ERROR)

    def _mark_changed(self):
        self._changed = True

    def _handle_event(self, event):
        handler = self._event_handlers.get(type(event))
        if handler is None:
            RNS.log(f"{self} ignoring unsupported event {type(event).__name__}", RNS.LOG_WARNING)
            return
        handler(event)

    # ========================================================================
    # Command handlers (dispatcher thread)
    # ========================================================================

    def _start_scanning(self):
        self.registry.clear()
        self.session_log.clear()
        self.driver.start_scan()
        self._is_scanning = True
        self._mark_changed()
        RNS.log(f"{self} started scanning for peripherals...", RNS.LOG_INFO)

    def _stop_scanning(self):
        self.driver.stop_scan()
        self.registry.clear()
        self._is_scanning = False
        self._mark_changed()
        RNS.log(f"{self} stopped scanning for peripherals.", RNS.LOG_INFO)

    def _connect_to_device(self, device_id):
        device = self.registry.get(device_id)
        if device is None:
            message = f"Peripheral is nil for device {device_id}"
            RNS.log(f"{self} {message}", RNS.LOG_WARNING)
            self.session_log.append(message)
            self._mark_changed()
            return

        if self._session is not None:
            self.session_log.append(f"Already connected to {self._session.name}.")
            self._mark_changed()
            return

        if self._pending_peripheral_id is not None:
            pending = self.registry.get(self._pending_peripheral_id)
            pending_name = pending.display_name if pending else self._pending_peripheral_id
            self.session_log.append(f"Connection to {pending_name} already in progress.")
            self._mark_changed()
            return

        self._pending_peripheral_id = device.id
        self.driver.connect(device.id)
        message = f"Connecting to {device.display_name}..."
        RNS.log(f"{self} {message}", RNS.LOG_INFO)
        self.session_log.append(message)
        self._mark_changed()

    def _disconnect(self):
        if self._session is None:
            RNS.log(f"{self} {NO_CONNECTED_DEVICE_MESSAGE}", RNS.LOG_NOTICE)
            self.session_log.append(NO_CONNECTED_DEVICE_MESSAGE)
            self._mark_changed()
            return

        session = self._session
        self.driver.disconnect(session.peripheral_id)
        self.registry.set_connected(session.peripheral_id, False)
        self._session = None
        self._mark_changed()
        # The log line is written when the driver reports the disconnect
        RNS.log(f"{self} disconnected from {session.name}.", RNS.LOG_INFO)

    def _dismiss_error(self):
        if self._error.present:
            self._error = ErrorState()
            self._mark_changed()

    def _surface_adapter_unavailable(self, error):
        self._adapter_state = AdapterState.UNSUPPORTED
        self._error = ErrorState(present=True, message=str(error))
        self._mark_changed()

    # ========================================================================
    # Driver event handlers (dispatcher thread)
    # ========================================================================

    def _handle_adapter_state_changed(self, event: AdapterStateChanged):
        previous = self._adapter_state
        self._adapter_state = event.state
        if previous != event.state:
            self._mark_changed()

        if event.state == AdapterState.POWERED_ON:
            RNS.log(f"{self} Bluetooth is powered on.", RNS.LOG_INFO)
            if self.auto_scan and self.state == SessionState.IDLE:
                self._start_scanning()
            return

        message, level = _ADAPTER_STATE_MESSAGES.get(
            event.state, ("A new state was added that is not handled.", RNS.LOG_WARNING))
        RNS.log(f"{self} {message}", level)

    def _handle_device_discovered(self, event: DeviceDiscovered):
        device = DiscoveredDevice.from_advertisement(event.advertisement)
        if self.registry.add(device):
            self._mark_changed()
            RNS.log(f"{self} discovered: {device.display_name}, UUID: {device.id}, "
                    f"RSSI: {device.signal_strength}, Version: {device.radio_generation}", RNS.LOG_DEBUG)

    def _handle_connected(self, event: PeripheralConnected):
        name = self._peripheral_name(event.peripheral_id, event.name)
        if self._pending_peripheral_id == event.peripheral_id:
            self._pending_peripheral_id = None

        for device in self.registry.connected_devices():
            if device.id != event.peripheral_id:
                RNS.log(f"{self} clearing stale connection flag on {device.display_name}", RNS.LOG_WARNING)
                self.registry.set_connected(device.id, False)
        self.registry.set_connected(event.peripheral_id, True)
        self._session = ConnectionSession(peripheral_id=event.peripheral_id, name=name)
        self._log_event(f"Connected to {name}", RNS.LOG_INFO)

        self.driver.discover_services(event.peripheral_id)

    def _handle_connect_failed(self, event: PeripheralConnectFailed):
        name = self._peripheral_name(event.peripheral_id, event.name)
        if self._pending_peripheral_id == event.peripheral_id:
            self._pending_peripheral_id = None

        error_message = str(event.error) if event.error is not None else "Unknown error"
        self._log_event(f"Failed to connect to {name}: {error_message}", RNS.LOG_ERROR)
        self._error = ErrorState(present=True, message=error_message)

    def _handle_disconnected(self, event: PeripheralDisconnected):
        name = self._peripheral_name(event.peripheral_id, event.name)
        reason = str(event.error) if event.error is not None else "Disconnected successfully"
        self._log_event(f"Disconnected from {name}: {reason}", RNS.LOG_INFO)

        # Peripheral-initiated drops never pass through disconnect()
        self.registry.set_connected(event.peripheral_id, False)
        if self._session is not None and self._session.peripheral_id == event.peripheral_id:
            self._session = None
        if self._pending_peripheral_id == event.peripheral_id:
            self._pending_peripheral_id = None

    def _handle_services_discovered(self, event: ServicesDiscovered):
        name = self._peripheral_name(event.peripheral_id, event.name)
        if event.error is not None:
            self._log_event(f"Error discovering services for {name}: {event.error}", RNS.LOG_ERROR)
            return

        if not event.services:
            RNS.log(f"{self} no services found for {name}", RNS.LOG_NOTICE)
            return

        for service in event.services:
            self.driver.discover_characteristics(event.peripheral_id, service)

    def _handle_characteristics_discovered(self, event: CharacteristicsDiscovered):
        name = self._peripheral_name(event.peripheral_id, event.name)
        service_uuid = event.service.uuid if event.service else "?"
        if event.error is not None:
            self._log_event(f"Error discovering characteristics for service {service_uuid} on {name}: "
                            f"{event.error}", RNS.LOG_ERROR)
            return

        if not event.characteristics:
            RNS.log(f"{self} no characteristics found for service {service_uuid} on {name}", RNS.LOG_DEBUG)
            return

        for characteristic in event.characteristics:
            self.driver.set_notify(event.peripheral_id, characteristic, True)

    def _handle_value_updated(self, event: ValueUpdated):
        name = self._peripheral_name(event.peripheral_id, event.name)
        if event.error is not None:
            self._log_event(f"Error updating value for characteristic {event.characteristic_id} on {name}: "
                            f"{event.error}", RNS.LOG_ERROR)
            return

        if event.data is None:
            return

        line = self._log_event(self._decode_payload(event.data))
        RNS.log(f"{self} received message from {name}: {line}", RNS.LOG_DEBUG)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _decode_payload(self, data: bytes) -> str:
        try:
            return bytes(data).decode("utf-8")
        except UnicodeDecodeError:
            if self.log_undecodable_hex:
                return f"{NOT_UTF8_MESSAGE}: {bytes(data).hex()}"
            return NOT_UTF8_MESSAGE

    def _log_event(self, message: str, level=None) -> str:
        line = self.session_log.append_event(message)
        self._mark_changed()
        if level is not None:
            RNS.log(f"{self} {message}", level)
        return line

    def _peripheral_name(self, peripheral_id: str, name: Optional[str]) -> str:
        if name:
            return name
        device = self.registry.get(peripheral_id)
        if device is not None and device.display_name != UNKNOWN_NAME:
            return device.display_name
        return UNKNOWN_PERIPHERAL

    def __str__(self):
        return f"BLESession[{self.name}]"
