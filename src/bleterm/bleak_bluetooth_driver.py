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
Bleak Bluetooth Driver

Implements BLEDriverInterface on top of:
- bleak: scanning, connections, GATT service enumeration and notifications
- dbus-fast (Linux only): BlueZ adapter power state and its changes

ARCHITECTURE:
-------------

The driver runs a dedicated asyncio event loop in its own thread. Every
public method is non-blocking: work is handed to the loop with
asyncio.run_coroutine_threadsafe() and outcomes are reported as DriverEvent
values on the sink registered with initialize().

Thread Architecture:
- Caller thread: initialize, start_scan, connect, disconnect, ...
- Event loop thread (BLE-EventLoop): all bleak and D-Bus operations,
  detection callbacks, notification callbacks, disconnect callbacks

USAGE EXAMPLE:
--------------

    driver = BleakBluetoothDriver({"connection_timeout": 10})
    driver.initialize(lambda event: print(event))
    driver.start_scan()
    ...
    driver.connect("AA:BB:CC:DD:EE:FF")
    ...
    driver.shutdown()

DEPENDENCIES:
-------------

Required:
- bleak >= 0.22.0

Linux:
- dbus-fast >= 1.0.0 (adapter power state)
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Dict, Optional, Set

import RNS
from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

# D-Bus is only present where BlueZ is the backend
try:
    from dbus_fast import BusType
    from dbus_fast.aio import MessageBus
    from dbus_fast.errors import DBusError
    HAS_DBUS = True
except ImportError:
    HAS_DBUS = False

from bleterm.config import as_bool, as_float, as_int, get_config_obj
from bleterm.exceptions import (
    AdapterUnavailable,
    CharacteristicDiscoveryFailed,
    ConnectFailed,
    DisconnectedWithError,
    NotifyUpdateFailed,
    PeripheralNotFound,
    ServiceDiscoveryFailed,
)
from bleterm.bluetooth_driver import (
    AdapterState,
    AdapterStateChanged,
    Advertisement,
    BLEDriverInterface,
    CharacteristicInfo,
    CharacteristicsDiscovered,
    DeviceDiscovered,
    DriverState,
    EventSink,
    PeripheralConnected,
    PeripheralConnectFailed,
    PeripheralDisconnected,
    ServiceInfo,
    ServicesDiscovered,
    ValueUpdated,
)

BLUEZ_SERVICE = "org.bluez"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

# BlueZ >= 5.66 Adapter1.PowerState values
POWER_STATE_MAP = {
    "on": AdapterState.POWERED_ON,
    "off": AdapterState.POWERED_OFF,
    "off-enabling": AdapterState.RESETTING,
    "on-disabling": AdapterState.RESETTING,
    "off-blocked": AdapterState.UNAUTHORIZED,
}

# D-Bus error names meaning BlueZ or the adapter object does not exist
MISSING_ADAPTER_ERRORS = (
    "org.freedesktop.DBus.Error.ServiceUnknown",
    "org.freedesktop.DBus.Error.UnknownObject",
    "org.freedesktop.DBus.Error.NameHasNoOwner",
)


def adapter_state_from_scan_error(error: Exception) -> Optional[AdapterState]:
    """Map a scanner start failure to the adapter state it implies, if any."""
    message = str(error).lower()
    if "not powered" in message or "powered off" in message or "no powered bluetooth adapters" in message:
        return AdapterState.POWERED_OFF
    if "not authorized" in message or "permission" in message or "denied" in message:
        return AdapterState.UNAUTHORIZED
    if "no bluetooth adapters found" in message or "not supported" in message:
        return AdapterState.UNSUPPORTED
    return None


class BleakBluetoothDriver(BLEDriverInterface):
    """
    Central-role BLE driver built on bleak.

    Keeps the bleak device object of every advertisement it has seen so that
    connect() can be called with just an id, and one BleakClient per
    peripheral it has connected to.
    """

    LOOP_START_TIMEOUT = 5.0
    PROBE_TIMEOUT = 5.0

    def __init__(self, configuration=None):
        """
        Args:
            configuration: Dict or ConfigObj section. Recognised keys:
                adapter, adapter_index, connection_timeout, probe_adapter_state
        """
        c = get_config_obj(configuration)

        self.adapter_index = as_int(c.get("adapter_index"), 0)
        self.adapter = c.get("adapter", None)
        self.adapter_path = f"/org/bluez/{self.adapter or f'hci{self.adapter_index}'}"
        self.connection_timeout = as_float(c.get("connection_timeout"), 10.0)
        self.probe_adapter_state = as_bool(c.get("probe_adapter_state"), default=True)

        self.on_event: Optional[EventSink] = None

        self._state = DriverState.IDLE
        self._adapter_state = AdapterState.UNKNOWN
        self._running = False
        self._scanning = False
        self._scanner: Optional[BleakScanner] = None

        # id -> bleak BLEDevice, from advertisements
        self._known_devices: Dict[str, object] = {}
        self._names: Dict[str, Optional[str]] = {}

        # id -> BleakClient, from connect() until the link is gone
        self._clients: Dict[str, BleakClient] = {}
        self._connected: Set[str] = set()
        self._disconnect_requested: Set[str] = set()
        self._peers_lock = threading.RLock()

        self._bus = None

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.loop_thread: Optional[threading.Thread] = None

        self.log_prefix = "BleakBLEDriver"

    def _log(self, message: str, level: str = "INFO"):
        level_map = {
            "DEBUG": RNS.LOG_DEBUG,
            "INFO": RNS.LOG_INFO,
            "NOTICE": RNS.LOG_NOTICE,
            "WARNING": RNS.LOG_WARNING,
            "ERROR": RNS.LOG_ERROR,
            "CRITICAL": RNS.LOG_CRITICAL,
            "EXTREME": RNS.LOG_EXTREME,
        }
        RNS.log(f"{self.log_prefix} {message}", level_map.get(level.upper(), RNS.LOG_INFO))

    def _emit(self, event):
        if self.on_event is None:
            self._log(f"Dropping {type(event).__name__}: no event sink registered", "DEBUG")
            return
        try:
            self.on_event(event)
        except Exception as e:
            self._log(f"Error in event sink for {type(event).__name__}: {e}", "ERROR")

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def initialize(self, event_sink: EventSink) -> AdapterState:
        if self._running:
            self._log("Driver already running", "WARNING")
            return self._adapter_state

        self._log("Starting bleak BLE driver...")
        self.on_event = event_sink

        self.loop_thread = threading.Thread(target=self._run_event_loop, daemon=True, name="BLE-EventLoop")
        self.loop_thread.start()

        start_time = time.time()
        while self.loop is None and (time.time() - start_time) < self.LOOP_START_TIMEOUT:
            time.sleep(0.01)

        if self.loop is None:
            raise RuntimeError("Failed to start event loop within timeout")

        future = asyncio.run_coroutine_threadsafe(self._probe_adapter_state(), self.loop)
        try:
            adapter_state = future.result(timeout=self.PROBE_TIMEOUT)
        except Exception as e:
            self._log(f"Could not determine adapter state: {e}", "WARNING")
            adapter_state = AdapterState.UNKNOWN

        if adapter_state == AdapterState.UNSUPPORTED:
            self._stop_loop()
            raise AdapterUnavailable(f"No Bluetooth adapter at {self.adapter_path}")

        self._adapter_state = adapter_state
        self._running = True
        self._state = DriverState.IDLE
        self._log(f"Driver started, adapter {adapter_state.value}")

        self._emit(AdapterStateChanged(adapter_state))
        return adapter_state

    def shutdown(self):
        if not self._running:
            return

        self._log("Stopping bleak BLE driver...")

        self._scanning = False
        future = asyncio.run_coroutine_threadsafe(self._stop_scanner(), self.loop)
        try:
            future.result(timeout=5.0)
        except Exception as e:
            self._log(f"Error stopping scanner: {e}", "WARNING")

        with self._peers_lock:
            clients = list(self._clients.items())
            self._disconnect_requested.update(address for address, _ in clients)
        for address, client in clients:
            future = asyncio.run_coroutine_threadsafe(client.disconnect(), self.loop)
            try:
                future.result(timeout=5.0)
            except Exception as e:
                self._log(f"Error disconnecting {address}: {e}", "WARNING")

        if self._bus is not None:
            bus = self._bus
            self._bus = None
            self.loop.call_soon_threadsafe(bus.disconnect)

        self._running = False
        self._stop_loop()
        self._state = DriverState.IDLE
        self._log("Driver stopped")

    def _stop_loop(self):
        if self.loop and self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)

        if self.loop_thread and self.loop_thread.is_alive() and self.loop_thread is not threading.current_thread():
            self.loop_thread.join(timeout=5.0)

        self.loop = None
        self.loop_thread = None

    def _run_event_loop(self):
        """Run asyncio event loop in separate thread."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self.loop = loop
        self._log("Event loop thread started", "DEBUG")
        loop.run_forever()
        loop.close()
        self._log("Event loop thread stopped", "DEBUG")

    # ========================================================================
    # State
    # ========================================================================

    @property
    def state(self) -> DriverState:
        return self._state

    @property
    def adapter_state(self) -> AdapterState:
        return self._adapter_state

    @property
    def connected_peers(self):
        with self._peers_lock:
            return sorted(self._connected)

    # ========================================================================
    # Adapter power state (D-Bus)
    # ========================================================================

    async def _probe_adapter_state(self) -> AdapterState:
        """Read the adapter power state and subscribe to its changes."""
        if not self.probe_adapter_state or not HAS_DBUS:
            self._log("Adapter state probing unavailable, assuming adapter is powered on", "DEBUG")
            return AdapterState.POWERED_ON

        try:
            bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        except Exception as e:
            self._log(f"Could not connect to system D-Bus: {e}", "WARNING")
            return AdapterState.UNKNOWN

        try:
            introspection = await bus.introspect(BLUEZ_SERVICE, self.adapter_path)
            obj = bus.get_proxy_object(BLUEZ_SERVICE, self.adapter_path, introspection)
            properties = obj.get_interface(PROPERTIES_INTERFACE)
            values = await properties.call_get_all(ADAPTER_INTERFACE)
        except DBusError as e:
            bus.disconnect()
            if e.type in MISSING_ADAPTER_ERRORS:
                self._log(f"BlueZ adapter {self.adapter_path} not available: {e}", "ERROR")
                return AdapterState.UNSUPPORTED
            self._log(f"D-Bus error reading adapter state: {e}", "WARNING")
            return AdapterState.UNKNOWN
        except Exception as e:
            bus.disconnect()
            self._log(f"Could not read adapter state: {e}", "WARNING")
            return AdapterState.UNKNOWN

        if not values:
            bus.disconnect()
            self._log(f"{self.adapter_path} exposes no {ADAPTER_INTERFACE} properties", "ERROR")
            return AdapterState.UNSUPPORTED

        properties.on_properties_changed(self._on_adapter_properties_changed)
        self._bus = bus

        state = self._adapter_state_from_properties(values)
        return state if state is not None else AdapterState.UNKNOWN

    @staticmethod
    def _adapter_state_from_properties(properties) -> Optional[AdapterState]:
        """Derive an AdapterState from a dict of Adapter1 properties (Variants)."""
        if "PowerState" in properties:
            value = getattr(properties["PowerState"], "value", properties["PowerState"])
            return POWER_STATE_MAP.get(value, AdapterState.UNKNOWN)
        if "Powered" in properties:
            value = getattr(properties["Powered"], "value", properties["Powered"])
            return AdapterState.POWERED_ON if value else AdapterState.POWERED_OFF
        return None

    def _on_adapter_properties_changed(self, interface_name, changed_properties, invalidated_properties):
        if interface_name != ADAPTER_INTERFACE:
            return

        state = self._adapter_state_from_properties(changed_properties)
        if state is None or state == self._adapter_state:
            return

        self._log(f"Adapter state changed: {self._adapter_state.value} -> {state.value}")
        self._set_adapter_state(state)

    def _set_adapter_state(self, state: AdapterState):
        self._adapter_state = state
        if state != AdapterState.POWERED_ON and self._scanning:
            # The stack stops delivering advertisements on its own
            self._log(f"Adapter {state.value} while scanning", "DEBUG")
        self._emit(AdapterStateChanged(state))

    # ========================================================================
    # Scanning
    # ========================================================================

    def start_scan(self):
        if not self._running:
            self._log("Cannot start scanning: driver not running", "ERROR")
            return

        if self._scanning:
            self._log("Already scanning", "DEBUG")
            return

        self._log("Starting BLE scanning...")
        self._scanning = True
        self._state = DriverState.SCANNING
        asyncio.run_coroutine_threadsafe(self._start_scanner(), self.loop)

    def stop_scan(self):
        if not self._scanning:
            return

        self._log("Stopping BLE scanning...")
        self._scanning = False
        self._state = DriverState.IDLE
        if self.loop:
            asyncio.run_coroutine_threadsafe(self._stop_scanner(), self.loop)

    async def _start_scanner(self):
        if self._scanner is not None:
            return

        kwargs = {}
        if self.adapter:
            kwargs["adapter"] = self.adapter

        scanner = BleakScanner(detection_callback=self._detection_callback, **kwargs)
        try:
            await scanner.start()
        except Exception as e:
            self._log(f"Scanner failed to start: {type(e).__name__}: {e}", "ERROR")
            self._scanning = False
            self._state = DriverState.IDLE
            implied_state = adapter_state_from_scan_error(e)
            if implied_state is not None and implied_state != self._adapter_state:
                self._set_adapter_state(implied_state)
            return

        if not self._scanning:
            # stop_scan() was called while the scanner was starting
            await scanner.stop()
            return

        self._scanner = scanner
        self._log("Scanner started", "DEBUG")

    async def _stop_scanner(self):
        scanner = self._scanner
        self._scanner = None
        if scanner is None:
            return
        try:
            await scanner.stop()
            self._log("Scanner stopped", "DEBUG")
        except BleakError as e:
            self._log(f"Error stopping scanner: {e}", "WARNING")

    def _detection_callback(self, device, advertisement_data):
        """Called by bleak on the event loop for every advertisement."""
        name = device.name or advertisement_data.local_name
        with self._peers_lock:
            self._known_devices[device.address] = device
            self._names[device.address] = name

        self._log(f"Advertisement from {device.address} ({name or 'Unknown'}) RSSI={advertisement_data.rssi}",
                  "EXTREME")

        advertisement = Advertisement(
            id=device.address,
            name=name,
            rssi=advertisement_data.rssi,
            manufacturer_data=dict(advertisement_data.manufacturer_data),
            service_uuids=tuple(advertisement_data.service_uuids),
            handle=device,
        )
        self._emit(DeviceDiscovered(advertisement))

    # ========================================================================
    # Connection management
    # ========================================================================

    def connect(self, peripheral_id: str):
        with self._peers_lock:
            device = self._known_devices.get(peripheral_id)
            name = self._names.get(peripheral_id)
            already = peripheral_id in self._clients
            tearing_down = peripheral_id in self._disconnect_requested
            established = peripheral_id in self._connected

        if device is None:
            self._log(f"Cannot connect to {peripheral_id}: never discovered", "WARNING")
            self._emit(PeripheralConnectFailed(peripheral_id, name, PeripheralNotFound(peripheral_id)))
            return

        if not self._running:
            self._emit(PeripheralConnectFailed(peripheral_id, name, ConnectFailed("Driver not running")))
            return

        if tearing_down:
            # The old link is still being torn down; bleak cannot reuse its client
            self._log(f"Cannot connect to {peripheral_id}: disconnect in progress", "WARNING")
            self._emit(PeripheralConnectFailed(peripheral_id, name, ConnectFailed("Disconnect in progress")))
            return

        if established:
            self._log(f"Already connected to {peripheral_id}", "DEBUG")
            self._emit(PeripheralConnected(peripheral_id, name))
            return

        if already:
            # The pending attempt reports its own outcome
            self._log(f"Connection to {peripheral_id} already in progress", "DEBUG")
            return

        asyncio.run_coroutine_threadsafe(self._connect_to_peer(peripheral_id, device, name), self.loop)

    async def _connect_to_peer(self, peripheral_id: str, device, name: Optional[str]):
        connection_start_time = time.time()
        self._log(f"Connecting to {peripheral_id}", "INFO")

        def disconnected_callback(client_obj):
            with self._peers_lock:
                was_connected = peripheral_id in self._connected
                requested = peripheral_id in self._disconnect_requested
                self._connected.discard(peripheral_id)
                self._disconnect_requested.discard(peripheral_id)
                self._clients.pop(peripheral_id, None)

            if not was_connected:
                return

            duration = time.time() - connection_start_time
            if requested:
                self._log(f"Disconnected from {peripheral_id} after {duration:.2f}s")
                error = None
            else:
                self._log(f"Device {peripheral_id} disconnected unexpectedly after {duration:.2f}s", "WARNING")
                error = DisconnectedWithError()
            self._emit(PeripheralDisconnected(peripheral_id, name, error))

        client = BleakClient(device, disconnected_callback=disconnected_callback, timeout=self.connection_timeout)
        with self._peers_lock:
            self._clients[peripheral_id] = client

        try:
            await client.connect()
            if not client.is_connected:
                raise BleakError("Connection failed")
        except Exception as e:
            with self._peers_lock:
                self._clients.pop(peripheral_id, None)
                self._disconnect_requested.discard(peripheral_id)
            reason = str(e) or type(e).__name__
            self._log(f"Connection failed to {peripheral_id}: {reason}", "ERROR")
            self._emit(PeripheralConnectFailed(peripheral_id, name, ConnectFailed(reason)))
            return

        with self._peers_lock:
            self._connected.add(peripheral_id)

        self._log(f"Connected to {peripheral_id} in {time.time() - connection_start_time:.2f}s")
        self._emit(PeripheralConnected(peripheral_id, name))

    def disconnect(self, peripheral_id: str):
        with self._peers_lock:
            client = self._clients.get(peripheral_id)
            if client is None:
                self._log(f"Not connected to {peripheral_id}", "DEBUG")
                return
            self._disconnect_requested.add(peripheral_id)

        future = asyncio.run_coroutine_threadsafe(client.disconnect(), self.loop)

        def log_failure(fut):
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                self._log(f"Error disconnecting from {peripheral_id}: {exc}", "WARNING")

        future.add_done_callback(log_failure)

    def _name_of(self, peripheral_id: str) -> Optional[str]:
        with self._peers_lock:
            return self._names.get(peripheral_id)

    def _connected_client(self, peripheral_id: str) -> Optional[BleakClient]:
        with self._peers_lock:
            if peripheral_id not in self._connected:
                return None
            return self._clients.get(peripheral_id)

    # ========================================================================
    # Capability negotiation
    # ========================================================================

    def discover_services(self, peripheral_id: str):
        asyncio.run_coroutine_threadsafe(self._discover_services(peripheral_id), self.loop)

    async def _discover_services(self, peripheral_id: str):
        name = self._name_of(peripheral_id)
        client = self._connected_client(peripheral_id)
        if client is None:
            self._emit(ServicesDiscovered(peripheral_id, name, (), ServiceDiscoveryFailed("Not connected")))
            return

        try:
            services = tuple(
                ServiceInfo(uuid=service.uuid, handle=service.handle, description=service.description)
                for service in client.services
            )
        except Exception as e:
            self._log(f"Service discovery failed for {peripheral_id}: {e}", "ERROR")
            self._emit(ServicesDiscovered(peripheral_id, name, (), ServiceDiscoveryFailed(str(e))))
            return

        self._log(f"Found {len(services)} services on {peripheral_id}", "DEBUG")
        self._emit(ServicesDiscovered(peripheral_id, name, services, None))

    def discover_characteristics(self, peripheral_id: str, service: ServiceInfo):
        asyncio.run_coroutine_threadsafe(self._discover_characteristics(peripheral_id, service), self.loop)

    async def _discover_characteristics(self, peripheral_id: str, service: ServiceInfo):
        name = self._name_of(peripheral_id)
        client = self._connected_client(peripheral_id)
        if client is None:
            self._emit(CharacteristicsDiscovered(peripheral_id, name, service, (),
                                                 CharacteristicDiscoveryFailed("Not connected")))
            return

        try:
            bleak_service = client.services.get_service(service.handle)
            if bleak_service is None:
                raise BleakError(f"Service {service.uuid} not found")
            characteristics = tuple(
                CharacteristicInfo(
                    uuid=char.uuid,
                    handle=char.handle,
                    service_uuid=service.uuid,
                    properties=tuple(char.properties),
                )
                for char in bleak_service.characteristics
            )
        except Exception as e:
            self._log(f"Characteristic discovery failed for {service.uuid} on {peripheral_id}: {e}", "ERROR")
            self._emit(CharacteristicsDiscovered(peripheral_id, name, service, (),
                                                 CharacteristicDiscoveryFailed(str(e))))
            return

        self._emit(CharacteristicsDiscovered(peripheral_id, name, service, characteristics, None))

    def set_notify(self, peripheral_id: str, characteristic: CharacteristicInfo, enabled: bool = True):
        if not characteristic.can_notify:
            self._log(f"Skipping notify on {characteristic.uuid} ({peripheral_id}): "
                      f"properties {list(characteristic.properties)}", "DEBUG")
            return
        asyncio.run_coroutine_threadsafe(self._set_notify(peripheral_id, characteristic, enabled), self.loop)

    async def _set_notify(self, peripheral_id: str, characteristic: CharacteristicInfo, enabled: bool):
        name = self._name_of(peripheral_id)
        client = self._connected_client(peripheral_id)
        if client is None:
            self._emit(ValueUpdated(peripheral_id, name, characteristic.uuid, None,
                                    NotifyUpdateFailed("Not connected")))
            return

        def notification_handler(sender, data):
            self._emit(ValueUpdated(peripheral_id, name, characteristic.uuid, bytes(data), None))

        try:
            if enabled:
                await client.start_notify(characteristic.handle, notification_handler)
                self._log(f"Notifications enabled for {characteristic.uuid} on {peripheral_id}", "DEBUG")
            else:
                await client.stop_notify(characteristic.handle)
                self._log(f"Notifications disabled for {characteristic.uuid} on {peripheral_id}", "DEBUG")
        except Exception as e:
            self._log(f"Notify update failed for {characteristic.uuid} on {peripheral_id}: {e}", "ERROR")
            self._emit(ValueUpdated(peripheral_id, name, characteristic.uuid, None, NotifyUpdateFailed(str(e))))
