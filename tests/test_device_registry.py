"""
Tests for DeviceRegistry and DiscoveredDevice.

Covers:
- Id uniqueness with first-advertisement-wins semantics
- Discovery ordering
- Name and radio generation derivation from advertisements
- Connection flag bookkeeping
- Snapshot isolation from live entries
"""

import pytest

from bleterm.bluetooth_driver import APPLE_COMPANY_ID, Advertisement
from bleterm.BLEDeviceRegistry import (
    GENERATION_BLE,
    GENERATION_UNKNOWN,
    UNKNOWN_NAME,
    DeviceRegistry,
    DiscoveredDevice,
    classify_radio_generation,
)


class TestRadioGeneration:
    def test_apple_company_id_is_ble(self):
        assert classify_radio_generation({APPLE_COMPANY_ID: b'\x01'}) == GENERATION_BLE

    def test_other_company_is_unknown(self):
        assert classify_radio_generation({0x0059: b'\x01'}) == GENERATION_UNKNOWN

    def test_missing_manufacturer_data_is_unknown(self):
        assert classify_radio_generation({}) == GENERATION_UNKNOWN
        assert classify_radio_generation(None) == GENERATION_UNKNOWN


class TestDiscoveredDevice:
    def test_from_advertisement(self):
        handle = object()
        adv = Advertisement(id="A", name="Thermometer", rssi=-49,
                            manufacturer_data={APPLE_COMPANY_ID: b''}, handle=handle)

        device = DiscoveredDevice.from_advertisement(adv)

        assert device.id == "A"
        assert device.display_name == "Thermometer"
        assert device.signal_strength == -49
        assert device.radio_generation == GENERATION_BLE
        assert device.is_connected is False
        assert device.handle is handle

    def test_missing_name_defaults_to_unknown(self):
        device = DiscoveredDevice.from_advertisement(Advertisement(id="A", name=None, rssi=-70))
        assert device.display_name == UNKNOWN_NAME

    def test_empty_name_defaults_to_unknown(self):
        device = DiscoveredDevice.from_advertisement(Advertisement(id="A", name="", rssi=-70))
        assert device.display_name == UNKNOWN_NAME

    def test_handle_not_part_of_equality(self):
        a = DiscoveredDevice(id="A", handle=object())
        b = DiscoveredDevice(id="A", handle=object())
        assert a == b


class TestDeviceRegistry:
    @pytest.fixture
    def registry(self):
        return DeviceRegistry()

    def test_add_new_device(self, registry):
        assert registry.add(DiscoveredDevice(id="A", display_name="First"))
        assert "A" in registry
        assert len(registry) == 1

    def test_first_advertisement_wins(self, registry):
        registry.add(DiscoveredDevice(id="A", display_name="First", signal_strength=-40))

        assert registry.add(DiscoveredDevice(id="A", display_name="Second", signal_strength=-90)) is False

        device = registry.get("A")
        assert device.display_name == "First"
        assert device.signal_strength == -40
        assert len(registry) == 1

    def test_discovery_order_preserved(self, registry):
        for device_id in ["C", "A", "B"]:
            registry.add(DiscoveredDevice(id=device_id))
        assert [d.id for d in registry] == ["C", "A", "B"]
        assert [d.id for d in registry.snapshot()] == ["C", "A", "B"]

    def test_get_unknown_returns_none(self, registry):
        assert registry.get("missing") is None

    def test_set_connected(self, registry):
        registry.add(DiscoveredDevice(id="A"))
        registry.add(DiscoveredDevice(id="B"))

        assert registry.set_connected("B", True)
        assert [d.id for d in registry.connected_devices()] == ["B"]

        assert registry.set_connected("B", False)
        assert registry.connected_devices() == []

    def test_set_connected_unknown_id(self, registry):
        assert registry.set_connected("missing", True) is False

    def test_clear(self, registry):
        registry.add(DiscoveredDevice(id="A"))
        registry.clear()
        assert len(registry) == 0
        assert "A" not in registry

    def test_snapshot_is_detached(self, registry):
        registry.add(DiscoveredDevice(id="A"))
        snapshot = registry.snapshot()

        registry.set_connected("A", True)

        assert snapshot[0].is_connected is False
        assert registry.get("A").is_connected is True

    def test_snapshot_keeps_handle(self, registry):
        handle = object()
        registry.add(DiscoveredDevice(id="A", handle=handle))
        assert registry.snapshot()[0].handle is handle
