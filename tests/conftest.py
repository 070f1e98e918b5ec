"""
pytest configuration for bleterm tests.

This file is automatically loaded by pytest before test collection begins.
It sets up the Python path to allow imports from src/ and provides shared
fixtures for the session controller and the bleak driver.
"""

import sys
import os

# Calculate paths relative to this file's location
tests_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(tests_dir)
src_dir = os.path.join(project_root, 'src')

# Add src/ and tests/ to path
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)
if tests_dir not in sys.path:
    sys.path.insert(0, tests_dir)

import pytest
from unittest.mock import Mock, AsyncMock, MagicMock, patch

from bleterm.bluetooth_driver import Advertisement, APPLE_COMPANY_ID
from bleterm.BLESessionController import BLESessionController
from mock_ble_driver import MockBLEDriver

# 2024-06-04 12:00:00 UTC plus 123456789 ns
FIXED_TIME_NS = 1717502400_123456789


# ============================================================================
# Logging
# ============================================================================

@pytest.fixture(autouse=True)
def mock_rns_log():
    """Silence and record RNS.log for every test."""
    with patch('RNS.log') as mock_log:
        yield mock_log


# ============================================================================
# Session fixtures
# ============================================================================

@pytest.fixture
def mock_driver():
    """Scripted driver that records commands instead of touching a radio."""
    return MockBLEDriver()


@pytest.fixture
def fixed_clock():
    return Mock(return_value=FIXED_TIME_NS)


@pytest.fixture
def controller(mock_driver, fixed_clock):
    """
    Controller bound to the mock driver with auto-scan disabled.

    Started without the dispatcher thread: tests pump work with
    controller.process_pending().
    """
    session = BLESessionController(
        mock_driver,
        configuration={'name': 'Test', 'auto_scan': 'no'},
        clock=fixed_clock,
    )
    session.start(run_dispatcher=False)
    session.process_pending()
    return session


@pytest.fixture
def scanning_controller(controller, mock_driver):
    """Controller that is already scanning, with the driver call log reset."""
    controller.start_scanning()
    controller.process_pending()
    mock_driver.calls.clear()
    return controller


# ============================================================================
# Common Test Data
# ============================================================================

@pytest.fixture
def sample_advertisements():
    """Advertisements for three peripherals."""
    return {
        'thermometer': Advertisement(id="6F1C2A90-1B7E-4E7F-9C1D-0A2B3C4D5E01", name="Thermometer", rssi=-49),
        'watch': Advertisement(
            id="6F1C2A90-1B7E-4E7F-9C1D-0A2B3C4D5E02",
            name="Watch",
            rssi=-62,
            manufacturer_data={APPLE_COMPANY_ID: b'\x10\x05\x01'},
        ),
        'anonymous': Advertisement(id="6F1C2A90-1B7E-4E7F-9C1D-0A2B3C4D5E03", name=None, rssi=-88),
    }


# ============================================================================
# Mock bleak components
# ============================================================================

@pytest.fixture
def mock_bleak_client():
    """Create a mock BleakClient for testing central mode operations."""
    client = MagicMock()
    client.address = "AA:BB:CC:DD:EE:FF"
    client.is_connected = True
    client.connect = AsyncMock(return_value=True)
    client.disconnect = AsyncMock(return_value=True)
    client.start_notify = AsyncMock(return_value=None)
    client.stop_notify = AsyncMock(return_value=None)
    return client


@pytest.fixture
def mock_bleak_device():
    """Create a mock bleak BLEDevice discovered during scan."""
    device = Mock()
    device.address = "AA:BB:CC:DD:EE:FF"
    device.name = "Test-Device"
    return device


@pytest.fixture
def mock_advertisement_data():
    """Create mock bleak AdvertisementData."""
    adv = Mock()
    adv.local_name = "Test-Device"
    adv.rssi = -65
    adv.manufacturer_data = {APPLE_COMPANY_ID: b'\x02\x15'}
    adv.service_uuids = ["0000180d-0000-1000-8000-00805f9b34fb"]
    return adv
