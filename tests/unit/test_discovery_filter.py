"""
Unit tests for sensor discovery: device id extraction, the name/service
filter and de-duplication in the scanner detection callback.
"""

import pytest

from gasmon.ble.scanner import (
    UNKNOWN_DEVICE_NAME,
    SensorScanner,
    extract_device_id,
    is_sensor_candidate,
    resolve_device_name,
)
from tests.mocks.mock_ble import MockAdvertisementData, MockBLEDevice, advertisement


class TestDeviceIdExtraction:

    @pytest.mark.parametrize("name,expected", [
        ("ESP32_SPOILAGE_7", 7),
        ("esp32_gas_12", 12),
        ("ESP32_3", 3),
        ("ESP32-15", 15),
        ("ESP32", 32),
        ("WidgetXYZ42", 42),
        ("Sensor 5 v2", 5),
        ("Kitchen sensor", 1),
        ("", 1),
    ])
    def test_extract_device_id(self, name, expected):
        assert extract_device_id(name) == expected

    def test_none_name(self):
        assert extract_device_id(None) == 1


class TestSensorFilter:

    @pytest.mark.parametrize("name", ["ESP32_SPOILAGE_1", "gas monitor", "Spoilage", "MySensor"])
    def test_name_markers(self, name):
        assert is_sensor_candidate(name, [])

    def test_service_uuid_marker(self):
        assert is_sensor_candidate("Widget", ["12345678-1234-5678-9ABC-DEF123456789"])

    def test_unrelated_device(self):
        assert not is_sensor_candidate("Headphones", ["0000180f-0000-1000-8000-00805f9b34fb"])

    def test_resolve_name_prefers_device_name(self):
        device = MockBLEDevice("AA:00", "ESP32_GAS_1")
        assert resolve_device_name(device, MockAdvertisementData(local_name="other")) == "ESP32_GAS_1"

    def test_resolve_name_falls_back_to_local_name(self):
        device = MockBLEDevice("AA:00", None)
        assert resolve_device_name(device, MockAdvertisementData(local_name="ESP32_GAS_2")) == "ESP32_GAS_2"

    def test_resolve_name_unknown(self):
        device = MockBLEDevice("AA:00", None)
        assert resolve_device_name(device, MockAdvertisementData()) == UNKNOWN_DEVICE_NAME


class TestDetectionCallback:

    @pytest.fixture
    def scanner(self, mock_config, mock_logger, mock_performance_monitor, registry):
        return SensorScanner(mock_config, mock_logger, mock_performance_monitor, registry)

    def test_sensor_listed(self, scanner):
        found = []
        scanner.add_callback(found.append)

        scanner._detection_callback(*advertisement("AA:00", "ESP32_SPOILAGE_7", rssi=-55))

        assert len(found) == 1
        assert found[0].device_id == 7
        assert found[0].rssi == -55
        assert scanner.get_discovered_devices() == found

    def test_duplicate_results_listed_once(self, scanner):
        found = []
        scanner.add_callback(found.append)

        for rssi in (-70, -60, -50):
            scanner._detection_callback(*advertisement("AA:00", "ESP32_SPOILAGE_7", rssi=rssi))

        assert len(found) == 1
        assert len(scanner.get_discovered_devices()) == 1

    def test_non_sensor_filtered(self, scanner):
        scanner._detection_callback(*advertisement("AA:01", "Headphones"))
        assert scanner.get_discovered_devices() == []

    def test_show_all_lists_named_devices(self, scanner):
        scanner.show_all_devices = True

        scanner._detection_callback(*advertisement("AA:01", "Headphones"))
        scanner._detection_callback(*advertisement("AA:02", None))

        names = [device.name for device in scanner.get_discovered_devices()]
        assert names == ["Headphones"]

    def test_show_all_keeps_unnamed_sensor(self, scanner):
        scanner.show_all_devices = True

        scanner._detection_callback(*advertisement(
            "AA:03", None, service_uuids=["12345678-1234-5678-9abc-def123456789"]
        ))

        devices = scanner.get_discovered_devices()
        assert [device.address for device in devices] == ["AA:03"]
        assert devices[0].name == UNKNOWN_DEVICE_NAME

    def test_registered_device_skipped(self, scanner, registry, make_session):
        registry.add(make_session(address="AA:00"))

        scanner._detection_callback(*advertisement("AA:00", "ESP32_SPOILAGE_7"))

        assert scanner.get_discovered_devices() == []

    def test_callback_exception_isolated(self, scanner, mock_logger):
        def failing_callback(device):
            raise ValueError("boom")

        found = []
        scanner.add_callback(failing_callback)
        scanner.add_callback(found.append)

        scanner._detection_callback(*advertisement("AA:00", "ESP32_GAS_1"))

        assert len(found) == 1
        mock_logger.error.assert_called()

    def test_remove_callback(self, scanner):
        found = []
        scanner.add_callback(found.append)
        scanner.remove_callback(found.append)

        scanner._detection_callback(*advertisement("AA:00", "ESP32_GAS_1"))

        assert found == []
