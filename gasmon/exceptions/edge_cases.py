"""
Edge case handling for BLE adapter failures.

Turns adapter-level errors (service down, missing permissions, no hardware)
into concrete operator guidance, limiting how often diagnosis is attempted.
"""

import os
import shutil
import subprocess
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Tuple

from ..utils.config import Config
from ..utils.logging import ProductionLogger


class EdgeCaseHandler:
    """
    Diagnoses BLE adapter problems for the gas monitor.

    Checks run in order (bluetooth service, group permissions, adapter
    presence); the first failing check yields the guidance returned to the
    caller. When every check passes the generic troubleshooting guide is
    returned instead.
    """

    def __init__(self, config: Config, logger: ProductionLogger):
        self.config = config
        self.logger = logger
        self.recovery_attempts: Dict[str, List[datetime]] = {}
        self.max_recovery_attempts = 3
        self.recovery_cooldown = timedelta(minutes=5)

    def handle_ble_adapter_error(self, error: Exception) -> Tuple[bool, str]:
        """
        Diagnose a BLE adapter error.

        Args:
            error: The BLE-related exception

        Returns:
            Tuple of (healthy, message); message holds guidance when unhealthy
        """
        error_type = type(error).__name__
        error_msg = str(error)

        self.logger.warning(f"BLE adapter error detected: {error_type} - {error_msg}")

        if not self._can_attempt_recovery("ble_adapter"):
            return False, "Maximum BLE diagnosis attempts exceeded, retry later"

        self._record_recovery_attempt("ble_adapter")

        checks: List[Callable[[], Tuple[bool, str]]] = [
            self._check_bluetooth_service,
            self._check_bluetooth_permissions,
            self._check_bluetooth_hardware,
        ]

        for check in checks:
            ok, message = check()
            if not ok:
                self.logger.info(f"BLE diagnosis: {message}")
                return False, message
            self.logger.debug(f"BLE diagnosis passed: {message}")

        return False, self._generate_ble_troubleshooting_guide(error_msg)

    def _can_attempt_recovery(self, recovery_type: str) -> bool:
        now = datetime.now()
        attempts = [
            attempt for attempt in self.recovery_attempts.get(recovery_type, [])
            if now - attempt < self.recovery_cooldown
        ]
        self.recovery_attempts[recovery_type] = attempts
        return len(attempts) < self.max_recovery_attempts

    def _record_recovery_attempt(self, recovery_type: str):
        self.recovery_attempts.setdefault(recovery_type, []).append(datetime.now())

    def _check_bluetooth_service(self) -> Tuple[bool, str]:
        """Check if the bluetooth service is running."""
        if shutil.which('systemctl') is None:
            return True, "systemctl not available, skipping service check"
        try:
            result = subprocess.run(['systemctl', 'is-active', 'bluetooth'],
                                    capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.SubprocessError) as e:
            return True, f"Unable to check bluetooth service: {e}"
        if result.returncode != 0:
            return False, "Bluetooth service is not active. Run: sudo systemctl start bluetooth"
        return True, "Bluetooth service is active"

    def _check_bluetooth_permissions(self) -> Tuple[bool, str]:
        """Check bluetooth group membership."""
        try:
            import grp
        except ImportError:
            return True, "Group permissions not applicable on this platform"

        try:
            bluetooth_group = grp.getgrnam('bluetooth')
        except KeyError:
            return True, "Bluetooth group does not exist"

        current_user = os.getenv('USER')
        if current_user and current_user != 'root' and current_user not in bluetooth_group.gr_mem:
            return False, (
                f"User {current_user} not in bluetooth group. "
                f"Run: sudo usermod -a -G bluetooth {current_user}"
            )
        return True, "Bluetooth permissions are correct"

    def _check_bluetooth_hardware(self) -> Tuple[bool, str]:
        """Check an adapter is present and powered."""
        if shutil.which('bluetoothctl') is None:
            return True, "bluetoothctl not available, skipping hardware check"
        try:
            result = subprocess.run(['bluetoothctl', 'show'], capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.SubprocessError) as e:
            return True, f"Unable to check bluetooth hardware: {e}"

        if result.returncode != 0 or 'Controller' not in result.stdout:
            return False, "No bluetooth adapter found. Check hardware connection."
        if 'Powered: no' in result.stdout:
            return False, "Bluetooth adapter is powered off. Run: bluetoothctl power on"
        return True, "Bluetooth hardware is available and powered"

    def _generate_ble_troubleshooting_guide(self, error_msg: str) -> str:
        guide = [
            "BLE Troubleshooting Guide:",
            "=" * 50,
            f"Error: {error_msg}",
            "",
            "Quick Fixes:",
            "1. Check bluetooth service: sudo systemctl status bluetooth",
            "2. Add user to bluetooth group: sudo usermod -a -G bluetooth $USER",
            "3. Restart bluetooth: sudo systemctl restart bluetooth",
            "4. Check adapter status: bluetoothctl show",
            "",
            "Sensor Issues:",
            "• Make sure the sensor is powered and advertising",
            "• Move the sensor closer to the adapter",
            "• Disconnect the sensor from other centrals (phones, tablets)",
            "",
            "If problems persist:",
            "• Check system logs: journalctl -u bluetooth",
            "• Test with bluetoothctl scan on",
        ]
        return "\n".join(guide)
