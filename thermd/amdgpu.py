"""Cooling device that caps the power of an amdgpu through hwmon."""

from __future__ import annotations

import logging
import os

from thermd.cdev import CoolingDevice, CoolingDeviceError

log = logging.getLogger(__name__)

HWMON_ROOT = "/sys/class/hwmon/"
# The driver reports this average when the cap has snapped back to its maximum.
_POWER_CAP_RESET_VALUE = 1000000


class AmdgpuDevice(CoolingDevice):
    """Power-cap control; min and max states are inverted relative to sysfs."""

    def __init__(self, index: int, hwmon_root: str = HWMON_ROOT) -> None:
        super().__init__(index, "")
        self.activated = False
        try:
            entries = sorted(os.listdir(hwmon_root))
        except OSError:
            entries = []
        for entry in entries:
            name_path = os.path.join(hwmon_root, entry, "name")
            try:
                with open(name_path, encoding="utf-8") as handle:
                    lines = handle.read().splitlines()
            except OSError:
                continue
            if "amdgpu" in lines:
                self.sysfs.update_path(os.path.join(hwmon_root, entry) + "/")

    def _read_int(self, name: str) -> int:
        try:
            return self.sysfs.read_int(name)
        except (OSError, ValueError, IndexError) as exc:
            raise CoolingDeviceError(f"cannot read {name}") from exc

    def get_curr_state(self, read_again: bool = False) -> int:
        if not read_again and not self.activated:
            return self.min_state
        try:
            state = self._read_int("power1_average")
        except CoolingDeviceError:
            return self.min_state
        if state == _POWER_CAP_RESET_VALUE:
            state = self.max_state
        return state

    def set_curr_state(self, state: int, arg: int) -> None:
        new_state = state
        if not arg:
            self.activated = False
            new_state = self.min_state
        else:
            self.activated = True
        # Writing 0 makes the driver restore its maximum cap.
        if state == 0:
            new_state = self.min_state
        try:
            if self.sysfs.write("power1_cap", new_state) > 0:
                self.curr_state = state
        except OSError:
            log.warning("cannot write power1_cap")
        log.info("set cdev state index %d state %d wr:%d", self.index, state, new_state)

    def set_curr_state_raw(self, state: int, arg: int) -> None:
        self.set_curr_state(state, arg)

    def update(self) -> int:
        """Read the power cap range; raise if the device is not present."""
        for attr in ("power1_cap_min", "power1_cap_max"):
            if not self.sysfs.exists(attr):
                raise CoolingDeviceError(f"amdgpu {attr} is missing")
        self.max_state = self._read_int("power1_cap_min")
        self.min_state = self._read_int("power1_cap_max")
        self.inc_dec_val = int(-(self.min_state * 10.0 / 100))
        self.set_pid_param(-0.4, 0, 0)
        return 0

    def map_target_state(self, target_valid: int, target_state: int) -> int:
        return 0

    def get_phy_max_state(self) -> int:
        return self.min_state