"""Cooling device that limits performance through the intel_pstate driver."""

from __future__ import annotations

import logging

from thermd.cdev import CoolingDevice, CoolingDeviceError

log = logging.getLogger(__name__)

INTEL_PSTATE_PATH = "/sys/devices/system/cpu/intel_pstate/"


def _parse_int(text: str) -> int:
    try:
        return int(text.split()[0])
    except (ValueError, IndexError):
        return 0


class IntelPStateDevice(CoolingDevice):
    """Each state lowers max_perf_pct by one unit; low limits disable turbo."""

    INTEL_PSTATE_LIMIT_RATIO = 2
    DEFAULT_MAX_STATE = 10
    TURBO_DISABLE_PERCENT = 70

    def __init__(self, index: int, base_path: str = INTEL_PSTATE_PATH) -> None:
        super().__init__(index, base_path)
        self.unit_value = 1.0
        self.min_compensation = 0
        self.turbo_status = False

    def _set_turbo_disable_status(self, disable: bool) -> None:
        if disable == self.turbo_status:
            return
        try:
            self.sysfs.write("no_turbo", "1" if disable else "0")
        except OSError:
            log.warning("cannot write no_turbo")
        log.info("turbo %s", "disabled" if disable else "enabled")
        self.turbo_status = disable

    def set_curr_state(self, state: int, arg: int) -> None:
        fallback = 0 if state == 0 else self.max_state
        if not self.sysfs.exists("max_perf_pct"):
            self.curr_state = fallback
            return
        if state == 0:
            percent = 100
        else:
            percent = int(100 - (state + self.min_compensation) * self.unit_value)
        log.debug(
            "set cdev state index %d state %d percent %d", self.index, state, percent
        )
        self._set_turbo_disable_status(percent <= self.TURBO_DISABLE_PERCENT)
        try:
            self.sysfs.write("max_perf_pct", percent)
        except OSError:
            self.curr_state = fallback
        else:
            self.curr_state = state

    def get_max_state(self) -> int:
        return self.max_state

    def map_target_state(self, target_valid: int, target_state: int) -> int:
        if not target_valid:
            return target_state
        if target_state > 100:
            return 0
        return int((100 - target_state) / self.unit_value)

    def update(self) -> int:
        """Check the driver is active and set up the default state range."""
        if self.sysfs.exists("status"):
            try:
                status = self.sysfs.read("status")
            except OSError:
                status = None
            if status is not None and status != "active":
                log.info("intel pstate is not in active mode")
                raise CoolingDeviceError("intel_pstate is not in active mode")

        if not self.sysfs.exists("max_perf_pct"):
            raise CoolingDeviceError("intel_pstate max_perf_pct is missing")
        try:
            self.curr_state = _parse_int(self.sysfs.read("max_perf_pct"))
        except OSError:
            self.curr_state = 0

        self.max_state = self.DEFAULT_MAX_STATE
        self.min_compensation = 0
        self.unit_value = 100.0 / self.max_state
        self.curr_state = 0
        return 0