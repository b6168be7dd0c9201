"""Cooling devices exposed through the kernel thermal sysfs class."""

from __future__ import annotations

import logging

from thermd.cdev import CoolingDevice

log = logging.getLogger(__name__)

THERMAL_SYSFS_PATH = "/sys/class/thermal/"


def _parse_int(text: str) -> int:
    try:
        return int(text.split()[0])
    except (ValueError, IndexError):
        return 0


class ThermalSysfsDevice(CoolingDevice):
    """Uses cooling_deviceN/cur_state and max_state to control the device."""

    def __init__(self, index: int, control_path: str = THERMAL_SYSFS_PATH) -> None:
        super().__init__(index, control_path)

    def _attr(self, name: str) -> str:
        return f"cooling_device{self.index}/{name}"

    def _read_int(self, name: str) -> int:
        attr = self._attr(name)
        if not self.sysfs.exists(attr):
            return 0
        try:
            return _parse_int(self.sysfs.read(attr))
        except OSError:
            return 0

    def update(self) -> int:
        self.curr_state = self._read_int("cur_state")
        self.max_state = self._read_int("max_state")
        type_attr = self._attr("type")
        if self.sysfs.exists(type_attr):
            try:
                self.cdev_type = self.sysfs.read(type_attr)
            except OSError:
                self.cdev_type = ""
            # Processor devices share one ACPI object; reading back after a
            # change on another processor would compensate twice.
            if self.cdev_type == "Processor":
                self.read_back = False
        log.debug(
            "cooling dev %d:%d:%d:%s",
            self.index,
            self.curr_state,
            self.max_state,
            self.cdev_type,
        )
        return 0

    def get_max_state(self) -> int:
        self.max_state = self._read_int("max_state")
        return self.max_state

    def set_curr_state(self, state: int, arg: int) -> None:
        attr = self._attr("cur_state")
        if not self.sysfs.exists(attr):
            self.curr_state = 0
            return
        log.debug("set cdev state index %d state %d", self.index, state)
        try:
            self.sysfs.write(attr, state)
        except OSError:
            log.warning("cannot write %s", attr)
        self.curr_state = state

    def get_curr_state(self, read_again: bool = False) -> int:
        if not self.read_back:
            return self.curr_state
        self.curr_state = self._read_int("cur_state")
        return self.curr_state