"""Cooling device that writes its state to an arbitrary sysfs file."""

from __future__ import annotations

import logging

from thermd.cdev import CoolingDevice, CoolingDeviceError

log = logging.getLogger(__name__)


def _parse_int(text: str) -> int:
    try:
        return int(text.split()[0])
    except (ValueError, IndexError):
        return 0


class GenericSysfsDevice(CoolingDevice):
    """Writes the state, optionally prefixed, to the file at the control path."""

    def __init__(self, index: int, control_path: str) -> None:
        super().__init__(index, control_path)

    def update(self) -> int:
        """Read the current value, or create the file holding 0 if it is missing."""
        if self.sysfs.exists():
            try:
                text = self.sysfs.read()
            except OSError:
                text = ""
            self.curr_state = _parse_int(text)
            self.min_state = self.max_state = self.curr_state
            return 0

        if not self.sysfs.base_path:
            raise CoolingDeviceError("generic sysfs device has no path")
        try:
            self.sysfs.create()
        except OSError as exc:
            raise CoolingDeviceError(
                f"cannot create {self.sysfs.base_path}"
            ) from exc
        try:
            self.sysfs.write("", 0)
        except OSError:
            log.warning("cannot initialise %s", self.sysfs.base_path)
        return 0

    def set_curr_state(self, state: int, arg: int) -> None:
        text = f"{self.write_prefix}{state}"
        log.debug("set cdev state index %d state %d %s", self.index, state, text)
        try:
            self.sysfs.write("", text)
        except OSError:
            log.warning("cannot write %s", self.sysfs.base_path)
        self.curr_state = state

    def set_curr_state_raw(self, state: int, arg: int) -> None:
        self.set_curr_state(state, arg)