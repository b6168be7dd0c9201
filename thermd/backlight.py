"""Display backlight used as a cooling device."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from thermd.cdev import CoolingDevice, CoolingDeviceError

log = logging.getLogger(__name__)

BACKLIGHT_DEVICES = (
    "/sys/class/backlight/intel_backlight/",
    "/sys/class/backlight/acpi_video0/",
    "/sys/class/leds/lcd-backlight/",
    "/sys/class/backlight/lcd-backlight/",
)


def _parse_int(text: str) -> int:
    try:
        return int(text.split()[0])
    except (ValueError, IndexError):
        return 0


class BacklightDevice(CoolingDevice):
    """Dims the backlight; a higher state means a darker screen."""

    MIN_BACKLIGHT_PERCENT = 25

    def __init__(
        self, index: int, candidates: Optional[Sequence[str]] = None
    ) -> None:
        paths = list(BACKLIGHT_DEVICES if candidates is None else candidates)
        super().__init__(index, paths[0] if paths else "")
        self.ref_backlight_state = 0
        self.min_back_light = 0
        for path in paths:
            self.sysfs.update_path(path)
            try:
                self.update()
            except CoolingDeviceError:
                continue
            break

    def update(self) -> int:
        """Read the brightness range; raise if no usable backlight is present."""
        if self.sysfs.exists():
            try:
                text = self.sysfs.read("max_brightness")
            except OSError as exc:
                raise CoolingDeviceError(
                    f"cannot read max_brightness under {self.sysfs.base_path}"
                ) from exc
            self.max_state = _parse_int(text)

        if self.max_state <= 0:
            raise CoolingDeviceError("no usable backlight device")

        self.inc_dec_val = int(self.max_state * 10.0 / 100)
        # Never dim below a fixed fraction of the maximum brightness.
        self.min_back_light = self.max_state * self.MIN_BACKLIGHT_PERCENT // 100
        return 0

    def map_target_state(self, target_valid: int, target_state: int) -> int:
        if not target_valid:
            return target_state
        if target_state > self.max_state:
            return 0
        return self.max_state - target_state

    def set_curr_state(self, state: int, arg: int) -> None:
        if state == 0:
            if self.ref_backlight_state:
                log.debug("LCD restore original %d", self.ref_backlight_state)
                try:
                    self.sysfs.write("brightness", self.ref_backlight_state)
                except OSError:
                    log.warning("Failed to write brightness")
                    return
                self.ref_backlight_state = 0
            self.curr_state = state
            return

        if self.ref_backlight_state == 0 and state == self.inc_dec_val:
            # First throttling step: remember the brightness to restore later.
            try:
                self.ref_backlight_state = _parse_int(self.sysfs.read("brightness"))
            except OSError:
                return
            log.debug("LCD ref state is %d", self.ref_backlight_state)

        backlight_val = self.ref_backlight_state - state
        if backlight_val <= self.min_back_light:
            log.debug("LCD reached min state")
            backlight_val = self.min_back_light

        try:
            self.sysfs.write("brightness", backlight_val)
        except OSError:
            log.warning("Failed to write brightness")
            return
        self.curr_state = state