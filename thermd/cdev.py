"""Cooling device base class and a small sysfs attribute accessor."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_INTERVAL = 2  # seconds
ZONE_TRIP_LIMIT_COUNT = 12


def _to_int32(value: int) -> int:
    return ((value + 2**31) % 2**32) - 2**31


class CoolingDeviceError(Exception):
    """Raised when a cooling device is asked for something it cannot do."""


@dataclass
class ZoneTripLimit:
    """One zone/trip pair currently holding a cooling device active."""

    zone: int
    trip: int
    target_state_valid: int
    target_value: int
    min_state: int = 0
    max_state: int = 0
    min_max_valid: int = 0


class SysfsNode:
    """Reads and writes attribute files below a base path."""

    def __init__(self, base_path: str = "") -> None:
        self.base_path = base_path

    def _path(self, name: str) -> str:
        if not name:
            return self.base_path
        if not self.base_path:
            return name
        return os.path.join(self.base_path, name.lstrip("/"))

    def exists(self, name: str = "") -> bool:
        """Whether the attribute (or the base path itself) exists."""
        path = self._path(name)
        return bool(path) and os.path.exists(path)

    def read(self, name: str = "") -> str:
        """Return the attribute's content without surrounding whitespace."""
        with open(self._path(name), encoding="utf-8") as handle:
            return handle.read().strip()

    def read_int(self, name: str = "") -> int:
        """Return the attribute's content as an integer."""
        return int(self.read(name).split()[0])

    def write(self, name: str, value: Any) -> int:
        """Write ``value`` to the attribute and return the characters written."""
        text = str(value)
        with open(self._path(name), "w", encoding="utf-8") as handle:
            return handle.write(text)

    def update_path(self, path: str) -> None:
        self.base_path = path

    def create(self) -> None:
        """Create the file at the base path if it is missing."""
        with open(self.base_path, "a", encoding="utf-8"):
            pass


class CoolingDevice:
    """Base cooling device: tracks activations per zone/trip and steps state."""

    def __init__(
        self,
        index: int,
        control_path: str = "",
        pid_controller: Optional[Any] = None,
    ) -> None:
        self.index = index
        self.sysfs = SysfsNode(control_path)
        self.trip_point = 0
        self.max_state = 0
        self.min_state = 0
        self.curr_state = 0
        self.curr_pow = 0
        self.base_pow_state = 0
        self.inc_dec_val = 1
        self.inc_val = 0
        self.dec_val = 0
        self.auto_down_adjust = False
        self.read_back = True
        self.cdev_type = ""
        self.alias = ""
        self.debounce_interval = DEFAULT_DEBOUNCE_INTERVAL
        self.last_action_time = 0
        self.trend_increase = False
        self.pid_enable = False
        self.pid_ctrl = pid_controller
        self.pid_gains = (0.0, 0.0, 0.0)
        self.last_state = 0
        self.zone_trip_limits: list[ZoneTripLimit] = []
        self.write_prefix = ""
        self.clock: Callable[[], float] = time.time

    # ---- overridable hooks -------------------------------------------------

    def init(self) -> int:
        return 0

    def control_begin(self) -> int:
        if self.pid_enable and self.pid_ctrl is not None:
            self.pid_ctrl.reset()
        return 0

    def control_end(self) -> int:
        return 0

    def set_curr_state(self, state: int, arg: int) -> None:
        """Apply a state to the device; the base device does nothing."""

    def set_curr_state_raw(self, state: int, arg: int) -> None:
        state = min(state, self.max_state)
        state = max(state, self.min_state)
        self.set_curr_state(state, arg)

    def get_curr_state(self, read_again: bool = False) -> int:
        return self.curr_state

    def get_min_state(self) -> int:
        return self.min_state

    def get_max_state(self) -> int:
        return self.max_state

    def get_phy_max_state(self) -> int:
        return self.max_state

    def update(self) -> int:
        return 0

    def map_target_state(self, target_valid: int, target_state: int) -> int:
        return target_state

    def set_adaptive_target(self, target: Any) -> None:
        """Apply an adaptive-table target; ignored by the base device."""

    def set_min_state_param(self, value: int) -> None:
        self.min_state = value

    # ---- state relations ---------------------------------------------------

    def in_min_state(self) -> bool:
        curr = self.get_curr_state()
        return (self.min_state < self.max_state and curr <= self.min_state) or (
            self.min_state > self.max_state and curr >= self.min_state
        )

    def in_max_state(self) -> bool:
        curr = self.get_curr_state()
        top = self.get_max_state()
        return (self.min_state < self.max_state and curr >= top) or (
            self.min_state > self.max_state and curr <= top
        )

    def cmp_current_state(self, state: int) -> int:
        """Return 1 if ``state`` is more constraining than now, -1 if less, 0 if equal."""
        curr = self.get_curr_state()
        if curr == state:
            return 0
        if self.min_state < self.max_state:
            return 1 if state > curr else -1
        if self.min_state > self.max_state:
            return -1 if state > curr else 1
        return 0

    # ---- PID ---------------------------------------------------------------

    def set_pid_param(self, kp: float, ki: float, kd: float) -> None:
        self.pid_gains = (kp, ki, kd)
        if self.pid_ctrl is not None:
            self.pid_ctrl.kp = kp
            self.pid_ctrl.ki = ki
            self.pid_ctrl.kd = kd
        log.info("set_pid_param %d [%g,%g,%g]", self.index, kp, ki, kd)

    def enable_pid(self) -> None:
        if self.pid_ctrl is None:
            raise CoolingDeviceError(
                f"cooling device {self.index} has no PID controller"
            )
        kp, ki, kd = self.pid_gains
        self.pid_ctrl.kp, self.pid_ctrl.ki, self.pid_ctrl.kd = kp, ki, kd
        log.info("PID control enabled %d", self.index)
        self.pid_enable = True

    def dump(self) -> str:
        if self.inc_val or self.dec_val:
            line = (
                f"{self.index}: {self.cdev_type}, C:{self.curr_state} "
                f"MN: {self.min_state} MX:{self.max_state} Inc ST:{self.inc_val} "
                f"Dec ST:{self.dec_val} pt:{self.sysfs.base_path} "
                f"rd_bk {int(self.read_back)}"
            )
        else:
            line = (
                f"{self.index}: {self.cdev_type}, C:{self.curr_state} "
                f"MN: {self.min_state} MX:{self.max_state} ST:{self.inc_dec_val} "
                f"pt:{self.sysfs.base_path} rd_bk {int(self.read_back)}"
            )
        log.info(line)
        return line

    # ---- clamping and stepping ---------------------------------------------

    def _clamp_min(self, state: int, temp_min_state: int = 0) -> int:
        low = self.min_state
        if low > self.max_state:
            if temp_min_state and temp_min_state < low:
                low = temp_min_state
        elif temp_min_state and temp_min_state > low:
            low = temp_min_state
        if (low < self.max_state and state < low) or (
            low > self.max_state and state > low
        ):
            return low
        return state

    def _clamp_max(self, state: int, temp_max_state: int = 0) -> int:
        high = self.max_state
        if self.min_state > high:
            if temp_max_state and temp_max_state > high:
                high = temp_max_state
        elif temp_max_state and temp_max_state < high:
            high = temp_max_state
        if (self.min_state < high and state > high) or (
            self.min_state > high and state < high
        ):
            return high
        return state

    def _clamp_range(self, value: int) -> int:
        low, high = self.get_min_state(), self.get_max_state()
        if low < high:
            return max(low, min(value, high))
        return max(high, min(value, low))

    def _exponential_controller(
        self,
        set_point: int,
        temperature: int,
        state: int,
        temp_min_state: int = 0,
        temp_max_state: int = 0,
    ) -> None:
        control = state
        if state:
            curr = self._clamp_min(self.get_curr_state(True), temp_min_state)
            step = self.inc_val or self.inc_dec_val
            new_state = curr + step
            if self.trend_increase:
                if self.curr_pow == 0:
                    self.base_pow_state = curr
                self.curr_pow += 1
                factor = (2**self.curr_pow) % 2**32
                new_state = _to_int32(self.base_pow_state + factor * step)
                if (self.inc_val < 0 and self.base_pow_state < new_state) or (
                    self.inc_val > 0 and self.base_pow_state > new_state
                ):
                    new_state = self.max_state
                log.info(
                    "cdev index:%d consecutive call, increment exponentially state %d",
                    self.index,
                    new_state,
                )
            else:
                self.curr_pow = 0
            new_state = self._clamp_max(new_state, temp_max_state)
            self.trend_increase = True
            self.set_curr_state(new_state, control)
        else:
            self.get_curr_state()
            curr = self._clamp_max(self.curr_state)
            self.curr_pow = 0
            self.trend_increase = False
            if not self.auto_down_adjust:
                step = self.dec_val or self.inc_dec_val
                new_state = self._clamp_min(curr - step)
                self.set_curr_state(new_state, control)
            else:
                self.set_curr_state(self.min_state, control)
        log.info(
            "Set : threshold:%d, temperature:%d, cdev:%d(%s), curr_state:%d, max_state:%d",
            set_point,
            temperature,
            self.index,
            self.cdev_type,
            self.get_curr_state(),
            self.max_state,
        )

    def _add_limit(
        self,
        zone_id: int,
        trip_id: int,
        target_state_valid: int,
        target_value: int,
        min_max_valid: int,
        trip_min_state: Optional[int],
        trip_max_state: Optional[int],
    ) -> None:
        if min_max_valid:
            if not trip_min_state:
                trip_min_state = self.min_state
            if not trip_max_state:
                trip_max_state = self.max_state
        else:
            trip_min_state = trip_max_state = 0
        self.zone_trip_limits.append(
            ZoneTripLimit(
                zone_id,
                trip_id,
                target_state_valid,
                target_value,
                trip_min_state,
                trip_max_state,
                min_max_valid,
            )
        )
        log.info("Added zone %d trip %d", zone_id, trip_id)
        ascending = self.min_state < self.max_state
        if target_state_valid:
            self.zone_trip_limits.sort(
                key=lambda lim: lim.target_value, reverse=not ascending
            )
        # Most restrictive entry ends up last.
        if min_max_valid:
            if ascending:
                self.zone_trip_limits.sort(key=lambda lim: lim.max_state, reverse=True)
            else:
                self.zone_trip_limits.sort(key=lambda lim: lim.min_state)

    # ---- main entry --------------------------------------------------------

    def set_state(
        self,
        set_point: int,
        target_temp: int,
        temperature: int,
        hard_target: int,
        state: int,
        zone_id: int,
        trip_id: int,
        target_state_valid: int,
        target_value: int,
        pid_param: Optional[Any],
        pid: Optional[Any],
        force: bool,
        min_max_valid: int,
        trip_min_state: Optional[int],
        trip_max_state: Optional[int],
    ) -> None:
        """Activate (state != 0) or deactivate the device on behalf of a zone trip."""
        if not state and self.in_min_state() and not self.zone_trip_limits:
            return

        now = int(self.clock())

        if state:
            first_entry = not self.zone_trip_limits
            found = any(
                lim.zone == zone_id and lim.trip == trip_id
                for lim in self.zone_trip_limits
            )
            if not found:
                self._add_limit(
                    zone_id,
                    trip_id,
                    target_state_valid,
                    target_value,
                    min_max_valid,
                    trip_min_state,
                    trip_max_state,
                )
            limit = self.zone_trip_limits[-1]
            target_value = limit.target_value
            target_state_valid = limit.target_state_valid
            min_max_valid = limit.min_max_valid
            trip_max_state = limit.max_state
            trip_min_state = limit.min_state

            if (
                not first_entry
                and target_state_valid
                and self.cmp_current_state(
                    self.map_target_state(target_state_valid, target_value)
                )
                <= 0
            ):
                log.debug("Already more constraint")
                return
            if (
                not force
                and self.last_state == state
                and now - self.last_action_time <= self.debounce_interval
            ):
                log.debug("Ignore: delay < debounce interval")
                return
        elif self.zone_trip_limits:
            deleted_target_valid = 0
            erased = False
            last = self.zone_trip_limits[-1]
            if last.zone == zone_id and last.trip == trip_id:
                deleted_target_valid = last.target_state_valid
                self.zone_trip_limits.pop()
                erased = True
                log.info("Erased [%d: %d %d", zone_id, trip_id, target_value)
            if self.zone_trip_limits:
                last = self.zone_trip_limits[-1]
                target_value = last.target_value
                target_state_valid = last.target_state_valid
                zone_id, trip_id = last.zone, last.trip
                if not erased:
                    log.debug("Currently active limit by [%d: %d]: ignore", zone_id, trip_id)
                    return
            elif deleted_target_valid:
                target_value = self.get_min_state()
            elif force:
                target_state_valid = 1
                target_value = self.get_min_state()
        elif force:
            target_state_valid = 1
            target_value = self.get_min_state()
        else:
            target_state_valid = 0

        self.last_action_time = now
        self.last_state = state

        self.curr_state = self.get_curr_state()
        if self.curr_state == self.get_min_state():
            self.control_begin()
            self.curr_pow = 0
            self.trend_increase = False

        if target_state_valid:
            self.set_curr_state_raw(target_value, state)
            self.curr_state = target_value
        elif hard_target:
            self.set_curr_state_raw(self.get_max_state(), state)
        elif pid_param is not None and getattr(pid_param, "valid", False):
            pid.set_target_temp(target_temp)
            output = pid.pid_output(
                temperature, self.get_curr_state(True) - self.get_min_state()
            )
            self.set_curr_state_raw(
                self._clamp_range(output + self.get_min_state()), state
            )
            if state == 0:
                pid.reset()
        elif self.pid_enable:
            self.pid_ctrl.set_target_temp(target_temp)
            output = self.pid_ctrl.pid_output(temperature)
            self.set_curr_state_raw(
                self._clamp_range(output + self.get_min_state()), state
            )
        else:
            self._exponential_controller(
                set_point,
                temperature,
                state,
                trip_min_state or 0,
                trip_max_state or 0,
            )

        if self.curr_state == self.get_max_state():
            self.control_end()

    def reset_to_min(self, zone_id: int, trip_id: int) -> None:
        """Force the device back to its minimum state for a zone trip."""
        self.trend_increase = False
        self.set_state(
            0, 0, 0, 0, 0, zone_id, trip_id, 1, self.min_state, None, None, True, 0, 0, 0
        )