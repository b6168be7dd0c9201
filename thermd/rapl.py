"""Cooling devices that limit power through the powercap RAPL interface."""

from __future__ import annotations

import contextlib
import errno
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from thermd.cdev import CoolingDevice, CoolingDeviceError, SysfsNode

log = logging.getLogger(__name__)

RAPL_PACKAGE_PATH = "/sys/devices/virtual/powercap/intel-rapl/intel-rapl:0/"
TCC_DEVICE_PATH = "/sys/bus/pci/devices/0000:00:04.0/"
POWER_LIMITS_DIRS = (
    "/sys/bus/pci/devices/0000:00:04.0/power_limits/",
    "/sys/bus/pci/devices/0000:00:0b.0/power_limits/",
    "/sys/bus/platform/devices/INT3401:00/power_limits/",
)


@dataclass
class PpccLimits:
    """Participant power control limits in mW and ms, as a thermal table gives them."""

    power_limit_max: int = 0
    power_limit_min: int = 0
    time_wind_min: int = 0
    time_wind_max: int = 0
    step_size: int = 0
    limit_1_valid: int = 0
    power_limit_1_max: int = 0
    power_limit_1_min: int = 0
    time_wind_1_min: int = 0
    time_wind_1_max: int = 0
    step_1_size: int = 0


class RaplDevice(CoolingDevice):
    """Controls the long-term (PL1) power limit of a RAPL domain.

    States are power limits in microwatts: ``min_state`` is the highest
    (least constraining) limit and ``max_state`` the lowest.  The optional
    ``power_meter`` must offer ``start_measure_power()`` and ``get_power()``.
    """

    RAPL_NO_TIME_WINDOWS = 6
    DEF_RAPL_TIME_WINDOW = 1000000  # microseconds
    RAPL_MIN_DEFAULT_STEP = 500000  # 0.5 W
    RAPL_MAX_SANE_PHY_MAX = 100000000  # uW
    RAPL_LOW_LIMIT_PERCENT = 50
    RAPL_POWER_DEC_PERCENT = 5

    def __init__(
        self,
        index: int,
        package_id: int = 0,
        control_path: str = RAPL_PACKAGE_PATH,
        power_meter: Optional[Any] = None,
        ppcc: Optional[PpccLimits] = None,
        idsp_matched: bool = False,
        power_limits_dirs: Sequence[str] = POWER_LIMITS_DIRS,
    ) -> None:
        super().__init__(index, control_path)
        self.package_id = package_id
        self.power_meter = power_meter
        self.ppcc = ppcc
        self.idsp_matched = idsp_matched
        self.power_limits_dirs = tuple(power_limits_dirs)
        self.tcc_path = TCC_DEVICE_PATH
        self.device_name = "TCPU.D0"
        self.phy_max = 0
        self.constraint_index = 0
        self.pl2_index = -1
        self.dynamic_phy_max_enable = False
        self.pl0_max_pwr = 0
        self.pl0_min_pwr = 0
        self.pl0_min_window = 0
        self.pl0_max_window = 0
        self.pl0_step_pwr = 0
        self.pl1_max_pwr = 0
        self.pl1_min_pwr = 0
        self.pl1_min_window = 0
        self.pl1_max_window = 0
        self.pl1_step_pwr = 0
        self.pl1_valid = 0
        self.bios_locked = False
        self.constrained = False
        self.power_on_constraint_0_pwr = 0
        self.power_on_constraint_0_time_window: Optional[int] = 0
        self.power_on_enable_status: Optional[int] = 0

    # ---- attribute helpers -------------------------------------------------

    def _constraint(self, index: int, suffix: str) -> str:
        return f"constraint_{index}_{suffix}"

    @staticmethod
    def _read_int_from(node: SysfsNode, name: str) -> Optional[int]:
        try:
            return node.read_int(name)
        except (OSError, ValueError, IndexError):
            return None

    def _read_int(self, name: str) -> Optional[int]:
        return self._read_int_from(self.sysfs, name)

    def _write(self, name: str, value: int) -> bool:
        try:
            return self.sysfs.write(name, value) > 0
        except OSError:
            return False

    def _start_measure(self) -> None:
        if self.power_meter is not None:
            self.power_meter.start_measure_power()

    def _check_sysfs(self) -> None:
        found_long_term = False
        for i in range(self.RAPL_NO_TIME_WINDOWS):
            name = self._constraint(i, "name")
            if not self.sysfs.exists(name):
                continue
            try:
                kind = self.sysfs.read(name)
            except OSError:
                continue
            if kind == "long_term":
                self.constraint_index = i
                found_long_term = True
            if kind == "short_term":
                self.pl2_index = i
        if not found_long_term:
            log.info("powercap RAPL no long term time window")
            raise CoolingDeviceError("powercap RAPL has no long term constraint")
        for suffix in ("power_limit_uw", "time_window_us"):
            name = self._constraint(self.constraint_index, suffix)
            if not self.sysfs.exists(name):
                raise CoolingDeviceError(f"powercap RAPL has no {name}")

    def _read_pl1(self) -> Optional[int]:
        return self._read_int(self._constraint(self.constraint_index, "power_limit_uw"))

    def _read_pl1_max(self) -> Optional[int]:
        return self._read_int(self._constraint(self.constraint_index, "max_power_uw"))

    def _read_pl2(self) -> Optional[int]:
        return self._read_int(self._constraint(self.pl2_index, "power_limit_uw"))

    def _read_time_window(self) -> Optional[int]:
        return self._read_int(self._constraint(self.constraint_index, "time_window_us"))

    def _read_enable_status(self) -> Optional[int]:
        return self._read_int("enabled")

    def _update_pl1(self, pl1: int) -> None:
        """Write PL1; raises OSError when the write fails."""
        self.sysfs.write(self._constraint(self.constraint_index, "power_limit_uw"), pl1)

    def _update_pl2(self, pl2: int) -> bool:
        if self.pl2_index == -1:
            log.warning("Asked to set PL2 but couldn't find a PL2 device")
            return False
        ok = self._write(self._constraint(self.pl2_index, "power_limit_uw"), pl2)
        if not ok:
            log.info("pkg_power: powercap RAPL failed to write PL2 %d", pl2)
        return ok

    def _update_time_window(self, window: Optional[int]) -> bool:
        if window is None:
            return False
        ok = self._write(self._constraint(self.constraint_index, "time_window_us"), window)
        if not ok:
            log.info("pkg_power: powercap RAPL time window failed to write %d", window)
        return ok

    def _update_pl2_time_window(self, window: int) -> bool:
        ok = self._write(self._constraint(self.pl2_index, "time_window_us"), window)
        if not ok:
            log.info("pkg_power: powercap RAPL time window failed to write %d", window)
        return ok

    def update_enable_status(self, enable: int) -> None:
        """Write the domain's ``enabled`` flag; raises CoolingDeviceError on failure."""
        if not self._write("enabled", int(enable)):
            log.info("pkg_power: powercap RAPL enable failed to write %d", enable)
            raise CoolingDeviceError("cannot write RAPL enabled flag")

    def _try_enable(self, enable: int) -> None:
        with contextlib.suppress(CoolingDeviceError):
            self.update_enable_status(enable)

    # ---- state control -----------------------------------------------------

    def set_curr_state(self, state: int, arg: int) -> None:
        if self.bios_locked:
            self.curr_state = self.min_state if state <= self.inc_dec_val else self.max_state
            return

        # Never go below the lowest allowed power limit.
        new_state = max(state, self.max_state)

        if new_state >= self.min_state:
            # Back at or above the top: restore power-on limits.
            new_state = self.power_on_constraint_0_pwr or self.min_state
            self.curr_state = self.min_state
            if self.power_on_enable_status == 0:
                self._try_enable(0)
            self._update_time_window(self.power_on_constraint_0_time_window)
            self.constrained = False
        elif arg and not self.constrained:
            self._update_time_window(self.pl0_min_window or self.DEF_RAPL_TIME_WINDOW)
            if self.power_on_enable_status == 0:
                self._try_enable(1)
            self.constrained = True

        log.info("set cdev state index %d state %d wr:%d", self.index, state, new_state)
        try:
            self._update_pl1(new_state)
        except OSError as exc:
            log.info("pkg_power: powercap RAPL failed to write %d", new_state)
            if exc.errno == errno.ENODATA:
                log.info("powercap RAPL is BIOS locked, cannot update")
                self.bios_locked = True
        self.curr_state = new_state

    def set_curr_state_raw(self, state: int, arg: int) -> None:
        self.set_curr_state(state, arg)

    def get_curr_state(self, read_again: bool = False) -> int:
        """Last set limit, or the measured power when asked to read again."""
        if read_again and self.dynamic_phy_max_enable and self.power_meter is not None:
            self.power_meter.start_measure_power()
            return self.power_meter.get_power()
        return self.curr_state

    def get_max_state(self) -> int:
        return self.max_state

    def get_phy_max_state(self) -> int:
        return self.phy_max

    def set_min_state_param(self, value: int) -> None:
        self.min_state = self.curr_state = value

    def set_tcc(self, tcc: int) -> None:
        node = SysfsNode(self.tcc_path)
        if not node.exists("tcc_offset_degree_celsius"):
            return
        try:
            node.write("tcc_offset_degree_celsius", tcc)
        except OSError:
            log.warning("cannot write tcc offset")

    def set_adaptive_target(self, target: Any) -> None:
        """Apply an adaptive-table target; ``argument`` must be an integer string."""
        argument = int(str(target.argument).strip())
        code = target.code
        if code == "PL1MAX":
            self.min_state = self.pl0_max_pwr = argument * 1000
            pl1 = self._read_pl1()
            if pl1 is not None and self.curr_state > pl1:
                self.set_curr_state(pl1, 1)
            if self.curr_state > self.min_state:
                self.set_curr_state(self.min_state, 1)
        elif code == "PL1MIN":
            self.max_state = self.pl0_min_pwr = argument * 1000
            if self.curr_state < self.max_state:
                self.set_curr_state(self.max_state, 1)
        elif code == "PL1STEP":
            self.pl0_step_pwr = argument * 1000
            self.inc_val = -self.pl0_step_pwr * 2
            self.dec_val = -self.pl0_step_pwr
        elif code == "PL1TimeWindow":
            self.pl0_min_window = argument * 1000
        elif code == "PL1PowerLimit":
            self.set_curr_state(argument * 1000, 1)
        elif code == "PL2PowerLimit":
            self._update_pl2(argument * 1000)
        elif code == "TccOffset":
            self.set_tcc(argument)

    # ---- discovery ---------------------------------------------------------

    def _read_ppcc_power_limits(self) -> bool:
        if self.ppcc is not None:
            ppcc = self.ppcc
            log.info("Reading PPCC from the thermal table")
            self.pl0_max_pwr = ppcc.power_limit_max * 1000
            self.pl0_min_pwr = ppcc.power_limit_min * 1000
            self.pl0_min_window = ppcc.time_wind_min * 1000
            self.pl0_max_window = ppcc.time_wind_max * 1000
            self.pl0_step_pwr = ppcc.step_size * 1000
            self.pl1_valid = ppcc.limit_1_valid
            if self.pl1_valid:
                self.pl1_max_pwr = ppcc.power_limit_1_max * 1000
                self.pl1_min_pwr = ppcc.power_limit_1_min * 1000
                self.pl1_min_window = ppcc.time_wind_1_min * 1000
                self.pl1_max_window = ppcc.time_wind_1_max * 1000
                self.pl1_step_pwr = ppcc.step_1_size * 1000
            if self.pl0_max_pwr <= self.pl0_min_pwr:
                log.info("Invalid ppcc limits max:%d min:%d", self.pl0_max_pwr, self.pl0_min_pwr)
                return False
            if self.idsp_matched:
                log.info("IDSP policy matched, so trusting PPCC limits")
                return True
            def_max_power = self._read_pl1_max()
            if def_max_power is not None and def_max_power > self.pl0_max_pwr:
                log.warning("ppcc limits is less than def PL1 max power :%d", def_max_power)
            return True

        # Only the package domain has platform power limits.
        try:
            domain_name = self.sysfs.read("name")
        except OSError:
            domain_name = ""
        if domain_name != "package-0":
            return False

        directory = next((d for d in self.power_limits_dirs if os.path.isdir(d)), None)
        if directory is None:
            return False
        node = SysfsNode(directory)
        fields = (
            ("power_limit_0_max_uw", "pl0_max_pwr"),
            ("power_limit_0_min_uw", "pl0_min_pwr"),
            ("power_limit_0_tmin_us", "pl0_min_window"),
            ("power_limit_0_tmax_us", "pl0_max_window"),
            ("power_limit_0_step_uw", "pl0_step_pwr"),
        )
        for attr, field in fields:
            if node.exists(attr):
                value = self._read_int_from(node, attr)
                if value is None:
                    return False
                setattr(self, field, value)

        if not all(
            (self.pl0_max_pwr, self.pl0_min_pwr, self.pl0_min_window,
             self.pl0_step_pwr, self.pl0_max_window)
        ):
            return False
        if self.pl0_max_pwr <= self.pl0_min_pwr:
            log.info("Invalid ppcc limits max:%d min:%d", self.pl0_max_pwr, self.pl0_min_pwr)
            return False
        def_max_power = self._read_pl1_max()
        if def_max_power is not None and def_max_power > self.pl0_max_pwr:
            log.info("ppcc limits is less than def PL1 max power :%d, so ignore", def_max_power)
            return False
        return True

    def update(self) -> int:
        """Discover the domain's constraints and set up the state range."""
        self._check_sysfs()

        if self._read_ppcc_power_limits():
            self.phy_max = self.pl0_max_pwr
            # Aggressive when constraining, lazy when releasing.
            self.inc_val = -self.pl0_step_pwr * 2
            self.dec_val = -self.pl0_step_pwr
            self.min_state = self.pl0_max_pwr
            self.max_state = self.pl0_min_pwr
            with contextlib.suppress(OSError):
                self._update_pl1(self.pl0_max_pwr)
            if self.pl0_max_window > self.pl0_min_window:
                self._update_time_window(self.pl0_max_window)
            self._start_measure()
            self.dynamic_phy_max_enable = True
            if self._read_pl2() == 0:
                log.info("PL2 power limit is 0, will conditionally enable")
                if self.pl1_max_pwr:
                    self._update_pl2(self.pl1_max_pwr)
                    self._update_pl2_time_window(self.pl1_max_window)
                    self._try_enable(1)
            else:
                self._try_enable(1)
        else:
            phy_max = self._read_pl1_max()
            if phy_max is None or phy_max < 0 or phy_max > self.RAPL_MAX_SANE_PHY_MAX:
                log.info("powercap RAPL invalid max power limit range, measuring dynamically")
                self.power_on_constraint_0_pwr = self._read_pl1() or 0
                self.power_on_constraint_0_time_window = self._read_time_window()
                self.phy_max = self.max_state = 0
                self.curr_state = self.min_state = self.RAPL_MAX_SANE_PHY_MAX
                self._start_measure()
                self.inc_dec_val = -self.RAPL_MIN_DEFAULT_STEP
                self.dynamic_phy_max_enable = True
                return 0

            constraint_phy_max = self._read_pl1()
            if constraint_phy_max is not None and constraint_phy_max > phy_max:
                log.info(
                    "Default constraint power limit is more than max power %d:%d",
                    constraint_phy_max,
                    phy_max,
                )
                phy_max = constraint_phy_max
            self.phy_max = phy_max
            log.info("powercap RAPL max power limit range %d", phy_max)
            self.inc_dec_val = int(-phy_max * float(self.RAPL_POWER_DEC_PERCENT) / 100)
            self.min_state = phy_max
            self.max_state = int(
                self.min_state - float(self.min_state) * self.RAPL_LOW_LIMIT_PERCENT / 100
            )

        self.power_on_constraint_0_time_window = self._read_time_window()
        self.power_on_enable_status = self._read_enable_status()
        log.debug("RAPL max limit %d increment: %d", self.max_state, self.inc_dec_val)
        self.set_pid_param(-1000, 100, 10)
        self.curr_state = self.min_state
        return 0


class RaplDramDevice(RaplDevice):
    """RAPL control of the DRAM sub-domain of a package."""

    def __init__(
        self,
        index: int,
        package_id: int = 0,
        powercap_root: str = RAPL_PACKAGE_PATH,
        power_meter: Optional[Any] = None,
        ppcc: Optional[PpccLimits] = None,
    ) -> None:
        super().__init__(index, package_id, powercap_root, power_meter, ppcc)
        self.powercap_root = powercap_root
        self.device_name = "TMEM.D0"

    def update(self) -> int:
        """Locate the sub-domain named ``dram`` and set it up."""
        try:
            entries = sorted(os.listdir(self.powercap_root))
        except OSError as exc:
            raise CoolingDeviceError(f"cannot list {self.powercap_root}") from exc
        for entry in entries:
            node = SysfsNode(os.path.join(self.powercap_root, entry, "name"))
            if not node.exists():
                continue
            try:
                name = node.read()
            except OSError:
                continue
            log.info("name = %s", name)
            if name == "dram":
                self.sysfs.update_path(os.path.join(self.powercap_root, entry) + "/")
                return super().update()
        raise CoolingDeviceError("no RAPL dram domain found")