"""Cooling device that steps CPUs down through their cpufreq frequencies."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from thermd.cdev import CoolingDevice, CoolingDeviceError

log = logging.getLogger(__name__)

CPU_SYSFS_PATH = "/sys/devices/system/cpu/"
MAX_CPU_INDEX = 63


def _parse_int(text: str) -> int:
    try:
        return int(text.split()[0])
    except (ValueError, IndexError):
        return 0


class CpufreqDevice(CoolingDevice):
    """Each state selects the next lower allowed scaling frequency."""

    def __init__(
        self,
        index: int,
        cpu_index: int = -1,
        base_path: str = CPU_SYSFS_PATH,
        cpu_filter: Optional[Callable[[int], bool]] = None,
    ) -> None:
        super().__init__(index, base_path)
        self.cpu_index = cpu_index
        self.cpu_filter = cpu_filter
        self.cpu_start_index = 0
        self.cpu_end_index = 0
        self.frequencies: list[int] = []
        self.pstate_active_freq_index = 0

    def _cpu_range(self) -> range:
        return range(self.cpu_start_index, self.cpu_end_index + 1)

    def _read_present(self) -> None:
        if not self.sysfs.exists("present"):
            raise CoolingDeviceError("cpu 'present' attribute is missing")
        try:
            text = self.sysfs.read("present")
        except OSError as exc:
            raise CoolingDeviceError("cannot read cpu 'present'") from exc
        first, sep, second = text.partition("-")
        if not sep or not first or not second:
            raise CoolingDeviceError(f"unexpected cpu range {text!r}")
        start, end = _parse_int(first), _parse_int(second)
        if end <= 0 or end < start or end > MAX_CPU_INDEX:
            raise CoolingDeviceError(f"invalid cpu range {text!r}")
        self.cpu_start_index, self.cpu_end_index = start, end

    def _collect_scaling_limit(self, attr: str, pick: Callable[[int, int], int]) -> int:
        result = 0
        for cpu in self._cpu_range():
            name = f"cpu{cpu}/cpufreq/{attr}"
            if not self.sysfs.exists(name):
                continue
            try:
                value = _parse_int(self.sysfs.read(name))
            except OSError:
                continue
            result = value if result == 0 else pick(result, value)
        return result

    def init(self) -> int:
        """Discover the CPU range and the allowed frequency list."""
        self._read_present()
        log.debug(
            "pstate CPU present %d-%d", self.cpu_start_index, self.cpu_end_index
        )

        # All cores are assumed to support the same frequencies as cpu0.
        avail = "cpu0/cpufreq/scaling_available_frequencies"
        if not self.sysfs.exists(avail):
            raise CoolingDeviceError("scaling_available_frequencies is missing")
        try:
            tokens = self.sysfs.read(avail).split()
        except OSError as exc:
            raise CoolingDeviceError("cannot read available frequencies") from exc

        # The available list includes frequencies outside the scaling limits.
        scaling_min = self._collect_scaling_limit("scaling_min_freq", min)
        scaling_max = self._collect_scaling_limit("scaling_max_freq", max)
        log.debug("cpu freq max %d min %d", scaling_max, scaling_min)

        self.frequencies = []
        for token in tokens:
            freq = _parse_int(token)
            if scaling_min <= freq <= scaling_max:
                self.add_frequency(freq)

        if self.frequencies:
            self.max_state = len(self.frequencies) - 1
        self.pstate_active_freq_index = 0
        return 0

    def add_frequency(self, freq: int) -> None:
        """Append a lower frequency, otherwise put it at the front."""
        if not self.frequencies or self.frequencies[0] > freq:
            self.frequencies.append(freq)
        else:
            self.frequencies.insert(0, freq)

    def _write_max_freq(self, cpu: int, freq: int) -> None:
        name = f"cpu{cpu}/cpufreq/scaling_max_freq"
        if not self.sysfs.exists(name):
            return
        try:
            self.sysfs.write(name, freq)
        except OSError:
            log.warning("cannot write %s", name)

    def set_curr_state(self, state: int, arg: int) -> None:
        if not 0 <= state < len(self.frequencies):
            return
        freq = self.frequencies[state]
        log.debug("cpu freq set_curr_state %d: %d", state, freq)
        if self.cpu_index == -1:
            for cpu in self._cpu_range():
                self._write_max_freq(cpu, freq)
            self.pstate_active_freq_index = state
            self.curr_state = state
        elif self.cpu_filter is None or self.cpu_filter(self.cpu_index):
            self._write_max_freq(self.cpu_index, freq)
            self.pstate_active_freq_index = state
            self.curr_state = state

    def get_max_state(self) -> int:
        return len(self.frequencies) - 1

    def update(self) -> int:
        return self.init()