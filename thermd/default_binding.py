"""Default CPU cooling for thermal zones that have no cooling device bound.

A zone with a passive trip but no cooling device gets a chain of three
devices on that trip. The first is an entry gate that opens only while the
CPU package draws significant power. Next come the RAPL and powerclamp
devices. Last is an exit gate. When the exit gate is reached, the CPU
devices failed to cool the zone and a failure is recorded for it. After
more than three failures the zone is never bound this way again.
"""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from thermd.cdev import CoolingDevice

log = logging.getLogger(__name__)

TDRUNDIR = "/var/run/thermald"
DEFAULT_STAT_FILE = os.path.join(TDRUNDIR, "cpu_def_zone_bind.out")

TRIP_PASSIVE = "passive"
ZONE_NAME_MAX = 50
MAX_FAILURES = 3
FIRST_GATE_ID = 0x1000

# A 51-byte NUL padded name, one byte of alignment, then a 32-bit count.
_RECORD = struct.Struct("<51sxi")
RECORD_SIZE = _RECORD.size

BLACKLIST_ZONES = (
    "cpu",
    "acpitz",
    "Surface",
    "pkg-temp-0",
    "x86_pkg_temp",
    "soc_dts0",
    "soc_dts1",
    "B0D4",
    "B0DB",
)


@dataclass
class ZoneStat:
    """How often default CPU binding failed to cool a zone."""

    zone_name: str
    failures: int = 0


class ZoneStatStore:
    """Fixed-size binary records of failure counts, one per zone."""

    def __init__(self, path: str = DEFAULT_STAT_FILE) -> None:
        self.path = path

    def _records(self) -> Iterable[tuple[int, ZoneStat]]:
        try:
            with open(self.path, "rb") as handle:
                data = handle.read()
        except OSError:
            return
        for offset in range(0, len(data) - RECORD_SIZE + 1, RECORD_SIZE):
            raw_name, failures = _RECORD.unpack_from(data, offset)
            name = raw_name.split(b"\0", 1)[0].decode("utf-8", "replace")
            yield offset, ZoneStat(name, failures)

    def read(self, zone_name: str) -> Optional[ZoneStat]:
        """Return the stored record for ``zone_name``, or None if there is none."""
        for _, stat in self._records():
            log.info("read_zone_stat name:%s f:%d", stat.zone_name, stat.failures)
            if stat.zone_name == zone_name:
                return stat
        return None

    def update(self, zone_name: str, failures: int) -> None:
        """Overwrite the zone's record, or append one if it is not stored yet."""
        offset = next(
            (off for off, stat in self._records() if stat.zone_name == zone_name),
            None,
        )
        name = zone_name.encode("utf-8")[:ZONE_NAME_MAX]
        record = _RECORD.pack(name, failures)
        try:
            mode = "r+b" if os.path.exists(self.path) else "w+b"
            with open(self.path, mode) as handle:
                if offset is None:
                    handle.seek(0, os.SEEK_END)
                else:
                    handle.seek(offset)
                handle.write(record)
        except OSError:
            log.info("Can't create %s", self.path)


@dataclass
class ZoneBinding:
    """The gates that bind one otherwise unbound zone to the CPU devices."""

    zone_name: str
    zone: Any
    gate_entry: Optional["GatingDevice"] = None
    gate_exit: Optional["GatingDevice"] = None


class GatingDevice(CoolingDevice):
    """Pseudo cooling device that opens or closes a default CPU binding."""

    MAX_STATE = 1

    def __init__(
        self,
        index: int,
        binder: "CpuDefaultBinding",
        binding: ZoneBinding,
        start: bool,
    ) -> None:
        super().__init__(index, "")
        self.binder = binder
        self.binding = binding
        self.start = start

    def set_curr_state(self, state: int, arg: int) -> None:
        if not self.start and state:
            zone = self.binding.zone
            if zone is None:
                return
            name = zone.zone_type
            log.info("CPU def binding exit for %s", name)
            zone.reset()
            stat = self.binder.stats.read(name)
            if stat is not None:
                stat.failures += 1
                self.binder.stats.update(name, stat.failures)
                if stat.failures > MAX_FAILURES:
                    log.info("CPU def binding is set to inactive for %s", name)
                    zone.set_inactive()
            else:
                self.binder.stats.update(name, 0)
        elif self.start and state:
            if self.binder.check_cpu_load():
                log.info("Turn on the gate")
                self.curr_state = self.MAX_STATE
            else:
                log.info("Not CPU specific increase")
                self.curr_state = 0
        else:
            self.curr_state = 0
        log.info(
            "gating set_curr_state start:%d state:%d curr_state:%d",
            self.start,
            state,
            self.curr_state,
        )

    def get_max_state(self) -> int:
        return self.MAX_STATE

    def update(self) -> int:
        return 0

    def get_curr_state(self, read_again: bool = False) -> int:
        return self.curr_state


class CpuDefaultBinding:
    """Binds CPU cooling devices to zones that have none.

    ``power_reader()`` returns ``(power, max_power, min_power)`` for the CPU
    package in microwatts. ``max_power_reader()`` starts a measurement and
    returns the package's maximum power. Zones must provide ``zone_type``,
    ``reset()``, ``set_active()``, ``set_inactive()``, ``is_cdev_bound()``
    and ``bind_cooling_device(trip_type, trip_temp, cdev, influence,
    sampling_period=0)``. The last of these returns True when the binding
    succeeded.
    """

    DEF_GATING_CDEV_SAMPLING_PERIOD = 30
    DEF_STARTING_POWER_DIFFERENTIAL = 4000000

    def __init__(
        self,
        stats: Optional[ZoneStatStore] = None,
        power_reader: Optional[Callable[[], tuple[int, int, int]]] = None,
        max_power_reader: Optional[Callable[[], int]] = None,
    ) -> None:
        self.stats = stats if stats is not None else ZoneStatStore()
        self.power_reader = power_reader
        self.max_power_reader = max_power_reader
        self.cpu_package_max_power = 0
        self.bindings: list[ZoneBinding] = []

    def check_cpu_load(self) -> bool:
        """Whether the package draws more than 60% of its maximum power."""
        if self.power_reader is None:
            return False
        power, max_power, min_power = self.power_reader()
        if self.cpu_package_max_power:
            max_power = self.cpu_package_max_power
        log.info("gating power :%d %d %d", power, min_power, max_power)
        # Unsigned 32-bit arithmetic, as the power meter reports it.
        if (max_power - min_power) % 2**32 < self.DEF_STARTING_POWER_DIFFERENTIAL:
            return False
        if power > ((max_power * 60) % 2**32) // 100:
            log.info("Significant cpu load")
            return True
        return False

    def blacklist_match(self, name: str) -> bool:
        """Whether default binding must not be tried for the zone ``name``."""
        if name in BLACKLIST_ZONES:
            return True
        stat = self.stats.read(name)
        if stat is not None and stat.failures > MAX_FAILURES:
            log.info("zone %s in blacklist", name)
            return True
        return False

    def _bind_gate(self, zone: Any, gate: GatingDevice) -> bool:
        return bool(
            zone.bind_cooling_device(
                TRIP_PASSIVE, 0, gate, 0, self.DEF_GATING_CDEV_SAMPLING_PERIOD
            )
        )

    def do_default_binding(
        self,
        zones: Iterable[Any],
        rapl_device: Optional[CoolingDevice] = None,
        powerclamp_device: Optional[CoolingDevice] = None,
    ) -> list[ZoneBinding]:
        """Bind every eligible unbound zone; return the bindings made now."""
        if rapl_device is None and powerclamp_device is None:
            log.info("do_default_binding: No relevant cpu cdevs")
            return []

        gate_id = FIRST_GATE_ID
        created: list[ZoneBinding] = []
        for zone in zones:
            if zone is None or self.blacklist_match(zone.zone_type):
                continue
            if zone.is_cdev_bound():
                continue

            binding = ZoneBinding(zone.zone_type, zone)
            binding.gate_entry = GatingDevice(gate_id, self, binding, True)
            binding.gate_entry.cdev_type = f"{binding.zone_name}_cpu_gate_entry"
            binding.gate_exit = GatingDevice(gate_id + 1, self, binding, False)
            binding.gate_exit.cdev_type = f"{binding.zone_name}_cpu_gate_exit"
            gate_id += 2

            log.info("unbound zone %s", binding.zone_name)
            if not self._bind_gate(zone, binding.gate_entry):
                log.info("unbound zone: Bind attempt failed")
                continue
            for device in (rapl_device, powerclamp_device):
                if device is not None:
                    zone.bind_cooling_device(TRIP_PASSIVE, 0, device, 20)
            if not self._bind_gate(zone, binding.gate_exit):
                log.info("unbound zone: Bind attempt failed")
                continue

            zone.set_active()
            created.append(binding)

        self.bindings.extend(created)
        if created and self.max_power_reader is not None:
            self.cpu_package_max_power = self.max_power_reader()
            log.info(
                "do_default_binding max power CPU package :%d",
                self.cpu_package_max_power,
            )
        return created