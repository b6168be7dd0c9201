# thermd

`thermd` is a library of cooling devices for thermal management on
Linux. A cooling device turns a request such as "cool more" or "cool
less" into writes to sysfs or powercap files. It moves through its range
of states with exponential steps, with a PID controller, or to a target
state that a trip asks for.

## Devices

| Module                   | Class                          | Controls                                        |
|--------------------------|--------------------------------|-------------------------------------------------|
| `thermd.cdev`            | `CoolingDevice`                | Base control logic and the list of active zone trips |
| `thermd.thermal_sysfs`   | `ThermalSysfsDevice`           | `cooling_deviceN/cur_state` in thermal sysfs    |
| `thermd.gen_sysfs`       | `GenericSysfsDevice`           | A single sysfs file, with an optional write prefix |
| `thermd.backlight`       | `BacklightDevice`              | Display backlight `brightness`                  |
| `thermd.pstate`          | `IntelPStateDevice`            | `intel_pstate` `max_perf_pct` and `no_turbo`    |
| `thermd.cpufreq`         | `CpufreqDevice`                | cpufreq `scaling_max_freq` on each CPU          |
| `thermd.amdgpu`          | `AmdgpuDevice`                 | amdgpu hwmon `power1_cap`                       |
| `thermd.rapl`            | `RaplDevice`, `RaplDramDevice` | powercap RAPL long-term (PL1) power limit       |
| `thermd.default_binding` | `CpuDefaultBinding`, `GatingDevice` | CPU cooling for zones that have no cooling device bound |

`thermd.cdev` also provides `SysfsNode`, a small reader and writer for
attribute files below a base path, and `ZoneTripLimit`, one entry of a
device's list of zone trips that hold it active.

`thermd.rapl.PpccLimits` holds platform power limits (in mW and ms) that
can be handed to a `RaplDevice`. Without them, the device reads the
limits from a `power_limits` directory, or from powercap itself.

`thermd.default_binding.ZoneStatStore` keeps a failure count for each zone
in a file of fixed-size binary records. After more than three failures, a
zone is no longer bound by default.

`thermd.order_parser` reads a cooling device order file with
`parse_cdev_order(text)` or `load_cdev_order(path)`. If the root element
is `CoolingDeviceOrder`, they return the text of each of its child
elements in document order. For any other root they return an empty
list. Malformed XML raises `ValueError`.

## Example

```python
from thermd.thermal_sysfs import ThermalSysfsDevice

dev = ThermalSysfsDevice(0, "/sys/class/thermal/")
dev.update()

# Ask for one step more cooling on zone 0, trip 0.
dev.set_state(
    set_point=90000, target_temp=90000, temperature=92000,
    hard_target=0, state=1, zone_id=0, trip_id=0,
    target_state_valid=0, target_value=0, pid_param=None, pid=None,
    force=False, min_max_valid=0, trip_min_state=0, trip_max_state=0,
)

# Take the device back to its minimum state.
dev.reset_to_min(0, 0)
```

`update()` raises `CoolingDeviceError` when a device it needs is missing
or unusable. Examples are a backlight without `max_brightness`,
`intel_pstate` that is not in active mode, a bad cpufreq `present` range,
or a RAPL domain with no long-term constraint. Once a device is set up,
a failed write while changing state is logged and does not raise.

Every device takes the paths it uses as constructor arguments, so it can
be pointed at a temporary directory. Writing to the real `/sys` paths
needs root.

## What this package does not do

The package provides cooling devices and nothing more. It has no daemon
and no command-line program. It does not discover thermal zones, read
sensors or evaluate trip points. It has no configuration file reader
beyond the cooling device order file.

The caller supplies several collaborators:

- The PID controllers passed to `CoolingDevice` and `set_state`.
- The power meter used by `RaplDevice`.
- The power readers used by `CpuDefaultBinding`.
- The zone objects that `CpuDefaultBinding.do_default_binding` binds devices to.

## Tests

```
pip install -e .[test]
pytest
```