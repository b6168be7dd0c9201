from types import SimpleNamespace

import pytest

from thermd.cdev import CoolingDevice, CoolingDeviceError, SysfsNode, ZoneTripLimit


class RecordingDevice(CoolingDevice):
    def __init__(self, min_state=0, max_state=10, pid_controller=None):
        super().__init__(1, "", pid_controller)
        self.min_state = min_state
        self.max_state = max_state
        self.curr_state = min_state
        self.calls = []

    def set_curr_state(self, state, arg):
        self.calls.append((state, arg))
        self.curr_state = state


class FakePid:
    def __init__(self, output):
        self.output = output
        self.target = None
        self.resets = 0
        self.kp = self.ki = self.kd = 0

    def set_target_temp(self, temp):
        self.target = temp

    def pid_output(self, temperature, state=0):
        return self.output

    def reset(self):
        self.resets += 1


def on(zone=0, trip=0, tsv=0, value=0, force=True, hard=0, pid_param=None,
       pid=None, mmv=0, tmin=0, tmax=0):
    """Arguments of set_state for an activation request."""
    return (50, 60, 70, hard, 1, zone, trip, tsv, value, pid_param, pid,
            force, mmv, tmin, tmax)


def off(zone=0, trip=0, tsv=0, value=0, force=False, pid_param=None, pid=None):
    """Arguments of set_state for a deactivation request."""
    return (50, 60, 40, 0, 0, zone, trip, tsv, value, pid_param, pid,
            force, 0, 0, 0)


def test_sysfs_round_trip(tmp_path):
    node = SysfsNode(str(tmp_path))
    assert not node.exists("cur_state")
    node.write("cur_state", 7)
    assert node.exists("cur_state")
    assert node.read("cur_state") == "7"
    assert node.read_int("/cur_state") == 7


def test_sysfs_missing_read_raises(tmp_path):
    node = SysfsNode(str(tmp_path))
    with pytest.raises(OSError):
        node.read("absent")


def test_sysfs_create_and_update_path(tmp_path):
    target = tmp_path / "knob"
    node = SysfsNode("")
    assert not node.exists()
    node.update_path(str(target))
    node.create()
    assert node.exists()
    node.write("", "12")
    assert node.read_int() == 12


def test_sysfs_absolute_name_with_empty_base(tmp_path):
    path = tmp_path / "value"
    path.write_text("3\n")
    assert SysfsNode().read(str(path)) == "3"


def test_state_relations_ascending():
    dev = RecordingDevice(0, 10)
    assert CoolingDevice.in_min_state(dev)
    assert not CoolingDevice.in_max_state(dev)
    assert CoolingDevice.cmp_current_state(dev, 0) == 0
    assert CoolingDevice.cmp_current_state(dev, 5) == 1
    dev.curr_state = 10
    assert CoolingDevice.in_max_state(dev)
    assert CoolingDevice.cmp_current_state(dev, 5) == -1


def test_state_relations_descending():
    dev = RecordingDevice(10, 0)
    assert CoolingDevice.in_min_state(dev)
    assert CoolingDevice.cmp_current_state(dev, 5) == 1
    assert CoolingDevice.cmp_current_state(dev, 12) == -1


def test_deactivate_at_min_does_nothing():
    dev = RecordingDevice()
    CoolingDevice.set_state(dev, *off())
    assert dev.calls == []


def test_debounce_ignores_repeat_activation():
    dev = RecordingDevice()
    dev.clock = lambda: 1000
    CoolingDevice.set_state(dev, *on(force=False))
    CoolingDevice.set_state(dev, *on(force=False))
    assert len(dev.calls) == 1


def test_deactivation_steps_down():
    dev = RecordingDevice(0, 10)
    for _ in range(6):
        CoolingDevice.set_state(dev, *on())
    CoolingDevice.set_state(dev, *off())
    assert dev.curr_state == 9
    assert dev.zone_trip_limits == []


def test_auto_down_adjust_forces_min():
    dev = RecordingDevice(0, 10)
    dev.auto_down_adjust = True
    for _ in range(3):
        CoolingDevice.set_state(dev, *on())
    CoolingDevice.set_state(dev, *off())
    assert dev.curr_state == 0


def test_target_value_then_deactivate_to_min():
    dev = RecordingDevice(0, 10)
    CoolingDevice.set_state(dev, *on(tsv=1, value=5))
    assert dev.curr_state == 5
    CoolingDevice.set_state(dev, *off(tsv=1, value=5))
    assert dev.curr_state == 0
    assert dev.zone_trip_limits == []


def test_two_trips_with_targets():
    dev = RecordingDevice(0, 10)
    CoolingDevice.set_state(dev, *on(zone=1, trip=0, tsv=1, value=3))
    CoolingDevice.set_state(dev, *on(zone=2, trip=0, tsv=1, value=7))
    assert dev.curr_state == 7
    assert [lim.target_value for lim in dev.zone_trip_limits] == [3, 7]
    CoolingDevice.set_state(dev, *off(zone=1, trip=0))
    assert dev.curr_state == 7
    assert len(dev.zone_trip_limits) == 2
    CoolingDevice.set_state(dev, *off(zone=2, trip=0))
    assert dev.curr_state == 3
    assert dev.zone_trip_limits == [ZoneTripLimit(1, 0, 1, 3, 0, 0, 0)]


def test_less_constraining_target_ignored():
    dev = RecordingDevice(0, 10)
    CoolingDevice.set_state(dev, *on(zone=1, tsv=1, value=7))
    CoolingDevice.set_state(dev, *on(zone=2, tsv=1, value=3))
    assert dev.curr_state == 7


def test_hard_target_goes_to_max():
    dev = RecordingDevice(0, 10)
    CoolingDevice.set_state(dev, *on(hard=1))
    assert dev.curr_state == 10


def test_trip_pid_clamped_and_reset():
    dev = RecordingDevice(0, 10)
    pid = FakePid(100)
    param = SimpleNamespace(valid=True)
    CoolingDevice.set_state(dev, *on(pid_param=param, pid=pid))
    assert dev.curr_state == 10
    assert pid.target == 60
    pid.output = -100
    CoolingDevice.set_state(dev, *off(pid_param=param, pid=pid))
    assert dev.curr_state == 0
    assert pid.resets == 1


def test_device_pid_requires_controller():
    dev = RecordingDevice()
    with pytest.raises(CoolingDeviceError):
        CoolingDevice.enable_pid(dev)


def test_device_pid_output_applied():
    pid = FakePid(4)
    dev = RecordingDevice(0, 10, pid_controller=pid)
    CoolingDevice.set_pid_param(dev, 1.5, 0.5, 0.25)
    CoolingDevice.enable_pid(dev)
    CoolingDevice.set_state(dev, *on())
    assert dev.curr_state == 4
    assert (pid.kp, pid.ki, pid.kd) == (1.5, 0.5, 0.25)
    assert pid.resets == 1


def test_trip_max_state_caps_activation():
    dev = RecordingDevice(0, 10)
    for _ in range(6):
        CoolingDevice.set_state(dev, *on(mmv=1, tmin=0, tmax=4))
    assert dev.curr_state == 4
    assert dev.zone_trip_limits[0].min_state == 0


def test_descending_range_activation():
    dev = RecordingDevice(10, 0)
    dev.inc_dec_val = -1
    CoolingDevice.set_state(dev, *on())
    assert dev.curr_state == 9
    for _ in range(6):
        CoolingDevice.set_state(dev, *on())
    assert dev.curr_state == 0


def test_reset_to_min():
    dev = RecordingDevice(0, 10)
    for _ in range(3):
        CoolingDevice.set_state(dev, *on())
    CoolingDevice.reset_to_min(dev, 0, 0)
    assert dev.curr_state == 0
    assert dev.zone_trip_limits == []
    assert dev.trend_increase is False


def test_set_curr_state_raw_clamps():
    dev = RecordingDevice(0, 10)
    CoolingDevice.set_curr_state_raw(dev, 50, 1)
    CoolingDevice.set_curr_state_raw(dev, -5, 1)
    assert dev.calls == [(10, 1), (0, 1)]


def test_dump_contains_type():
    dev = RecordingDevice()
    dev.cdev_type = "Processor"
    assert "Processor" in CoolingDevice.dump(dev)
    dev.inc_val = 2
    assert "Inc ST:2" in CoolingDevice.dump(dev)


def test_base_defaults():
    dev = CoolingDevice(3, "")
    assert dev.map_target_state(1, 6) == 6
    dev.set_min_state_param(2)
    assert dev.get_min_state() == 2
    assert dev.get_phy_max_state() == dev.get_max_state()