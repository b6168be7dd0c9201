import pytest

from thermd.thermal_sysfs import ThermalSysfsDevice


def _make(tmp_path, index, cur, maximum, kind):
    d = tmp_path / f"cooling_device{index}"
    d.mkdir()
    (d / "cur_state").write_text(f"{cur}\n")
    (d / "max_state").write_text(f"{maximum}\n")
    (d / "type").write_text(f"{kind}\n")
    return d


def test_update_reads_attributes(tmp_path):
    _make(tmp_path, 3, 2, 10, "Fan")
    dev = ThermalSysfsDevice(3, str(tmp_path))
    assert dev.update() == 0
    assert dev.curr_state == 2
    assert dev.max_state == 10
    assert dev.cdev_type == "Fan"
    assert dev.read_back is True


def test_processor_disables_read_back(tmp_path):
    d = _make(tmp_path, 1, 2, 10, "Processor")
    dev = ThermalSysfsDevice(1, str(tmp_path))
    dev.update()
    assert dev.read_back is False
    (d / "cur_state").write_text("6\n")
    assert dev.get_curr_state() == 2


def test_read_back_follows_file(tmp_path):
    d = _make(tmp_path, 1, 2, 10, "Fan")
    dev = ThermalSysfsDevice(1, str(tmp_path))
    dev.update()
    (d / "cur_state").write_text("6\n")
    assert dev.get_curr_state() == 6


def test_missing_device_reads_zero(tmp_path):
    dev = ThermalSysfsDevice(9, str(tmp_path))
    dev.update()
    assert dev.curr_state == 0
    assert dev.max_state == 0
    dev.set_curr_state(4, 1)
    assert dev.curr_state == 0


def test_set_curr_state_writes(tmp_path):
    d = _make(tmp_path, 2, 0, 10, "Fan")
    dev = ThermalSysfsDevice(2, str(tmp_path))
    dev.update()
    dev.set_curr_state(4, 1)
    assert (d / "cur_state").read_text() == "4"
    assert dev.get_curr_state() == 4


@pytest.mark.parametrize("value", [3, 12])
def test_get_max_state_rereads(tmp_path, value):
    d = _make(tmp_path, 0, 0, 10, "Fan")
    dev = ThermalSysfsDevice(0, str(tmp_path))
    dev.update()
    (d / "max_state").write_text(f"{value}\n")
    assert dev.get_max_state() == value
    assert dev.max_state == value