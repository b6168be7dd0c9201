import pytest

from thermd.backlight import BacklightDevice
from thermd.cdev import CoolingDeviceError


@pytest.fixture
def panel(tmp_path):
    d = tmp_path / "panel"
    d.mkdir()
    (d / "max_brightness").write_text("1000\n")
    (d / "brightness").write_text("800\n")
    return d


def test_update_reads_range(panel):
    dev = BacklightDevice(0, [str(panel)])
    assert dev.max_state == 1000
    assert dev.inc_dec_val == 100
    assert dev.min_back_light == 250


def test_falls_back_to_next_candidate(tmp_path, panel):
    dev = BacklightDevice(0, [str(tmp_path / "missing"), str(panel)])
    assert dev.sysfs.base_path == str(panel)
    assert dev.max_state == 1000


def test_no_usable_device_raises(tmp_path):
    dev = BacklightDevice(0, [str(tmp_path / "missing")])
    assert dev.max_state == 0
    with pytest.raises(CoolingDeviceError):
        dev.update()


def test_zero_max_brightness_raises(tmp_path):
    d = tmp_path / "dark"
    d.mkdir()
    (d / "max_brightness").write_text("0\n")
    dev = BacklightDevice(0, [str(d)])
    with pytest.raises(CoolingDeviceError):
        dev.update()


def test_map_target_state(panel):
    dev = BacklightDevice(0, [str(panel)])
    assert dev.map_target_state(0, 300) == 300
    assert dev.map_target_state(1, 300) + 300 == dev.max_state
    assert dev.map_target_state(1, dev.max_state + 1) == 0


def test_throttle_and_restore(panel):
    dev = BacklightDevice(0, [str(panel)])
    dev.set_curr_state(dev.inc_dec_val, 1)
    assert int((panel / "brightness").read_text()) == 800 - dev.inc_dec_val
    assert dev.curr_state == dev.inc_dec_val
    assert dev.ref_backlight_state == 800

    dev.set_curr_state(0, 0)
    assert int((panel / "brightness").read_text()) == 800
    assert dev.curr_state == 0
    assert dev.ref_backlight_state == 0


def test_brightness_never_below_minimum(panel):
    dev = BacklightDevice(0, [str(panel)])
    dev.set_curr_state(dev.inc_dec_val, 1)
    dev.set_curr_state(dev.max_state, 1)
    assert int((panel / "brightness").read_text()) == dev.min_back_light
    assert dev.curr_state == dev.max_state