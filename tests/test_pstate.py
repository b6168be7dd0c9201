import pytest

from thermd.cdev import CoolingDeviceError
from thermd.pstate import IntelPStateDevice


@pytest.fixture
def driver(tmp_path):
    d = tmp_path / "intel_pstate"
    d.mkdir()
    (d / "status").write_text("active\n")
    (d / "max_perf_pct").write_text("100\n")
    (d / "no_turbo").write_text("0\n")
    return d


def test_update_sets_defaults(driver):
    dev = IntelPStateDevice(0, str(driver))
    assert dev.update() == 0
    assert dev.max_state == IntelPStateDevice.DEFAULT_MAX_STATE
    assert dev.get_max_state() == dev.max_state
    assert dev.unit_value * dev.max_state == pytest.approx(100.0)
    assert dev.curr_state == 0


def test_update_rejects_passive_mode(driver):
    (driver / "status").write_text("passive\n")
    dev = IntelPStateDevice(0, str(driver))
    with pytest.raises(CoolingDeviceError):
        dev.update()


def test_update_requires_max_perf_pct(tmp_path):
    dev = IntelPStateDevice(0, str(tmp_path))
    with pytest.raises(CoolingDeviceError):
        dev.update()


def test_state_zero_is_full_performance(driver):
    dev = IntelPStateDevice(0, str(driver))
    dev.update()
    dev.set_curr_state(0, 0)
    assert (driver / "max_perf_pct").read_text() == "100"
    assert dev.curr_state == 0
    assert dev.turbo_status is False


def test_deep_state_disables_turbo_and_recovers(driver):
    dev = IntelPStateDevice(0, str(driver))
    dev.update()
    dev.set_curr_state(dev.max_state, 1)
    pct = int((driver / "max_perf_pct").read_text())
    assert pct <= IntelPStateDevice.TURBO_DISABLE_PERCENT
    assert (driver / "no_turbo").read_text() == "1"
    assert dev.curr_state == dev.max_state

    dev.set_curr_state(0, 0)
    assert (driver / "no_turbo").read_text() == "0"
    assert dev.turbo_status is False


def test_written_percent_maps_back_to_state(driver):
    dev = IntelPStateDevice(0, str(driver))
    dev.update()
    for state in range(1, dev.max_state + 1):
        dev.set_curr_state(state, 1)
        pct = int((driver / "max_perf_pct").read_text())
        assert dev.map_target_state(1, pct) == state


def test_map_target_state_edges(driver):
    dev = IntelPStateDevice(0, str(driver))
    dev.update()
    assert dev.map_target_state(0, 55) == 55
    assert dev.map_target_state(1, 150) == 0


def test_missing_driver_falls_back(tmp_path):
    dev = IntelPStateDevice(0, str(tmp_path / "absent"))
    dev.max_state = IntelPStateDevice.DEFAULT_MAX_STATE
    dev.set_curr_state(3, 1)
    assert dev.curr_state == dev.max_state
    dev.set_curr_state(0, 0)
    assert dev.curr_state == 0