from importlib import resources

import pytest

from mfc_planner.calibration import CalibrationConstants, load_calibration, fit_humidity_calibration


def test_shipped_presets_load():
    presets = load_calibration()
    assert "default" in presets
    cal = presets["default"]
    assert cal == CalibrationConstants(6.0785, -32.458, 1.0, "default")


def test_load_custom_file(tmp_path):
    path = tmp_path / "cal.yaml"
    path.write_text(
        "presets:\n"
        "  rig_b:\n"
        "    humidity_slope: 5.5\n"
        "    humidity_intercept: -20\n"
        "    ch2o_calibration_factor: 1.1\n",
        encoding="utf-8",
    )
    presets = load_calibration(str(path))
    assert list(presets) == ["rig_b"]
    assert presets["rig_b"].humidity_intercept == -20.0
    assert presets["rig_b"].name == "rig_b"


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_calibration(str(tmp_path / "nope.yaml"))


def test_incomplete_preset_raises(tmp_path):
    path = tmp_path / "cal.yaml"
    path.write_text("presets:\n  broken:\n    humidity_slope: 5.5\n", encoding="utf-8")
    with pytest.raises(ValueError, match="broken"):
        load_calibration(str(path))


def test_fit_recovers_line():
    humidity = [10.0, 20.0, 35.0, 50.0, 80.0]
    flow = [6.0785 * h - 32.458 for h in humidity]
    fit = fit_humidity_calibration(humidity, flow)
    assert fit["slope"] == pytest.approx(6.0785)
    assert fit["intercept"] == pytest.approx(-32.458)
    assert fit["r2"] == pytest.approx(1.0)
    assert fit["n"] == 5


def test_fit_degenerate_inputs():
    assert fit_humidity_calibration([50.0], [270.0]) is None
    assert fit_humidity_calibration([50.0, 50.0], [270.0, 271.0]) is None
    with pytest.raises(ValueError):
        fit_humidity_calibration([1.0, 2.0], [1.0])


def test_presets_ship_with_package():
    yaml_file = resources.files("mfc_planner").joinpath("calibration.yaml")
    assert yaml_file.is_file()
    presets = load_calibration(str(yaml_file))
    assert presets == load_calibration()
