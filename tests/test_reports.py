import pytest

from mfc_planner.calibration import CalibrationConstants
from mfc_planner.flow_calculators import InputParameters, TimingParameters, calc_flow_result
from mfc_planner import reports


def test_report_lines_valid_result():
    inputs = InputParameters()
    res = calc_flow_result(inputs, CalibrationConstants())
    lines = reports.protocol_report_lines(inputs, TimingParameters(), res)
    assert "MFC A (dry air): 319.71 SLPM" in lines
    assert "MFC B (humid air): 180.29 SLPM" in lines
    assert "Total experiment time: 3.5 h" in lines
    assert sum(1 for ln in lines if ln.startswith("MFC C @")) == 3
    assert "Warnings:" not in lines


def test_report_lines_invalid_result_lists_warnings():
    inputs = InputParameters(total_flow=0.0)
    res = calc_flow_result(inputs, CalibrationConstants())
    lines = reports.protocol_report_lines(inputs, TimingParameters(), res)
    assert "Result: INVALID" in lines
    assert "- Invalid input parameters" in lines


def test_pdf_bytes():
    pytest.importorskip("fpdf")
    data = reports.make_pdf_report("MFC protocol report", ["line one", "", "line two"])
    assert data[:4] == b"%PDF"
