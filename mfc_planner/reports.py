"""
Optional PDF protocol report. Needs fpdf2 (`pip install fpdf2`).
"""

from __future__ import annotations
from typing import List
import logging

from .flow_calculators import (
    FlowResult,
    InputParameters,
    TimingParameters,
    calc_total_time,
)

logger = logging.getLogger(__name__)

try:
    from fpdf import FPDF

    HAS_FPDF = True
except ImportError:
    HAS_FPDF = False


def protocol_report_lines(
    inputs: InputParameters,
    timings: TimingParameters,
    result: FlowResult,
) -> List[str]:
    lines = [
        "Mode: MFC gas-dilution protocol",
        f"Target humidity: {inputs.target_humidity} % RH",
        f"Total flow: {inputs.total_flow} SLPM",
        f"CH2O source: {inputs.ch2o_source_conc} ppm",
        f"Calculation: {'Desmos (calibrated)' if inputs.use_alternate_math else 'Standard'}",
        f"Baseline / exposure / stabilization: "
        f"{timings.baseline_duration} / {timings.exposure_duration} / {timings.stabilization_time} min",
        f"Total experiment time: {calc_total_time(len(inputs.concentrations), timings)} h",
        "",
    ]

    if not result.is_valid:
        lines.append("Result: INVALID")
    else:
        lines.append(f"MFC A (dry air): {result.mfc_a:.2f} SLPM")
        lines.append(f"MFC B (humid air): {result.mfc_b:.2f} SLPM")
        for step in result.mfc_c:
            lines.append(f"MFC C @ {step.concentration} ppb: {step.flow:.6f} SLPM")

    if result.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"- {w}" for w in result.warnings)
    return lines


def make_pdf_report(title: str, lines: List[str]) -> bytes | None:
    """Small helper to build a PDF from lines. None if fpdf2 is missing."""
    if not HAS_FPDF:
        return None
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", size=12)
    pdf.cell(0, 10, title, new_x="LMARGIN", new_y="NEXT")
    pdf.ln(3)
    for ln in lines:
        pdf.multi_cell(0, 6, ln, new_x="LMARGIN", new_y="NEXT")
    data = bytes(pdf.output())
    logger.info(f"Built PDF report '{title}' ({len(data)} bytes)")
    return data
