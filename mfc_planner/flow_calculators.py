"""
Backend calculator functions for the MFC Flow Planner.

Each function here is a pure calculator:
- Takes value objects / scalars.
- Returns a fresh result (no hidden state), ready for display or export.

Channels:
- MFC A: dry air
- MFC B: humid air (set by the humidity calibration)
- MFC C: CH2O source gas (one flow per concentration step)

Used by:
- app.py (single protocol + batch tab)
- reports.py (PDF protocol report)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Tuple
import logging
import math

import pandas as pd

from .calibration import CalibrationConstants

logger = logging.getLogger(__name__)

INVALID_INPUT_WARNING = "Invalid input parameters"
SOURCE_CONC_WARNING = "CH2O source concentration must be > 0 ppm"

CSV_COLUMNS = ["Time", "MFC A", "MFC B", "MFC C"]

PROTOCOL_HEADER = [
    "# Protocol: Baseline -> Concentration Steps -> Shutdown",
    "# MFC A: Dry air, MFC B: Humid air, MFC C: CH2O source",
]


@dataclass(frozen=True)
class InputParameters:
    total_flow: float = 500.0            # SLPM
    target_humidity: float = 35.0        # % RH
    ch2o_source_conc: float = 5.35       # ppm
    concentrations: Tuple[float, ...] = (50.0, 100.0, 200.0)  # ppb
    use_alternate_math: bool = True


@dataclass(frozen=True)
class TimingParameters:
    baseline_duration: int = 30      # min
    exposure_duration: int = 30      # min
    stabilization_time: int = 5      # min, shown only


@dataclass(frozen=True)
class ConcentrationFlow:
    concentration: float
    flow: float
    flow_standard: float
    flow_desmos: float


@dataclass(frozen=True)
class FlowResult:
    mfc_a: float
    mfc_b: float
    mfc_c: Tuple[ConcentrationFlow, ...] = ()
    is_valid: bool = True
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def max_mfc_c(self) -> float:
        return max((c.flow for c in self.mfc_c), default=0.0)


@dataclass(frozen=True)
class ProtocolRow:
    time: int          # s
    mfc_a: float
    mfc_b: float
    mfc_c: float
    phase: str         # baseline / exposure / shutdown


# ------------------------------------------------------------
# 1) CALIBRATION MODEL (humidity -> MFC B)
# ------------------------------------------------------------

def calc_humid_air_flow(target_humidity: float, calibration: CalibrationConstants) -> float:
    """MFC B flow in SLPM, clamped at 0. Humidity range is checked by the caller."""
    mfc_b = calibration.humidity_slope * target_humidity + calibration.humidity_intercept
    return max(0.0, mfc_b)


# ------------------------------------------------------------
# 2) DILUTION CALCULATOR (ppb -> MFC C)
# ------------------------------------------------------------

def calc_dilution_flows(
    inputs: InputParameters,
    calibration: CalibrationConstants,
) -> Tuple[ConcentrationFlow, ...]:
    """
    Source-gas flow for each concentration step.

    flow_standard = (C_ppb / 1000) * total_flow / C_source_ppm
    flow_desmos   = flow_standard * ch2o_calibration_factor

    Parameters
    ----------
    inputs : InputParameters
        Concentrations are used in the order given (no sort, no dedup).
    calibration : CalibrationConstants

    Returns
    -------
    tuple of ConcentrationFlow, same order as inputs.concentrations
    """
    if inputs.ch2o_source_conc <= 0:
        raise ValueError("ch2o_source_conc must be > 0")

    flows = []
    for conc in inputs.concentrations:
        flow_standard = (conc / 1000.0) * inputs.total_flow / inputs.ch2o_source_conc
        flow_desmos = flow_standard * calibration.ch2o_calibration_factor
        flows.append(
            ConcentrationFlow(
                concentration=conc,
                flow=flow_desmos if inputs.use_alternate_math else flow_standard,
                flow_standard=flow_standard,
                flow_desmos=flow_desmos,
            )
        )
    return tuple(flows)


# ------------------------------------------------------------
# 3) OVERALL FLOW COMPUTATION
# ------------------------------------------------------------

def _invalid_result(*warnings: str) -> FlowResult:
    return FlowResult(mfc_a=0.0, mfc_b=0.0, mfc_c=(), is_valid=False, warnings=tuple(warnings))


def calc_flow_result(
    inputs: InputParameters,
    calibration: Optional[CalibrationConstants] = None,
) -> FlowResult:
    """
    Derive MFC A / B / C set-points from the protocol inputs.

    Never raises for bad user input: out-of-range values give an
    all-zero result with is_valid=False and a warning.
    """
    calibration = calibration or CalibrationConstants()

    scalars = (inputs.total_flow, inputs.target_humidity, inputs.ch2o_source_conc)
    if (
        not all(math.isfinite(v) for v in scalars)
        or inputs.total_flow <= 0
        or inputs.target_humidity < 0
        or inputs.target_humidity > 100
    ):
        logger.warning(f"Invalid input parameters: {inputs}")
        return _invalid_result(INVALID_INPUT_WARNING)

    if inputs.ch2o_source_conc <= 0:
        logger.warning(f"Non-positive CH2O source concentration: {inputs.ch2o_source_conc}")
        return _invalid_result(INVALID_INPUT_WARNING, SOURCE_CONC_WARNING)

    mfc_b = calc_humid_air_flow(inputs.target_humidity, calibration)
    mfc_c = calc_dilution_flows(inputs, calibration)
    mfc_a = inputs.total_flow - mfc_b

    warnings: List[str] = []
    if inputs.target_humidity > 80:
        warnings.append("Humidity >80% may cause condensation")
    if inputs.target_humidity < 10:
        warnings.append("Humidity <10% may be difficult to achieve")

    if mfc_c:
        max_c = max(c.flow for c in mfc_c)
        if max_c > mfc_a:
            warnings.append(
                f"Max MFC C flow ({max_c:.2f} SLPM) exceeds MFC A capacity ({mfc_a:.2f} SLPM)"
            )

    logger.debug(f"Recomputed flows: A={mfc_a} B={mfc_b} C={[c.flow for c in mfc_c]}")
    return FlowResult(
        mfc_a=mfc_a,
        mfc_b=mfc_b,
        mfc_c=mfc_c,
        is_valid=True,
        warnings=tuple(warnings),
    )


# ------------------------------------------------------------
# 4) TIMELINE / CSV GENERATOR
# ------------------------------------------------------------

def build_protocol_rows(result: FlowResult, timings: TimingParameters) -> List[ProtocolRow]:
    """
    Time-ordered set-points: baseline, (baseline, exposure) per step,
    final baseline, shutdown. Empty list for an invalid result.
    """
    if not result.is_valid:
        return []

    a, b = result.mfc_a, result.mfc_b
    t = 0
    rows = [ProtocolRow(t, a, b, 0.0, "baseline")]
    t += timings.baseline_duration * 60

    for step in result.mfc_c:
        # air before each step, then A gives way to C to keep total flow
        rows.append(ProtocolRow(t, a, b, 0.0, "baseline"))
        rows.append(ProtocolRow(t, a - step.flow, b, step.flow, "exposure"))
        t += timings.exposure_duration * 60

    rows.append(ProtocolRow(t, a, b, 0.0, "baseline"))
    rows.append(ProtocolRow(t, 0.0, 0.0, 0.0, "shutdown"))
    return rows


def _fmt_number(value: float) -> str:
    """Echo a user value as typed: 500.0 -> '500', 5.35 -> '5.35'."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _iso_instant(generated_at: Optional[datetime]) -> str:
    ts = generated_at or datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _format_row(row: ProtocolRow) -> str:
    if row.phase == "shutdown":
        return f"{row.time},0,0,0"
    if row.phase == "exposure":
        return f"{row.time},{row.mfc_a:.2f},{row.mfc_b:.2f},{row.mfc_c:.9f}"
    return f"{row.time},{row.mfc_a:.2f},{row.mfc_b:.2f},0"


def generate_protocol_csv(
    inputs: InputParameters,
    result: FlowResult,
    timings: TimingParameters,
    generated_at: Optional[datetime] = None,
) -> str:
    """
    CSV text for the Alicat SSCM MFC schedule.

    Comment header (echoed inputs + timestamp), `Time,MFC A,MFC B,MFC C`,
    then one line per protocol row. Returns "" for an invalid result.
    """
    if not result.is_valid:
        return ""

    lines = [
        "# Alicat SSCM MFC Configuration",
        f"# Target Humidity: {_fmt_number(inputs.target_humidity)}% RH",
        f"# Total Flow: {_fmt_number(inputs.total_flow)} SLPM",
        f"# CH2O Source Concentration: {_fmt_number(inputs.ch2o_source_conc)} ppm",
        f"# Generated: {_iso_instant(generated_at)}",
        "#",
        *PROTOCOL_HEADER,
        "#",
        ",".join(CSV_COLUMNS),
    ]
    rows = build_protocol_rows(result, timings)
    lines.extend(_format_row(r) for r in rows)

    logger.info(f"Generated protocol CSV with {len(rows)} rows for {inputs.target_humidity}% RH")
    return "\n".join(lines) + "\n"


def protocol_rows_frame(result: FlowResult, timings: TimingParameters) -> pd.DataFrame:
    """Timeline as a DataFrame (time in s and min) for tables/charts."""
    rows = build_protocol_rows(result, timings)
    df = pd.DataFrame(
        [
            {
                "time_s": r.time,
                "time_min": r.time / 60,
                "phase": r.phase,
                "MFC A": round(r.mfc_a, 2),
                "MFC B": round(r.mfc_b, 2),
                "MFC C": round(r.mfc_c, 9),
            }
            for r in rows
        ],
        columns=["time_s", "time_min", "phase", "MFC A", "MFC B", "MFC C"],
    )
    return df


def calc_total_time(concentration_count: int, timings: TimingParameters) -> str:
    """Experiment length in hours (1 decimal). "0" when there are no steps."""
    if concentration_count == 0:
        return "0"
    total_minutes = (
        concentration_count * timings.baseline_duration
        + concentration_count * timings.exposure_duration
        + timings.exposure_duration
    )
    return f"{total_minutes / 60:.1f}"


def protocol_filename(target_humidity: float, generated_at: Optional[datetime] = None) -> str:
    """e.g. MFC_35RH_2026-10-16T09-05.csv"""
    stamp = _iso_instant(generated_at).replace(":", "-").replace(".", "-")[:16]
    return f"MFC_{_fmt_number(target_humidity)}RH_{stamp}.csv"


# ------------------------------------------------------------
# 5) INPUT PARSING
# ------------------------------------------------------------

def parse_concentrations(text: str) -> Tuple[Tuple[float, ...], List[str]]:
    """
    "50, 100, abc, 200" -> ((50.0, 100.0, 200.0), ["abc"])

    Empty tokens are ignored; unparseable or non-finite ones are returned
    in the second slot so the UI can mention them.
    """
    values: List[float] = []
    dropped: List[str] = []
    for token in (text or "").split(","):
        token = token.strip()
        if not token:
            continue
        try:
            v = float(token)
        except ValueError:
            dropped.append(token)
            continue
        if not math.isfinite(v):
            dropped.append(token)
            continue
        values.append(v)

    if dropped:
        logger.warning(f"Dropped concentration tokens: {dropped}")
    return tuple(values), dropped


# ------------------------------------------------------------
# 6) BATCH PLANNER (one protocol per CSV row)
# ------------------------------------------------------------

BATCH_REQUIRED = ["target_humidity", "total_flow", "ch2o_source_conc"]

_TRUE_STRINGS = {"1", "true", "yes", "y"}


def _row_flag(value: Any, default: bool) -> bool:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return default
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _dropped_warning(dropped: List[str]) -> Tuple[str, ...]:
    if not dropped:
        return ()
    return (f"Ignored non-numeric concentrations: {', '.join(dropped)}",)


def plan_batch(
    df: pd.DataFrame,
    calibration: Optional[CalibrationConstants] = None,
    timings: Optional[TimingParameters] = None,
    default_concentrations: Tuple[float, ...] = (),
) -> pd.DataFrame:
    """
    Run calc_flow_result for every row of an uploaded table.

    Required columns: target_humidity, total_flow, ch2o_source_conc.
    Optional: concentrations ("50,100,200"), use_alternate_math.
    A row that can't be read gets an `error` value; the rest still run.
    """
    missing = [c for c in BATCH_REQUIRED if c not in df.columns]
    if missing:
        raise ValueError(f"CSV is missing column(s): {', '.join(missing)}")

    timings = timings or TimingParameters()
    out_rows: List[Dict[str, Any]] = []
    for _, row in df.iterrows():
        base = row.to_dict()
        try:
            dropped: List[str] = []
            conc_cell = base.get("concentrations")
            if isinstance(conc_cell, str):
                concs, dropped = parse_concentrations(conc_cell)
            elif conc_cell is None or (isinstance(conc_cell, float) and math.isnan(conc_cell)):
                concs = tuple(default_concentrations)
            else:
                concs = (float(conc_cell),)

            inputs = InputParameters(
                total_flow=float(base["total_flow"]),
                target_humidity=float(base["target_humidity"]),
                ch2o_source_conc=float(base["ch2o_source_conc"]),
                concentrations=concs,
                use_alternate_math=_row_flag(base.get("use_alternate_math"), True),
            )
            res = calc_flow_result(inputs, calibration)
            out_rows.append(
                {
                    **base,
                    "mfc_a": round(res.mfc_a, 4),
                    "mfc_b": round(res.mfc_b, 4),
                    "max_mfc_c": round(res.max_mfc_c, 9),
                    "is_valid": res.is_valid,
                    "total_hours": calc_total_time(len(concs), timings),
                    "warnings": "; ".join(res.warnings + _dropped_warning(dropped)),
                }
            )
        except Exception as e:
            out_rows.append({**base, "error": str(e)})

    return pd.DataFrame(out_rows)
