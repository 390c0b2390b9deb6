import streamlit as st
import pandas as pd
from datetime import datetime, timezone
import logging

from mfc_planner.calibration import CalibrationConstants, DEFAULT_PRESET, load_calibration, fit_humidity_calibration
from mfc_planner.flow_calculators import (
    InputParameters,
    TimingParameters,
    calc_flow_result,
    calc_total_time,
    generate_protocol_csv,
    parse_concentrations,
    plan_batch,
    protocol_filename,
    protocol_rows_frame,
)
from mfc_planner.reports import HAS_FPDF, make_pdf_report, protocol_report_lines

logger = logging.getLogger(__name__)

# defaults shown on first load
DEFAULT_INPUTS = InputParameters()
DEFAULT_TIMINGS = TimingParameters()

# ------------------------------------------------------------
# PAGE
# ------------------------------------------------------------
st.set_page_config(page_title="MFC Calculator", page_icon="🧪", layout="wide")

st.title("🧪 MFC Calculator")
st.write("Mass flow set-points and a CSV schedule for humidified CH2O exposure protocols.")


@st.cache_data
def get_calibration_presets():
    return load_calibration()


# ------------------------------------------------------------
# SIDEBAR: calibration presets / overrides
# ------------------------------------------------------------
try:
    presets = get_calibration_presets()
except (FileNotFoundError, ValueError) as e:
    st.sidebar.warning(f"Could not load calibration.yaml ({e}) → using built-in defaults.")
    presets = {}
if not presets:
    presets = {DEFAULT_PRESET: CalibrationConstants()}


def _load_preset():
    cal = presets[st.session_state["cal_preset"]]
    st.session_state["cal_slope"] = cal.humidity_slope
    st.session_state["cal_intercept"] = cal.humidity_intercept
    st.session_state["cal_factor"] = cal.ch2o_calibration_factor


def _apply_fit(fit):
    st.session_state["cal_slope"] = round(fit["slope"], 6)
    st.session_state["cal_intercept"] = round(fit["intercept"], 6)


if "cal_preset" not in st.session_state:
    st.session_state["cal_preset"] = DEFAULT_PRESET if DEFAULT_PRESET in presets else next(iter(presets))
    _load_preset()

st.sidebar.header("Calibration")
st.sidebar.selectbox("Calibration preset", list(presets), key="cal_preset", on_change=_load_preset)

with st.sidebar.expander("⚙️ Calibration constants", expanded=False):
    st.number_input("Humidity slope (SLPM per % RH)", key="cal_slope", format="%.4f")
    st.number_input("Humidity intercept (SLPM)", key="cal_intercept", format="%.4f")
    st.number_input("CH2O calibration factor", key="cal_factor", format="%.4f")

calibration = CalibrationConstants(
    humidity_slope=float(st.session_state["cal_slope"]),
    humidity_intercept=float(st.session_state["cal_intercept"]),
    ch2o_calibration_factor=float(st.session_state["cal_factor"]),
    name=st.session_state["cal_preset"],
)

st.sidebar.caption(
    f"MFC B = {calibration.humidity_slope:g} × RH + ({calibration.humidity_intercept:g})"
)

# ======================================================================
# 1) SYSTEM PARAMETERS + TIMING
# ======================================================================
col_sys, col_time = st.columns(2)

with col_sys:
    st.subheader("System parameters")
    c1, c2 = st.columns(2)
    with c1:
        total_flow = st.number_input(
            "Total flow (SLPM)", value=DEFAULT_INPUTS.total_flow, step=10.0, key="total_flow"
        )
    with c2:
        target_humidity = st.number_input(
            "Target humidity (%)", value=DEFAULT_INPUTS.target_humidity, step=0.1, key="target_humidity"
        )

    ch2o_source_conc = st.number_input(
        "CH2O source concentration (ppm)",
        value=DEFAULT_INPUTS.ch2o_source_conc,
        step=0.05,
        key="ch2o_source_conc",
    )
    conc_txt = st.text_input(
        "Concentration steps (ppb)",
        value=", ".join(f"{c:g}" for c in DEFAULT_INPUTS.concentrations),
        placeholder="50, 100, 200",
        key="concentrations",
    )
    use_desmos = st.checkbox(
        "Use Desmos math",
        value=DEFAULT_INPUTS.use_alternate_math,
        help="Scale MFC C flows by the CH2O calibration factor.",
        key="use_desmos",
    )

    concentrations, dropped = parse_concentrations(conc_txt)
    if dropped:
        st.caption(f"Ignored non-numeric entries: {', '.join(dropped)}")

with col_time:
    st.subheader("Timing configuration")
    t1, t2, t3 = st.columns(3)
    with t1:
        baseline_min = st.number_input(
            "Baseline (min)", value=DEFAULT_TIMINGS.baseline_duration, min_value=1, step=1, key="baseline"
        )
    with t2:
        exposure_min = st.number_input(
            "Exposure (min)", value=DEFAULT_TIMINGS.exposure_duration, min_value=1, step=1, key="exposure"
        )
    with t3:
        stabilization_min = st.number_input(
            "Stabilization (min)", value=DEFAULT_TIMINGS.stabilization_time, min_value=0, step=1, key="stabilization"
        )

timings = TimingParameters(
    baseline_duration=int(baseline_min),
    exposure_duration=int(exposure_min),
    stabilization_time=int(stabilization_min),
)
inputs = InputParameters(
    total_flow=float(total_flow),
    target_humidity=float(target_humidity),
    ch2o_source_conc=float(ch2o_source_conc),
    concentrations=concentrations,
    use_alternate_math=bool(use_desmos),
)

# every rerun recomputes from the current widgets
result = calc_flow_result(inputs, calibration)

with col_time:
    st.info(f"**Total experiment time:** {calc_total_time(len(inputs.concentrations), timings)} hours")

# ======================================================================
# 2) FLOW CALCULATIONS
# ======================================================================
st.markdown("---")
st.subheader("Flow calculations")

if not result.is_valid:
    for w in result.warnings:
        st.error(w)
else:
    for w in result.warnings:
        st.warning(w)

m1, m2, m3 = st.columns(3)
m1.metric("MFC A · dry air", f"{result.mfc_a:.2f} SLPM")
m2.metric("MFC B · humid air", f"{result.mfc_b:.2f} SLPM")
m3.metric("Total flow", f"{inputs.total_flow:.0f} SLPM")

if result.mfc_c:
    st.markdown("#### MFC C (CH2O) flow rates")
    df_c = pd.DataFrame(
        [
            {
                "concentration (ppb)": c.concentration,
                "flow (SLPM)": round(c.flow, 6),
                "standard (SLPM)": round(c.flow_standard, 6),
                "desmos (SLPM)": round(c.flow_desmos, 6),
            }
            for c in result.mfc_c
        ]
    )
    st.dataframe(df_c, hide_index=True)

# ======================================================================
# 3) PROTOCOL EXPORT
# ======================================================================
st.markdown("---")
st.subheader("Protocol export")

# stamped at render time: the download serves the data built on this rerun
generated_at = datetime.now(timezone.utc)
csv_text = generate_protocol_csv(inputs, result, timings, generated_at=generated_at)

if result.is_valid:
    df_rows = protocol_rows_frame(result, timings)
    st.write(f"Schedule for **{inputs.target_humidity:g}% RH** ({len(df_rows)} rows)")
    st.dataframe(df_rows, hide_index=True)
    st.line_chart(df_rows.set_index("time_min")[["MFC A", "MFC B", "MFC C"]])
else:
    st.info("Fix the inputs above to enable the protocol file.")

st.download_button(
    "⬇ Download CSV",
    data=csv_text.encode("utf-8"),
    file_name=protocol_filename(inputs.target_humidity, generated_at),
    mime="text/csv",
    disabled=not result.is_valid,
)

if csv_text:
    with st.expander("Preview CSV", expanded=False):
        st.code(csv_text, language="csv")

if HAS_FPDF:
    if result.is_valid:
        pdf_bytes = make_pdf_report(
            "MFC protocol report", protocol_report_lines(inputs, timings, result)
        )
        st.download_button(
            "📄 Download PDF report",
            data=pdf_bytes,
            file_name=protocol_filename(inputs.target_humidity, generated_at).replace(".csv", ".pdf"),
            mime="application/pdf",
        )
else:
    st.info("Install `fpdf2` to enable PDF export: `pip install fpdf2`")

# ------------------------------------------------------------
# Tools: Batch • Calibration fit
# ------------------------------------------------------------
st.markdown("---")
tab_batch, tab_fit = st.tabs(["Batch planner", "Calibration fit"])

# --- (A) Batch planner ---
with tab_batch:
    st.subheader("Batch planner (CSV)")
    st.caption("Uses the calibration and timing settings above. `concentrations` is optional.")
    st.code(
        """target_humidity,total_flow,ch2o_source_conc,concentrations,use_alternate_math
35,500,5.35,"50,100,200",true
60,500,5.35,"25,50",false
""",
        language="csv",
    )

    up = st.file_uploader("Upload CSV", type=["csv"], key="batch_csv")
    if up is not None:
        try:
            df_in = pd.read_csv(up)
            df_out = plan_batch(df_in, calibration, timings, default_concentrations=inputs.concentrations)
            st.dataframe(df_out)
            st.download_button(
                "⬇ Download results",
                df_out.to_csv(index=False).encode("utf-8"),
                "batch_results.csv",
                "text/csv",
            )
        except Exception as e:
            logger.error(f"Batch failed: {e}")
            st.error(f"Batch failed: {e}")

# --- (B) Calibration fit ---
with tab_fit:
    st.subheader("Humidity calibration (standard curve)")
    st.caption("Upload CSV with two columns: humidity (% RH), flow (MFC B, SLPM)")
    cal_up = st.file_uploader("Upload CSV", type=["csv"], key="cal_csv")
    if cal_up is not None:
        df_cal = pd.read_csv(cal_up)
        st.dataframe(df_cal.head())
        colmap = {c.lower().strip(): c for c in df_cal.columns}
        if {"humidity", "flow"}.issubset(colmap):
            try:
                fit = fit_humidity_calibration(
                    df_cal[colmap["humidity"]].tolist(),
                    df_cal[colmap["flow"]].tolist(),
                )
            except Exception as e:
                fit = None
                st.error(f"Fit failed: {e}")
            if fit:
                st.write(
                    f"Slope: **{fit['slope']:.6f}**, Intercept: **{fit['intercept']:.6f}**, "
                    f"R²: **{fit['r2']:.4f}** (n={fit['n']})"
                )
                st.button("Use this fit", on_click=_apply_fit, args=(fit,))
            else:
                st.warning("Could not fit line: check data.")
        else:
            st.error("CSV must have columns named 'humidity' and 'flow'.")

# ------------------------------------------------------------
# FOOTER
# ------------------------------------------------------------
st.markdown("---")
st.caption("MFC A: dry air · MFC B: humid air · MFC C: CH2O source")
