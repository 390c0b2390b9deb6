"""
Calibration constants for the MFC flow planner.

The humid-air channel (MFC B) is driven by a linear calibration
humidity -> flow, and the CH2O channel (MFC C) can be scaled by a
calibration factor. Presets live in `calibration.yaml` next to this file.

Used by:
- flow_calculators (default constants)
- app.py sidebar (preset picker + standard-curve fit)
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, List, Optional
import logging

import numpy as np
import yaml

logger = logging.getLogger(__name__)

DEFAULT_PRESET = "default"

_REQUIRED_KEYS = ("humidity_slope", "humidity_intercept", "ch2o_calibration_factor")


@dataclass(frozen=True)
class CalibrationConstants:
    """Linear humidity calibration + CH2O scale factor. Immutable per session."""
    humidity_slope: float = 6.0785
    humidity_intercept: float = -32.458
    ch2o_calibration_factor: float = 1.0
    name: str = DEFAULT_PRESET


# ------------------------------------------------------------
# 1) PRESETS FROM YAML
# ------------------------------------------------------------

def load_calibration(config_path: Optional[str] = None) -> Dict[str, CalibrationConstants]:
    """
    Load calibration presets from a YAML file.

    Args:
        config_path: Optional explicit path. If None, load `calibration.yaml`
                     located alongside this module.

    Returns:
        Mapping preset name -> CalibrationConstants, in file order.
    """
    if config_path is None:
        path = Path(__file__).resolve().parent / "calibration.yaml"
    else:
        path = Path(config_path)

    if not path.is_file():
        raise FileNotFoundError(f"Calibration file not found at: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    presets: Dict[str, CalibrationConstants] = {}
    for name, values in (raw.get("presets") or {}).items():
        values = values or {}
        missing = [k for k in _REQUIRED_KEYS if k not in values]
        if missing:
            raise ValueError(f"Preset '{name}' is missing: {', '.join(missing)}")
        presets[str(name)] = CalibrationConstants(
            humidity_slope=float(values["humidity_slope"]),
            humidity_intercept=float(values["humidity_intercept"]),
            ch2o_calibration_factor=float(values["ch2o_calibration_factor"]),
            name=str(name),
        )

    logger.info(f"Loaded {len(presets)} calibration preset(s) from {path}")
    return presets


# ------------------------------------------------------------
# 2) STANDARD CURVE FIT (humidity % -> MFC B flow)
# ------------------------------------------------------------

def fit_humidity_calibration(humidity: List[float], flow: List[float]) -> Optional[Dict[str, Any]]:
    """
    Least-squares line through measured (humidity, flow) points.

    Returns dict with slope, intercept, r2, n, or None if the line
    can't be fitted (fewer than 2 points, or all humidities equal).
    """
    if len(humidity) != len(flow):
        raise ValueError("humidity and flow must have the same length")
    if len(humidity) < 2:
        return None

    x = np.array(humidity, dtype=float)
    y = np.array(flow, dtype=float)
    xm, ym = x.mean(), y.mean()
    ss_xx = ((x - xm) ** 2).sum()
    if ss_xx == 0:
        return None

    slope = ((x - xm) * (y - ym)).sum() / ss_xx
    intercept = ym - slope * xm

    ss_yy = ((y - ym) ** 2).sum()
    ss_res = ((y - (slope * x + intercept)) ** 2).sum()
    r2 = 1 - ss_res / ss_yy if ss_yy > 0 else 0.0

    return {
        "slope": float(slope),
        "intercept": float(intercept),
        "r2": float(r2),
        "n": int(x.size),
    }
