"""
Soil loss aggregation and severity classification.

``A = R * K * LS * C * P`` (t/ha/yr), then five ordinal severity classes
from fixed ascending cut points.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
import xarray as xr

from rusle_leaf.grids import check_alignment
from rusle_leaf.logs import soil_loss_logger as logger

SEVERITY_THRESHOLDS: Tuple[float, float, float, float] = (10.0, 40.0, 70.0, 100.0)
SEVERITY_LABELS: Tuple[str, ...] = (
    "Slight (<10)",
    "Moderate (10-40)",
    "High (40-70)",
    "Very high (70-100)",
    "Severe (>100)",
)
SEVERITY_CLASSES: Tuple[int, ...] = (1, 2, 3, 4, 5)


def soil_loss(
    r: xr.DataArray,
    k: xr.DataArray,
    ls: xr.DataArray,
    c: xr.DataArray,
    p: xr.DataArray,
) -> xr.DataArray:
    """
    Mean annual soil loss as the pixel-wise product of the five factors.

    All five grids must be aligned.  A pixel that is no-data in any factor
    is no-data in the result.
    """
    check_alignment({"R": r, "K": k, "LS": ls, "C": c, "P": p})
    product = r.values * k.values * ls.values * c.values * p.values
    out = r.copy(data=product)
    out.name = "soil_loss"
    logger.debug(f"Soil loss: {int(np.isfinite(product).sum())} valid pixel(s)")
    return out


def severity_labels(thresholds: Sequence[float] = SEVERITY_THRESHOLDS) -> Tuple[str, ...]:
    """Class labels for ``thresholds``; the defaults give :data:`SEVERITY_LABELS`."""

    t = [f"{v:g}" for v in thresholds]
    return (
        f"Slight (<{t[0]})",
        f"Moderate ({t[0]}-{t[1]})",
        f"High ({t[1]}-{t[2]})",
        f"Very high ({t[2]}-{t[3]})",
        f"Severe (>{t[3]})",
    )


def classify_soil_loss(
    a: xr.DataArray,
    thresholds: Sequence[float] = SEVERITY_THRESHOLDS,
) -> xr.DataArray:
    """
    Map soil loss to severity classes 1..5.

    ``< t1 -> 1, < t2 -> 2, < t3 -> 3, < t4 -> 4, else -> 5``.  A value equal
    to a cut point belongs to the higher class.  No-data pixels stay NaN,
    which is why the class grid is float.
    """
    cuts = [float(v) for v in thresholds]
    if len(cuts) != 4:
        raise ValueError(f"Expected four severity thresholds, got {len(cuts)}")
    if any(hi <= lo for lo, hi in zip(cuts, cuts[1:])):
        raise ValueError(f"Severity thresholds must be strictly ascending, got {cuts}")

    values = np.asarray(a.values, dtype="float64")
    valid = np.isfinite(values)
    with np.errstate(invalid="ignore"):
        conditions = [values < cut for cut in cuts]
    classes = np.select(conditions, SEVERITY_CLASSES[:4], default=SEVERITY_CLASSES[4])
    classes = np.where(valid, classes, np.nan)

    out = a.copy(data=classes)
    out.name = "soil_loss_class"
    return out
