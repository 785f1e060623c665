"""
RUSLE factor engines.

Each engine is a pure transform from one or more aligned input grids to a
single factor grid:

* R, rainfall erosivity, from mean precipitation (Hurni, 1985)
* K, soil erodibility, from USDA soil texture classes (Renard et al., 1997;
  Wischmeier and Smith, 1978)
* LS, slope length-steepness, from elevation (Wischmeier and Smith, 1978)
* C, cover management, from NDVI with exponential scaling and region-wide
  min-max normalisation
* P, support practice, from land cover and slope (Hurni et al., 2015)

The lookups (K, P) are ordered guard chains: conditions are evaluated in
the order they are listed and the first match wins, with an explicit
default arm.  No-data (NaN) in any input pixel gives no-data in the output.
"""

# -----------------------------------------------------------------------------
# MODULES
# -----------------------------------------------------------------------------
from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import xarray as xr

from rusle_leaf.errors import DegenerateNormalizationError, UnmappedCategoryWarning
from rusle_leaf.grids import cell_spacing_m, check_alignment, reduce_region
from rusle_leaf.logs import factors_logger as logger

# -----------------------------------------------------------------------------
# LOOKUP TABLES
# -----------------------------------------------------------------------------
# (code greater than, K) evaluated top to bottom; anything else -> 0
K_FACTOR_TABLE: Tuple[Tuple[int, float], ...] = (
    (11, 0.0053),
    (10, 0.0170),
    (9, 0.045),
    (8, 0.050),
    (7, 0.0499),
    (6, 0.0394),
    (5, 0.0264),
    (4, 0.0423),
    (3, 0.0394),
    (2, 0.036),
    (1, 0.0341),
    (0, 0.0288),
)
K_FACTOR_DEFAULT = 0.0
K_CLASS_DOMAIN = (0, 12)

# land-cover classes whose P depends on slope
P_MANAGED_CLASSES = (12, 14)
# (slope percent less than, P) evaluated top to bottom for managed classes
P_SLOPE_BANDS: Tuple[Tuple[float, float], ...] = (
    (2.0, 0.6),
    (5.0, 0.5),
    (8.0, 0.5),
    (12.0, 0.6),
    (16.0, 0.7),
    (20.0, 0.8),
)
P_STEEP_SLOPE = 20.0
P_STEEP_VALUE = 0.9
P_FACTOR_DEFAULT = 1.0
LAND_COVER_DOMAIN = (0, 17)

R_COEFFICIENTS = (0.562, -8.12)
C_ALPHA = -2.0
LS_FLOW_ACCUMULATION = 500.0


# -----------------------------------------------------------------------------
# HELPERS
# -----------------------------------------------------------------------------
def _like(template: xr.DataArray, data: np.ndarray, name: str) -> xr.DataArray:
    out = template.copy(data=data)
    out.name = name
    return out


def _report_unmapped(factor: str, codes: np.ndarray, valid: np.ndarray, domain: Tuple[int, int]) -> None:
    """Log and warn about valid codes that are not integers inside ``domain``."""

    lo, hi = domain
    in_domain = (codes >= lo) & (codes <= hi) & (np.floor(codes) == codes)
    unmapped = codes[valid & ~in_domain]
    if unmapped.size == 0:
        return
    distinct = np.unique(unmapped)
    message = (
        f"{factor}: {unmapped.size} pixel(s) with codes outside {lo}..{hi} "
        f"resolved by the lookup default arm: {distinct[:10].tolist()}"
    )
    logger.warning(message)
    warnings.warn(message, UnmappedCategoryWarning, stacklevel=3)


# -----------------------------------------------------------------------------
# R FACTOR
# -----------------------------------------------------------------------------
def r_factor(
    precipitation: xr.DataArray,
    a: float = R_COEFFICIENTS[0],
    b: float = R_COEFFICIENTS[1],
) -> xr.DataArray:
    """
    Rainfall erosivity ``R = a * P + b`` from the mean precipitation grid.
    """
    r = (precipitation * a + b).rename("R")
    if not bool(np.isfinite(r.values).any()):
        logger.warning("R factor: precipitation grid has no valid pixel, R is all no-data")
    return r


# -----------------------------------------------------------------------------
# K FACTOR
# -----------------------------------------------------------------------------
def k_factor(soil_class: xr.DataArray) -> xr.DataArray:
    """
    Soil erodibility from the soil texture class grid.

    Each code is tested against ``K_FACTOR_TABLE`` from the highest
    threshold down (``code > threshold``); the first match gives K and codes
    matching nothing get 0.  The table is not monotonic in K, so the order
    matters.
    """
    codes = np.asarray(soil_class.values, dtype="float64")
    valid = np.isfinite(codes)
    _report_unmapped("K factor", codes, valid, K_CLASS_DOMAIN)

    with np.errstate(invalid="ignore"):
        conditions = [codes > threshold for threshold, _ in K_FACTOR_TABLE]
    choices = [k for _, k in K_FACTOR_TABLE]
    k = np.select(conditions, choices, default=K_FACTOR_DEFAULT)
    k = np.where(valid, k, np.nan)
    return _like(soil_class, k, "K")


# -----------------------------------------------------------------------------
# LS FACTOR
# -----------------------------------------------------------------------------
def slope_degrees(elevation: xr.DataArray) -> xr.DataArray:
    """
    Slope in degrees using Horn's 3x3 finite differences.

    Cell spacing comes from the grid transform (converted to metres on
    geographic grids).  Edges are padded by odd reflection, i.e. linear
    extrapolation, so a uniform ramp keeps its gradient up to the border.
    A no-data cell makes its whole 3x3 neighbourhood no-data.
    """
    z = np.asarray(elevation.values, dtype="float64")
    if min(z.shape) >= 2:
        p = np.pad(z, 1, mode="reflect", reflect_type="odd")
    else:
        p = np.pad(z, 1, mode="edge")

    dx, dy = cell_spacing_m(elevation)
    dx = dx[:, None]
    dy = dy[:, None]

    a, b, c = p[:-2, :-2], p[:-2, 1:-1], p[:-2, 2:]
    d, f = p[1:-1, :-2], p[1:-1, 2:]
    g, h, i = p[2:, :-2], p[2:, 1:-1], p[2:, 2:]

    dzdx = ((c + 2 * f + i) - (a + 2 * d + g)) / (8 * dx)
    dzdy = ((g + 2 * h + i) - (a + 2 * b + c)) / (8 * dy)
    slope = np.degrees(np.arctan(np.hypot(dzdx, dzdy)))
    slope = np.where(np.isfinite(z), slope, np.nan)
    return _like(elevation, slope, "slope_deg")


def slope_percent(slope_deg: xr.DataArray) -> xr.DataArray:
    """Percent grade ``tan(slope * pi / 180) * 100``."""

    return (np.tan(slope_deg * np.pi / 180.0) * 100.0).rename("slope_pct")


def ls_factor(slope_pct: xr.DataArray, flow_accumulation: float = LS_FLOW_ACCUMULATION) -> xr.DataArray:
    """
    Slope length-steepness factor.

    ``LS = sqrt(FA / 22.13) * (0.76 + 0.53 * S + 0.076 * S**2)`` with ``S`` in
    percent.  ``FA`` is a constant stand-in for upslope contributing area;
    flow accumulation is not routed over the DEM.
    """
    if flow_accumulation <= 0:
        raise ValueError("flow_accumulation must be positive")
    length = np.sqrt(flow_accumulation / 22.13)
    steepness = 0.76 + 0.53 * slope_pct + 0.076 * slope_pct ** 2
    return (steepness * length).rename("LS")


# -----------------------------------------------------------------------------
# C FACTOR
# -----------------------------------------------------------------------------
def ndvi(nir: xr.DataArray, red: xr.DataArray) -> xr.DataArray:
    """Normalized difference ``(NIR - RED) / (NIR + RED)``; zero sums are no-data."""

    check_alignment({"nir": nir, "red": red})
    total = nir + red
    index = ((nir - red) / total.where(total != 0)).rename("NDVI")
    out_of_range = int((np.abs(index.values) > 1).sum())
    if out_of_range:
        logger.warning(f"NDVI: {out_of_range} pixel(s) outside [-1, 1], check reflectance inputs")
    return index


def cover_transform(ndvi_grid: xr.DataArray, alpha: float = C_ALPHA) -> xr.DataArray:
    """
    Exponential NDVI scaling ``T = exp(alpha * NDVI / (1 - NDVI))``.

    NDVI equal to 1 has no defined value and is set to no-data, as is any
    pixel whose exponent overflows.
    """
    denominator = (1.0 - ndvi_grid).where(ndvi_grid != 1.0)
    with np.errstate(over="ignore"):
        t = np.exp(alpha * ndvi_grid / denominator)
    return t.where(np.isfinite(t)).rename("C_transform")


@dataclass(frozen=True)
class CoverBounds:
    """Region-wide minimum and maximum of the cover transform."""

    t_min: float
    t_max: float

    def __post_init__(self):
        if not (np.isfinite(self.t_min) and np.isfinite(self.t_max)):
            raise ValueError(f"Cover bounds must be finite, got ({self.t_min}, {self.t_max})")
        if self.t_max == self.t_min:
            raise DegenerateNormalizationError("C factor", self.t_min)
        if self.t_max < self.t_min:
            raise ValueError(f"Cover bounds inverted: t_min={self.t_min} > t_max={self.t_max}")

    @property
    def span(self) -> float:
        return self.t_max - self.t_min

    @classmethod
    def from_transform(cls, t: xr.DataArray) -> "CoverBounds":
        """Reduce the cover transform over every valid pixel of the region."""

        t_min = reduce_region(t, "min", name="C transform")
        t_max = reduce_region(t, "max", name="C transform")
        logger.debug(f"C factor bounds: min={t_min}, max={t_max}")
        return cls(t_min, t_max)


def normalize_cover(t: xr.DataArray, bounds: CoverBounds) -> xr.DataArray:
    """Min-max rescaling ``(T - Tmin) / (Tmax - Tmin)``."""

    return ((t - bounds.t_min) / bounds.span).rename("C")


class CoverFactorEngine:
    """
    Two-stage C factor computation.

    Stage 1 (:meth:`reduce`) reduces the cover transform over the whole
    region to :class:`CoverBounds`.  Stage 2 (:meth:`apply`) is a pure
    per-pixel map parameterised by those bounds.  :meth:`run` performs both
    in sequence; stage 2 never starts before stage 1 has covered the full
    grid.

    Bounds computed elsewhere (for instance over a wider reference region)
    can be passed to :meth:`run` or :meth:`apply`; values outside them are
    not clipped.
    """

    def __init__(self, alpha: float = C_ALPHA):
        self.alpha = alpha

    def transform(self, ndvi_grid: xr.DataArray) -> xr.DataArray:
        return cover_transform(ndvi_grid, self.alpha)

    def reduce(self, ndvi_grid: xr.DataArray) -> CoverBounds:
        return CoverBounds.from_transform(self.transform(ndvi_grid))

    def apply(self, ndvi_grid: xr.DataArray, bounds: CoverBounds) -> xr.DataArray:
        return normalize_cover(self.transform(ndvi_grid), bounds)

    def run(
        self,
        ndvi_grid: xr.DataArray,
        bounds: Optional[CoverBounds] = None,
    ) -> Tuple[xr.DataArray, CoverBounds]:
        t = self.transform(ndvi_grid)
        if bounds is None:
            bounds = CoverBounds.from_transform(t)
        return normalize_cover(t, bounds), bounds


def c_factor(
    nir: Optional[xr.DataArray] = None,
    red: Optional[xr.DataArray] = None,
    ndvi_grid: Optional[xr.DataArray] = None,
    alpha: float = C_ALPHA,
    bounds: Optional[CoverBounds] = None,
) -> xr.DataArray:
    """
    Cover management factor from red/NIR bands or a precomputed NDVI grid.
    """
    if ndvi_grid is None:
        if nir is None or red is None:
            raise ValueError("C factor needs either 'ndvi_grid' or both 'nir' and 'red'")
        ndvi_grid = ndvi(nir, red)
    c, _ = CoverFactorEngine(alpha).run(ndvi_grid, bounds)
    return c


# -----------------------------------------------------------------------------
# P FACTOR
# -----------------------------------------------------------------------------
def _p_guards(lc: np.ndarray, slope: np.ndarray) -> Tuple[Sequence[np.ndarray], Sequence[float]]:
    """Ordered (condition, value) arms of the P lookup."""

    managed = np.isin(lc, P_MANAGED_CLASSES)
    conditions = [lc < 11, lc == 11, lc == 13, lc > 14]
    choices = [0.8, 1.0, 1.0, 1.0]
    for upper, value in P_SLOPE_BANDS:
        conditions.append(managed & (slope < upper))
        choices.append(value)
    conditions.append(managed & (slope > P_STEEP_SLOPE))
    choices.append(P_STEEP_VALUE)
    return conditions, choices


def p_factor(land_cover: xr.DataArray, slope_pct: xr.DataArray) -> xr.DataArray:
    """
    Support practice factor from land cover and percent slope.

    Arms, first match wins:

    1. class < 11 -> 0.8
    2. class == 11 -> 1.0
    3. class == 13 -> 1.0
    4. class > 14 -> 1.0
    5. class in {12, 14}: slope < 2 -> 0.6, < 5 -> 0.5, < 8 -> 0.5,
       < 12 -> 0.6, < 16 -> 0.7, < 20 -> 0.8, > 20 -> 0.9
    6. anything else -> 1.0

    A slope of exactly 20 on classes 12/14 falls through to the default arm.
    """
    check_alignment({"land_cover": land_cover, "slope_pct": slope_pct})
    lc = np.asarray(land_cover.values, dtype="float64")
    slope = np.asarray(slope_pct.values, dtype="float64")
    valid = np.isfinite(lc) & np.isfinite(slope)
    _report_unmapped("P factor", lc, np.isfinite(lc), LAND_COVER_DOMAIN)

    with np.errstate(invalid="ignore"):
        conditions, choices = _p_guards(lc, slope)
    p = np.select(conditions, choices, default=P_FACTOR_DEFAULT)
    p = np.where(valid, p, np.nan)
    return _like(land_cover, p, "P")
