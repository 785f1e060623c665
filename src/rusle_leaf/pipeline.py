"""
RUSLE soil-loss workflow.

The run is a single-pass graph of pure grid transforms::

    precipitation ─ R ──────────────┐
    soil class ──── K ──────────────┤
    elevation ── slope ─┬─ LS ──────┼─ A ─ classes ─ summary
    red/NIR ─ NDVI ─ C (reduce, map)┤
    land cover ─────────┴─ P ───────┘

Inputs are checked for alignment before any factor is computed.  Region
level failures (empty reductions, degenerate C normalisation) abort the
run and are logged with the stage that raised them.
"""

# -----------------------------------------------------------------------------
# MODULES
# -----------------------------------------------------------------------------
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import xarray as xr
from rasterio.enums import Resampling
from tqdm.auto import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from rusle_leaf.config import RusleConfig
from rusle_leaf.errors import RusleError
from rusle_leaf.factors import (
    CoverBounds,
    CoverFactorEngine,
    k_factor,
    ls_factor,
    ndvi,
    p_factor,
    r_factor,
    slope_degrees,
    slope_percent,
)
from rusle_leaf.grids import (
    Region,
    align_to,
    check_alignment,
    clip_to_region,
    describe,
    load_multiband,
    load_region,
    load_single_band,
    stack_mean,
    temporal_mean,
    write_single_band_tif,
)
from rusle_leaf.logs import LOGGER, build_logger
from rusle_leaf.logs import pipeline_logger as logger
from rusle_leaf.paths import PathLike, as_path, resolve_input_path
from rusle_leaf.soil_loss import classify_soil_loss, severity_labels, soil_loss
from rusle_leaf.zonal import ZonalSummary, summarize

CATEGORICAL_INPUTS = ("soil_class", "land_cover")

_FACTOR_UNITS = {
    "R": "MJ mm ha-1 h-1 yr-1",
    "K": "t ha h ha-1 MJ-1 mm-1",
    "LS": "dimensionless",
    "C": "dimensionless",
    "P": "dimensionless",
}


# -----------------------------------------------------------------------------
# DATA CONTAINERS
# -----------------------------------------------------------------------------
@dataclass
class RusleInputs:
    """
    Co-registered input grids for one region and analysis window.

    Cover is given either as ``nir`` + ``red`` reflectance or as a
    precomputed ``ndvi`` grid.
    """

    precipitation: xr.DataArray
    soil_class: xr.DataArray
    elevation: xr.DataArray
    land_cover: xr.DataArray
    nir: Optional[xr.DataArray] = None
    red: Optional[xr.DataArray] = None
    ndvi: Optional[xr.DataArray] = None

    def __post_init__(self):
        has_bands = self.nir is not None and self.red is not None
        if has_bands == (self.ndvi is not None):
            raise ValueError("Provide either 'nir' and 'red' or 'ndvi', not both or neither")

    def grids(self) -> Dict[str, xr.DataArray]:
        """Non-empty inputs keyed by name, elevation first."""

        names = ("elevation", "precipitation", "soil_class", "land_cover", "nir", "red", "ndvi")
        return {name: getattr(self, name) for name in names if getattr(self, name) is not None}


@dataclass
class RusleResult:
    r: xr.DataArray
    k: xr.DataArray
    ls: xr.DataArray
    c: xr.DataArray
    p: xr.DataArray
    slope_pct: xr.DataArray
    ndvi: xr.DataArray
    soil_loss: xr.DataArray
    classes: xr.DataArray
    cover_bounds: CoverBounds
    summary: ZonalSummary
    config: RusleConfig = field(default_factory=RusleConfig)

    def factor_grids(self) -> Dict[str, xr.DataArray]:
        return {"R": self.r, "K": self.k, "LS": self.ls, "C": self.c, "P": self.p}


# -----------------------------------------------------------------------------
# RUN
# -----------------------------------------------------------------------------
def run_rusle(
    inputs: RusleInputs,
    config: Optional[RusleConfig] = None,
    region: Optional[Region] = None,
    cover_bounds: Optional[CoverBounds] = None,
    show_progress: bool = False,
) -> RusleResult:
    """
    Compute the RUSLE factors, soil loss, severity classes and summary.

    Parameters
    ----------
    inputs : RusleInputs
        Aligned input grids.
    config : RusleConfig, optional
        Coefficients, thresholds and summary resolution; defaults apply when
        omitted.
    region : GeoDataFrame, GeoSeries or shapely geometry, optional
        Region of interest; pixels outside become no-data before any factor
        is computed.
    cover_bounds : CoverBounds, optional
        Precomputed C normalisation bounds.  When omitted they are reduced
        from the region itself.
    show_progress : bool
        Show a tqdm bar over the stages.

    Raises
    ------
    InputAlignmentError
        Inputs do not share a grid.
    DegenerateNormalizationError
        The C transform is uniform over the region.
    EmptyRegionError
        A region-wide reduction found no valid pixel.
    """
    config = config or RusleConfig()
    if config.log_file:
        build_logger(log_file=config.log_file)

    grids = inputs.grids()
    check_alignment(grids)
    if region is not None:
        # elevation stays unclipped so border slopes keep their full 3x3 window
        grids = {
            name: grid if name == "elevation" else clip_to_region(grid, region)
            for name, grid in grids.items()
        }

    a_coef, b_coef = config.r_coefficients
    thresholds = config.thresholds.as_tuple()
    engine = CoverFactorEngine(config.c_alpha)
    out: Dict[str, object] = {}

    def _slope():
        slope = slope_percent(slope_degrees(grids["elevation"]))
        out["slope_pct"] = clip_to_region(slope, region) if region is not None else slope

    def _cover():
        index = grids["ndvi"] if "ndvi" in grids else ndvi(grids["nir"], grids["red"])
        out["ndvi"] = index
        out["c"], out["cover_bounds"] = engine.run(index, cover_bounds)

    stages: List[Tuple[str, Callable[[], None]]] = [
        ("R factor", lambda: out.update(r=r_factor(grids["precipitation"], a_coef, b_coef))),
        ("K factor", lambda: out.update(k=k_factor(grids["soil_class"]))),
        ("slope", _slope),
        ("LS factor", lambda: out.update(ls=ls_factor(out["slope_pct"], config.ls_flow_accumulation))),
        ("C factor", _cover),
        ("P factor", lambda: out.update(p=p_factor(grids["land_cover"], out["slope_pct"]))),
        ("soil loss", lambda: out.update(
            soil_loss=soil_loss(out["r"], out["k"], out["ls"], out["c"], out["p"]))),
        ("classification", lambda: out.update(
            classes=classify_soil_loss(out["soil_loss"], thresholds))),
        ("summary", lambda: out.update(summary=summarize(
            out["soil_loss"],
            out["classes"],
            resolution=config.summary_resolution,
            area_decimals=config.area_decimals,
            labels=severity_labels(thresholds),
        ))),
    ]

    with logging_redirect_tqdm(loggers=[LOGGER]):
        for name, step in tqdm(stages, desc="RUSLE stages", disable=not show_progress):
            logger.debug(f"Running stage: {name}")
            try:
                step()
            except RusleError as exc:
                exc.stage = name
                logger.error(str(exc))
                raise

    for key in ("r", "k", "ls", "c", "p", "soil_loss"):
        logger.debug(f"{out[key].name}: {describe(out[key])}")

    return RusleResult(
        r=out["r"],
        k=out["k"],
        ls=out["ls"],
        c=out["c"],
        p=out["p"],
        slope_pct=out["slope_pct"],
        ndvi=out["ndvi"],
        soil_loss=out["soil_loss"],
        classes=out["classes"],
        cover_bounds=out["cover_bounds"],
        summary=out["summary"],
        config=config,
    )


# -----------------------------------------------------------------------------
# FILE-DRIVEN RUNS
# -----------------------------------------------------------------------------
def _load_precipitation(path: Path, config: RusleConfig) -> xr.DataArray:
    """Collapse a precipitation stack to its mean over the analysis window."""

    stack = load_multiband(path, name="precipitation")
    if stack.sizes["time"] == 1:
        return stack.isel(time=0, drop=True)
    if np.issubdtype(stack["time"].dtype, np.datetime64):
        return temporal_mean(stack, config.start, config.end)
    logger.info(f"Precipitation bands carry no dates; averaging all {stack.sizes['time']} bands")
    return stack_mean(stack)


def load_inputs(config: RusleConfig) -> RusleInputs:
    """
    Read and align the rasters listed in ``config.inputs``.

    Every input is reprojected onto the elevation grid, with nearest
    neighbour for categorical inputs and bilinear for continuous ones.
    """
    paths = config.inputs
    required = ("precipitation", "soil_class", "elevation", "land_cover")
    missing = [name for name in required if name not in paths]
    if missing:
        raise ValueError(f"Missing input rasters in configuration: {missing}")

    resolved = {
        name: resolve_input_path(path, description=f"{name} raster") for name, path in paths.items()
    }

    logger.info("Loading input rasters...")
    elevation = load_single_band(resolved["elevation"], name="elevation")
    loaded: Dict[str, xr.DataArray] = {}
    for name, path in resolved.items():
        if name == "elevation":
            continue
        if name == "precipitation":
            grid = _load_precipitation(path, config)
        else:
            grid = load_single_band(path, name=name)
        resampling = Resampling.nearest if name in CATEGORICAL_INPUTS else Resampling.bilinear
        loaded[name] = align_to(elevation, grid, resampling)

    return RusleInputs(elevation=elevation, **loaded)


def run_rusle_from_config(config: RusleConfig, show_progress: bool = True) -> RusleResult:
    """Load inputs and the region named in ``config``, then run the model."""

    inputs = load_inputs(config)
    region = None
    if config.region:
        region = load_region(resolve_input_path(config.region, description="region of interest"))
    return run_rusle(inputs, config, region=region, show_progress=show_progress)


def save_results(result: RusleResult, out_dir: PathLike) -> Dict[str, Path]:
    """
    Write factors, soil loss and classes as GeoTIFFs and the class areas as CSV.

    Returns the written paths keyed by output name.
    """
    folder = as_path(out_dir)
    folder.mkdir(parents=True, exist_ok=True)
    written: Dict[str, Path] = {}

    for name, grid in result.factor_grids().items():
        target = folder / f"{name}_factor.tif"
        write_single_band_tif(grid, target, units=_FACTOR_UNITS[name], long_name=f"RUSLE {name} factor")
        written[name] = target

    target = folder / "soil_loss.tif"
    write_single_band_tif(
        result.soil_loss, target, units="t/ha/yr", long_name="Mean annual soil loss",
        description="A = R * K * LS * C * P",
    )
    written["soil_loss"] = target

    target = folder / "soil_loss_class.tif"
    write_single_band_tif(
        result.classes, target, units="class", long_name="Soil loss severity class",
        description="; ".join(f"{r.class_id}: {r.label}" for r in result.summary.records),
    )
    written["classes"] = target

    target = folder / "class_areas.csv"
    result.summary.to_frame().write_csv(target)
    written["class_areas"] = target

    logger.info(f"RUSLE results saved into {folder}")
    return written
