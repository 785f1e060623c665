"""rusle_leaf: region-scale soil loss mapping with the RUSLE model.

The top-level package re-exports the most commonly used workflows so
downstream notebooks can depend on a stable surface area.  The curated
groups are:

* Workflow (:mod:`rusle_leaf.pipeline`)
  - :class:`RusleInputs`, :class:`RusleResult`
  - :func:`run_rusle`, :func:`run_rusle_from_config`
  - :func:`load_inputs`, :func:`save_results`
* Configuration (:mod:`rusle_leaf.config`)
  - :class:`RusleConfig`, :class:`SeverityThresholds`
* Factor engines (:mod:`rusle_leaf.factors`)
  - :func:`r_factor`, :func:`k_factor`, :func:`ls_factor`, :func:`p_factor`
  - :func:`slope_degrees`, :func:`slope_percent`
  - :func:`ndvi`, :func:`cover_transform`, :func:`normalize_cover`, :func:`c_factor`
  - :class:`CoverBounds`, :class:`CoverFactorEngine`
* Soil loss (:mod:`rusle_leaf.soil_loss`)
  - :func:`soil_loss`, :func:`classify_soil_loss`, :data:`SEVERITY_LABELS`
* Zonal summaries (:mod:`rusle_leaf.zonal`)
  - :func:`summarize`, :func:`mean_soil_loss`, :func:`class_areas`
  - :class:`ZonalSummary`, :class:`ZonalAreaRecord`
* Raster grids (:mod:`rusle_leaf.grids`)
  - :func:`make_grid`, :func:`load_single_band`, :func:`load_multiband`
  - :func:`check_alignment`, :func:`align_to`, :func:`clip_to_region`
  - :func:`reduce_region`, :func:`pixel_area`, :func:`resample_to_resolution`
  - :func:`temporal_mean`, :func:`write_single_band_tif`
* Errors (:mod:`rusle_leaf.errors`)

Refer to the module documentation for detailed usage patterns.
"""

from .config import RusleConfig, SeverityThresholds
from .errors import (
    DegenerateNormalizationError,
    EmptyRegionError,
    InputAlignmentError,
    RusleError,
    UnmappedCategoryWarning,
)
from .factors import (
    CoverBounds,
    CoverFactorEngine,
    c_factor,
    cover_transform,
    k_factor,
    ls_factor,
    ndvi,
    normalize_cover,
    p_factor,
    r_factor,
    slope_degrees,
    slope_percent,
)
from .grids import (
    align_to,
    check_alignment,
    clip_to_region,
    load_multiband,
    load_single_band,
    make_grid,
    pixel_area,
    reduce_region,
    resample_to_resolution,
    temporal_mean,
    write_single_band_tif,
)
from .pipeline import (
    RusleInputs,
    RusleResult,
    load_inputs,
    run_rusle,
    run_rusle_from_config,
    save_results,
)
from .soil_loss import SEVERITY_LABELS, classify_soil_loss, soil_loss
from .zonal import ZonalAreaRecord, ZonalSummary, class_areas, mean_soil_loss, summarize


_PIPELINE_EXPORTS = [
    "RusleInputs",
    "RusleResult",
    "load_inputs",
    "run_rusle",
    "run_rusle_from_config",
    "save_results",
]
_CONFIG_EXPORTS = ["RusleConfig", "SeverityThresholds"]
_FACTOR_EXPORTS = [
    "CoverBounds",
    "CoverFactorEngine",
    "c_factor",
    "cover_transform",
    "k_factor",
    "ls_factor",
    "ndvi",
    "normalize_cover",
    "p_factor",
    "r_factor",
    "slope_degrees",
    "slope_percent",
]
_SOIL_LOSS_EXPORTS = ["SEVERITY_LABELS", "classify_soil_loss", "soil_loss"]
_ZONAL_EXPORTS = ["ZonalAreaRecord", "ZonalSummary", "class_areas", "mean_soil_loss", "summarize"]
_GRID_EXPORTS = [
    "align_to",
    "check_alignment",
    "clip_to_region",
    "load_multiband",
    "load_single_band",
    "make_grid",
    "pixel_area",
    "reduce_region",
    "resample_to_resolution",
    "temporal_mean",
    "write_single_band_tif",
]
_ERROR_EXPORTS = [
    "DegenerateNormalizationError",
    "EmptyRegionError",
    "InputAlignmentError",
    "RusleError",
    "UnmappedCategoryWarning",
]


__all__ = (
    _PIPELINE_EXPORTS
    + _CONFIG_EXPORTS
    + _FACTOR_EXPORTS
    + _SOIL_LOSS_EXPORTS
    + _ZONAL_EXPORTS
    + _GRID_EXPORTS
    + _ERROR_EXPORTS
    + ["__version__", "__author__"]
)

# Package metadata
from importlib import metadata as _metadata
from pathlib import Path


try:
    __version__ = _metadata.version("rusle_leaf")
except _metadata.PackageNotFoundError:
    try:  # Python 3.11+
        import tomllib
    except ModuleNotFoundError:  # pragma: no cover - Python <3.11
        tomllib = None

    _pyproject = Path(__file__).resolve().parents[2] / "pyproject.toml"
    if tomllib is not None and _pyproject.exists():
        with _pyproject.open("rb") as _fp:
            __version__ = tomllib.load(_fp)["project"]["version"]
    else:
        __version__ = "0.0.0.dev1"

__author__ = "Cristóbal Loyola"
