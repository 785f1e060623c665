"""
Zonal summaries of the soil-loss map.

Two reductions over the region of interest:

* the unweighted mean soil loss of all valid pixels, and
* the area of each severity class, as a grouped sum of per-pixel area
  keyed by class id.

Both can run at a coarser ``resolution`` (metres) than the native grid.  The mean
is taken on an average-resampled grid and the classes are resampled with
nearest neighbour, so the class areas carry a bounded resampling error
relative to the native-resolution total.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import polars as pl
import xarray as xr
from rasterio.enums import Resampling

from rusle_leaf.errors import EmptyRegionError
from rusle_leaf.grids import pixel_area, reduce_region, resample_to_resolution
from rusle_leaf.logs import zonal_logger as logger
from rusle_leaf.soil_loss import SEVERITY_CLASSES, SEVERITY_LABELS

M2_PER_KM2 = 1e6


@dataclass(frozen=True)
class ZonalAreaRecord:
    class_id: int
    label: str
    area_m2: float
    area_km2: float


@dataclass(frozen=True)
class ZonalSummary:
    """Mean soil loss and per-class areas for one run."""

    mean_soil_loss: float
    records: Tuple[ZonalAreaRecord, ...]
    total_area_m2: float

    def to_frame(self) -> pl.DataFrame:
        """Class-area table with each class's share of the classified area."""

        total = self.total_area_m2
        return pl.DataFrame(
            {
                "class_id": [r.class_id for r in self.records],
                "label": [r.label for r in self.records],
                "area_m2": [r.area_m2 for r in self.records],
                "area_km2": [r.area_km2 for r in self.records],
                "area_share": [r.area_m2 / total if total > 0 else 0.0 for r in self.records],
            }
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "mean_soil_loss": self.mean_soil_loss,
            "total_area_km2": self.total_area_m2 / M2_PER_KM2,
            "class_areas_km2": {r.label: r.area_km2 for r in self.records},
        }


def mean_soil_loss(a: xr.DataArray, resolution: Optional[float] = None) -> float:
    """
    Unweighted mean of valid soil-loss pixels at ``resolution``.

    Raises :class:`EmptyRegionError` when no pixel is valid.
    """
    grid = resample_to_resolution(a, resolution, Resampling.average)
    return reduce_region(grid, "mean", name="soil_loss")


def _class_pixels(classes: xr.DataArray, resolution: Optional[float]) -> Tuple[np.ndarray, np.ndarray]:
    grid = resample_to_resolution(classes, resolution, Resampling.nearest)
    area = pixel_area(grid).values
    ids = np.asarray(grid.values, dtype="float64")
    valid = np.isfinite(ids)
    return ids[valid].astype("int64"), area[valid]


def total_valid_area(classes: xr.DataArray, resolution: Optional[float] = None) -> float:
    """Area (m2) of every classified pixel at ``resolution``."""

    _, area = _class_pixels(classes, resolution)
    return float(area.sum())


def class_areas(
    classes: xr.DataArray,
    resolution: Optional[float] = None,
    area_decimals: int = 0,
    labels: Sequence[str] = SEVERITY_LABELS,
) -> List[ZonalAreaRecord]:
    """
    Area of each severity class, in ascending class order.

    Every class 1..5 gets a record, with zero area when absent.  ``area_km2``
    is the area in m2 divided by 1e6 and rounded to ``area_decimals``.

    Raises :class:`EmptyRegionError` when no pixel is classified.
    """
    ids, area = _class_pixels(classes, resolution)
    if ids.size == 0:
        raise EmptyRegionError(classes.name or "soil_loss_class", "class area sum")

    n_classes = len(SEVERITY_CLASSES)
    known = (ids >= 1) & (ids <= n_classes)
    if not known.all():
        logger.warning(f"Class grid holds ids outside 1..{n_classes}; they are left out of the summary")
    sums = np.bincount(ids[known], weights=area[known], minlength=n_classes + 1)

    records = []
    for class_id, label in zip(SEVERITY_CLASSES, labels):
        area_m2 = float(sums[class_id])
        records.append(
            ZonalAreaRecord(
                class_id=class_id,
                label=label,
                area_m2=area_m2,
                area_km2=round(area_m2 / M2_PER_KM2, area_decimals),
            )
        )
    return records


def summarize(
    a: xr.DataArray,
    classes: xr.DataArray,
    resolution: Optional[float] = None,
    area_decimals: int = 0,
    labels: Sequence[str] = SEVERITY_LABELS,
) -> ZonalSummary:
    """Mean soil loss and per-class areas for the region of interest."""

    mean = mean_soil_loss(a, resolution)
    records = class_areas(classes, resolution, area_decimals, labels)
    total = total_valid_area(classes, resolution)
    logger.info(f"Mean soil loss: {mean:.3f} t/ha/yr over {total / M2_PER_KM2:.3f} km2")
    for record in records:
        logger.debug(f"  {record.label}: {record.area_km2} km2")
    return ZonalSummary(mean_soil_loss=mean, records=tuple(records), total_area_m2=total)
