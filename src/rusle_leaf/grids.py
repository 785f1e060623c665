"""
Raster grid utilities for the RUSLE pipeline.

Every factor and intermediate result is a single-band ``xarray.DataArray``
with ``('y', 'x')`` dims whose CRS and transform are carried by the
``rioxarray`` accessor.  No-data is ``NaN`` on every pixel; source rasters
are opened with ``masked=True`` so their file sentinels become ``NaN`` as
well.  Functions here never modify a grid in place.
"""

# -----------------------------------------------------------------------------
# MODULES
# -----------------------------------------------------------------------------
from __future__ import annotations

from typing import Callable, Dict, Mapping, Optional, Union

import geopandas as gpd
import numpy as np
import pyproj
import rioxarray as rxr
import xarray as xr
from rasterio.enums import Resampling
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from shapely.geometry.base import BaseGeometry

from rusle_leaf.errors import EmptyRegionError, InputAlignmentError
from rusle_leaf.logs import grids_logger as logger
from rusle_leaf.paths import PathLike, as_path

Region = Union[gpd.GeoDataFrame, gpd.GeoSeries, BaseGeometry]

_REDUCERS: Dict[str, Callable[[np.ndarray], float]] = {
    "min": np.min,
    "max": np.max,
    "mean": np.mean,
    "sum": np.sum,
    "count": np.size,
}

# metres per degree of latitude, used for slope spacing on geographic grids
M_PER_DEG = 111320.0


# -----------------------------------------------------------------------------
# CONSTRUCTION AND I/O
# -----------------------------------------------------------------------------
def make_grid(
    values: np.ndarray,
    transform: Affine,
    crs,
    name: Optional[str] = None,
) -> xr.DataArray:
    """
    Build a georeferenced single-band grid from a 2-D array.

    ``values`` is cast to float64 so that ``NaN`` can mark no-data.
    Pixel-centre coordinates are derived from ``transform``.
    """
    arr = np.asarray(values, dtype="float64")
    if arr.ndim != 2:
        raise ValueError(f"Grid values must be 2-D, got shape {arr.shape}")

    height, width = arr.shape
    xs = transform.c + transform.a * (np.arange(width) + 0.5)
    ys = transform.f + transform.e * (np.arange(height) + 0.5)
    da = xr.DataArray(arr, dims=("y", "x"), coords={"y": ys, "x": xs}, name=name)
    da = (
        da.rio.write_crs(crs)
        .rio.write_transform(transform)
        .rio.write_nodata(np.nan, inplace=False)
    )
    return da


def load_single_band(path: PathLike, name: Optional[str] = None) -> xr.DataArray:
    """
    Load band 1 of a raster as a float grid with file no-data masked to NaN.
    """
    da = rxr.open_rasterio(as_path(path), masked=True)
    da = da.isel(band=0, drop=True).astype("float64")
    da.name = name or as_path(path).stem
    return da


def load_multiband(path: PathLike, name: Optional[str] = None) -> xr.DataArray:
    """
    Load a band stack as a DataArray with a 'time' dimension.

    When every band description parses as a date the descriptions become
    the time coordinate, otherwise the band numbers are kept.
    """
    da = rxr.open_rasterio(as_path(path), masked=True).astype("float64")
    da = da.rename({"band": "time"})
    descriptions = da.attrs.get("long_name")
    if isinstance(descriptions, (list, tuple)) and len(descriptions) == da.sizes["time"]:
        try:
            times = np.array([np.datetime64(str(d), "D") for d in descriptions])
        except ValueError:
            times = None
        if times is not None:
            da = da.assign_coords(time=times)
    da.name = name or as_path(path).stem
    return da


def load_region(path: PathLike) -> gpd.GeoDataFrame:
    """Read a region of interest from any vector format supported by geopandas."""

    region = gpd.read_file(as_path(path))
    if region.empty:
        raise EmptyRegionError(str(path), "region geometry")
    return region


def write_single_band_tif(
    grid: xr.DataArray,
    out_path: PathLike,
    units: str = "",
    long_name: str = "",
    description: str = "",
) -> None:
    """
    Write a single-band grid to GeoTIFF as float32 with NaN no-data.
    """
    data_array = grid.astype("float32").rio.write_nodata(np.nan, inplace=False)
    data_array.attrs.update({
        "units": units,
        "long_name": long_name or (grid.name or ""),
        "model": "RUSLE",
        "description": description,
    })
    data_array.rio.to_raster(as_path(out_path))


# -----------------------------------------------------------------------------
# ALIGNMENT AND CLIPPING
# -----------------------------------------------------------------------------
def check_alignment(grids: Mapping[str, xr.DataArray]) -> None:
    """
    Verify that all grids share shape, CRS, resolution and origin.

    The first grid is the reference.  Raises :class:`InputAlignmentError`
    naming the first grid that differs.
    """
    items = list(grids.items())
    if len(items) < 2:
        return

    ref_name, ref = items[0]
    ref_transform = np.array(tuple(ref.rio.transform())[:6])
    ref_crs = ref.rio.crs

    for name, grid in items[1:]:
        if grid.shape != ref.shape:
            raise InputAlignmentError(name, ref_name, f"shape {grid.shape} != {ref.shape}")
        crs = grid.rio.crs
        if (crs is None) != (ref_crs is None) or (crs is not None and crs != ref_crs):
            raise InputAlignmentError(name, ref_name, f"CRS {crs} != {ref_crs}")
        transform = np.array(tuple(grid.rio.transform())[:6])
        if not np.allclose(transform, ref_transform, rtol=1e-9, atol=1e-9):
            raise InputAlignmentError(
                name, ref_name, f"transform {tuple(transform)} != {tuple(ref_transform)}"
            )


def align_to(
    reference: xr.DataArray,
    grid: xr.DataArray,
    resampling: Resampling = Resampling.nearest,
) -> xr.DataArray:
    """
    Reproject ``grid`` onto the grid of ``reference``.

    Use nearest neighbour for categorical inputs and bilinear for
    continuous ones.  Coordinates are copied from the reference so the
    result passes :func:`check_alignment`.
    """
    aligned = grid.rio.reproject_match(reference, resampling=resampling, nodata=np.nan)
    aligned = aligned.assign_coords(x=reference.x, y=reference.y)
    aligned.name = grid.name
    return aligned


def _region_geometries(region: Region, grid_crs) -> list:
    """Return the region geometries in the grid CRS."""

    if isinstance(region, gpd.GeoDataFrame):
        series = region.geometry
    elif isinstance(region, gpd.GeoSeries):
        series = region
    elif isinstance(region, BaseGeometry):
        return [region]
    else:
        raise TypeError(f"Unsupported region type: {type(region).__name__}")

    if series.crs is not None and grid_crs is not None:
        series = series.to_crs(grid_crs)
    return [geom for geom in series.values if geom is not None and not geom.is_empty]


def clip_to_region(grid: xr.DataArray, region: Region) -> xr.DataArray:
    """
    Mask every pixel whose centre lies outside the region to no-data.

    The grid keeps its extent so clipped grids stay aligned with each other.
    Shapely geometries are assumed to be in the grid CRS.

    Raises
    ------
    EmptyRegionError
        If the region covers no pixel centre of the grid.
    """
    geoms = _region_geometries(region, grid.rio.crs)
    if not geoms:
        raise EmptyRegionError(grid.name, "clip to region")

    inside = geometry_mask(geoms, out_shape=grid.shape, transform=grid.rio.transform(), invert=True)
    if not inside.any():
        raise EmptyRegionError(grid.name, "clip to region")

    clipped = grid.where(inside)
    clipped.name = grid.name
    return clipped


# -----------------------------------------------------------------------------
# REDUCTIONS
# -----------------------------------------------------------------------------
def reduce_region(grid: xr.DataArray, statistic: str, name: Optional[str] = None) -> float:
    """
    Reduce every valid pixel of ``grid`` to a single value.

    Parameters
    ----------
    grid : xr.DataArray
        Grid to reduce; NaN pixels are ignored.
    statistic : str
        One of 'min', 'max', 'mean', 'sum', 'count'.
    name : str, optional
        Label used in error messages, defaults to ``grid.name``.

    Raises
    ------
    EmptyRegionError
        If no pixel is valid (except for 'count', which returns 0).
    """
    try:
        reducer = _REDUCERS[statistic]
    except KeyError:
        raise ValueError(f"Unknown statistic '{statistic}'. Valid: {list(_REDUCERS)}") from None

    values = np.asarray(grid.values, dtype="float64")
    valid = values[np.isfinite(values)]
    if statistic == "count":
        return float(valid.size)
    if valid.size == 0:
        raise EmptyRegionError(name or grid.name, statistic)
    return float(reducer(valid))


def describe(grid: xr.DataArray) -> Dict[str, float]:
    """Return min, max, mean and valid pixel count, or only the count if empty."""

    count = reduce_region(grid, "count")
    if count == 0:
        return {"count": 0.0}
    return {
        "min": reduce_region(grid, "min"),
        "max": reduce_region(grid, "max"),
        "mean": reduce_region(grid, "mean"),
        "count": count,
    }


def temporal_mean(stack: xr.DataArray, start_date, end_date) -> xr.DataArray:
    """
    Mean of a time-indexed stack over ``[start_date, end_date)``.

    Pixels with no valid observation in the window stay no-data.
    """
    if "time" not in stack.dims:
        raise ValueError("Stack must have a 'time' dimension")
    if not np.issubdtype(stack["time"].dtype, np.datetime64):
        raise ValueError("Stack 'time' coordinate must hold dates for temporal filtering")

    start = np.datetime64(str(start_date))
    end = np.datetime64(str(end_date))
    in_window = ((stack["time"] >= start) & (stack["time"] < end)).values
    window = stack.isel(time=np.flatnonzero(in_window))
    if window.sizes["time"] == 0:
        raise EmptyRegionError(stack.name, f"temporal mean {start_date}..{end_date}")

    logger.debug(f"Averaging {window.sizes['time']} time steps of '{stack.name}'")
    return stack_mean(window)


def stack_mean(stack: xr.DataArray) -> xr.DataArray:
    """NaN-aware mean along 'time'; pixels never observed stay no-data."""

    valid_steps = stack.notnull().sum(dim="time")
    mean = stack.fillna(0.0).sum(dim="time") / valid_steps.where(valid_steps > 0)
    mean.name = stack.name
    return mean


# -----------------------------------------------------------------------------
# AREA AND RESOLUTION
# -----------------------------------------------------------------------------
def _pyproj_crs(grid: xr.DataArray) -> Optional[pyproj.CRS]:
    crs = grid.rio.crs
    if crs is None:
        return None
    return pyproj.CRS.from_wkt(crs.to_wkt())


def _geodesic_row_areas(transform: Affine, height: int, geod: pyproj.Geod) -> np.ndarray:
    """Area (m2) of one cell per row of a north-up geographic grid."""

    dx = abs(transform.a)
    tops = transform.f + transform.e * np.arange(height)
    bottoms = tops + transform.e
    areas = np.empty(height, dtype="float64")
    for i, (top, bottom) in enumerate(zip(tops, bottoms)):
        area, _ = geod.polygon_area_perimeter([0.0, dx, dx, 0.0], [top, top, bottom, bottom])
        areas[i] = abs(area)
    return areas


def pixel_area(grid: xr.DataArray) -> xr.DataArray:
    """
    Per-pixel area in square metres, on the grid of ``grid``.

    Geographic grids use the geodesic cell area on the CRS ellipsoid
    (WGS84 when the CRS does not define one), so area shrinks towards the
    poles.  Projected grids use the planar cell area scaled by the CRS
    linear unit.
    """
    transform = grid.rio.transform()
    height, width = grid.shape
    crs = _pyproj_crs(grid)

    if crs is not None and crs.is_geographic:
        geod = crs.get_geod() or pyproj.Geod(ellps="WGS84")
        rows = _geodesic_row_areas(transform, height, geod)
        area = np.repeat(rows[:, None], width, axis=1)
    else:
        cell = abs(transform.a * transform.e - transform.b * transform.d)
        unit = 1.0
        if crs is not None and crs.axis_info:
            unit = crs.axis_info[0].unit_conversion_factor or 1.0
        area = np.full((height, width), cell * unit * unit, dtype="float64")

    out = grid.copy(data=area)
    out.name = "pixel_area"
    return out


def cell_spacing_m(grid: xr.DataArray) -> tuple:
    """
    Return per-row (dx, dy) cell spacing in metres as two 1-D arrays.

    Geographic grids convert degrees with 111320 m per degree of latitude
    and ``111320 * cos(lat)`` per degree of longitude.
    """
    transform = grid.rio.transform()
    height = grid.shape[0]
    crs = _pyproj_crs(grid)

    if crs is not None and crs.is_geographic:
        lat = transform.f + transform.e * (np.arange(height) + 0.5)
        dx = np.abs(transform.a) * M_PER_DEG * np.cos(np.deg2rad(lat))
        dy = np.full(height, np.abs(transform.e) * M_PER_DEG)
    else:
        unit = 1.0
        if crs is not None and crs.axis_info:
            unit = crs.axis_info[0].unit_conversion_factor or 1.0
        dx = np.full(height, abs(transform.a) * unit)
        dy = np.full(height, abs(transform.e) * unit)
    return dx, dy


def resample_to_resolution(
    grid: xr.DataArray,
    resolution: Optional[float],
    resampling: Resampling = Resampling.nearest,
) -> xr.DataArray:
    """
    Regrid to ``resolution`` metres in the grid's own CRS.

    Geographic grids convert the metre resolution to degrees at the grid's
    central latitude (111320 m per degree of latitude and
    ``111320 * cos(lat)`` per degree of longitude).  ``None`` returns the
    grid unchanged.

    Raises
    ------
    ValueError
        If the grid has no CRS, or the resolution is coarser than the grid
        extent along either axis.
    """
    if resolution is None:
        return grid
    crs = _pyproj_crs(grid)
    if crs is None:
        raise ValueError(f"Grid '{grid.name}' has no CRS; cannot resample to {resolution}")

    transform = grid.rio.transform()
    height, width = grid.shape
    if crs.is_geographic:
        lat = transform.f + transform.e * height / 2.0
        res_x = resolution / (M_PER_DEG * np.cos(np.deg2rad(lat)))
        res_y = resolution / M_PER_DEG
    else:
        unit = 1.0
        if crs.axis_info:
            unit = crs.axis_info[0].unit_conversion_factor or 1.0
        res_x = res_y = resolution / unit

    extent_x = abs(transform.a) * width
    extent_y = abs(transform.e) * height
    if res_x > extent_x * (1 + 1e-9) or res_y > extent_y * (1 + 1e-9):
        raise ValueError(
            f"Resolution {resolution} m is coarser than the extent of '{grid.name}' "
            f"({extent_x:g} x {extent_y:g} CRS units)"
        )

    logger.debug(f"Resampling '{grid.name}' to resolution {resolution} m ({resampling.name})")
    out = grid.rio.reproject(
        grid.rio.crs,
        resolution=(res_x, res_y),
        resampling=resampling,
        nodata=np.nan,
    )
    out.name = grid.name
    return out
