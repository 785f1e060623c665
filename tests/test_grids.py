"""Tests for the raster grid helpers."""

import numpy as np
import numpy.testing as npt
import pytest
import rasterio
from rasterio.enums import Resampling
from rasterio.transform import from_origin
from shapely.geometry import box

from rusle_leaf.errors import EmptyRegionError, InputAlignmentError
from rusle_leaf.grids import (
    align_to,
    check_alignment,
    clip_to_region,
    describe,
    load_multiband,
    load_single_band,
    make_grid,
    pixel_area,
    reduce_region,
    resample_to_resolution,
    temporal_mean,
    write_single_band_tif,
)

UTM = "EPSG:32637"
UTM_TRANSFORM = from_origin(500000, 4000000, 1000, 1000)


def _write_raster(path, data, transform, crs=UTM, nodata=None, descriptions=None):
    data = np.asarray(data)
    if data.ndim == 2:
        data = data[None, ...]
    bands, height, width = data.shape
    profile = {
        "driver": "GTiff",
        "height": height,
        "width": width,
        "count": bands,
        "dtype": data.dtype,
        "transform": transform,
        "crs": crs,
        "nodata": nodata,
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data)
        for i, text in enumerate(descriptions or [], start=1):
            dst.set_band_description(i, text)


def test_make_grid_carries_georeference():
    grid = make_grid(np.arange(6).reshape(2, 3), UTM_TRANSFORM, UTM, name="demo")

    assert grid.dims == ("y", "x")
    assert grid.dtype == np.float64
    assert grid.rio.crs.to_string() == UTM
    assert tuple(grid.rio.transform())[:6] == tuple(UTM_TRANSFORM)[:6]
    npt.assert_allclose(grid.x.values, [500500, 501500, 502500])


def test_check_alignment_accepts_matching_grids():
    a = make_grid(np.zeros((3, 3)), UTM_TRANSFORM, UTM)
    b = make_grid(np.ones((3, 3)), UTM_TRANSFORM, UTM)

    check_alignment({"a": a, "b": b})


@pytest.mark.parametrize(
    "shape, transform, crs",
    [
        ((3, 4), UTM_TRANSFORM, UTM),
        ((3, 3), from_origin(500000, 4000000, 500, 500), UTM),
        ((3, 3), from_origin(501000, 4000000, 1000, 1000), UTM),
        ((3, 3), UTM_TRANSFORM, "EPSG:32636"),
    ],
)
def test_check_alignment_names_offending_grid(shape, transform, crs):
    ref = make_grid(np.zeros((3, 3)), UTM_TRANSFORM, UTM)
    other = make_grid(np.zeros(shape), transform, crs)

    with pytest.raises(InputAlignmentError) as excinfo:
        check_alignment({"elevation": ref, "soil_class": other})

    assert excinfo.value.grid == "soil_class"
    assert excinfo.value.reference == "elevation"


def test_reduce_region_ignores_nodata():
    grid = make_grid([[1.0, np.nan], [3.0, 8.0]], UTM_TRANSFORM, UTM, name="t")

    assert reduce_region(grid, "min") == 1.0
    assert reduce_region(grid, "max") == 8.0
    assert reduce_region(grid, "mean") == pytest.approx(4.0)
    assert reduce_region(grid, "sum") == 12.0
    assert reduce_region(grid, "count") == 3.0


def test_reduce_region_empty_raises_with_context():
    grid = make_grid(np.full((2, 2), np.nan), UTM_TRANSFORM, UTM, name="soil_loss")

    with pytest.raises(EmptyRegionError) as excinfo:
        reduce_region(grid, "mean")

    assert excinfo.value.grid == "soil_loss"
    assert excinfo.value.statistic == "mean"
    assert reduce_region(grid, "count") == 0.0
    assert describe(grid) == {"count": 0.0}


def test_reduce_region_unknown_statistic():
    grid = make_grid(np.ones((2, 2)), UTM_TRANSFORM, UTM)

    with pytest.raises(ValueError):
        reduce_region(grid, "median")


def test_pixel_area_projected_is_planar():
    grid = make_grid(np.ones((2, 2)), UTM_TRANSFORM, UTM)

    npt.assert_allclose(pixel_area(grid).values, np.full((2, 2), 1e6))


def test_pixel_area_geographic_is_geodesic():
    # one-degree cells from the equator northwards
    grid = make_grid(np.ones((3, 1)), from_origin(0, 3, 1, 1), "EPSG:4326")
    area = pixel_area(grid).values[:, 0]

    # bottom row touches the equator: about 111.32 km x 110.57 km
    assert area[2] == pytest.approx(111320.0 * 110574.0, rel=0.01)
    assert area[0] < area[1] < area[2]


def test_clip_to_region_masks_outside_pixels():
    grid = make_grid(np.ones((3, 3)), UTM_TRANSFORM, UTM, name="precipitation")
    region = box(500000, 3997000, 502000, 4000000)

    clipped = clip_to_region(grid, region)

    assert clipped.shape == grid.shape
    assert clipped.name == "precipitation"
    assert np.isnan(clipped.values[:, 2]).all()
    npt.assert_array_equal(clipped.values[:, :2], 1.0)


def test_clip_to_region_without_overlap_is_empty():
    grid = make_grid(np.ones((3, 3)), UTM_TRANSFORM, UTM, name="precipitation")

    with pytest.raises(EmptyRegionError):
        clip_to_region(grid, box(0, 0, 10, 10))


def test_resample_to_resolution_coarsens_grid():
    grid = make_grid(np.arange(16, dtype=float).reshape(4, 4), UTM_TRANSFORM, UTM)

    coarse = resample_to_resolution(grid, 2000.0, Resampling.average)

    assert coarse.shape == (2, 2)
    npt.assert_allclose(coarse.values, [[2.5, 4.5], [10.5, 12.5]])
    assert resample_to_resolution(grid, None) is grid


def test_align_to_reprojects_onto_reference():
    reference = make_grid(np.zeros((4, 4)), from_origin(500000, 4000000, 500, 500), UTM)
    coarse = make_grid([[1.0, 2.0], [3.0, 4.0]], UTM_TRANSFORM, UTM, name="soil_class")

    aligned = align_to(reference, coarse, Resampling.nearest)

    check_alignment({"reference": reference, "aligned": aligned})
    expected = np.repeat(np.repeat([[1.0, 2.0], [3.0, 4.0]], 2, axis=0), 2, axis=1)
    npt.assert_array_equal(aligned.values, expected)
    assert aligned.name == "soil_class"


def test_load_single_band_masks_nodata(tmp_path):
    path = tmp_path / "soil.tif"
    _write_raster(path, np.array([[1, 255], [3, 4]], dtype=np.uint8), UTM_TRANSFORM, nodata=255)

    grid = load_single_band(path)

    assert grid.dims == ("y", "x")
    assert grid.name == "soil"
    assert np.isnan(grid.values[0, 1])
    assert grid.values[1, 1] == 4.0


def test_load_multiband_reads_band_dates(tmp_path):
    path = tmp_path / "chirps.tif"
    data = np.stack([np.full((2, 2), v, dtype=np.float32) for v in (1.0, 2.0, 3.0)])
    _write_raster(path, data, UTM_TRANSFORM, descriptions=["2020-06-26", "2020-07-01", "2020-07-06"])

    stack = load_multiband(path)

    assert stack.dims == ("time", "y", "x")
    assert np.issubdtype(stack["time"].dtype, np.datetime64)


def test_temporal_mean_filters_window_and_keeps_nodata():
    base = make_grid(np.zeros((1, 2)), UTM_TRANSFORM, UTM)
    times = np.array(["2020-06-26", "2020-07-01", "2020-07-06", "2021-07-01"], dtype="datetime64[D]")
    values = np.array(
        [
            [[100.0, 100.0]],
            [[2.0, np.nan]],
            [[4.0, np.nan]],
            [[100.0, 100.0]],
        ]
    )
    stack = base.expand_dims(time=times).copy(data=values)
    stack.name = "precipitation"

    mean = temporal_mean(stack, "2020-07-01", "2021-07-01")

    assert mean.dims == ("y", "x")
    assert mean.values[0, 0] == pytest.approx(3.0)
    assert np.isnan(mean.values[0, 1])


def test_temporal_mean_empty_window():
    base = make_grid(np.zeros((1, 1)), UTM_TRANSFORM, UTM)
    stack = base.expand_dims(time=np.array(["2019-01-01"], dtype="datetime64[D]"))

    with pytest.raises(EmptyRegionError):
        temporal_mean(stack, "2020-07-01", "2021-07-01")


def test_write_single_band_tif(tmp_path):
    grid = make_grid([[1.5, np.nan], [3.0, 4.0]], UTM_TRANSFORM, UTM, name="R")
    path = tmp_path / "R.tif"

    write_single_band_tif(grid, path, units="MJ mm ha-1 h-1 yr-1")

    with rasterio.open(path) as src:
        assert src.count == 1
        assert src.dtypes[0] == "float32"
        data = src.read(1)
        assert src.crs.to_string() == UTM
    assert data[0, 0] == pytest.approx(1.5)
    assert np.isnan(data[0, 1])


def test_resample_to_resolution_reads_metres_on_geographic_grid():
    grid = make_grid(np.ones((20, 20)), from_origin(36.0, 0.01, 0.001, 0.001), "EPSG:4326")

    coarse = resample_to_resolution(grid, 500.0, Resampling.nearest)

    res_x, res_y = coarse.rio.resolution()
    assert abs(res_y) == pytest.approx(500.0 / 111320.0, rel=1e-3)
    assert abs(res_x) == pytest.approx(500.0 / 111320.0, rel=1e-3)
    assert np.isfinite(coarse.values).any()


def test_resample_to_resolution_coarser_than_extent():
    grid = make_grid(np.ones((20, 20)), from_origin(36.0, 8.0, 0.001, 0.001), "EPSG:4326")

    with pytest.raises(ValueError, match="coarser than the extent"):
        resample_to_resolution(grid, 50000.0)
