"""Tests for the soil-loss product and severity classification."""

import logging

import numpy as np
import numpy.testing as npt
import pytest
from rasterio.transform import from_origin

from rusle_leaf.errors import InputAlignmentError
from rusle_leaf.grids import make_grid
from rusle_leaf.soil_loss import SEVERITY_LABELS, classify_soil_loss, severity_labels, soil_loss

UTM = "EPSG:32637"
UTM_TRANSFORM = from_origin(500000, 4000000, 1000, 1000)


def _grid(values, name=None):
    return make_grid(np.atleast_2d(np.asarray(values, dtype=float)), UTM_TRANSFORM, UTM, name=name)


def test_soil_loss_is_pixelwise_product():
    a = soil_loss(
        _grid([[2.0, 1.0]]),
        _grid([[0.5, 0.05]]),
        _grid([[3.0, 10.0]]),
        _grid([[0.2, 1.0]]),
        _grid([[1.0, 0.6]]),
    )

    assert a.name == "soil_loss"
    npt.assert_allclose(a.values, [[0.6, 0.3]])


@pytest.mark.parametrize("position", range(5))
def test_soil_loss_nodata_in_any_factor(position):
    factors = [np.ones((2, 2)) for _ in range(5)]
    factors[position][0, 1] = np.nan

    a = soil_loss(*[_grid(f) for f in factors])

    assert np.isnan(a.values[0, 1])
    assert np.isfinite(a.values).sum() == 3


def test_soil_loss_requires_aligned_factors():
    other = make_grid(np.ones((2, 2)), from_origin(0, 0, 1000, 1000), UTM)
    ones = _grid(np.ones((2, 2)))

    with pytest.raises(InputAlignmentError) as excinfo:
        soil_loss(ones, ones, ones, other, ones)

    assert excinfo.value.grid == "C"


def test_classify_boundaries_belong_to_upper_class():
    values = [9.999, 10.0, 39.999, 40.0, 69.99, 70.0, 99.99, 100.0, 1e6, 0.0]

    classes = classify_soil_loss(_grid([values]))

    assert classes.name == "soil_loss_class"
    npt.assert_array_equal(classes.values[0], [1, 2, 2, 3, 3, 4, 4, 5, 5, 1])


def test_classify_keeps_nodata():
    classes = classify_soil_loss(_grid([[np.nan, 5.0]]))

    assert np.isnan(classes.values[0, 0])
    assert classes.values[0, 1] == 1


def test_classify_custom_thresholds():
    classes = classify_soil_loss(_grid([[4.0, 5.0, 25.0, 60.0, 90.0]]), (5, 20, 50, 80))

    npt.assert_array_equal(classes.values[0], [1, 2, 3, 4, 5])


@pytest.mark.parametrize("thresholds", [(10, 40, 40, 100), (100, 70, 40, 10), (10, 40, 70)])
def test_classify_rejects_bad_thresholds(thresholds):
    with pytest.raises(ValueError):
        classify_soil_loss(_grid([[1.0]]), thresholds)


def test_severity_labels_follow_thresholds():
    assert severity_labels() == SEVERITY_LABELS
    assert severity_labels((5, 20, 50, 80))[1] == "Moderate (5-20)"


def test_soil_loss_logs_under_its_own_logger(caplog):
    ones = _grid(np.ones((2, 2)))

    with caplog.at_level(logging.DEBUG, logger="rusle_leaf.soil_loss"):
        soil_loss(ones, ones, ones, ones, ones)

    assert any(record.name == "rusle_leaf.soil_loss" for record in caplog.records)
