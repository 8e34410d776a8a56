"""
Tests for the plane geometry helpers: pixel lookup tables, plane thickness,
relative dose and the piecewise-linear interpolation used by DVH conversion.
"""
from __future__ import annotations


import numpy as np
import pytest


from rdh_app.utils.geometry_utils import (
    calculate_pixel_lookup_table, calculate_plane_thickness, calculate_polygon_area,
    calculate_relative_dose, find_largest_contour_index, interpolate
)
from rdh_app.utils.rt_data_objects import Contour, plane_key


class TestRelativeDose:
    """Test dose expressed as a percentage of the prescription."""

    @pytest.mark.parametrize(
        "dose, planned, expected",
        [(200.0, 100.0, 200.0), (50.0, 200.0, 25.0), (0.0, 180.0, 0.0)],
    )
    def test_relative_dose(self, dose, planned, expected):
        assert calculate_relative_dose(dose, planned) == pytest.approx(expected)

    @pytest.mark.parametrize("planned", [0.0, None])
    def test_unknown_prescription_gives_none(self, planned):
        assert calculate_relative_dose(150.0, planned) is None, "No relative dose without a prescription"


class TestPlaneThickness:
    """Test the smallest gap between plane positions."""

    def test_smallest_gap_wins(self):
        assert calculate_plane_thickness({0.0: [], 2.5: [], 5.0: [], 5.5: []}) == pytest.approx(0.5)

    def test_unsorted_iterable(self):
        assert calculate_plane_thickness([7.5, 0.0, 2.5, 5.0]) == pytest.approx(2.5)

    def test_single_plane_has_no_thickness(self):
        assert calculate_plane_thickness({3.0: []}) == 0.0
        assert calculate_plane_thickness([]) == 0.0

    def test_plane_keys_are_rounded(self):
        assert plane_key(2.4999999) == 2.5
        assert plane_key(-7.504) == -7.5


class TestPixelLookupTable:
    """Test pixel index to patient coordinate mapping."""

    def test_identity_orientation(self):
        x_lut, y_lut = calculate_pixel_lookup_table(
            spacing=(1.0, 2.0),
            row_direction=(1.0, 0.0, 0.0),
            column_direction=(0.0, 1.0, 0.0),
            position=(-10.0, 5.0, 0.0),
            cols=4,
            rows=3,
        )
        np.testing.assert_allclose(x_lut, [-10.0, -9.0, -8.0, -7.0])
        np.testing.assert_allclose(y_lut, [5.0, 7.0, 9.0])

    def test_reversed_orientation(self):
        """Feet-first or flipped acquisitions run the axes backwards."""
        x_lut, y_lut = calculate_pixel_lookup_table(
            spacing=(0.5, 0.5),
            row_direction=(-1.0, 0.0, 0.0),
            column_direction=(0.0, -1.0, 0.0),
            position=(10.0, 10.0, 0.0),
            cols=3,
            rows=2,
        )
        np.testing.assert_allclose(x_lut, [10.0, 9.5, 9.0])
        np.testing.assert_allclose(y_lut, [10.0, 9.5])

    def test_reference_series_lut(self, reference_series):
        x_lut, y_lut = reference_series.get_pixel_lut()
        assert x_lut.shape == (40,) and y_lut.shape == (40,)
        assert x_lut[0] == pytest.approx(-20.0)
        assert x_lut[-1] == pytest.approx(19.0)
        assert y_lut[20] == pytest.approx(0.0)


class TestLargestContour:
    """Test polygon area and largest contour selection."""

    def test_square_area(self):
        square = np.array([[0, 0], [4, 0], [4, 4], [0, 4]], dtype=float)
        assert calculate_polygon_area(square) == pytest.approx(16.0)
        assert calculate_polygon_area(square[::-1]) == pytest.approx(16.0), "Winding order must not matter"

    def test_largest_index(self):
        small = Contour(points=np.array([[0, 0], [1, 0], [1, 1], [0, 1]], dtype=float), position=0.0)
        large = Contour(points=np.array([[0, 0], [5, 0], [5, 5], [0, 5]], dtype=float), position=0.0)
        assert find_largest_contour_index([small, large, small]) == 1
        assert find_largest_contour_index([]) == -1


class TestInterpolation:
    """Test the piecewise-linear spline."""

    def test_linear_between_knots(self):
        spline = interpolate([0.0, 10.0, 20.0], [4.0, 2.0, 0.0])
        assert float(spline(5.0)) == pytest.approx(3.0)
        assert float(spline(20.0)) == pytest.approx(0.0)
        np.testing.assert_allclose(spline(np.array([0.0, 15.0])), [4.0, 1.0])

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError):
            interpolate([0.0, 1.0, 2.0], [1.0, 2.0])

    def test_too_few_points(self):
        with pytest.raises(ValueError):
            interpolate([0.0], [1.0])

    def test_knots_must_increase(self):
        with pytest.raises(ValueError):
            interpolate([0.0, 2.0, 2.0], [1.0, 2.0, 3.0])

    def test_out_of_range_evaluation(self):
        spline = interpolate([0.0, 1.0], [1.0, 0.0])
        with pytest.raises(ValueError):
            spline(1.5)
