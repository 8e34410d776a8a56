"""
Tests for isodose ladder construction and isodose contour extraction.
"""
from __future__ import annotations


import numpy as np
import pytest


from conftest import SERIES_UID, make_dose_record, make_plan_record
from rdh_app.data_builders.IsoDoseBuilder import (
    DEFAULT_ISODOSE_LEVELS, MAX_LEVEL_LABEL, build_iso_dose_ladder, get_iso_dose_contours, init_iso_doses
)
from rdh_app.data_builders.RTDoseBuilder import construct_dose
from rdh_app.managers.case_manager import link_record
from rdh_app.utils.rt_data_objects import RtCase


LEVELS = [
    {"level": 100, "color": [238, 69, 0], "label": "100 %"},
    {"level": 50, "color": [0, 0, 255], "label": "50 %"},
]


def linked_plan(reference_series, dose_array, **plan_kwargs):
    case = RtCase(reference=reference_series)
    link_record(case, make_plan_record(**plan_kwargs))
    link_record(case, make_dose_record(dose_array))
    plan = next(iter(case.plans.values()))
    for dose in plan.doses:
        dose.initialise_dose_grid_to_image_grid(reference_series)
    return plan


class TestIsoDoseLadder:
    """Test the ladder of isodose levels."""

    def test_max_level_first(self):
        ladder = build_iso_dose_ladder(105, 200.0, LEVELS, alpha=70)
        assert list(ladder) == [105, 100, 50]
        assert ladder[105].label == MAX_LEVEL_LABEL
        assert ladder[105].absolute_dose == pytest.approx(210.0)
        assert ladder[50].absolute_dose == pytest.approx(100.0)
        assert ladder[100].color == (238, 69, 0, 70)

    def test_configured_level_replaces_max(self):
        ladder = build_iso_dose_ladder(100, 200.0, LEVELS, alpha=70)
        assert list(ladder) == [100, 50]
        assert ladder[100].label == "100 %"

    def test_default_levels_descend(self):
        levels = [entry["level"] for entry in DEFAULT_ISODOSE_LEVELS]
        assert levels == sorted(levels, reverse=True)


class TestIsoDoseContours:
    """Test contour extraction from a thresholded dose plane."""

    def test_block_outline(self, reference_series):
        array = np.zeros((5, 40, 40), dtype=np.float32)
        array[:, 10:20, 10:20] = 128.0
        dose = construct_dose(make_dose_record(array))
        dose.initialise_dose_grid_to_image_grid(reference_series)

        contours = get_iso_dose_contours(dose, 5.0, 150.0)
        assert len(contours) == 1
        points = contours[0].points
        assert points[:, 0].min() == pytest.approx(-10.0)
        assert points[:, 0].max() == pytest.approx(-1.0)
        assert contours[0].position == 5.0
        assert contours[0].children == []

    def test_hole_becomes_child(self, reference_series):
        array = np.zeros((5, 40, 40), dtype=np.float32)
        array[:, 5:30, 5:30] = 128.0
        array[:, 15:20, 15:20] = 0.0
        dose = construct_dose(make_dose_record(array))
        dose.initialise_dose_grid_to_image_grid(reference_series)

        contours = get_iso_dose_contours(dose, 5.0, 150.0)
        assert len(contours) == 1
        assert len(contours[0].children) == 1

    def test_nothing_above_threshold(self, reference_series, uniform_dose_array):
        dose = construct_dose(make_dose_record(uniform_dose_array))
        dose.initialise_dose_grid_to_image_grid(reference_series)
        assert get_iso_dose_contours(dose, 5.0, 250.0) == []

    def test_outside_dose_extent(self, reference_series, uniform_dose_array):
        dose = construct_dose(make_dose_record(uniform_dose_array))
        dose.initialise_dose_grid_to_image_grid(reference_series)
        assert get_iso_dose_contours(dose, 40.0, 100.0) == []


class TestInitIsoDoses:
    """Test isodose generation for the doses of a plan."""

    def test_ladder_when_prescription_known(self, reference_series, uniform_dose_array, conf_mgr):
        plan = linked_plan(reference_series, uniform_dose_array)
        init_iso_doses(plan, reference_series, conf_mgr)
        dose = plan.doses[0]

        levels = list(dose.iso_dose_set)
        assert dose.iso_dose_set[levels[0]].label == MAX_LEVEL_LABEL
        assert levels[1:] == [entry["level"] for entry in DEFAULT_ISODOSE_LEVELS]

        # 2 Gy everywhere reaches 100 % of 2 Gy but not 102 %
        assert all(dose.iso_dose_set[100].planes[z] for z in (0.0, 2.5, 5.0, 7.5, 10.0))
        assert not any(dose.iso_dose_set[102].planes.values())
        assert dose.iso_dose_set[100].thickness == pytest.approx(2.5)

        assert dose.iso_uid_index[f"{SERIES_UID}.2"] == 5.0
        assert len(dose.get_iso_contours_by_uid(f"{SERIES_UID}.2")) >= 1
        assert dose.get_iso_contours_by_uid("unknown") == []

    def test_generated_once(self, reference_series, uniform_dose_array):
        plan = linked_plan(reference_series, uniform_dose_array)
        init_iso_doses(plan, reference_series)
        first = plan.doses[0].iso_dose_set
        init_iso_doses(plan, reference_series)
        assert plan.doses[0].iso_dose_set is first

    def test_no_prescription(self, reference_series, uniform_dose_array):
        plan = linked_plan(reference_series, uniform_dose_array, dose_references=[])
        assert plan.rx_dose == 0.0
        init_iso_doses(plan, reference_series)
        assert plan.doses[0].iso_dose_set == {}

    def test_empty_dose(self, reference_series):
        plan = linked_plan(reference_series, np.zeros((5, 40, 40), dtype=np.float32))
        init_iso_doses(plan, reference_series)
        assert plan.doses[0].iso_dose_set == {}

    def test_placeholder_plan_skipped(self, reference_series, uniform_dose_array):
        case = RtCase(reference=reference_series)
        link_record(case, make_dose_record(uniform_dose_array))
        plan = next(iter(case.plans.values()))
        init_iso_doses(plan, reference_series)
        assert plan.doses[0].iso_dose_set == {}
