"""
End-to-end tests: records in, DVHs and isodose regions out.
"""
from __future__ import annotations


import numpy as np
import pytest


from conftest import (
    DOSE_UID, PLAN_UID, SERIES_UID, make_dose_record, make_dvh_item, make_image, make_plan_record
)
from rdh_app.managers.case_manager import CaseManager
from rdh_app.utils.rt_data_objects import DataSource, ReferenceSeries


SQUARE_VOLUME_CM3 = 81 * 3 * 2.5 / 1000.0


@pytest.fixture
def case_mgr(conf_mgr, ss_mgr) -> CaseManager:
    return CaseManager(conf_mgr, ss_mgr)


class TestComputeCase:
    """Test the full linking and computation pass."""

    def test_calculated_dvh(self, case_mgr, reference_series, square_structure_record, uniform_dose_array):
        case_mgr.compute_case(
            [square_structure_record], [make_plan_record()], [make_dose_record(uniform_dose_array)], reference_series
        )

        dvh = case_mgr.get_dvh(1, DOSE_UID)
        assert dvh is not None
        assert dvh.source is DataSource.CALCULATED
        assert dvh.data[0] == pytest.approx(SQUARE_VOLUME_CM3)
        assert dvh.plan_uid == PLAN_UID
        assert case_mgr.get_plan_for_dvh(dvh) is case_mgr.get_plan(PLAN_UID)

        region = case_mgr.case.get_first_structure().regions[1]
        assert region.dvh is dvh
        assert region.volume == pytest.approx(SQUARE_VOLUME_CM3)

        relative_max = case_mgr.calculate_relative_dose(dvh.get_maximum_dose_cgy(), case_mgr.get_plan(PLAN_UID).rx_dose)
        assert relative_max == pytest.approx(100.0)

    def test_records_in_any_order(self, case_mgr, reference_series, square_structure_record, uniform_dose_array):
        """A dose listed before its plan still ends up under the reconciled plan."""
        case_mgr.compute_case(
            [square_structure_record], [], [make_dose_record(uniform_dose_array)], reference_series
        )
        assert case_mgr.get_plan(PLAN_UID).is_placeholder
        assert case_mgr.get_iso_dose_regions(DOSE_UID) == []

        case_mgr.compute_case([], [make_plan_record()], [], reference_series)
        plan = case_mgr.get_plan(PLAN_UID)
        assert not plan.is_placeholder
        assert len(plan.doses) == 1
        assert case_mgr.get_iso_dose_regions(DOSE_UID), "Isodoses appear once the prescription is known"

    def test_isodose_regions(self, case_mgr, reference_series, square_structure_record, uniform_dose_array):
        case_mgr.compute_case(
            [square_structure_record], [make_plan_record()], [make_dose_record(uniform_dose_array)], reference_series
        )
        regions = case_mgr.get_iso_dose_regions(DOSE_UID)
        assert regions[0].label == "Max"
        assert [region.level for region in regions[1:]] == sorted(
            (region.level for region in regions[1:]), reverse=True
        )
        assert case_mgr.get_iso_contours_by_uid(DOSE_UID, f"{SERIES_UID}.0")

    def test_provided_dvh_kept(self, case_mgr, reference_series, square_structure_record, uniform_dose_array):
        record = make_dose_record(
            uniform_dose_array, dvh_items=[make_dvh_item(1, "CUMULATIVE", [1.0, 0.7, 1.0, 0.5, 1.0, 0.0])]
        )
        case_mgr.compute_case([square_structure_record], [make_plan_record()], [record], reference_series)

        dvh = case_mgr.get_dvh(1, DOSE_UID)
        assert dvh.source is DataSource.PROVIDED
        region = case_mgr.case.get_first_structure().regions[1]
        assert region.volume == pytest.approx(0.7)
        assert region.volume_source is DataSource.PROVIDED

    def test_force_recalculate(self, case_mgr, reference_series, square_structure_record, uniform_dose_array):
        record = make_dose_record(
            uniform_dose_array, dvh_items=[make_dvh_item(1, "CUMULATIVE", [1.0, 0.7, 1.0, 0.5, 1.0, 0.0])]
        )
        case_mgr.compute_case(
            [square_structure_record], [make_plan_record()], [record], reference_series, force_recalculate=True
        )
        dvh = case_mgr.get_dvh(1, DOSE_UID)
        assert dvh.source is DataSource.CALCULATED
        assert dvh.data[0] == pytest.approx(SQUARE_VOLUME_CM3)

    def test_force_recalculate_from_config(
        self, conf_mgr, ss_mgr, reference_series, square_structure_record, uniform_dose_array
    ):
        assert conf_mgr.update_user_config({"force_recalculate_dvh": True})
        case_mgr = CaseManager(conf_mgr, ss_mgr)
        record = make_dose_record(
            uniform_dose_array, dvh_items=[make_dvh_item(1, "CUMULATIVE", [1.0, 0.7, 1.0, 0.0])]
        )
        case_mgr.compute_case([square_structure_record], [make_plan_record()], [record], reference_series)
        assert case_mgr.get_dvh(1, DOSE_UID).source is DataSource.CALCULATED

    def test_empty_dose_has_no_dvh(self, case_mgr, reference_series, square_structure_record):
        case_mgr.compute_case(
            [square_structure_record], [make_plan_record()],
            [make_dose_record(np.zeros((5, 40, 40), dtype=np.float32))], reference_series
        )
        assert case_mgr.get_dvh(1, DOSE_UID) is None
        assert case_mgr.get_iso_dose_regions(DOSE_UID) == []

    def test_no_structure_set(self, case_mgr, reference_series, uniform_dose_array):
        case_mgr.compute_case([], [make_plan_record()], [make_dose_record(uniform_dose_array)], reference_series)
        assert case_mgr.get_dvh(1, DOSE_UID) is None
        assert case_mgr.get_iso_dose_regions(DOSE_UID)

    def test_recompute_is_idempotent(self, case_mgr, reference_series, square_structure_record, uniform_dose_array):
        args = ([square_structure_record], [make_plan_record()], [make_dose_record(uniform_dose_array)])
        case_mgr.compute_case(*args, reference_series)
        dvh = case_mgr.get_dvh(1, DOSE_UID)
        case_mgr.compute_case(*args, reference_series)

        assert len(case_mgr.case.structures) == 1
        assert len(case_mgr.get_plan(PLAN_UID).doses) == 1
        assert case_mgr.get_dvh(1, DOSE_UID) is dvh

    def test_new_series_starts_new_case(self, case_mgr, reference_series, square_structure_record, uniform_dose_array):
        case_mgr.compute_case(
            [square_structure_record], [make_plan_record()], [make_dose_record(uniform_dose_array)], reference_series
        )
        other = ReferenceSeries(
            image=make_image(np.zeros((5, 40, 40), dtype=np.float32)),
            sop_instance_uids=[f"9.9.{k}" for k in range(5)],
            series_instance_uid="9.9",
        )
        case = case_mgr.compute_case([], [], [], other)
        assert case.series_instance_uid == "9.9"
        assert case.plans == {}
        assert case_mgr.get_dvh(1, DOSE_UID) is None

    def test_release_case(self, case_mgr, reference_series, uniform_dose_array):
        case_mgr.compute_case([], [make_plan_record()], [make_dose_record(uniform_dose_array)], reference_series)
        assert case_mgr.is_case_loaded
        case_mgr.release_case()
        assert not case_mgr.is_case_loaded
        assert case_mgr.get_plan(PLAN_UID) is None
        assert case_mgr.get_iso_dose_regions(DOSE_UID) == []

    def test_compute_on_background_worker(self, case_mgr, ss_mgr, reference_series, uniform_dose_array):
        future = ss_mgr.submit_action(
            case_mgr.compute_case, [], [make_plan_record()], [make_dose_record(uniform_dose_array)], reference_series
        )
        case = future.result(timeout=60)
        assert case.find_dose(DOSE_UID) is not None
        assert not ss_mgr.is_reload_active
