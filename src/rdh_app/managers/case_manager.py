from __future__ import annotations


import logging
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional


from rdh_app.data_builders.IsoDoseBuilder import init_iso_doses
from rdh_app.data_builders.RTDoseBuilder import construct_dose, extract_provided_dvhs
from rdh_app.data_builders.RTPlanBuilder import RTPlanBuilder, apply_plan_info
from rdh_app.data_builders.RTStructBuilder import construct_structure_set
from rdh_app.utils.dicom_utils import get_first_ref_plan_sop_uid
from rdh_app.utils.dvh_utils import calculate_differential_dvh, convert_differential_to_cumulative
from rdh_app.utils.geometry_utils import calculate_relative_dose
from rdh_app.utils.rt_data_objects import DataSource, Dvh, Plan, RecordKind, RtCase


if TYPE_CHECKING:
    from rdh_app.managers.config_manager import ConfigManager
    from rdh_app.managers.shared_state_manager import SharedStateManager
    from rdh_app.utils.rt_data_objects import Contour, Dose, IsoDoseRegion, ReferenceSeries, RtRecord, StructRegion


logger = logging.getLogger(__name__)


### Entity linking ###

def _link_structure_set(case: RtCase, record: RtRecord) -> None:
    sop_uid = record.sop_instance_uid
    if sop_uid in case.structures:
        logger.debug(f"Structure set '{sop_uid}' is already linked.")
        return
    structure_set = construct_structure_set(record.dataset, key=record.key)
    if structure_set is not None:
        case.structures[structure_set.sop_instance_uid] = structure_set


def _link_plan(case: RtCase, record: RtRecord) -> None:
    plan_info = RTPlanBuilder(record.dataset, record.key).build_plan_info()
    if plan_info is None:
        return

    sop_uid = plan_info["sop_instance_uid"]
    plan = case.plans.get(sop_uid)
    if plan is None:
        plan = Plan(sop_instance_uid=sop_uid)
        case.plans[sop_uid] = plan
    elif plan.is_placeholder:
        logger.info(f"Plan '{sop_uid}' arrived after {len(plan.doses)} of its doses, replacing the placeholder.")
    elif plan.key != record.key:
        logger.warning(f"Plan '{sop_uid}' is already linked from '{plan.key}', ignoring '{record.key}'.")
        return

    apply_plan_info(plan, plan_info, record.key)


def _link_dose(case: RtCase, record: RtRecord) -> None:
    plan_uid = get_first_ref_plan_sop_uid(record.dataset)
    if not plan_uid:
        logger.error(f"Dose '{record.sop_instance_uid}' does not reference a plan, so it cannot be linked.")
        return

    plan = case.plans.get(plan_uid)
    if plan is None:
        logger.info(f"Plan '{plan_uid}' is not loaded yet, linking dose '{record.sop_instance_uid}' to a placeholder.")
        plan = Plan(sop_instance_uid=plan_uid)
        case.plans[plan_uid] = plan

    existing = plan.get_dose(record.sop_instance_uid)
    if existing is None:
        dose = construct_dose(record)
        if dose is not None:
            plan.doses.append(dose)
        return

    # Repeated dose: only the provided DVHs are refreshed
    for roi_number, dvh in extract_provided_dvhs(record.dataset).items():
        current = existing.dvhs.get(roi_number)
        if current is None or current.source is DataSource.PROVIDED:
            existing.dvhs[roi_number] = dvh
    logger.debug(f"Dose '{existing.sop_instance_uid}' is already linked, updated its provided DVHs.")


RECORD_LINKERS: Dict[RecordKind, Callable[[RtCase, "RtRecord"], None]] = {
    RecordKind.STRUCTURE_SET: _link_structure_set,
    RecordKind.PLAN: _link_plan,
    RecordKind.DOSE: _link_dose,
}


def link_record(case: RtCase, record: RtRecord) -> None:
    """Attach one record to the case graph, creating or reconciling entities by SOP Instance UID."""
    RECORD_LINKERS[record.kind](case, record)


### DVH computation ###

def init_calculated_dvh(region: StructRegion, dose: Dose, reference: ReferenceSeries) -> Dvh:
    """Compute the cumulative DVH of a region from the dose grid, in cGy and cm3."""
    histogram, volume = calculate_differential_dvh(region, dose, reference.get_in_plane_spacing())
    cumulative = convert_differential_to_cumulative(histogram)
    dvh = Dvh(
        referenced_roi_number=region.roi_number,
        source=DataSource.CALCULATED,
        dvh_type="CUMULATIVE",
        dose_unit="CGY",
        dose_type=dose.dose_type,
        volume_unit="CM3",
        dose_scaling=1.0,
        data=cumulative,
        number_of_bins=int(cumulative.size),
    )
    region.set_volume(volume, DataSource.CALCULATED)
    return dvh


class CaseManager:
    """Builds the case graph from records and serves its DVHs and isodose regions."""

    def __init__(self, conf_mgr: ConfigManager, ss_mgr: SharedStateManager) -> None:
        self.conf_mgr = conf_mgr
        self.ss_mgr = ss_mgr
        self.initialize_data()

    def initialize_data(self) -> None:
        self.case: Optional[RtCase] = None

    def release_case(self) -> None:
        """Discard every entity of the current case."""
        with self.ss_mgr.reload_guard(self._case_key()):
            self.initialize_data()
        logger.info("Released the current case.")

    def _case_key(self) -> str:
        return self.case.series_instance_uid if self.case is not None else ""

    @property
    def is_case_loaded(self) -> bool:
        return self.case is not None

    def compute_case(
        self,
        structure_records: Iterable[RtRecord],
        plan_records: Iterable[RtRecord],
        dose_records: Iterable[RtRecord],
        reference: ReferenceSeries,
        force_recalculate: Optional[bool] = None,
    ) -> RtCase:
        """
        Link the records into the case of the reference series and compute its DVHs and isodoses.

        Structure sets are linked first, then plans, then doses. Linking the same
        records again is idempotent. A case built on a different series is discarded.
        """
        if force_recalculate is None:
            force_recalculate = self.conf_mgr.get_force_recalculate_dvh()

        with self.ss_mgr.reload_guard(reference.series_instance_uid):
            if self.case is None or self.case.series_instance_uid != reference.series_instance_uid:
                if self.case is not None:
                    logger.info(f"Reference series changed, starting a new case for '{reference.series_instance_uid}'.")
                self.case = RtCase(reference=reference)
            case = self.case

            for records in (structure_records, plan_records, dose_records):
                for record in records:
                    link_record(case, record)

            self._reload_rt_case(case, force_recalculate)
        return case

    def _reload_rt_case(self, case: RtCase, force_recalculate: bool) -> None:
        tolerance = self.conf_mgr.get_dose_slice_tolerance()
        structure_set = case.get_first_structure()
        if structure_set is None:
            logger.info("No structure set is linked, DVHs will not be computed.")

        for plan in case.plans.values():
            for dose in plan.doses:
                dose.initialise_dose_grid_to_image_grid(case.reference, tolerance)
            init_iso_doses(plan, case.reference, self.conf_mgr)

            if structure_set is None:
                continue
            for dose in plan.doses:
                if dose.get_dose_max() <= 0:
                    logger.info(f"Dose '{dose.sop_instance_uid}' is empty, no DVHs are computed.")
                    continue
                for region in structure_set.regions.values():
                    self._init_region_dvh(plan, dose, region, case.reference, force_recalculate)

    def _init_region_dvh(
        self,
        plan: Plan,
        dose: Dose,
        region: StructRegion,
        reference: ReferenceSeries,
        force_recalculate: bool,
    ) -> None:
        dvh = dose.dvhs.get(region.roi_number)
        if dvh is None or (dvh.source is DataSource.PROVIDED and force_recalculate):
            dvh = init_calculated_dvh(region, dose, reference)
            dose.dvhs[region.roi_number] = dvh
        elif dvh.source is DataSource.PROVIDED and dvh.volume_unit == "CM3" and dvh.data.size:
            region.set_volume(float(dvh.data[0]), DataSource.PROVIDED)

        dvh.plan_uid = plan.sop_instance_uid
        region.dvh = dvh

        if plan.rx_dose and logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"'{region.name}' ({dvh.source.value}): "
                f"min {calculate_relative_dose(dvh.get_minimum_dose_cgy(), plan.rx_dose):.1f} %, "
                f"max {calculate_relative_dose(dvh.get_maximum_dose_cgy(), plan.rx_dose):.1f} %, "
                f"mean {calculate_relative_dose(dvh.get_mean_dose_cgy(), plan.rx_dose):.1f} %"
            )

    ### Queries ###

    def get_dvh(self, region_id: int, dose_id: str) -> Optional[Dvh]:
        """DVH computed or provided for a region under a dose."""
        with self.ss_mgr.read_guard():
            if self.case is None:
                return None
            dose = self.case.find_dose(dose_id)
            return dose.dvhs.get(region_id) if dose is not None else None

    def get_iso_dose_regions(self, dose_id: str) -> List[IsoDoseRegion]:
        """Isodose regions of a dose, maximum level first; empty when none were built."""
        with self.ss_mgr.read_guard():
            if self.case is None:
                return []
            dose = self.case.find_dose(dose_id)
            return list(dose.iso_dose_set.values()) if dose is not None else []

    def get_iso_contours_by_uid(self, dose_id: str, sop_instance_uid: str) -> List[Contour]:
        """Every isodose contour of a dose on the slice with the given SOP Instance UID."""
        with self.ss_mgr.read_guard():
            if self.case is None:
                return []
            dose = self.case.find_dose(dose_id)
            return list(dose.get_iso_contours_by_uid(sop_instance_uid)) if dose is not None else []

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        with self.ss_mgr.read_guard():
            return self.case.plans.get(plan_id) if self.case is not None else None

    def get_plan_for_dvh(self, dvh: Dvh) -> Optional[Plan]:
        """Resolve the plan back reference of a DVH."""
        if dvh.plan_uid is None:
            return None
        return self.get_plan(dvh.plan_uid)

    @staticmethod
    def calculate_relative_dose(dose_cgy: float, rx_cgy: Optional[float]) -> Optional[float]:
        return calculate_relative_dose(dose_cgy, rx_cgy)
