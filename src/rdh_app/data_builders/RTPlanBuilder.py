from __future__ import annotations


import logging
from typing import Any, Dict, Optional, TYPE_CHECKING


from rdh_app.utils.dicom_tags import DicomTags, RTPlanTags
from rdh_app.utils.dicom_utils import (
    get_ds_datetime, get_ds_float, get_ds_int, get_ds_sequence, get_ds_string
)
from rdh_app.utils.general_utils import clean_dicom_string


if TYPE_CHECKING:
    from pydicom import Dataset
    from rdh_app.utils.rt_data_objects import Plan


logger = logging.getLogger(__name__)


class RTConstants:
    """Constants (e.g., ones used as values for DICOM tags)."""

    # Dose reference structure types
    DOSE_REFERENCE_POINT = "POINT"
    DOSE_REFERENCE_VOLUME = "VOLUME"
    DOSE_REFERENCE_SITE = "SITE"
    DOSE_REFERENCE_COORDINATES = "COORDINATES"
    SUPPORTED_DOSE_REFERENCE_TYPES = {DOSE_REFERENCE_VOLUME, DOSE_REFERENCE_SITE, DOSE_REFERENCE_COORDINATES}

    # Dose conversion factor (Gy to cGy)
    GY_TO_CGY_FACTOR = 100


class RTPlanBuilder:
    """
    Reads the metadata and the prescribed dose of an RT Plan dataset.

    The prescribed dose is the largest TargetPrescriptionDose among the VOLUME, SITE
    and COORDINATES dose references. When none is found it falls back to the sum of
    the beam doses of the first fraction group times its planned fractions.
    """

    def __init__(self, ds: Dataset, key: str) -> None:
        self.ds: Dataset = ds
        self.key: str = key
        self.rt_plan_info_dict: Dict[str, Any] = {}

    def _validate_dataset(self) -> bool:
        if not get_ds_string(self.ds, DicomTags.sop_instance_uid):
            logger.error(f"RT Plan '{self.key}' has no SOP Instance UID, so it cannot be processed.")
            return False
        return True

    def _extract_plan_info(self) -> None:
        """Label, name, description, date and geometry of the plan."""
        self.rt_plan_info_dict.update({
            "sop_instance_uid": get_ds_string(self.ds, DicomTags.sop_instance_uid),
            "label": clean_dicom_string(get_ds_string(self.ds, RTPlanTags.rt_plan_label)),
            "name": clean_dicom_string(get_ds_string(self.ds, RTPlanTags.rt_plan_name)),
            "description": clean_dicom_string(get_ds_string(self.ds, RTPlanTags.rt_plan_description)),
            "date": get_ds_datetime(self.ds, RTPlanTags.rt_plan_date, RTPlanTags.rt_plan_time),
            "geometry": get_ds_string(self.ds, RTPlanTags.rt_plan_geometry),
        })

    def _extract_dose_reference_info(self) -> None:
        """
        Processes the Dose Reference Sequence to keep the highest target prescription dose.
        Each time a new maximum is taken, its description is appended to the plan name.
        """
        rx_dose = 0.0
        for dose_reference_item in get_ds_sequence(self.ds, RTPlanTags.dose_reference_sequence):
            target_dose_gy = get_ds_float(dose_reference_item, RTPlanTags.target_prescription_dose)
            if target_dose_gy is None:
                continue
            target_dose_cgy = target_dose_gy * RTConstants.GY_TO_CGY_FACTOR

            structure_type = get_ds_string(dose_reference_item, RTPlanTags.dose_reference_structure_type).upper()
            if structure_type == RTConstants.DOSE_REFERENCE_POINT:
                logger.info("Not supported: POINT dose reference, it does not contribute to the prescribed dose.")
                continue
            if structure_type not in RTConstants.SUPPORTED_DOSE_REFERENCE_TYPES:
                logger.debug(f"Ignoring dose reference of type '{structure_type}'.")
                continue

            if target_dose_cgy > rx_dose:
                rx_dose = target_dose_cgy
                description = clean_dicom_string(
                    get_ds_string(dose_reference_item, RTPlanTags.dose_reference_description)
                )
                if description:
                    name = self.rt_plan_info_dict.get("name", "")
                    self.rt_plan_info_dict["name"] = f"{name} {description}".strip()

        self.rt_plan_info_dict["rx_dose"] = rx_dose
        logger.debug(f"Prescribed dose from dose references: {rx_dose} cGy")

    def _extract_fraction_group_info(self) -> None:
        """Falls back to beam dose x planned fractions of the first fraction group."""
        if self.rt_plan_info_dict.get("rx_dose", 0.0) != 0.0:
            return

        fraction_groups = get_ds_sequence(self.ds, RTPlanTags.fraction_group_sequence)
        if not fraction_groups:
            return
        first_group = fraction_groups[0]

        num_fractions = get_ds_int(first_group, RTPlanTags.number_of_fractions_planned)
        if num_fractions is None:
            logger.debug("No Number of Fractions Planned in the first fraction group.")
            return

        rx_dose = 0.0
        for ref_beam_ds in get_ds_sequence(first_group, RTPlanTags.referenced_beam_sequence):
            beam_dose = get_ds_float(ref_beam_ds, RTPlanTags.beam_dose)
            if beam_dose is not None:
                rx_dose += beam_dose * num_fractions * RTConstants.GY_TO_CGY_FACTOR

        self.rt_plan_info_dict["rx_dose"] = rx_dose
        logger.debug(f"Prescribed dose from {num_fractions} fractions of beam dose: {rx_dose} cGy")

    def build_plan_info(self) -> Optional[Dict[str, Any]]:
        """
        Extract the plan metadata and resolve the prescribed dose (cGy).

        Returns:
            Dictionary with keys sop_instance_uid, label, name, description, date,
            geometry and rx_dose, or None when the dataset cannot be used.
        """
        if not self._validate_dataset():
            return None

        processing_steps = [
            ("plan information", self._extract_plan_info),
            ("dose reference information", self._extract_dose_reference_info),
            ("fraction group information", self._extract_fraction_group_info),
        ]
        for step_name, step_method in processing_steps:
            step_method()
            logger.debug(f"Completed {step_name} extraction")

        logger.info(
            f"Processed RT Plan '{self.rt_plan_info_dict.get('label') or self.key}' "
            f"with prescribed dose {self.rt_plan_info_dict['rx_dose']} cGy"
        )
        return self.rt_plan_info_dict


def apply_plan_info(plan: Plan, plan_info: Dict[str, Any], key: str) -> None:
    """Copy resolved plan metadata onto a Plan entity and mark it as backed by a record."""
    plan.key = key
    plan.label = plan_info["label"]
    plan.name = plan_info["name"]
    plan.description = plan_info["description"]
    plan.date = plan_info["date"]
    plan.geometry = plan_info["geometry"]
    plan.rx_dose = plan_info["rx_dose"]


def resolve_prescribed_dose(ds: Dataset) -> float:
    """Prescribed dose of an RT Plan dataset in cGy, 0.0 when it cannot be determined."""
    plan_info = RTPlanBuilder(ds, key="").build_plan_info()
    return plan_info["rx_dose"] if plan_info else 0.0
