from __future__ import annotations


import logging
from typing import Dict, Optional, TYPE_CHECKING


from rdh_app.utils.dicom_tags import DicomTags, RTStructTags
from rdh_app.utils.dicom_utils import (
    get_ds_floats, get_ds_int, get_ds_sequence, get_ds_string, get_first_ref_series_uid
)
from rdh_app.utils.general_utils import clean_dicom_string, normalize_rgb_color
from rdh_app.utils.rt_data_objects import Contour, StructRegion, StructureSet


if TYPE_CHECKING:
    from pydicom import Dataset


logger = logging.getLogger(__name__)


SUPPORTED_CONTOUR_TYPES = {"CLOSED_PLANAR"}


def _validate_structure_set_info(ds: Dataset) -> bool:
    """Validate essential structure set information (SOP UID)."""
    if not get_ds_string(ds, DicomTags.sop_instance_uid):
        logger.error("Missing SOP Instance UID in RT Structure Set, so it cannot be processed.")
        return False
    if not get_first_ref_series_uid(ds):
        logger.warning("No Referenced Series Instance UID found in RT Structure Set.")
    return True


def _extract_roi_info(ds: Dataset) -> Dict[int, Dict[str, Dataset]]:
    """Groups the StructureSetROI, ROIContour and RTROIObservations items of each ROI number."""
    roi_datasets: Dict[int, Dict[str, Dataset]] = {}

    for roi_ds in get_ds_sequence(ds, RTStructTags.structure_set_roi_sequence):
        roi_number = get_ds_int(roi_ds, RTStructTags.roi_number)
        if roi_number is None:
            continue
        if roi_number not in roi_datasets:
            roi_datasets[roi_number] = {"StructureSetROI": roi_ds}
        else:
            logger.warning(f"Duplicate ROI found in Structure Set for ROI Number: {roi_number}")

    for contour_ds in get_ds_sequence(ds, RTStructTags.roi_contour_sequence):
        referenced_roi_number = get_ds_int(contour_ds, RTStructTags.referenced_roi_number)
        if referenced_roi_number is None:
            continue
        if referenced_roi_number not in roi_datasets:
            logger.warning(f"Found contour data for unknown ROI number: {referenced_roi_number}")
        elif "ROIContour" in roi_datasets[referenced_roi_number]:
            logger.warning(f"Duplicate ROI Contour found in ROI Contour Sequence for ROI Number: {referenced_roi_number}")
        else:
            roi_datasets[referenced_roi_number]["ROIContour"] = contour_ds

    for obs_ds in get_ds_sequence(ds, RTStructTags.rt_roi_observations_sequence):
        referenced_roi_number = get_ds_int(obs_ds, RTStructTags.referenced_roi_number)
        if referenced_roi_number in roi_datasets:
            roi_datasets[referenced_roi_number].setdefault("RTROIObservations", obs_ds)

    # Observations are optional, contours are not
    valid = {
        roi_number: components
        for roi_number, components in roi_datasets.items()
        if "ROIContour" in components
    }
    skipped = set(roi_datasets) - set(valid)
    if skipped:
        logger.debug(f"ROIs without contour data were skipped: {sorted(skipped)}")
    return valid


def _build_region(roi_number: int, components: Dict[str, Dataset]) -> StructRegion:
    roi_ds = components["StructureSetROI"]
    contour_ds = components["ROIContour"]
    obs_ds = components.get("RTROIObservations")

    color = normalize_rgb_color(get_ds_floats(contour_ds, RTStructTags.roi_display_color), default=[255, 255, 255])
    region = StructRegion(
        roi_number=roi_number,
        name=clean_dicom_string(get_ds_string(roi_ds, RTStructTags.roi_name)) or f"ROI {roi_number}",
        color=tuple(color),
        interpreted_type=get_ds_string(obs_ds, RTStructTags.rt_roi_interpreted_type) if obs_ds is not None else "",
    )

    for item in get_ds_sequence(contour_ds, RTStructTags.contour_sequence):
        geometric_type = get_ds_string(item, RTStructTags.contour_geometric_type).upper()
        if geometric_type not in SUPPORTED_CONTOUR_TYPES:
            logger.debug(f"Skipping {geometric_type or 'untyped'} contour of '{region.name}'.")
            continue
        contour_data = get_ds_floats(item, RTStructTags.contour_data)
        if contour_data is None or contour_data.size < 9 or contour_data.size % 3:
            logger.debug(f"Skipping contour of '{region.name}' with unusable ContourData.")
            continue
        points = contour_data.reshape(-1, 3)
        region.add_contour(Contour(points=points[:, :2].copy(), position=float(points[0, 2])))

    region.update_thickness()
    return region


def construct_structure_set(ds: Dataset, key: str = "") -> Optional[StructureSet]:
    """
    Build a StructureSet with one StructRegion per ROI that carries contour data.

    Returns:
        The StructureSet, or None if the dataset cannot be used.
    """
    if not _validate_structure_set_info(ds):
        return None

    structure_set = StructureSet(
        sop_instance_uid=get_ds_string(ds, DicomTags.sop_instance_uid),
        key=key,
        label=get_ds_string(ds, RTStructTags.structure_set_label),
        name=get_ds_string(ds, RTStructTags.structure_set_name),
        referenced_series_uid=get_first_ref_series_uid(ds),
    )

    for roi_number, components in _extract_roi_info(ds).items():
        structure_set.regions[roi_number] = _build_region(roi_number, components)

    if not structure_set.regions:
        logger.warning(f"No ROI with contour data was found in structure set '{structure_set.label}'.")
    else:
        logger.info(f"Built {len(structure_set.regions)} regions from structure set '{structure_set.label}'.")
    return structure_set
