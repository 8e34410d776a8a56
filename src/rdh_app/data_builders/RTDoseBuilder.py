from __future__ import annotations


import logging
from typing import Dict, Optional, TYPE_CHECKING


import numpy as np
import SimpleITK as sitk


from rdh_app.utils.dicom_tags import DicomTags, RTDoseTags
from rdh_app.utils.dicom_utils import (
    get_ds_float, get_ds_floats, get_ds_int, get_ds_sequence, get_ds_string, read_dcm_file
)
from rdh_app.utils.dvh_utils import convert_differential_to_cumulative_dvh, extract_cumulative_dvh_volumes
from rdh_app.utils.rt_data_objects import DataSource, Dose, Dvh
from rdh_app.utils.sitk_utils import merge_imagereader_metadata


if TYPE_CHECKING:
    from pydicom import Dataset
    from rdh_app.utils.rt_data_objects import RtRecord


logger = logging.getLogger(__name__)


# DICOM RT Dose parameters the DVH and isodose computations are written for
SUPPORTED_DOSE_SUMMATION_TYPES = {"PLAN", "MULTI_PLAN", "FRACTION", "BEAM"}
SUPPORTED_DOSE_UNITS = {"GY"}
SUPPORTED_DOSE_TYPES = {"PHYSICAL", "EFFECTIVE"}


def _validate_dose_dataset(ds: Dataset) -> bool:
    """Validate essential RT Dose dataset attributes."""
    if not get_ds_string(ds, DicomTags.sop_instance_uid):
        logger.error("Missing SOP Instance UID in RT Dose, so it cannot be processed.")
        return False

    dose_summation_type = get_ds_string(ds, RTDoseTags.dose_summation_type).upper()
    if dose_summation_type not in SUPPORTED_DOSE_SUMMATION_TYPES:
        logger.warning(
            f"Unexpected DoseSummationType '{dose_summation_type}'. "
            f"Expected one of: {', '.join(sorted(SUPPORTED_DOSE_SUMMATION_TYPES))}"
        )

    dose_units = get_ds_string(ds, RTDoseTags.dose_units).upper()
    if dose_units not in SUPPORTED_DOSE_UNITS:
        logger.warning(f"Unexpected DoseUnits '{dose_units}', doses are read as Gy.")

    dose_type = get_ds_string(ds, RTDoseTags.dose_type).upper()
    if dose_type not in SUPPORTED_DOSE_TYPES:
        logger.warning(f"Unexpected DoseType '{dose_type}'.")

    dose_grid_scaling = get_ds_float(ds, RTDoseTags.dose_grid_scaling, default=0.0)
    if dose_grid_scaling <= 0:
        logger.warning(f"Invalid DoseGridScaling '{dose_grid_scaling}', every dose will read as zero.")

    return True


def construct_dose_grid(file_path: str) -> Optional[sitk.Image]:
    """
    Read the stored pixel values of an RT Dose file as a float32 image.

    DoseGridScaling is not applied; the Dose entity keeps it separately.
    """
    try:
        reader = sitk.ImageFileReader()
        reader.SetFileName(file_path)
        reader.ReadImageInformation()
        reader.SetOutputPixelType(sitk.sitkFloat32)
        sitk_dose = reader.Execute()
        sitk_dose = merge_imagereader_metadata(reader, sitk_dose)
        logger.info(f"Read RT Dose grid: size={sitk_dose.GetSize()}, spacing={sitk_dose.GetSpacing()}")
        return sitk_dose
    except RuntimeError:
        logger.error(f"Failed to read the dose grid of '{file_path}'.", exc_info=True, stack_info=True)
        return None


def _extract_provided_dvh(dvh_item: Dataset) -> Optional[Dvh]:
    """Convert one DVH Sequence item to a cumulative Dvh, or None if it cannot be used."""
    ref_roi_items = get_ds_sequence(dvh_item, RTDoseTags.dvh_referenced_roi_sequence)
    if len(ref_roi_items) != 1:
        logger.debug(f"Skipping DVH item referencing {len(ref_roi_items)} ROIs.")
        return None
    roi_number = get_ds_int(ref_roi_items[0], RTDoseTags.referenced_roi_number)
    if roi_number is None:
        logger.debug("Skipping DVH item without a Referenced ROI Number.")
        return None

    data = get_ds_floats(dvh_item, RTDoseTags.dvh_data)
    if data is None or data.size % 2:
        logger.debug(f"Skipping DVH of ROI {roi_number}: DVH Data is missing or not made of dose/volume pairs.")
        return None

    dose_unit = get_ds_string(dvh_item, RTDoseTags.dose_units).upper()
    dose_scaling = get_ds_float(dvh_item, RTDoseTags.dvh_dose_scaling, default=1.0)
    statistics = [
        get_ds_float(dvh_item, tag, default=-1.0)
        for tag in (RTDoseTags.dvh_minimum_dose, RTDoseTags.dvh_maximum_dose, RTDoseTags.dvh_mean_dose)
    ]

    dvh_type = get_ds_string(dvh_item, RTDoseTags.dvh_type).upper()
    if dvh_type == "DIFFERENTIAL":
        logger.info(f"Not supported: differential DVH of ROI {roi_number}, converting it to a cumulative DVH.")
        scaled = data.copy()
        scaled[0::2] *= dose_scaling
        try:
            volumes = convert_differential_to_cumulative_dvh(scaled)
        except ValueError:
            logger.debug(f"Skipping differential DVH of ROI {roi_number}: bin widths are not usable.", exc_info=True)
            return None
        # Resampled onto 1 cGy bins
        if dose_unit == "GY":
            statistics = [value if value == -1.0 else value * 100.0 for value in statistics]
        dose_unit, dose_scaling = "CGY", 1.0
    else:
        volumes = extract_cumulative_dvh_volumes(data)

    minimum_dose, maximum_dose, mean_dose = statistics
    return Dvh(
        referenced_roi_number=roi_number,
        source=DataSource.PROVIDED,
        dvh_type="CUMULATIVE",
        dose_unit=dose_unit,
        dose_type=get_ds_string(dvh_item, RTDoseTags.dose_type).upper(),
        volume_unit=get_ds_string(dvh_item, RTDoseTags.dvh_volume_units).upper(),
        dose_scaling=dose_scaling,
        data=volumes,
        number_of_bins=int(volumes.size),
        minimum_dose=minimum_dose,
        maximum_dose=maximum_dose,
        mean_dose=mean_dose,
    )


def extract_provided_dvhs(ds: Dataset) -> Dict[int, Dvh]:
    """Provided DVHs of an RT Dose dataset keyed by referenced ROI number."""
    dvhs: Dict[int, Dvh] = {}
    for dvh_item in get_ds_sequence(ds, RTDoseTags.dvh_sequence):
        dvh = _extract_provided_dvh(dvh_item)
        if dvh is not None:
            dvhs[dvh.referenced_roi_number] = dvh
    if dvhs:
        logger.debug(f"Found provided DVHs for ROIs {sorted(dvhs)}")
    return dvhs


def construct_dose(record: RtRecord) -> Optional[Dose]:
    """
    Build a Dose entity from an RT Dose record.

    Returns:
        The Dose, or None if the dataset fails validation.
    """
    ds = record.dataset
    if not _validate_dose_dataset(ds):
        return None

    dose = Dose(
        sop_instance_uid=get_ds_string(ds, DicomTags.sop_instance_uid),
        key=record.key,
        grid=record.grid,
        grid_scaling=get_ds_float(ds, RTDoseTags.dose_grid_scaling, default=0.0),
        grid_frame_offsets=get_ds_floats(ds, RTDoseTags.grid_frame_offset_vector),
        image_position=get_ds_floats(ds, DicomTags.image_position_patient),
        dose_units=get_ds_string(ds, RTDoseTags.dose_units).upper(),
        dose_type=get_ds_string(ds, RTDoseTags.dose_type).upper(),
        dose_summation_type=get_ds_string(ds, RTDoseTags.dose_summation_type).upper(),
        comment=get_ds_string(ds, RTDoseTags.dose_comment),
        dvhs=extract_provided_dvhs(ds),
    )
    if dose.grid is None:
        logger.warning(f"RT Dose '{dose.sop_instance_uid}' arrived without a dose grid.")
    return dose


def load_dose_record_grid(file_path: str) -> Optional[sitk.Image]:
    """Read the dose grid of a file after checking it is an RT Dose."""
    ds = read_dcm_file(file_path, stop_before_pixels=True)
    if ds is None:
        return None
    if get_ds_string(ds, DicomTags.modality).upper() != "RTDOSE":
        logger.error(f"File '{file_path}' is not an RT Dose.")
        return None
    grid = construct_dose_grid(file_path)
    if grid is not None and np.isnan(sitk.GetArrayViewFromImage(grid)).any():
        logger.warning(f"Dose grid of '{file_path}' contains NaN values.")
    return grid
