from __future__ import annotations


import logging
from os.path import exists
from typing import List, Optional, Tuple, TYPE_CHECKING


import numpy as np
import SimpleITK as sitk


from rdh_app.utils.dicom_utils import read_dcm_file
from rdh_app.utils.rt_data_objects import ReferenceSeries
from rdh_app.utils.sitk_utils import log_image_geometry, merge_imagereader_metadata


if TYPE_CHECKING:
    from pydicom import Dataset


logger = logging.getLogger(__name__)


# (distance along the slice normal, file path, SOP Instance UID)
SliceEntry = Tuple[float, str, str]


def _read_and_validate_files(
    file_paths: List[str],
    expected_SIUID: Optional[str] = None,
) -> Optional[List[SliceEntry]]:
    """Read the headers of image files and keep those that share one orientation."""
    image_orientation_patient: Optional[List[float]] = None
    normal_vector: Optional[np.ndarray] = None
    entries: List[SliceEntry] = []

    for filepath in file_paths:
        if not exists(filepath):
            logger.warning(f"File does not exist, skipping: {filepath}")
            continue

        ds: Optional[Dataset] = read_dcm_file(filepath, stop_before_pixels=True)
        if ds is None:
            logger.error(f"Failed to read DICOM file {filepath}, skipping this part of the image.")
            continue

        if expected_SIUID and ds.get("SeriesInstanceUID", "") != expected_SIUID:
            logger.warning(
                f"SeriesInstanceUID mismatch in {filepath}. "
                f"Expected: {expected_SIUID}, Found: {ds.get('SeriesInstanceUID', '')}"
            )
            continue

        image_orientation = ds.get("ImageOrientationPatient", None)
        image_position = ds.get("ImagePositionPatient", None)
        if image_orientation is None or image_position is None:
            logger.warning(f"Missing ImageOrientationPatient or ImagePositionPatient in {filepath}")
            continue

        orientation = [float(v) for v in image_orientation]
        if image_orientation_patient is None:
            image_orientation_patient = orientation
            normal_vector = np.cross(np.array(orientation[0:3]), np.array(orientation[3:6]))
        elif not np.allclose(image_orientation_patient, orientation, atol=1e-4):
            logger.error(
                f"Inconsistent ImageOrientationPatient in {filepath}. "
                "All images must have the same orientation."
            )
            return None

        distance = float(np.dot(normal_vector, np.array([float(v) for v in image_position])))
        entries.append((distance, filepath, str(ds.get("SOPInstanceUID", "")).strip()))

    if not entries:
        logger.error("No valid DICOM image files found after validation")
        return None

    entries.sort(key=lambda entry: entry[0])
    logger.info(
        f"Sorted {len(entries)} files by spatial position. "
        f"Distance range: {entries[0][0]:.2f} to {entries[-1][0]:.2f}"
    )
    return entries


def construct_image(
    file_paths: List[str],
    expected_SIUID: Optional[str] = None,
) -> Optional[ReferenceSeries]:
    """Construct the reference image volume, with one SOP Instance UID per slice, from DICOM files."""
    entries = _read_and_validate_files(file_paths, expected_SIUID)
    if entries is None:
        logger.error("File validation failed, cannot construct image")
        return None

    reader = sitk.ImageSeriesReader()
    reader.MetaDataDictionaryArrayUpdateOn()
    reader.SetOutputPixelType(sitk.sitkFloat32)
    reader.SetFileNames([filepath for _, filepath, _ in entries])

    try:
        logger.info(f"Constructing 3D image from {len(entries)} DICOM files")
        image = reader.Execute()
    except RuntimeError:
        logger.error("ImageSeriesReader failed to construct image!", exc_info=True, stack_info=True)
        return None

    image = merge_imagereader_metadata(reader, image) or image
    log_image_geometry(image, label=f"Reference series '{expected_SIUID}'")

    try:
        return ReferenceSeries(
            image=image,
            sop_instance_uids=[sop_uid for _, _, sop_uid in entries],
            series_instance_uid=expected_SIUID or "",
        )
    except ValueError:
        logger.error("Reference image slices do not match the files they were read from.", exc_info=True)
        return None
