from __future__ import annotations


import logging
from datetime import datetime
from typing import Any, List, Optional, Union


import numpy as np
import pydicom
from pydicom.datadict import keyword_for_tag
from pydicom.multival import MultiValue
from pydicom.sequence import Sequence


from rdh_app.utils.dicom_tags import DicomTags


logger = logging.getLogger(__name__)


def safe_keyword_for_tag(tag: Union[str, int]) -> Optional[str]:
    """Retrieve DICOM keyword for tag (string 'gggg|eeee' / 'ggggeeee' or integer format)."""
    if isinstance(tag, int):
        return keyword_for_tag(tag) or None
    if not isinstance(tag, str):
        return None

    tag_clean = tag.replace("(", "").replace(")", "").replace(",", "").replace(" ", "")
    if "|" in tag_clean:
        tag_clean = tag_clean.replace("|", "")
    if len(tag_clean) != 8:
        return None
    try:
        return keyword_for_tag(int(tag_clean, 16)) or None
    except ValueError:
        return None


def read_dcm_file(
    file_path: str,
    **kwargs
) -> Optional[pydicom.Dataset]:
    """Read a DICOM file safely with optional arguments passed to pydicom.dcmread.

    Args:
        file_path: Path to the DICOM file.
        **kwargs: Additional keyword arguments for `pydicom.dcmread`,
                  e.g., stop_before_pixels=True, force=True.

    Returns:
        A pydicom.Dataset if successful, otherwise None.
    """
    try:
        return pydicom.dcmread(str(file_path).strip(), **kwargs)
    except Exception:
        logger.error(f"Failed to read file '{file_path}'.", exc_info=True)
        return None


### Typed getters ###
# Every read of a record goes through these, so a missing or empty element
# always comes back as the caller's default.

def get_ds_value(ds: pydicom.Dataset, tag: Union[int, str]) -> Any:
    """Return the raw value of an element, or None when absent or empty."""
    element = ds.get(tag) if isinstance(tag, int) else ds.data_element(tag)
    if element is None:
        return None
    value = element.value
    if value is None or (isinstance(value, (str, bytes, list, MultiValue, Sequence)) and len(value) == 0):
        return None
    return value


def get_ds_string(ds: pydicom.Dataset, tag: Union[int, str], default: str = "") -> str:
    value = get_ds_value(ds, tag)
    if value is None:
        return default
    if isinstance(value, MultiValue):
        return "\\".join(str(v).strip() for v in value)
    return str(value).strip()


def get_ds_int(ds: pydicom.Dataset, tag: Union[int, str], default: Optional[int] = None) -> Optional[int]:
    value = get_ds_value(ds, tag)
    if value is None:
        return default
    if isinstance(value, MultiValue):
        value = value[0]
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Value '{value}' of tag {tag} is not an integer.")
        return default


def get_ds_float(ds: pydicom.Dataset, tag: Union[int, str], default: Optional[float] = None) -> Optional[float]:
    value = get_ds_value(ds, tag)
    if value is None:
        return default
    if isinstance(value, MultiValue):
        value = value[0]
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Value '{value}' of tag {tag} is not a number.")
        return default


def get_ds_floats(ds: pydicom.Dataset, tag: Union[int, str]) -> Optional[np.ndarray]:
    """Return a multi-valued numeric element as a float64 array, or None."""
    value = get_ds_value(ds, tag)
    if value is None:
        return None
    if not isinstance(value, (list, tuple, MultiValue)):
        value = [value]
    try:
        return np.asarray([float(v) for v in value], dtype=np.float64)
    except (TypeError, ValueError):
        logger.warning(f"Tag {tag} does not hold numeric values.")
        return None


def get_ds_sequence(ds: pydicom.Dataset, tag: Union[int, str]) -> List[pydicom.Dataset]:
    value = get_ds_value(ds, tag)
    if value is None:
        return []
    if not isinstance(value, Sequence):
        logger.warning(f"Tag {tag} is not a sequence.")
        return []
    return list(value)


def get_ds_datetime(
    ds: pydicom.Dataset,
    date_tag: Union[int, str],
    time_tag: Optional[Union[int, str]] = None
) -> Optional[datetime]:
    """Combine a DA element and an optional TM element into a datetime."""
    date_str = get_ds_string(ds, date_tag)
    if not date_str:
        return None
    time_str = get_ds_string(ds, time_tag) if time_tag is not None else ""
    time_str = (time_str.split(".")[0] + "000000")[:6]
    try:
        return datetime.strptime(date_str[:8] + time_str, "%Y%m%d%H%M%S")
    except ValueError:
        logger.warning(f"Could not parse date '{date_str}' and time '{time_str}'.")
        return None


### Reference helpers ###

def get_first_ref_plan_sop_uid(ds: pydicom.Dataset) -> str:
    """Retrieve the first Referenced SOP Instance UID from an RT Dose dataset."""
    matched_ref_rtp_sop_uid = ""
    for plan_ds in get_ds_sequence(ds, DicomTags.referenced_rt_plan_sequence):
        found_ref_rtp_sop_uid = get_ds_string(plan_ds, DicomTags.referenced_sop_instance_uid)
        if found_ref_rtp_sop_uid and not matched_ref_rtp_sop_uid:
            matched_ref_rtp_sop_uid = found_ref_rtp_sop_uid
        elif found_ref_rtp_sop_uid and matched_ref_rtp_sop_uid != found_ref_rtp_sop_uid:
            logger.warning(
                f"Multiple Referenced RT Plan SOP Instance UIDs found in the dose file! "
                f"First one encountered: {matched_ref_rtp_sop_uid}, another one found: {found_ref_rtp_sop_uid}. "
                f"Using the first one encountered."
            )
    if not matched_ref_rtp_sop_uid:
        logger.error("No Referenced RT Plan SOP Instance UID found in the dose file.")
    return matched_ref_rtp_sop_uid


def get_first_ref_series_uid(ds: pydicom.Dataset) -> str:
    """Retrieve the first Referenced Series Instance UID from a structure set dataset."""
    matched_ref_series_uid = ""
    for frame_item in ds.get("ReferencedFrameOfReferenceSequence", []):
        for study_item in frame_item.get("RTReferencedStudySequence", []):
            for series_item in study_item.get("RTReferencedSeriesSequence", []):
                series_uid = str(series_item.get("SeriesInstanceUID", "")).strip()
                if not series_uid:
                    continue
                if not matched_ref_series_uid:
                    matched_ref_series_uid = series_uid
                elif matched_ref_series_uid != series_uid:
                    logger.warning(
                        f"Multiple SeriesInstanceUIDs found in structure set! "
                        f"First one encountered: {matched_ref_series_uid}, another one found: {series_uid}. "
                        f"Using the first one encountered."
                    )
    return matched_ref_series_uid
