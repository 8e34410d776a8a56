from __future__ import annotations


import logging
from typing import Any, Dict, Optional, Union


import SimpleITK as sitk


from rdh_app.utils.dicom_utils import safe_keyword_for_tag


logger = logging.getLogger(__name__)


def sitk_resample_to_reference(
    input_img: sitk.Image,
    reference_img: sitk.Image,
    interpolator: int = sitk.sitkLinear,
    default_pixel_val_outside_image: float = 0.0
) -> sitk.Image:
    """Resamples an image to match the geometry of a reference image."""
    resampler = sitk.ResampleImageFilter()
    resampler.SetReferenceImage(reference_img)
    resampler.SetInterpolator(interpolator)
    resampler.SetDefaultPixelValue(default_pixel_val_outside_image)
    resampler.SetTransform(sitk.AffineTransform(input_img.GetDimension()))
    resampler.SetOutputSpacing(reference_img.GetSpacing())
    resampler.SetSize(reference_img.GetSize())
    resampler.SetOutputOrigin(reference_img.GetOrigin())
    resampler.SetOutputDirection(reference_img.GetDirection())
    resampler.SetOutputPixelType(input_img.GetPixelID())
    return resampler.Execute(input_img)


def merge_imagereader_metadata(
    reader: Union[sitk.ImageFileReader, sitk.ImageSeriesReader],
    image: Optional[sitk.Image] = None
) -> Union[Dict[str, Any], sitk.Image, None]:
    """Merges metadata from a SimpleITK image reader into a single dictionary or onto an image."""
    if not isinstance(reader, (sitk.ImageFileReader, sitk.ImageSeriesReader)):
        logger.error("Object must be a SimpleITK reader.")
        return None

    merged: Dict[str, Any] = {}

    if isinstance(reader, sitk.ImageFileReader):
        reader.ReadImageInformation()
        merged = {key: reader.GetMetaData(key) for key in reader.GetMetaDataKeys()}
    else:
        filenames = reader.GetFileNames()
        if not filenames:
            logger.error("Series reader contains no files.")
            return None

        for i in range(len(filenames)):
            for key in reader.GetMetaDataKeys(i):
                merged.setdefault(key, []).append(reader.GetMetaData(i, key))

        # Collapse to a single value when every slice agrees
        for key, values in merged.items():
            unique_vals = list(dict.fromkeys(values))
            merged[key] = unique_vals[0] if len(unique_vals) == 1 else unique_vals

    if image is None:
        return merged

    for key, value in merged.items():
        keyword = safe_keyword_for_tag(key)
        image.SetMetaData(keyword or key, str(value))
    return image


def log_image_geometry(image: sitk.Image, label: str = "Image") -> None:
    """Logs spacing, origin, direction, and size of a SimpleITK image at debug level."""
    logger.debug(
        f"{label}: spacing {image.GetSpacing()}, origin {image.GetOrigin()}, "
        f"direction {image.GetDirection()}, size {image.GetSize()}"
    )
