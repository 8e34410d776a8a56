from __future__ import annotations


import logging
from typing import TYPE_CHECKING, Dict, Tuple


import numpy as np


from rdh_app.utils.geometry_utils import find_largest_contour_index, interpolate
from rdh_app.utils.numpy_utils import calculate_contour_mask, mask_dose_histogram


if TYPE_CHECKING:
    from rdh_app.utils.rt_data_objects import Dose, StructRegion


logger = logging.getLogger(__name__)


def split_dvh_data(data: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """De-interleave DVH Data (D1, V1, D2, V2, ...) into dose and volume arrays."""
    data = np.asarray(data, dtype=np.float64)
    if data.size % 2:
        raise ValueError(f"DVH data must hold dose/volume pairs, got {data.size} values.")
    return data[0::2], data[1::2]


def extract_cumulative_dvh_volumes(data: np.ndarray) -> np.ndarray:
    """Volumes of a provided cumulative DVH, one per dose bin."""
    _, volumes = split_dvh_data(data)
    return volumes


def convert_differential_to_cumulative_dvh(data: np.ndarray) -> np.ndarray:
    """
    Rebuild a cumulative DVH in 1 cGy bins from provided differential DVH Data.

    The differential dose values are bin widths in Gy. Bins below the first bin
    width get the total volume; from there the cumulative curve is resampled at
    every integer cGy up to the summed bin widths.
    """
    doses, volumes = split_dvh_data(data)
    if doses.size == 0:
        return np.zeros(0, dtype=np.float64)

    # Curve knots: lower edge of each bin, closed at the upper edge of the last one
    cumulative_doses = np.concatenate(([0.0], np.cumsum(doses))) * 100
    cumulative_volumes = np.concatenate((np.cumsum(volumes[::-1])[::-1], [0.0]))

    min_dose = int(doses[0] * 100)
    max_dose = int(cumulative_doses[-1])
    total_volume = float(cumulative_volumes[0])

    plateau = np.full(min_dose, total_volume, dtype=np.float64)
    if max_dose < min_dose:
        return plateau

    spline = interpolate(cumulative_doses, cumulative_volumes)
    resampled = spline(np.arange(min_dose, max_dose + 1, dtype=np.float64))
    return np.concatenate((plateau, np.asarray(resampled, dtype=np.float64)))


def convert_differential_to_cumulative(histogram: np.ndarray) -> np.ndarray:
    """cumulative[i] is the sum of histogram[j] for every j >= i."""
    histogram = np.asarray(histogram, dtype=np.float64)
    return np.cumsum(histogram[::-1])[::-1].copy()


def calculate_differential_dvh(
    region: StructRegion,
    dose: Dose,
    spacing: Tuple[float, float]
) -> Tuple[np.ndarray, float]:
    """
    Differential DVH of a structure in 1 cGy bins and its volume in cm3.

    Only the largest contour of each plane contributes. Planes without dose are skipped.
    The histogram is normalised so that it sums to the structure volume.
    """
    # The last bin must hold the maximum dose
    max_dose = int(np.ceil(dose.get_dose_max() * dose.grid_scaling * 100))
    histogram = np.zeros(max(max_dose, 0), dtype=np.float64)
    volume = 0.0
    voxel_volume = float(spacing[0]) * float(spacing[1]) * region.thickness

    for z, contours in region.planes.items():
        dose_plane = dose.get_dose_plane_cgy(z)
        if dose_plane is None:
            logger.debug(f"No dose plane at z={z} for '{region.name}', skipping.")
            continue

        largest_index = find_largest_contour_index(contours)
        if len(contours) > 1:
            logger.info(
                f"Not supported: '{region.name}' has {len(contours)} contours at z={z}, "
                f"only the largest one contributes to the DVH."
            )
        if largest_index < 0:
            continue

        mask = calculate_contour_mask(dose.dose_mm_lut, contours[largest_index])
        plane_hist = mask_dose_histogram(dose_plane, mask, max_dose) * voxel_volume
        volume += float(np.sum(plane_hist))
        histogram += plane_hist

    volume /= 1000.0  # mm3 to cm3
    total = float(np.sum(histogram))
    histogram *= volume / (total if total != 0 else 1.0)
    return histogram, volume


def calculate_dvh_statistics(cumulative: np.ndarray, dose_scaling: float = 1.0) -> Dict[str, float]:
    """
    Minimum, maximum and mean dose from a cumulative DVH with 1-unit bins.

    Minimum is the centre of the first bin below the total volume, maximum the upper
    edge of the last bin holding volume, and mean the volume-weighted bin index.
    """
    cumulative = np.asarray(cumulative, dtype=np.float64)
    if cumulative.size == 0 or cumulative[0] <= 0:
        return {"min": 0.0, "max": 0.0, "mean": 0.0}

    differential = cumulative - np.append(cumulative[1:], 0.0)

    below_total = np.nonzero(cumulative[1:-1] < cumulative[0])[0]
    min_dose = (2 * (below_total[0] + 1) - 1) / 2.0 if below_total.size else 0.0

    occupied = np.nonzero(differential > 0.0)[0]
    max_dose = float(occupied[-1] + 1) if occupied.size else 0.0

    mean_dose = float(np.sum(differential * np.arange(cumulative.size)) / cumulative[0])

    return {
        "min": float(min_dose) * dose_scaling,
        "max": max_dose * dose_scaling,
        "mean": mean_dose * dose_scaling,
    }
