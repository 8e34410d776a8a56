from __future__ import annotations


import logging
from typing import TYPE_CHECKING, Tuple


import cv2
import numpy as np


if TYPE_CHECKING:
    from rdh_app.utils.rt_data_objects import Contour


logger = logging.getLogger(__name__)


def calculate_contour_mask(lut: Tuple[np.ndarray, np.ndarray], contour: Contour) -> np.ndarray:
    """
    Rasterize a contour onto the grid described by a pixel lookup table.

    The vertices of the contour and of all its children are joined into a single
    polygon. A cell is set to 255 when its centre (x_lut[col], y_lut[row]) is
    strictly inside that polygon and to 0 otherwise; cells on the boundary stay 0.

    Args:
        lut: (x_lut, y_lut) patient coordinates of each column and row.
        contour: Contour with (N, 2) points in patient coordinates.

    Returns:
        A float32 mask of shape (rows, cols).
    """
    x_lut, y_lut = np.asarray(lut[0], dtype=np.float64), np.asarray(lut[1], dtype=np.float64)
    mask = np.zeros((y_lut.size, x_lut.size), dtype=np.float32)

    polygon = contour.get_flattened_points()
    if polygon.shape[0] < 3:
        logger.debug(f"Contour at z={contour.position} has fewer than 3 vertices, nothing to rasterize.")
        return mask
    polygon_cv = polygon.astype(np.float32).reshape(-1, 1, 2)

    # Only cells inside the bounding box can be inside the polygon
    x_min, y_min = polygon.min(axis=0)
    x_max, y_max = polygon.max(axis=0)
    cols = np.nonzero((x_lut > x_min) & (x_lut < x_max))[0]
    rows = np.nonzero((y_lut > y_min) & (y_lut < y_max))[0]

    for row in rows:
        y = float(y_lut[row])
        for col in cols:
            if cv2.pointPolygonTest(polygon_cv, (float(x_lut[col]), y), False) > 0:
                mask[row, col] = 255.0
    return mask


def mask_dose_histogram(dose_plane: np.ndarray, mask: np.ndarray, num_bins: int) -> np.ndarray:
    """Histogram of the dose values under a mask in unit bins; values above num_bins land in the last bin."""
    if num_bins <= 0:
        return np.zeros(0, dtype=np.float64)
    values = np.clip(dose_plane[mask > 0], 0, num_bins)
    hist, _ = np.histogram(values, bins=num_bins, range=(0, num_bins))
    return hist.astype(np.float64)


def threshold_dose_plane(dose_plane: np.ndarray, threshold: float) -> np.ndarray:
    """uint8 binary image of the cells at or above a dose threshold."""
    return (dose_plane >= threshold).astype(np.uint8)
