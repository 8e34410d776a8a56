from __future__ import annotations


import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple, Union


import numpy as np
from scipy.interpolate import interp1d


if TYPE_CHECKING:
    from rdh_app.utils.rt_data_objects import Contour


logger = logging.getLogger(__name__)


def calculate_pixel_lookup_table(
    spacing: Sequence[float],
    row_direction: Sequence[float],
    column_direction: Sequence[float],
    position: Sequence[float],
    cols: int,
    rows: int
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Map pixel indices of one image plane to patient coordinates (mm).

    The affine matrix follows DICOM PS3.3 C.7.6.2.1-1 with a zero third column:

        | Xx*di  Yx*dj  0  Sx |
        | Xy*di  Yy*dj  0  Sy |
        | Xz*di  Yz*dj  0  Sz |
        |   0      0    0   1 |

    where X is the row direction cosine, Y the column direction cosine, di the
    spacing between columns, dj the spacing between rows and S the position
    of the top left hand corner voxel.

    Args:
        spacing: (di, dj) in-plane spacing, column spacing first.
        row_direction: Direction cosine of the image rows.
        column_direction: Direction cosine of the image columns.
        position: Top left hand corner position (x, y, z).
        cols: Number of columns.
        rows: Number of rows.

    Returns:
        (x, y) where x[i] is the patient x of column i and y[j] the patient y of row j.
    """
    di, dj = float(spacing[0]), float(spacing[1])
    matrix = np.array(
        [
            [row_direction[0] * di, column_direction[0] * dj, 0.0, position[0]],
            [row_direction[1] * di, column_direction[1] * dj, 0.0, position[1]],
            [row_direction[2] * di, column_direction[2] * dj, 0.0, position[2]],
            [0.0, 0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )

    col_indices = np.zeros((4, cols), dtype=np.float64)
    col_indices[0, :] = np.arange(cols)
    col_indices[3, :] = 1.0
    row_indices = np.zeros((4, rows), dtype=np.float64)
    row_indices[1, :] = np.arange(rows)
    row_indices[3, :] = 1.0

    x_lut = (matrix @ col_indices)[0, :]
    y_lut = (matrix @ row_indices)[1, :]
    return x_lut, y_lut


def calculate_plane_thickness(planes: Union[Dict[float, object], Iterable[float]]) -> float:
    """
    Return the smallest gap between consecutive distinct plane positions.

    Returns 0.0 when there are fewer than two distinct positions.
    """
    positions = np.unique(np.asarray(list(planes), dtype=np.float64))
    if positions.size < 2:
        return 0.0
    return float(np.min(np.diff(positions)))


def calculate_relative_dose(dose: float, planned_dose: Optional[float]) -> Optional[float]:
    """Express a dose as a percentage of the planned dose; None when the planned dose is zero or unset."""
    if not planned_dose:
        return None
    return (100.0 / planned_dose) * dose


def calculate_polygon_area(points: np.ndarray) -> float:
    """Uses Gauss's shoelace algorithm to compute the area of a closed polygon given as (N, 2) points."""
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[0] < 3:
        return 0.0
    x, y = points[:, 0], points[:, 1]
    return float(0.5 * np.abs(np.dot(x, np.roll(y, 1)) - np.dot(y, np.roll(x, 1))))


def find_largest_contour_index(contours: List[Contour]) -> int:
    """Index of the contour with the largest enclosed area, -1 when the list is empty."""
    if not contours:
        return -1
    areas = [calculate_polygon_area(contour.points) for contour in contours]
    return int(np.argmax(areas))


def interpolate(x: Sequence[float], y: Sequence[float]) -> interp1d:
    """
    Build a piecewise-linear spline through (x, y).

    Raises:
        ValueError: on mismatched lengths, fewer than two points, or knots that are
            not strictly increasing. Evaluating the result outside [x[0], x[-1]]
            raises ValueError as well.
    """
    x_arr = np.asarray(x, dtype=np.float64)
    y_arr = np.asarray(y, dtype=np.float64)
    if x_arr.ndim != 1 or y_arr.ndim != 1 or x_arr.size != y_arr.size:
        raise ValueError(f"Dimension mismatch: {x_arr.size} abscissae for {y_arr.size} ordinates.")
    if x_arr.size < 2:
        raise ValueError(f"At least 2 points are required for interpolation, got {x_arr.size}.")
    if np.any(np.diff(x_arr) <= 0):
        raise ValueError("Interpolation abscissae must be strictly increasing.")
    return interp1d(x_arr, y_arr, kind="linear", bounds_error=True, assume_sorted=True)
