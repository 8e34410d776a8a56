from __future__ import annotations


import logging
from typing import Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING


import cv2
import numpy as np


from rdh_app.utils.geometry_utils import calculate_plane_thickness, calculate_relative_dose
from rdh_app.utils.numpy_utils import threshold_dose_plane
from rdh_app.utils.rt_data_objects import Contour, IsoDoseRegion, plane_key


if TYPE_CHECKING:
    from rdh_app.managers.config_manager import ConfigManager
    from rdh_app.utils.rt_data_objects import Dose, Plan, ReferenceSeries


logger = logging.getLogger(__name__)


MAX_LEVEL_COLOR: Tuple[int, int, int] = (120, 0, 0)
MAX_LEVEL_LABEL = "Max"


DEFAULT_ISO_FILL_TRANSPARENCY = 70
DEFAULT_ISODOSE_LEVELS: List[Dict] = [
    {"level": 102, "color": [170, 0, 0], "label": "102 %"},
    {"level": 100, "color": [238, 69, 0], "label": "100 %"},
    {"level": 98, "color": [255, 165, 0], "label": "98 %"},
    {"level": 95, "color": [255, 255, 0], "label": "95 %"},
    {"level": 90, "color": [0, 255, 0], "label": "90 %"},
    {"level": 80, "color": [0, 139, 0], "label": "80 %"},
    {"level": 70, "color": [0, 255, 255], "label": "70 %"},
    {"level": 50, "color": [0, 0, 255], "label": "50 %"},
    {"level": 30, "color": [0, 0, 128], "label": "30 %"},
]


def build_iso_dose_ladder(
    max_level: int,
    rx_dose: float,
    levels: Sequence[Dict],
    alpha: int,
) -> Dict[int, IsoDoseRegion]:
    """
    The maximum level followed by the configured levels, each with its absolute dose.

    A configured level equal to the maximum level replaces it.
    """
    ladder: Dict[int, IsoDoseRegion] = {}
    entries = [{"level": max_level, "color": MAX_LEVEL_COLOR, "label": MAX_LEVEL_LABEL}, *levels]
    for entry in entries:
        level = int(entry["level"])
        r, g, b = (int(c) for c in entry["color"][:3])
        ladder[level] = IsoDoseRegion(
            level=level,
            absolute_dose=(level * rx_dose) / 100.0,
            color=(r, g, b, int(alpha)),
            label=str(entry.get("label") or f"{level} %"),
        )
    return ladder


def get_iso_dose_contours(dose: Dose, z: float, threshold_cgy: float) -> List[Contour]:
    """
    Outlines of the regions at or above a dose threshold on the plane at z.

    Holes are attached as children of the outline that encloses them.
    """
    dose_plane = dose.get_dose_plane_cgy(z)
    if dose_plane is None or dose.dose_mm_lut is None:
        return []

    binary = threshold_dose_plane(dose_plane, threshold_cgy)
    if not binary.any():
        return []

    cv_contours, hierarchy = cv2.findContours(binary, cv2.RETR_CCOMP, cv2.CHAIN_APPROX_SIMPLE)[-2:]
    if hierarchy is None:
        return []
    hierarchy = hierarchy[0]  # rows of [next, previous, first_child, parent]

    x_lut, y_lut = dose.dose_mm_lut
    position = plane_key(z)

    def to_contour(cv_contour: np.ndarray) -> Contour:
        indices = cv_contour.reshape(-1, 2)  # (col, row)
        points = np.column_stack((x_lut[indices[:, 0]], y_lut[indices[:, 1]]))
        return Contour(points=points, position=position)

    contours: List[Contour] = []
    for index, cv_contour in enumerate(cv_contours):
        if hierarchy[index][3] != -1:
            continue
        contour = to_contour(cv_contour)
        child = hierarchy[index][2]
        while child != -1:
            contour.children.append(to_contour(cv_contours[child]))
            child = hierarchy[child][0]
        contours.append(contour)
    return contours


def init_iso_doses(plan: Plan, reference: ReferenceSeries, conf_mgr: Optional[ConfigManager] = None) -> None:
    """
    Build the isodose regions of every dose of a plan whose prescribed dose is known.

    Nothing is generated for a dose whose isodose set already exists, nor when
    the maximum relative dose level does not come out positive.
    """
    if plan.rx_dose is None:
        logger.debug(f"Plan '{plan.sop_instance_uid}' has no prescribed dose, no isodoses are built.")
        return

    levels = conf_mgr.get_isodose_levels() if conf_mgr else DEFAULT_ISODOSE_LEVELS
    alpha = conf_mgr.get_iso_fill_transparency() if conf_mgr else DEFAULT_ISO_FILL_TRANSPARENCY

    for dose in plan.doses:
        if dose.iso_dose_set:
            continue

        relative_max = calculate_relative_dose(dose.get_dose_max() * dose.grid_scaling * 1000, plan.rx_dose)
        if relative_max is None:
            logger.debug(f"Prescribed dose of plan '{plan.label}' is zero, no isodoses for dose '{dose.sop_instance_uid}'.")
            continue
        max_level = int(relative_max)
        if max_level <= 0:
            continue

        dose.iso_dose_set = build_iso_dose_ladder(max_level, plan.rx_dose, levels, alpha)

        for sop_uid, z in reference.iter_slices():
            key = plane_key(z)
            dose.iso_uid_index[sop_uid] = key
            slice_contours = dose.iso_contour_map.setdefault(key, [])
            for region in dose.iso_dose_set.values():
                contours = get_iso_dose_contours(dose, z, region.absolute_dose)
                region.planes.setdefault(key, []).extend(contours)
                slice_contours.extend(contours)

        for region in dose.iso_dose_set.values():
            region.thickness = calculate_plane_thickness(region.planes)

        logger.info(
            f"Built {len(dose.iso_dose_set)} isodose levels for dose '{dose.sop_instance_uid}' "
            f"(max level {max_level} %)."
        )
