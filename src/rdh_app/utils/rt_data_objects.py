from __future__ import annotations


import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Tuple


import numpy as np
import SimpleITK as sitk


from rdh_app.utils.dvh_utils import calculate_dvh_statistics
from rdh_app.utils.geometry_utils import calculate_pixel_lookup_table, calculate_plane_thickness
from rdh_app.utils.sitk_utils import sitk_resample_to_reference


if TYPE_CHECKING:
    from pydicom import Dataset


logger = logging.getLogger(__name__)


def plane_key(z: float) -> float:
    """Key used for every position-indexed plane map."""
    return round(float(z), 2)


class RecordKind(Enum):
    STRUCTURE_SET = "RTSTRUCT"
    PLAN = "RTPLAN"
    DOSE = "RTDOSE"


class DataSource(Enum):
    PROVIDED = "Provided"
    CALCULATED = "Calculated"


@dataclass
class RtRecord:
    """One clinical record handed to the linker: a parsed dataset tagged with its kind."""
    kind: RecordKind
    dataset: Dataset
    key: str
    grid: Optional[sitk.Image] = None  # Dose records only

    @property
    def sop_instance_uid(self) -> str:
        return str(self.dataset.get("SOPInstanceUID", "")).strip()


@dataclass
class ReferenceSeries:
    """The patient image volume that every dose grid and contour is mapped onto."""
    image: sitk.Image
    sop_instance_uids: List[str]
    series_instance_uid: str = ""
    _pixel_lut: Optional[Tuple[np.ndarray, np.ndarray]] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        num_slices = self.image.GetSize()[2]
        if len(self.sop_instance_uids) != num_slices:
            raise ValueError(
                f"Reference series has {num_slices} slices but {len(self.sop_instance_uids)} SOP Instance UIDs."
            )

    @property
    def num_slices(self) -> int:
        return self.image.GetSize()[2]

    def get_in_plane_spacing(self) -> Tuple[float, float]:
        spacing = self.image.GetSpacing()
        return float(spacing[0]), float(spacing[1])

    def get_slice_position(self, index: int) -> Tuple[float, float, float]:
        """Patient position of the top left hand corner voxel of a slice."""
        return tuple(self.image.TransformIndexToPhysicalPoint((0, 0, int(index))))

    def get_slice_positions(self) -> List[float]:
        return [self.get_slice_position(k)[2] for k in range(self.num_slices)]

    def iter_slices(self) -> Iterator[Tuple[str, float]]:
        """Yield (SOP Instance UID, z) for every slice in order."""
        for k, sop_uid in enumerate(self.sop_instance_uids):
            yield sop_uid, self.get_slice_position(k)[2]

    def get_pixel_lut(self) -> Tuple[np.ndarray, np.ndarray]:
        """Pixel to patient lookup table, computed once from the middle slice."""
        if self._pixel_lut is None:
            direction = self.image.GetDirection()
            cols, rows = self.image.GetSize()[0], self.image.GetSize()[1]
            self._pixel_lut = calculate_pixel_lookup_table(
                spacing=self.get_in_plane_spacing(),
                row_direction=(direction[0], direction[3], direction[6]),
                column_direction=(direction[1], direction[4], direction[7]),
                position=self.get_slice_position(self.num_slices // 2),
                cols=cols,
                rows=rows,
            )
        return self._pixel_lut


@dataclass
class Contour:
    points: np.ndarray  # (N, 2) patient x, y in mm
    position: float  # patient z in mm
    children: List[Contour] = field(default_factory=list)

    def get_flattened_points(self) -> np.ndarray:
        """Own vertices followed by the vertices of every child, as one polygon."""
        arrays = [np.asarray(self.points, dtype=np.float64).reshape(-1, 2)]
        arrays.extend(np.asarray(child.points, dtype=np.float64).reshape(-1, 2) for child in self.children)
        return np.vstack(arrays)


@dataclass
class Dvh:
    """A cumulative dose-volume histogram with 1-unit dose bins, scaled by dose_scaling."""
    referenced_roi_number: int
    source: DataSource
    dvh_type: str = "CUMULATIVE"
    dose_unit: str = ""
    dose_type: str = ""
    volume_unit: str = ""
    dose_scaling: float = 1.0
    data: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float64))
    number_of_bins: int = 0
    minimum_dose: float = -1.0
    maximum_dose: float = -1.0
    mean_dose: float = -1.0
    plan_uid: Optional[str] = None  # Back reference, resolved through the case

    def _to_cgy(self, value: float) -> float:
        return value * 100.0 if self.dose_unit.upper() == "GY" else value

    def _provided_to_cgy(self, value: float) -> Optional[float]:
        if value == -1.0:
            return None
        return self._to_cgy(value)

    def _computed(self, name: str) -> float:
        """Statistic read off the curve, in cGy."""
        return self._to_cgy(calculate_dvh_statistics(self.data, self.dose_scaling)[name])

    def get_minimum_dose_cgy(self) -> float:
        provided = self._provided_to_cgy(self.minimum_dose)
        return provided if provided is not None else self._computed("min")

    def get_maximum_dose_cgy(self) -> float:
        provided = self._provided_to_cgy(self.maximum_dose)
        return provided if provided is not None else self._computed("max")

    def get_mean_dose_cgy(self) -> float:
        provided = self._provided_to_cgy(self.mean_dose)
        return provided if provided is not None else self._computed("mean")


@dataclass
class StructRegion:
    roi_number: int
    name: str
    color: Tuple[int, int, int] = (255, 255, 255)
    interpreted_type: str = ""
    planes: Dict[float, List[Contour]] = field(default_factory=dict)
    thickness: float = 0.0
    volume: float = -1.0  # cm3, -1 until a DVH sets it
    volume_source: Optional[DataSource] = None
    dvh: Optional[Dvh] = None

    def add_contour(self, contour: Contour) -> None:
        self.planes.setdefault(plane_key(contour.position), []).append(contour)

    def update_thickness(self) -> None:
        self.thickness = calculate_plane_thickness(self.planes)

    def set_volume(self, volume: float, source: DataSource) -> None:
        if self.volume_source is not None and self.volume_source is not source:
            logger.debug(f"Volume of '{self.name}' now comes from the {source.value.lower()} DVH.")
        self.volume = float(volume)
        self.volume_source = source


@dataclass
class StructureSet:
    sop_instance_uid: str
    key: str = ""
    label: str = ""
    name: str = ""
    referenced_series_uid: str = ""
    regions: Dict[int, StructRegion] = field(default_factory=dict)


@dataclass
class IsoDoseRegion:
    level: int  # percent of the prescribed dose
    absolute_dose: float  # cGy
    color: Tuple[int, int, int, int]
    label: str
    planes: Dict[float, List[Contour]] = field(default_factory=dict)
    thickness: float = 0.0


@dataclass
class Dose:
    sop_instance_uid: str
    key: str = ""
    grid: Optional[sitk.Image] = None  # Raw stored values, multiply by grid_scaling for Gy
    grid_scaling: float = 0.0
    grid_frame_offsets: Optional[np.ndarray] = None
    image_position: Optional[np.ndarray] = None
    dose_units: str = ""
    dose_type: str = ""
    dose_summation_type: str = ""
    comment: str = ""
    dvhs: Dict[int, Dvh] = field(default_factory=dict)
    iso_dose_set: Dict[int, IsoDoseRegion] = field(default_factory=dict)
    iso_contour_map: Dict[float, List[Contour]] = field(default_factory=dict)
    iso_uid_index: Dict[str, float] = field(default_factory=dict)
    dose_mm_lut: Optional[Tuple[np.ndarray, np.ndarray]] = None
    _dose_max: Optional[float] = field(default=None, init=False, repr=False)
    _resampled_planes: Optional[np.ndarray] = field(default=None, init=False, repr=False)
    _reference_positions: Optional[np.ndarray] = field(default=None, init=False, repr=False)
    _tolerance: float = field(default=0.5, init=False, repr=False)

    def get_dose_max(self) -> float:
        """Maximum raw value of the dose grid, 0.0 without a grid."""
        if self._dose_max is None:
            if self.grid is None:
                self._dose_max = 0.0
            else:
                self._dose_max = float(np.max(sitk.GetArrayViewFromImage(self.grid)))
        return self._dose_max

    def get_plane_positions(self) -> Optional[np.ndarray]:
        """Patient z of each dose frame."""
        if self.grid_frame_offsets is not None and self.grid_frame_offsets.size:
            if self.grid_frame_offsets[0] != 0:
                # Absolute positions are allowed when the first offset is not zero
                return np.asarray(self.grid_frame_offsets, dtype=np.float64)
            if self.image_position is not None:
                return self.image_position[2] + np.asarray(self.grid_frame_offsets, dtype=np.float64)
        if self.grid is not None:
            return np.array(
                [self.grid.TransformIndexToPhysicalPoint((0, 0, k))[2] for k in range(self.grid.GetSize()[2])]
            )
        return None

    @property
    def is_initialised(self) -> bool:
        return self._resampled_planes is not None

    def initialise_dose_grid_to_image_grid(self, reference: ReferenceSeries, tolerance: float = 0.5) -> None:
        """Resample the dose grid onto the reference image grid and take its pixel lookup table."""
        self.dose_mm_lut = reference.get_pixel_lut()
        self._tolerance = tolerance
        if self._resampled_planes is not None:
            return
        if self.grid is None:
            logger.warning(f"Dose '{self.sop_instance_uid}' has no dose grid, no dose planes are available.")
            return
        resampled = sitk_resample_to_reference(
            sitk.Cast(self.grid, sitk.sitkFloat32), reference.image, sitk.sitkLinear, 0.0
        )
        self._resampled_planes = sitk.GetArrayFromImage(resampled)  # (slices, rows, cols)
        self._reference_positions = np.asarray(reference.get_slice_positions(), dtype=np.float64)

    def get_dose_plane_by_slice(self, z: float) -> Optional[np.ndarray]:
        """Raw dose plane on the reference grid at position z, or None if the dose does not cover z."""
        if self._resampled_planes is None or self._reference_positions is None:
            return None
        dose_positions = self.get_plane_positions()
        if dose_positions is None or not dose_positions.size:
            return None
        if z < dose_positions.min() - self._tolerance or z > dose_positions.max() + self._tolerance:
            return None
        distances = np.abs(self._reference_positions - z)
        index = int(np.argmin(distances))
        if distances[index] > self._tolerance:
            return None
        return self._resampled_planes[index]

    def get_dose_plane_cgy(self, z: float) -> Optional[np.ndarray]:
        plane = self.get_dose_plane_by_slice(z)
        if plane is None:
            return None
        return plane.astype(np.float64) * self.grid_scaling * 100.0

    def get_iso_contours_by_uid(self, sop_instance_uid: str) -> List[Contour]:
        z = self.iso_uid_index.get(sop_instance_uid)
        if z is None:
            return []
        return self.iso_contour_map.get(z, [])


@dataclass
class Plan:
    sop_instance_uid: str
    key: Optional[str] = None  # None marks a placeholder created for an orphan dose
    label: str = ""
    name: str = ""
    description: str = ""
    date: Optional[datetime] = None
    geometry: str = ""
    rx_dose: Optional[float] = None  # cGy
    doses: List[Dose] = field(default_factory=list)

    @property
    def is_placeholder(self) -> bool:
        return self.key is None

    def get_dose(self, sop_instance_uid: str) -> Optional[Dose]:
        return next((dose for dose in self.doses if dose.sop_instance_uid == sop_instance_uid), None)


@dataclass
class RtCase:
    reference: ReferenceSeries
    structures: Dict[str, StructureSet] = field(default_factory=dict)
    plans: Dict[str, Plan] = field(default_factory=dict)

    @property
    def series_instance_uid(self) -> str:
        return self.reference.series_instance_uid

    def get_first_structure(self) -> Optional[StructureSet]:
        return next(iter(self.structures.values()), None)

    def find_dose(self, sop_instance_uid: str) -> Optional[Dose]:
        for plan in self.plans.values():
            dose = plan.get_dose(sop_instance_uid)
            if dose is not None:
                return dose
        return None
