"""
Test fixtures.

The synthetic case: a 40 x 40 x 5 reference grid with 1 mm pixels and 2.5 mm slices,
origin (-20, -20, 0), so pixel centres sit on integer millimetres and slices at
z = 0, 2.5, 5, 7.5 and 10. Dose grids share that geometry and use a grid scaling
of 1/64, so a stored value of 128 is exactly 2 Gy.
"""
from __future__ import annotations


from typing import Dict, List, Optional, Sequence, Tuple


import numpy as np
import pytest
import SimpleITK as sitk
from pydicom.dataset import Dataset
from pydicom.sequence import Sequence as DicomSequence


from rdh_app.managers.config_manager import ConfigManager
from rdh_app.managers.shared_state_manager import SharedStateManager
from rdh_app.utils.rt_data_objects import RecordKind, ReferenceSeries, RtRecord


GRID_SIZE = (40, 40, 5)  # (cols, rows, slices)
GRID_SPACING = (1.0, 1.0, 2.5)
GRID_ORIGIN = (-20.0, -20.0, 0.0)
GRID_SCALING = 0.015625
SERIES_UID = "1.2.826.0.1.3680043.8.498.1"
PLAN_UID = "1.2.826.0.1.3680043.8.498.2"
DOSE_UID = "1.2.826.0.1.3680043.8.498.3"
STRUCT_UID = "1.2.826.0.1.3680043.8.498.4"


def make_image(array: np.ndarray) -> sitk.Image:
    """sitk image on the shared test geometry from a (slices, rows, cols) array."""
    image = sitk.GetImageFromArray(array.astype(np.float32))
    image.SetSpacing(GRID_SPACING)
    image.SetOrigin(GRID_ORIGIN)
    image.SetDirection((1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0))
    return image


def square_points(half_side: float, center: Tuple[float, float] = (0.0, 0.0)) -> List[Tuple[float, float]]:
    cx, cy = center
    return [
        (cx - half_side, cy - half_side),
        (cx + half_side, cy - half_side),
        (cx + half_side, cy + half_side),
        (cx - half_side, cy + half_side),
    ]


def make_dvh_item(roi_number: int, dvh_type: str, data: Sequence[float], volume_units: str = "CM3") -> Dataset:
    ref_roi = Dataset()
    ref_roi.ReferencedROINumber = roi_number
    item = Dataset()
    item.DVHReferencedROISequence = DicomSequence([ref_roi])
    item.DVHType = dvh_type
    item.DoseUnits = "GY"
    item.DoseType = "PHYSICAL"
    item.DVHDoseScaling = 1.0
    item.DVHVolumeUnits = volume_units
    item.DVHNumberOfBins = len(data) // 2
    item.DVHData = list(data)
    return item


def make_dose_record(
    array: Optional[np.ndarray],
    sop_uid: str = DOSE_UID,
    plan_uid: Optional[str] = PLAN_UID,
    dvh_items: Optional[List[Dataset]] = None,
    key: str = "dose.dcm",
) -> RtRecord:
    ds = Dataset()
    ds.Modality = "RTDOSE"
    ds.SOPInstanceUID = sop_uid
    if plan_uid is not None:
        ref_plan = Dataset()
        ref_plan.ReferencedSOPInstanceUID = plan_uid
        ds.ReferencedRTPlanSequence = DicomSequence([ref_plan])
    ds.DoseUnits = "GY"
    ds.DoseType = "PHYSICAL"
    ds.DoseSummationType = "PLAN"
    ds.DoseGridScaling = GRID_SCALING
    ds.ImagePositionPatient = list(GRID_ORIGIN)
    ds.GridFrameOffsetVector = [k * GRID_SPACING[2] for k in range(GRID_SIZE[2])]
    if dvh_items:
        ds.DVHSequence = DicomSequence(dvh_items)
    grid = make_image(array) if array is not None else None
    return RtRecord(kind=RecordKind.DOSE, dataset=ds, key=key, grid=grid)


def make_plan_record(
    sop_uid: str = PLAN_UID,
    dose_references: Sequence[Tuple[str, Optional[float], str]] = (("VOLUME", 2.0, ""),),
    fraction_group: Optional[Tuple[Optional[int], Sequence[Optional[float]]]] = None,
    key: str = "plan.dcm",
    label: str = "PLAN1",
) -> RtRecord:
    ds = Dataset()
    ds.Modality = "RTPLAN"
    ds.SOPInstanceUID = sop_uid
    ds.RTPlanLabel = label
    ds.RTPlanName = "Prostate"
    ds.RTPlanDescription = "Test plan"
    ds.RTPlanDate = "20240115"
    ds.RTPlanTime = "093000"
    ds.RTPlanGeometry = "PATIENT"

    items = []
    for structure_type, target_dose, description in dose_references:
        item = Dataset()
        item.DoseReferenceStructureType = structure_type
        if target_dose is not None:
            item.TargetPrescriptionDose = target_dose
        if description:
            item.DoseReferenceDescription = description
        items.append(item)
    if items:
        ds.DoseReferenceSequence = DicomSequence(items)

    if fraction_group is not None:
        num_fractions, beam_doses = fraction_group
        group = Dataset()
        if num_fractions is not None:
            group.NumberOfFractionsPlanned = num_fractions
        beams = []
        for number, beam_dose in enumerate(beam_doses, start=1):
            beam = Dataset()
            beam.ReferencedBeamNumber = number
            if beam_dose is not None:
                beam.BeamDose = beam_dose
            beams.append(beam)
        group.ReferencedBeamSequence = DicomSequence(beams)
        ds.FractionGroupSequence = DicomSequence([group])
    return RtRecord(kind=RecordKind.PLAN, dataset=ds, key=key)


def make_structure_record(
    rois: Dict[int, Tuple[str, Dict[float, List[List[Tuple[float, float]]]]]],
    sop_uid: str = STRUCT_UID,
    key: str = "struct.dcm",
) -> RtRecord:
    """rois maps ROI number to (name, {z: [polygon, ...]})."""
    ds = Dataset()
    ds.Modality = "RTSTRUCT"
    ds.SOPInstanceUID = sop_uid
    ds.StructureSetLabel = "RS1"

    series_item = Dataset()
    series_item.SeriesInstanceUID = SERIES_UID
    study_item = Dataset()
    study_item.RTReferencedSeriesSequence = DicomSequence([series_item])
    frame_item = Dataset()
    frame_item.RTReferencedStudySequence = DicomSequence([study_item])
    ds.ReferencedFrameOfReferenceSequence = DicomSequence([frame_item])

    roi_items, contour_items, observation_items = [], [], []
    for roi_number, (name, planes) in rois.items():
        roi_item = Dataset()
        roi_item.ROINumber = roi_number
        roi_item.ROIName = name
        roi_items.append(roi_item)

        contours = []
        for z, polygons in planes.items():
            for polygon in polygons:
                contour = Dataset()
                contour.ContourGeometricType = "CLOSED_PLANAR"
                contour.NumberOfContourPoints = len(polygon)
                contour.ContourData = [c for x, y in polygon for c in (x, y, z)]
                contours.append(contour)
        contour_item = Dataset()
        contour_item.ReferencedROINumber = roi_number
        contour_item.ROIDisplayColor = [255, 0, 0]
        contour_item.ContourSequence = DicomSequence(contours)
        contour_items.append(contour_item)

        observation = Dataset()
        observation.ReferencedROINumber = roi_number
        observation.RTROIInterpretedType = "PTV"
        observation_items.append(observation)

    ds.StructureSetROISequence = DicomSequence(roi_items)
    ds.ROIContourSequence = DicomSequence(contour_items)
    ds.RTROIObservationsSequence = DicomSequence(observation_items)
    return RtRecord(kind=RecordKind.STRUCTURE_SET, dataset=ds, key=key)


@pytest.fixture
def reference_series() -> ReferenceSeries:
    cols, rows, slices = GRID_SIZE
    image = make_image(np.zeros((slices, rows, cols), dtype=np.float32))
    return ReferenceSeries(
        image=image,
        sop_instance_uids=[f"{SERIES_UID}.{k}" for k in range(slices)],
        series_instance_uid=SERIES_UID,
    )


@pytest.fixture
def uniform_dose_array() -> np.ndarray:
    """2 Gy everywhere."""
    cols, rows, slices = GRID_SIZE
    return np.full((slices, rows, cols), 128.0, dtype=np.float32)


@pytest.fixture
def gradient_dose_array() -> np.ndarray:
    """Dose rising along x: 1 Gy in the first column, +2/64 Gy per column."""
    cols, rows, slices = GRID_SIZE
    column_values = 64.0 + 2.0 * np.arange(cols, dtype=np.float32)
    return np.broadcast_to(column_values, (slices, rows, cols)).copy()


@pytest.fixture
def square_structure_record() -> RtRecord:
    """ROI 1: a 10 mm square centred on the origin on slices z = 2.5, 5 and 7.5."""
    planes = {z: [square_points(5.0)] for z in (2.5, 5.0, 7.5)}
    return make_structure_record({1: ("PTV", planes)})


@pytest.fixture
def conf_mgr(tmp_path) -> ConfigManager:
    return ConfigManager(project_dir=str(tmp_path))


@pytest.fixture
def ss_mgr():
    manager = SharedStateManager()
    yield manager
    manager.shutdown()
