from __future__ import annotations


import os
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional


from rdh_app.data_builders.ImageBuilder import construct_image
from rdh_app.data_builders.RTDoseBuilder import load_dose_record_grid
from rdh_app.utils.dicom_tags import DicomTags
from rdh_app.utils.dicom_utils import get_ds_string, get_first_ref_series_uid, read_dcm_file
from rdh_app.utils.rt_data_objects import RecordKind, RtRecord


if TYPE_CHECKING:
    from pydicom import Dataset
    from rdh_app.utils.rt_data_objects import ReferenceSeries


logger = logging.getLogger(__name__)


IMAGE_MODALITIES = {"CT", "MR", "PT"}
RT_MODALITY_KINDS: Dict[str, RecordKind] = {
    "RTSTRUCT": RecordKind.STRUCTURE_SET,
    "RTPLAN": RecordKind.PLAN,
    "RTDOSE": RecordKind.DOSE,
}


def scan_folder_for_dicom(folder: str) -> List[str]:
    """Recursively scan a folder for DICOM files."""
    dicom_files = []
    for root, _, files in os.walk(folder):
        dicom_files.extend(os.path.join(root, f) for f in files if f.lower().endswith(".dcm"))
    return sorted(dicom_files)


@dataclass
class FolderContents:
    """Records found in a folder: image files per series and RT records per kind."""
    image_series: Dict[str, List[str]] = field(default_factory=dict)
    records: Dict[RecordKind, List[RtRecord]] = field(
        default_factory=lambda: {kind: [] for kind in RecordKind}
    )

    def get_reference_series_uid(self) -> Optional[str]:
        """Series referenced by the first structure set, else the largest image series."""
        for record in self.records[RecordKind.STRUCTURE_SET]:
            series_uid = get_first_ref_series_uid(record.dataset)
            if series_uid in self.image_series:
                return series_uid
        if not self.image_series:
            return None
        return max(self.image_series, key=lambda uid: len(self.image_series[uid]))


class DicomManager:
    """Finds the DICOM files of a case on disk and turns them into records."""

    @staticmethod
    def _make_record(ds: Dataset, file_path: str) -> Optional[RtRecord]:
        modality = get_ds_string(ds, DicomTags.modality).upper()
        kind = RT_MODALITY_KINDS.get(modality)
        if kind is None:
            logger.debug(f"File '{file_path}' with modality '{modality}' is not an RT record.")
            return None
        grid = load_dose_record_grid(file_path) if kind is RecordKind.DOSE else None
        return RtRecord(kind=kind, dataset=ds, key=file_path, grid=grid)

    def load_record(self, file_path: str) -> Optional[RtRecord]:
        """Read one RT file as a tagged record; None for anything that is not RTSTRUCT, RTPLAN or RTDOSE."""
        ds = read_dcm_file(file_path, stop_before_pixels=True, force=True)
        if ds is None:
            return None
        return self._make_record(ds, file_path)

    def scan_folder(self, dicom_dir: str) -> FolderContents:
        """Sort the DICOM files of a folder into image series and RT records."""
        contents = FolderContents()
        if not dicom_dir or not os.path.isdir(dicom_dir):
            logger.error(f"Invalid DICOM directory: {dicom_dir}")
            return contents

        for file_path in scan_folder_for_dicom(dicom_dir):
            ds = read_dcm_file(file_path, stop_before_pixels=True, force=True)
            if ds is None:
                continue
            modality = get_ds_string(ds, DicomTags.modality).upper()
            if modality in IMAGE_MODALITIES:
                series_uid = get_ds_string(ds, DicomTags.series_instance_uid)
                contents.image_series.setdefault(series_uid, []).append(file_path)
            elif modality in RT_MODALITY_KINDS:
                record = self._make_record(ds, file_path)
                if record is not None:
                    contents.records[record.kind].append(record)
            else:
                logger.debug(f"Ignoring '{file_path}' with modality '{modality}'.")

        counts = Counter({kind.value: len(records) for kind, records in contents.records.items()})
        logger.info(
            f"Found {len(contents.image_series)} image series and RT records {dict(counts)} in '{dicom_dir}'"
        )
        return contents

    def load_folder(self, dicom_dir: str) -> tuple[Optional[ReferenceSeries], FolderContents]:
        """Scan a folder and build its reference image series."""
        contents = self.scan_folder(dicom_dir)
        series_uid = contents.get_reference_series_uid()
        if series_uid is None:
            logger.error(f"No image series found in '{dicom_dir}'.")
            return None, contents
        reference = construct_image(contents.image_series[series_uid], expected_SIUID=series_uid)
        return reference, contents
