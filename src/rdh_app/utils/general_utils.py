from __future__ import annotations


import os
import logging
import tempfile
from typing import Any, Callable, List, Optional


logger = logging.getLogger(__name__)


def atomic_save(
    filepath: str,
    write_func: Callable[[Any], None],
    mode: str = "w",
    encoding: str = "utf-8",
    suffix: str = ".tmp",
    success_message: str = "",
    error_message: str = ""
) -> bool:
    """
    Atomically write to a file by first writing to a temp file and then replacing the target.

    Args:
        filepath: Final path to save the file to.
        write_func: A function that accepts a writable file object and writes the content.
        mode: File open mode ('w' for text, 'wb' for binary).
        encoding: Encoding for text mode.
        suffix: Suffix to use for the temporary file.
        success_message: Message to log if the file is saved successfully.
        error_message: Message to log if an error occurs.

    Returns:
        True if saved successfully, False otherwise.
    """
    directory = os.path.dirname(filepath)
    temp_path = None

    try:
        with tempfile.NamedTemporaryFile(
            mode=mode, dir=directory, delete=False, suffix=suffix, encoding=encoding if "b" not in mode else None
        ) as tmp_file:
            temp_path = tmp_file.name
            write_func(tmp_file)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())

        os.replace(temp_path, filepath)
        if success_message:
            logger.info(success_message)
        return True
    except OSError:
        if temp_path and os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                logger.warning(f"Could not remove temporary file '{temp_path}'.")
        logger.exception(error_message or f"Failed to save file '{filepath}'.", exc_info=True, stack_info=True)
        return False


def get_source_dir() -> str:
    """Return the source directory of the project."""
    this_fpath = os.path.abspath(__file__)
    utils_dir = os.path.dirname(this_fpath)
    rdh_app_dir = os.path.dirname(utils_dir)
    source_dir = os.path.dirname(rdh_app_dir)
    return source_dir


def get_project_dir() -> str:
    """Return the repository root, one level above the source directory."""
    return os.path.dirname(get_source_dir())


def clean_dicom_string(input_string: Optional[str]) -> str:
    """Strip DICOM padding and person-name separators from a string value."""
    if not input_string:
        return ""
    return str(input_string).replace("^", " ").strip().strip("\x00")


def normalize_rgb_color(color_data: Any, default: Optional[List[int]] = None) -> List[int]:
    """Return a three-component 0-255 RGB list, or the default if the input is unusable."""
    default = list(default) if default is not None else [255, 255, 255]
    try:
        components = list(color_data)[:3]
        if len(components) < 3:
            return default
        return [max(0, min(255, int(round(float(c))))) for c in components]
    except (TypeError, ValueError):
        return default
