from __future__ import annotations


import os
import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union


from rdh_app.data_builders.IsoDoseBuilder import DEFAULT_ISO_FILL_TRANSPARENCY, DEFAULT_ISODOSE_LEVELS
from rdh_app.utils.general_utils import atomic_save, get_project_dir


logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages application configuration settings."""

    def __init__(self, project_dir: Optional[str] = None) -> None:
        self._set_directories(project_dir)
        self._ensure_directories_exist()
        self._set_config_files()
        self._load_configs()

    def _set_directories(self, project_dir: Optional[str]) -> None:
        """Set up key project directories."""
        project_dir = project_dir or get_project_dir()
        self.dirs: Dict[str, str] = {
            "project": project_dir,
            "config_files": os.path.join(project_dir, "config_files"),
            "logs": os.path.join(project_dir, "logs"),
        }

    def _ensure_directories_exist(self) -> None:
        for path in self.dirs.values():
            os.makedirs(path, exist_ok=True)

    def _set_config_files(self) -> None:
        """Map configuration keys to file paths and data types."""
        initial_files: Dict[str, Tuple[str, type]] = {
            "user_config": ("user_config.json", dict),
            "isodose_levels": ("isodose_levels.json", list),
        }
        self.config_files = {
            key: (os.path.join(self.dirs["config_files"], filename), expected_type)
            for key, (filename, expected_type) in initial_files.items()
        }

    def _load_configs(self) -> None:
        """Load and validate configuration files."""
        self.configs: Dict[str, Any] = {}
        for key, (file_path, expected_type) in self.config_files.items():
            loaded_data = self._load_config(file_path)
            if loaded_data is None:
                loaded_data = expected_type()
            if not isinstance(loaded_data, expected_type):
                logger.warning(
                    f"Configuration file '{file_path}' has data of type {type(loaded_data).__name__} "
                    f"(expected {expected_type.__name__}); using default configuration."
                )
                loaded_data = expected_type()
            self.configs[key] = loaded_data

    def _load_config(self, file_path: str) -> Optional[Any]:
        """Load JSON configuration file."""
        if not os.path.exists(file_path):
            logger.debug(f"Configuration file '{file_path}' does not exist; using defaults.")
            return None
        try:
            with open(file_path, "r", encoding="utf-8") as file:
                return json.load(file)
        except (OSError, json.JSONDecodeError):
            logger.exception(f"Unable to load configuration file '{file_path}'.")
            return None

    def _save_config(self, key: str, new_config: Union[dict, list]) -> bool:
        """Validate and save configuration data."""
        if key not in self.config_files:
            logger.error(f"Configuration key '{key}' is invalid; cannot update configuration.")
            return False

        file_path, expected_type = self.config_files[key]
        if not isinstance(new_config, expected_type):
            logger.error(
                f"Configuration update for '{key}' has invalid data type: expected {expected_type.__name__}, "
                f"got {type(new_config).__name__}."
            )
            return False

        if atomic_save(
            filepath=file_path,
            write_func=lambda file: json.dump(new_config, file, indent=4),
            error_message=f"Failed to save configuration for '{key}' to '{file_path}'."
        ):
            self.configs[key] = new_config
            return True
        return False

    def update_user_config(self, updates: dict) -> bool:
        """Update user configuration settings."""
        if not isinstance(updates, dict):
            logger.error(f"Configuration update for 'user_config' must be a dict, got {type(updates).__name__}.")
            return False

        user_config: Dict[str, Any] = dict(self.configs.get("user_config", {}))
        user_config.update(updates)
        saved = self._save_config("user_config", user_config)
        if saved:
            logger.info(f"Updated user configuration settings: {updates}")
        return saved

    def update_isodose_levels(self, levels: List[Dict[str, Any]]) -> bool:
        """Replace the configured isodose ladder after validating every entry."""
        if not isinstance(levels, list) or not all(self._is_valid_isodose_level(entry) for entry in levels):
            logger.error(f"Isodose levels must be a list of {{'level', 'color', 'label'}} entries. Received: {levels}.")
            return False
        return self._save_config("isodose_levels", levels)

    def get_project_dir(self) -> str:
        return self.dirs["project"]

    def get_configs_dir(self) -> str:
        configs_dir = self.dirs["config_files"]
        os.makedirs(configs_dir, exist_ok=True)
        return configs_dir

    def get_logs_dir(self) -> str:
        logs_dir = self.dirs["logs"]
        os.makedirs(logs_dir, exist_ok=True)
        return logs_dir

    def get_user_config(self) -> Dict[str, Any]:
        return self.configs.get("user_config", {})

    def get_user_setting(self, key: str, default: Any = None) -> Any:
        """Get user setting with optional default."""
        return self.get_user_config().get(key, default)

    def get_force_recalculate_dvh(self) -> bool:
        """Whether provided DVHs are replaced by calculated ones on reload."""
        fallback = False
        value = self.get_user_setting("force_recalculate_dvh", fallback)
        if not isinstance(value, bool):
            logger.error(f"force_recalculate_dvh '{value}' is not a boolean. Using fallback value: {fallback}.")
            return fallback
        return value

    def get_dose_slice_tolerance(self) -> float:
        """Largest distance (mm) between a slice and a dose plane that still counts as a match."""
        fallback = 0.5
        value = self.get_user_setting("dose_slice_tolerance_mm", fallback)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            logger.error(f"Dose slice tolerance '{value}' is not valid. Using fallback value: {fallback}.")
            return fallback
        return float(value)

    def _get_transparency(self, key: str, fallback: int) -> int:
        value = self.get_user_setting(key, fallback)
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 255:
            logger.error(f"{key} '{value}' must be an integer in [0, 255]. Using fallback value: {fallback}.")
            return fallback
        return value

    def get_iso_fill_transparency(self) -> int:
        return self._get_transparency("iso_fill_transparency", DEFAULT_ISO_FILL_TRANSPARENCY)

    def get_structure_fill_transparency(self) -> int:
        return self._get_transparency("structure_fill_transparency", 115)

    def get_log_level(self) -> int:
        """Logging level from the configured level name."""
        fallback = logging.INFO
        name = self.get_user_setting("log_level", "INFO")
        level = logging.getLevelName(str(name).upper())
        if not isinstance(level, int):
            logger.error(f"Log level '{name}' is not valid. Using fallback value: INFO.")
            return fallback
        return level

    @staticmethod
    def _is_valid_isodose_level(entry: Any) -> bool:
        if not isinstance(entry, dict):
            return False
        level, color = entry.get("level"), entry.get("color")
        return (
            isinstance(level, int) and not isinstance(level, bool) and level > 0
            and isinstance(color, (list, tuple)) and len(color) >= 3
            and all(isinstance(c, int) and 0 <= c <= 255 for c in color[:3])
        )

    def get_isodose_levels(self) -> List[Dict[str, Any]]:
        """Configured isodose ladder, highest level first; the built-in ladder when none is valid."""
        levels = [entry for entry in self.configs.get("isodose_levels", []) if self._is_valid_isodose_level(entry)]
        if not levels:
            return [dict(entry) for entry in DEFAULT_ISODOSE_LEVELS]
        return sorted(levels, key=lambda entry: entry["level"], reverse=True)
