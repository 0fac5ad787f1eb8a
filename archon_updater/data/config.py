"""Configuration management: settings.yaml and selection files."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from archon_updater.data.models import Character, Selection, Settings
from archon_updater.utils.errors import ArchonUpdaterError, ErrorType
from archon_updater.utils.logger import get_logger


class ConfigError(ArchonUpdaterError):
    """Configuration related error."""
    error_type = ErrorType.CONFIG


class ConfigManager:
    """
    Loads runtime settings from YAML and selections from JSON.

    Missing settings fall back to defaults; a missing settings.yaml is not
    an error.
    """

    DEFAULT_CONFIG_DIR = "config"

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize config manager.

        Args:
            config_dir: Path to configuration directory
        """
        self.config_dir = Path(config_dir or self.DEFAULT_CONFIG_DIR)
        self.log = get_logger()
        self._settings: Optional[Settings] = None

    def load(self) -> Settings:
        """
        Load runtime settings.

        Returns:
            Settings object

        Raises:
            ConfigError: If settings.yaml is invalid
        """
        settings_path = self.config_dir / "settings.yaml"

        if not settings_path.exists():
            self.log.debug(f"No settings.yaml found at {settings_path}, using defaults")
            self._settings = Settings()
            return self._settings

        try:
            with open(settings_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in settings.yaml: {e}")

        if not isinstance(data, dict):
            raise ConfigError("settings.yaml must contain a mapping")

        self._settings = self._parse_settings(data)
        self.log.info(f"Loaded settings from {settings_path}")
        return self._settings

    def _parse_settings(self, data: Dict[str, Any]) -> Settings:
        """Parse raw YAML data into a Settings object."""
        defaults = Settings()
        archon = data.get("archon", {}) or {}
        http = data.get("http", {}) or {}
        storage = data.get("storage", {}) or {}
        logging_cfg = data.get("logging", {}) or {}

        try:
            return Settings(
                # Remote source
                base_url=archon.get("base_url", defaults.base_url),
                dungeon_bracket=archon.get("dungeon_bracket", defaults.dungeon_bracket),
                talent_calc_prefix=archon.get("talent_calc_prefix", defaults.talent_calc_prefix),
                # HTTP
                user_agent=http.get("user_agent", defaults.user_agent),
                connect_timeout=float(http.get("connect_timeout", defaults.connect_timeout)),
                read_timeout=float(http.get("read_timeout", defaults.read_timeout)),
                max_concurrent_requests=int(
                    http.get("max_concurrent_requests", defaults.max_concurrent_requests)
                ),
                requests_per_second=float(
                    http.get("requests_per_second", defaults.requests_per_second)
                ),
                burst=int(http.get("burst", defaults.burst)),
                not_available_statuses=[
                    int(s) for s in http.get("not_available_statuses", []) or []
                ],
                # Storage
                table_name=storage.get("table_name", defaults.table_name),
                label_marker=storage.get("label_marker", defaults.label_marker),
                backup=bool(storage.get("backup", defaults.backup)),
                create_if_missing=bool(storage.get("create_if_missing", defaults.create_if_missing)),
                # Logging
                log_level=logging_cfg.get("level", defaults.log_level),
                log_dir=logging_cfg.get("directory", defaults.log_dir),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in settings.yaml: {e}")

    def get_settings(self) -> Settings:
        """Get loaded settings, loading if necessary."""
        if self._settings is None:
            self.load()
        return self._settings

    def save(self, settings: Settings) -> None:
        """
        Save settings to settings.yaml.

        Args:
            settings: Settings object to save
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)
        settings_path = self.config_dir / "settings.yaml"

        data = {
            "archon": {
                "base_url": settings.base_url,
                "dungeon_bracket": settings.dungeon_bracket,
                "talent_calc_prefix": settings.talent_calc_prefix,
            },
            "http": {
                "user_agent": settings.user_agent,
                "connect_timeout": settings.connect_timeout,
                "read_timeout": settings.read_timeout,
                "max_concurrent_requests": settings.max_concurrent_requests,
                "requests_per_second": settings.requests_per_second,
                "burst": settings.burst,
                "not_available_statuses": list(settings.not_available_statuses),
            },
            "storage": {
                "table_name": settings.table_name,
                "label_marker": settings.label_marker,
                "backup": settings.backup,
                "create_if_missing": settings.create_if_missing,
            },
            "logging": {
                "level": settings.log_level,
                "directory": settings.log_dir,
            },
        }

        with open(settings_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        self.log.info(f"Saved settings to {settings_path}")

    def load_selection(self, path: str) -> Selection:
        """
        Load a selection file.

        Expected shape::

            {"characters": [{"name", "class", "specializations": [...]}],
             "raidDifficulties": [...], "raidBosses": [...],
             "dungeons": [...], "clearPreviousBuilds": false,
             "outputPath": "..."}

        Class/spec names are checked later by the identifier mapper.

        Args:
            path: Selection JSON file

        Returns:
            Selection

        Raises:
            ConfigError: If the file is missing, not JSON, or has the wrong shape
        """
        selection_path = Path(path)
        try:
            with open(selection_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read selection file {selection_path}: {e}")
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {selection_path}: {e}")

        selection = self.parse_selection(data)
        self.log.info(
            f"Loaded selection from {selection_path}: "
            f"{len(selection.characters)} characters"
        )
        return selection

    def parse_selection(self, data: Any) -> Selection:
        """Build a Selection from decoded JSON data."""
        if not isinstance(data, dict):
            raise ConfigError("Selection must be a JSON object")

        characters: List[Character] = []
        for i, raw in enumerate(self._list_field(data, "characters")):
            if not isinstance(raw, dict):
                raise ConfigError(f"characters[{i}] must be an object")
            name = raw.get("name")
            char_class = raw.get("class")
            if not isinstance(name, str) or not name.strip():
                raise ConfigError(f"characters[{i}] is missing 'name'")
            if not isinstance(char_class, str):
                raise ConfigError(f"character '{name}' is missing 'class'")
            specs = raw.get("specializations", [])
            if not isinstance(specs, list) or not all(isinstance(s, str) for s in specs):
                raise ConfigError(f"character '{name}': 'specializations' must be a list of strings")
            characters.append(Character(
                name=name.strip(),
                character_class=char_class,
                specializations=tuple(dict.fromkeys(specs)),
            ))

        output_path = data.get("outputPath", "")
        if not isinstance(output_path, str) or not output_path:
            raise ConfigError("'outputPath' must be a non-empty string")

        return Selection(
            characters=tuple(characters),
            raid_difficulties=self._string_list(data, "raidDifficulties"),
            raid_bosses=self._string_list(data, "raidBosses"),
            dungeons=self._string_list(data, "dungeons"),
            clear_previous_builds=bool(data.get("clearPreviousBuilds", False)),
            output_path=output_path,
        )

    @staticmethod
    def _list_field(data: Dict[str, Any], name: str) -> list:
        value = data.get(name, [])
        if value is None:
            return []
        if not isinstance(value, list):
            raise ConfigError(f"'{name}' must be a list")
        return value

    def _string_list(self, data: Dict[str, Any], name: str) -> tuple:
        values = self._list_field(data, name)
        if not all(isinstance(v, str) for v in values):
            raise ConfigError(f"'{name}' must be a list of strings")
        return tuple(dict.fromkeys(values))
