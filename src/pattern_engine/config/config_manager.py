import json
import os
import jsonschema
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Any, Optional
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "PATTERN_ENGINE_"


@dataclass(frozen=True)
class EngineSettings:
    """Thresholds and weights used by the detection and refinement engine."""
    auto_refine_threshold: int = 3
    default_confidence_threshold: float = 0.7
    confidence_step: float = 0.1
    max_confidence_threshold: float = 0.95
    low_precision_threshold: float = 0.5
    over_matching_precision: float = 0.7
    under_matching_recall: float = 0.7
    refinement_precision: float = 0.7
    min_sample_size: int = 5
    assumed_recall: float = 0.8
    suggestion_window: int = 50
    top_false_positives: int = 5
    context_window: int = 40
    primary_confidence: float = 0.9
    alternate_confidence: float = 0.85
    context_clue_boost: float = 0.1
    rule_share: Dict[str, float] = field(default_factory=lambda: {
        "repeated_digits": 0.3,
        "sequential_digits": 0.3,
        "no_separators": 0.6,
        "leading_zeros": 0.5,
        "all_digits": 0.5,
    })


class EngineConfigManager:
    """Loads engine settings from JSON, validated against a schema, with environment overrides."""

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize the configuration manager.

        Args:
            config_dir: Directory containing engine_defaults.json and schemas/. If None, uses default.
        """
        self.config_dir = config_dir or Path(__file__).parent
        self.schemas_dir = self.config_dir / "schemas"

        self.engine_schema = self._load_json(self.schemas_dir / "engine_schema.json")
        self.defaults = self._load_json(self.config_dir / "engine_defaults.json")
        self.validate_config(self.defaults)

        self._settings: Optional[EngineSettings] = None

    def _load_json(self, file_path: Path) -> Dict[str, Any]:
        """Load and parse a JSON file."""
        try:
            with open(file_path, 'r') as f:
                return json.load(f)
        except Exception as e:
            logger.error(f"Error loading {file_path}: {str(e)}")
            raise ValueError(f"Failed to load {file_path}: {str(e)}")

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """
        Validate a configuration against the engine schema.

        Raises:
            jsonschema.exceptions.ValidationError: If validation fails
        """
        try:
            jsonschema.validate(instance=config, schema=self.engine_schema)
            return True
        except jsonschema.exceptions.ValidationError as e:
            logger.error(f"Configuration validation failed: {str(e)}")
            raise

    def _env_overrides(self) -> Dict[str, Any]:
        """Collect PATTERN_ENGINE_<KEY> overrides, coerced to the default's type."""
        load_dotenv()
        overrides = {}
        for key, default in self.defaults.items():
            if isinstance(default, dict):
                continue
            raw = os.getenv(f"{ENV_PREFIX}{key.upper()}")
            if raw is None:
                continue
            try:
                overrides[key] = int(raw) if isinstance(default, int) else float(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{key.upper()}: {raw!r}")
        return overrides

    def load(self, override_path: Optional[Path] = None) -> EngineSettings:
        """
        Build settings from defaults, an optional override file and the environment.

        Args:
            override_path: Optional JSON file whose keys replace the defaults

        Returns:
            EngineSettings

        Raises:
            ValueError: If the resulting configuration is invalid
        """
        config = dict(self.defaults)
        if override_path is not None:
            config.update(self._load_json(override_path))
        config.update(self._env_overrides())

        try:
            self.validate_config(config)
        except jsonschema.exceptions.ValidationError as e:
            raise ValueError(f"Invalid engine configuration: {e.message}")

        known = {f.name for f in fields(EngineSettings)}
        self._settings = EngineSettings(**{k: v for k, v in config.items() if k in known})
        return self._settings

    @property
    def settings(self) -> EngineSettings:
        """Get the loaded settings, loading defaults on first access."""
        if self._settings is None:
            return self.load()
        return self._settings


def get_settings() -> EngineSettings:
    """Load settings from the packaged defaults and the environment."""
    return EngineConfigManager().load()
