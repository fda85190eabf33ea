"""
Engine configuration.

EngineConfig is a plain dataclass tree loaded from a dict, usually read from
YAML. Without a config file every setting has a working default, so callers
can construct EngineConfig() directly.

Lookup priority for the config file:
1. Explicit path
2. SHEETPHRASE_CONFIG environment variable
3. $XDG_CONFIG_HOME/sheetphrase/config.yaml (~/.config when unset)
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import jsonschema
import yaml

from .core.errors import ConfigError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).parent / "schemas"

TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class ScriptConfig:
    """Script blocks (%{...}%) run author code, so they are opt-in."""
    enabled: bool = False
    allowed_functions: list[str] = field(default_factory=list)


@dataclass
class DiceConfig:
    """Limits and seeding for the default dice roller."""
    max_dice: int = 1000
    seed: Optional[int] = None


@dataclass
class EngineConfig:
    """Settings shared by every computation in one engine context."""
    error_sentinel: str = "ERROR"
    compute_explanation: bool = False
    notification_levels: list[str] = field(default_factory=lambda: ["info", "warn", "error"])
    max_passes: int = 50
    log_level: str = "WARNING"
    scripts: ScriptConfig = field(default_factory=ScriptConfig)
    dice: DiceConfig = field(default_factory=DiceConfig)


def load_schema(schema_name: str) -> dict:
    """Load a JSON schema from the schemas directory."""
    schema_path = SCHEMA_DIR / f"{schema_name}.schema.json"
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema not found: {schema_path}")

    with open(schema_path) as f:
        return json.load(f)


def validate_document(data: dict, schema_name: str) -> None:
    """Validate a loaded document, raising ConfigError with the schema message."""
    try:
        jsonschema.validate(instance=data, schema=load_schema(schema_name))
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"Invalid {schema_name} at {location}: {e.message}") from e


def load_engine_config(data: Optional[dict]) -> EngineConfig:
    """Load EngineConfig from a dict.

    Returns the default config for empty input.
    """
    if not data:
        return EngineConfig()

    validate_document(data, "engine_config")

    script_data = data.get("scripts", {})
    scripts = ScriptConfig(
        enabled=script_data.get("enabled", False),
        allowed_functions=script_data.get("allowed_functions", []),
    )

    dice_data = data.get("dice", {})
    dice = DiceConfig(
        max_dice=dice_data.get("max_dice", 1000),
        seed=dice_data.get("seed"),
    )

    return EngineConfig(
        error_sentinel=data.get("error_sentinel", "ERROR"),
        compute_explanation=data.get("compute_explanation", False),
        notification_levels=data.get("notification_levels", EngineConfig().notification_levels),
        max_passes=data.get("max_passes", 50),
        log_level=data.get("log_level", "WARNING"),
        scripts=scripts,
        dice=dice,
    )


def get_config_dir() -> Path:
    """Get the configuration directory (not created)."""
    config_home = os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")
    return Path(config_home) / "sheetphrase"


def get_config_path() -> Path:
    """Get the path of the config file to use."""
    env_path = os.environ.get("SHEETPHRASE_CONFIG")
    if env_path:
        return Path(env_path)
    return get_config_dir() / "config.yaml"


def load_yaml_file(path: Path) -> dict:
    """Load a YAML file, returning empty dict if not found."""
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e


def load_config(path: Optional[str | Path] = None) -> EngineConfig:
    """
    Load the engine configuration from disk.

    A missing file gives the default config. SHEETPHRASE_ENABLE_SCRIPTS
    overrides scripts.enabled either way.
    """
    config_path = Path(path) if path else get_config_path()
    data = load_yaml_file(config_path)
    if data:
        logger.debug(f"Loaded config from {config_path}")

    config = load_engine_config(data)

    env_scripts = os.environ.get("SHEETPHRASE_ENABLE_SCRIPTS")
    if env_scripts is not None:
        config.scripts.enabled = env_scripts.strip().lower() in TRUE_VALUES

    return config
