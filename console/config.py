"""Session configuration with YAML support."""

from __future__ import annotations

from pathlib import Path

import yaml

from webshell_core.schemas import SessionConfig


def default_config() -> SessionConfig:
    return SessionConfig()


def load_config(yaml_path: str | Path) -> SessionConfig:
    """Load session configuration from YAML file.

    Args:
        yaml_path: Path to YAML configuration file

    Returns:
        SessionConfig instance

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValueError: If YAML is invalid or has invalid fields
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(yaml_path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {yaml_path}: {e}") from e

    if data is None:
        return default_config()
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {yaml_path}")

    try:
        return SessionConfig.from_dict(data)
    except Exception as e:
        raise ValueError(f"Invalid configuration in {yaml_path}: {e}") from e


def save_config(config: SessionConfig, yaml_path: str | Path) -> None:
    """Save session configuration to YAML file."""
    yaml_path = Path(yaml_path)
    yaml_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.to_dict()

    with open(yaml_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, indent=2)


def config_to_yaml(config: SessionConfig) -> str:
    return yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False, indent=2)
