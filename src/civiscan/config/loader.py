"""
CiviScan Configuration Loader

Reads civiscan.yaml and expands environment variable references:

- ${VAR_NAME}            required, KeyError if unset
- ${VAR_NAME:-default}   falls back to `default`

Example:
```yaml
backend:
  url: "${CIVI_URL}"
  api_version: "${CIVI_API_VERSION:-4}"
  site_key: "${CIVI_SITE_KEY:-}"
```

Secrets such as the site key can stay out of the file this way; the API
key itself is never read from config, it lives in the credential storage.
"""

import os
import re
from pathlib import Path
from typing import Any, List, Optional, Union
import logging

import yaml

from .schema import ClientConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "civiscan.yaml"

# Explicit config file location, checked before any search path
CONFIG_ENV_VAR = "CIVISCAN_CONFIG"

USER_CONFIG_PATH = Path("~/.civiscan") / CONFIG_FILENAME

ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def _expand(match: "re.Match") -> str:
    name, default = match.group(1), match.group(2)

    if name in os.environ:
        return os.environ[name]
    if default is not None:
        return default

    raise KeyError(
        f"Environment variable '{name}' is required but not set "
        f"(use ${{{name}:-default}} to make it optional)"
    )


def interpolate_env_vars(value: Any) -> Any:
    """
    Expand ${VAR} references in every string of a parsed YAML document.

    Raises:
        KeyError: a required variable is not set
    """
    if isinstance(value, dict):
        return {key: interpolate_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    if isinstance(value, str):
        return ENV_VAR_PATTERN.sub(_expand, value)
    return value


def load_config_from_file(
    config_path: Union[str, Path],
    interpolate: bool = True
) -> ClientConfig:
    """
    Load client configuration from a YAML file.

    Relative `working_dir` defaults to the directory holding the file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        KeyError: If required environment variable is not set
        ValueError: If the document is not a mapping
        yaml.YAMLError: If YAML is malformed
    """
    config_path = Path(config_path).expanduser()

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    if not isinstance(raw_config, dict):
        raise ValueError(f"{config_path} must contain a mapping, got {type(raw_config).__name__}")

    if interpolate:
        try:
            raw_config = interpolate_env_vars(raw_config)
        except KeyError as e:
            logger.error(f"Configuration error in {config_path}: {e}")
            raise

    raw_config.setdefault("working_dir", str(config_path.parent.absolute()))

    return ClientConfig.from_dict(raw_config)


def config_search_paths(working_dir: Optional[Union[str, Path]] = None) -> List[Path]:
    """Candidate civiscan.yaml locations, most specific first"""
    paths = []
    if working_dir:
        paths.append(Path(working_dir) / CONFIG_FILENAME)
    paths.append(Path.cwd() / CONFIG_FILENAME)
    paths.append(USER_CONFIG_PATH.expanduser())
    return paths


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    working_dir: Optional[Union[str, Path]] = None,
) -> ClientConfig:
    """
    Load client configuration with sensible defaults.

    Search order:
    1. Explicit config_path if provided
    2. $CIVISCAN_CONFIG
    3. civiscan.yaml in working_dir, then in the current directory
    4. ~/.civiscan/civiscan.yaml
    5. Default configuration
    """
    config_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if config_path:
        return load_config_from_file(config_path)

    for path in config_search_paths(working_dir):
        if path.exists():
            logger.info(f"Found configuration at {path}")
            return load_config_from_file(path)

    logger.info(f"No {CONFIG_FILENAME} found, using default configuration")
    return ClientConfig(
        working_dir=Path(working_dir) if working_dir else Path.cwd()
    )
