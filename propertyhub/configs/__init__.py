"""
Configuration for the location service.

``configs`` is config.yaml with its ``${key}`` placeholders resolved. ``env``
holds the .env values, or the process environment for ``ENV_KEYS`` when no
.env file is found. Values in ``env`` win over the yaml defaults they shadow.
"""
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

import yaml
from dotenv import dotenv_values

ENV_KEYS = (
    "APP_NAME",
    "DEBUG",
    "LOG_LEVEL",
    "MONGO_URI",
    "MONGO_DB",
    "STORE_BACKEND",
    "CLEAR_SELECTION_ON_DELETE",
)

PLACEHOLDER = re.compile(r"\$\{(\w+)\}")


def parse_flag(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# env key -> (config section, option, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "APP_NAME": ("app", "project_name", str),
    "DEBUG": ("app", "debug_mode", parse_flag),
    "LOG_LEVEL": ("app", "log_level", str.upper),
    "STORE_BACKEND": ("store", "backend", str.lower),
    "CLEAR_SELECTION_ON_DELETE": ("selection", "clear_on_delete", parse_flag),
}


def get_ancestor_dir(start_path: Union[str, Path], steps: int) -> Path:
    if not isinstance(steps, int) or steps < 0:
        raise ValueError("Steps must be a non-negative integer.")

    path = Path(start_path).resolve()
    if path.is_file():
        path = path.parent

    for _ in range(steps):
        if path.parent == path:
            raise ValueError(
                f"Cannot go up {steps} levels from '{start_path}'. "
                "Traversal went beyond the filesystem root."
            )
        path = path.parent
    return path


def read_yaml(path: Path) -> dict:
    """Loads one YAML mapping; a missing or broken file reads as empty."""
    if not path.exists():
        return {}
    try:
        with path.open("r") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        print(f"Error loading YAML file '{path}': {e}")
        return {}


def read_env(filename: str, search_dirs: Iterable[Optional[str]]) -> Dict[str, Optional[str]]:
    """First .env found in ``search_dirs``, else the process environment."""
    for directory in search_dirs:
        if not directory:
            continue
        candidate = Path(directory) / filename
        if candidate.exists():
            return dict(dotenv_values(candidate))
    print(f"Warning: no {filename} file found; reading the process environment")
    return {key: os.environ[key] for key in ENV_KEYS if key in os.environ}


def _resolve_placeholders(data, scope: dict):
    """Replaces '${key}' inside strings with top-level values of ``scope``."""
    if isinstance(data, dict):
        return {k: _resolve_placeholders(v, scope) for k, v in data.items()}
    if isinstance(data, list):
        return [_resolve_placeholders(item, scope) for item in data]
    if isinstance(data, str):
        return PLACEHOLDER.sub(lambda match: f"{scope.get(match.group(1))}", data)
    return data


def apply_env_overrides(config: dict, environment: dict) -> dict:
    for key, (section, option, convert) in ENV_OVERRIDES.items():
        value = environment.get(key)
        if value:
            config.setdefault(section, {})[option] = convert(value)
    return config


def load_settings(repo_root: Path, configs_dir: Path):
    environment = read_env(".env", (str(repo_root), os.environ.get("ENV_FILE_DIR")))
    raw = read_yaml(configs_dir / "config.yaml")
    settings = apply_env_overrides(_resolve_placeholders(raw, raw), environment)
    return environment, settings


REPO_ROOT = get_ancestor_dir(__file__, 2)
CONFIGS_DIR = Path(__file__).resolve().parent

env, configs = load_settings(REPO_ROOT, CONFIGS_DIR)
