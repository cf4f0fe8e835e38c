"""
Render Configuration

RenderConfig is the data contract between the command line (or a YAML
config file) and the render pipeline.

Example render.yaml:

    shader: shaders/plasma.frag
    width: 1920
    height: 1080
    fps: 60
    duration: 10
    time_uniform: iTime
    resolution_uniform: iResolution
    backend: egl
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .core import RenderSchedule, validate_render_parameters
from .errors import SetupError


@dataclass(frozen=True)
class RenderConfig:
    """Everything needed to run one render

    Attributes:
        shader_path: Fragment shader file
        width, height: Output resolution in pixels
        fps: Frames per second
        duration: Duration in seconds
        time_uniform: Float uniform receiving simulated time
        resolution_uniform: Uniform receiving (width, height, 0)
        backend: glcontext backend for the standalone context (None = default)
        flush_every_frame: Flush the output stream after every frame
        enable_timing: Collect and print per-operation timings
        verbose: Print progress to stderr
    """
    shader_path: str
    width: int
    height: int
    fps: int
    duration: int
    time_uniform: str = 'iTime'
    resolution_uniform: str = 'iResolution'
    backend: Optional[str] = None
    flush_every_frame: bool = False
    enable_timing: bool = False
    verbose: bool = False

    @property
    def schedule(self) -> RenderSchedule:
        return RenderSchedule(self.width, self.height, self.fps, self.duration)


# Config file keys that differ from the field names
FILE_KEY_ALIASES = {
    'shader': 'shader_path',
    'timing': 'enable_timing',
}

REQUIRED_FIELDS = ('shader_path', 'width', 'height', 'fps', 'duration')


def _field_names():
    return {f.name for f in fields(RenderConfig)}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load render settings from a YAML file

    Relative shader paths are resolved against the config file's directory.

    Returns:
        Dictionary of RenderConfig field values found in the file

    Raises:
        SetupError: Missing file, invalid YAML, or unknown keys
    """
    path = Path(config_path)
    if not path.is_file():
        raise SetupError(f"Config file not found: {config_path}")

    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise SetupError(f"Failed to load config file {config_path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SetupError(f"Config file {config_path} must contain a mapping")

    known = _field_names()
    values = {}
    for key, value in raw.items():
        name = FILE_KEY_ALIASES.get(key, key)
        if name not in known:
            raise SetupError(f"Unknown config key '{key}' in {config_path}")
        values[name] = value

    shader = values.get('shader_path')
    if shader is not None and not Path(shader).is_absolute():
        values['shader_path'] = str(path.parent / shader)

    return values


def build_config(
    overrides: Dict[str, Any],
    config_path: Optional[str] = None
) -> RenderConfig:
    """Merge config file values with command-line overrides

    Override values that are None are ignored, so unset command-line
    options fall back to the file (or the field default).

    Raises:
        SetupError: Missing required settings or invalid parameters
    """
    values = load_config_file(config_path) if config_path else {}
    values.update({k: v for k, v in overrides.items() if v is not None})

    missing = [name for name in REQUIRED_FIELDS if values.get(name) is None]
    if missing:
        raise SetupError(f"Missing required setting(s): {', '.join(missing)}")

    unknown = set(values) - _field_names()
    if unknown:
        raise SetupError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

    config = RenderConfig(**values)
    problem = validate_render_parameters(config.width, config.height, config.fps, config.duration)
    if problem:
        raise SetupError(problem)
    if not config.time_uniform or not config.resolution_uniform:
        raise SetupError("Uniform names must not be empty")
    return config

