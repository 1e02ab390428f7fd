"""Build option loading and defaults."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

from rasterio.enums import Resampling

from tmspyramid.contracts import validate_build_options
from tmspyramid.errors import ConfigError

ENV_CONFIG = "TMSPYRAMID_CONFIG"
ENV_BLOCK_SIZE = "TMSPYRAMID_BLOCK_SIZE"
CONFIG_FILENAME = "tmspyramid.json"
DEFAULT_BLOCK_SIZE = 64 * 1024 * 1024
RESAMPLING_CHOICES = ("nearest", "average")


@dataclass(frozen=True)
class BuildOptions:
    """Tunable settings for a pyramid build."""

    jobs: int = 0
    resampling: str = "average"
    block_size: int | None = None
    compression_level: int = 6

    def as_dict(self) -> dict[str, Any]:
        return {
            "jobs": self.jobs,
            "resampling": self.resampling,
            "block_size": self.block_size,
            "compression_level": self.compression_level,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BuildOptions":
        validate_build_options(payload)
        return cls(**dict(payload))


def resampling_method(name: str) -> Resampling:
    """Return the rasterio resampling enum for a method name."""
    if name not in RESAMPLING_CHOICES:
        raise ValueError(f"Unsupported resampling method: {name}")
    return Resampling[name]


def _default_candidate_paths() -> list[Path]:
    """Return default option file locations in priority order."""
    return [Path.cwd() / CONFIG_FILENAME]


def _load_candidate(candidate: Path) -> BuildOptions | None:
    """Load options from a single candidate path."""
    if not candidate.exists():
        return None
    try:
        payload = json.loads(candidate.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Unreadable build options {candidate}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Build options must be a JSON object: {candidate}")
    return BuildOptions.from_dict(payload)


def load_build_options(path: Path | None = None) -> BuildOptions:
    """Load build options from JSON config, falling back to defaults."""
    if path:
        result = _load_candidate(Path(path))
        if result is None:
            raise FileNotFoundError(f"Build options file not found: {path}")
        return result
    env_path = os.environ.get(ENV_CONFIG)
    if env_path:
        return _load_candidate(Path(env_path)) or BuildOptions()
    for candidate in _default_candidate_paths():
        result = _load_candidate(candidate)
        if result is not None:
            return result
    return BuildOptions()


def options_with_overrides(options: BuildOptions, **overrides: Any) -> BuildOptions:
    """Return options with every non-None override applied."""
    changes = {key: value for key, value in overrides.items() if value is not None}
    if not changes:
        return options
    merged = replace(options, **changes)
    validate_build_options(merged.as_dict())
    return merged
