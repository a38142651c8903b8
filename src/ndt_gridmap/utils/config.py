"""
Configuration management for ndt-gridmap.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, List, Any, Dict, Union

from pydantic import BaseModel, Field, ValidationError, field_validator
import yaml


# -----------------------
# Typed config structures
# -----------------------


class MapConfig(BaseModel):
    kind: Literal["static", "dynamic"] = Field(
        default="dynamic",
        description="Storage variant: 'static' is pre-sized and bounded, 'dynamic' grows on demand",
    )
    resolution: Union[float, List[float]] = Field(
        default=1.0,
        description="Bundle edge length, scalar or per axis",
    )
    size: Optional[List[int]] = Field(
        default=None,
        description="Bundle counts per axis (static maps only)",
    )

    @field_validator("resolution")
    @classmethod
    def _positive_resolution(cls, v):
        values = v if isinstance(v, list) else [v]
        if any(r <= 0.0 for r in values):
            raise ValueError("resolution must be strictly positive")
        return v


class MatcherConfig(BaseModel):
    resolution: Union[float, List[float]] = Field(default=1.0)
    max_iterations: int = Field(default=100, ge=1)
    convergence_translation_epsilon: float = Field(
        default=1e-4,
        description="Translation step (map units) below which the pose is considered converged",
    )
    convergence_rotation_epsilon_deg: float = Field(
        default=0.1,
        description="Rotation step (degrees) below which the pose is considered converged",
    )
    min_sample: float = Field(
        default=1e-3,
        description="Non-normalized density at or below which a point does not contribute",
    )
    condition_limit: float = Field(
        default=1e12,
        description="Hessian condition number above which a solve is flagged ill-conditioned",
    )


class SerializationConfig(BaseModel):
    layout: Literal["flat", "octant"] = Field(
        default="flat",
        description="On-disk layout used when saving maps; 'octant' is lossy for adjacent bundles",
    )


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    map: MapConfig = Field(default_factory=MapConfig)
    matcher: MatcherConfig = Field(default_factory=MatcherConfig)
    serialization: SerializationConfig = Field(default_factory=SerializationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/ndt_gridmap/utils/config.py
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
