"""
Configuration management for point-cloud-registration.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, List, Any, Dict

from pydantic import BaseModel, Field, ValidationError, field_validator
import yaml


# -----------------------
# Typed config structures
# -----------------------


class SearchConfig(BaseModel):
    mode: Literal["knn", "radius"] = Field(
        default="knn",
        description="Neighbor query used by the descriptor engine: k nearest or fixed radius",
    )
    k: int = Field(default=10, ge=1)
    radius: float = Field(default=0.05, gt=0.0)


class FeatureConfig(BaseModel):
    n_bins_f1: int = Field(default=11, ge=1, description="Bins for the angle between normals (atan2 term)")
    n_bins_f2: int = Field(default=11, ge=1, description="Bins for the v . n_t term")
    n_bins_f3: int = Field(default=11, ge=1, description="Bins for the u . d term")
    search: SearchConfig = Field(default_factory=SearchConfig)
    n_threads: Optional[int] = Field(default=None, description="Worker threads (None = cpu count)")
    chunk_size: int = Field(default=256, ge=1, description="Points handed to a thread at a time")


class NormalsConfig(BaseModel):
    k_neighbors: int = Field(default=20, ge=3)
    viewpoint: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0])

    @field_validator("viewpoint")
    @classmethod
    def _three_components(cls, v: List[float]) -> List[float]:
        if len(v) != 3:
            raise ValueError("viewpoint must have exactly 3 components")
        return v


class RejectionConfig(BaseModel):
    max_distance: Optional[float] = Field(default=None, ge=0.0)
    median_factor: Optional[float] = Field(default=None, gt=0.0)
    trim_ratio: Optional[float] = Field(default=None, gt=0.0, le=1.0)
    one_to_one: bool = Field(default=False)
    max_normal_angle_deg: Optional[float] = Field(default=None, ge=0.0, le=180.0)


class EstimationConfig(BaseModel):
    degeneracy_tolerance: float = Field(
        default=1e-9,
        ge=0.0,
        description="Relative singular value threshold below which input is reported degenerate",
    )


class ICPConfig(BaseModel):
    max_iterations: int = Field(default=100, ge=1)
    tolerance: float = Field(default=1e-6)
    max_correspondence_distance: float = Field(default=1.0, gt=0.0)
    convergence_translation_epsilon: float = Field(
        default=1e-4,
        description="Minimum translation step to continue ICP iterations",
    )
    convergence_rotation_epsilon_deg: float = Field(
        default=0.1,
        description="Minimum rotation step (degrees) to continue ICP iterations",
    )


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    features: FeatureConfig = Field(default_factory=FeatureConfig)
    normals: NormalsConfig = Field(default_factory=NormalsConfig)
    rejection: RejectionConfig = Field(default_factory=RejectionConfig)
    estimation: EstimationConfig = Field(default_factory=EstimationConfig)
    icp: ICPConfig = Field(default_factory=ICPConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/point_cloud_registration/utils/config.py
    parents sequence:
      0 -> .../src/point_cloud_registration/utils
      1 -> .../src/point_cloud_registration
      2 -> .../src
      3 -> repo_root
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
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
