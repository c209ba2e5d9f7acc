"""
Configuration system for splinereg.

YAML-loadable dataclasses for kernel fitting, landmark resolution and
transform application.
"""

import os
import warnings
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any

import yaml


@dataclass
class KernelConfig:
    """Configuration for fitting a spline kernel transform."""
    kernel_type: str = 'ThinPlateSpline'  # SplineKernelType
    relaxation_factor: float = 0.0  # 0 = exact interpolation
    poisson_ratio: float = 0.3  # Elastic-body families only
    matrix_inversion_method: str = 'SVD'  # 'SVD' or 'QR'

    def to_parameter_map(self):
        """Fit-time parameter map carrying the spline keys."""
        from splinereg.transforms.parameter_store import ParameterMap

        pmap = ParameterMap()
        pmap.set('SplineKernelType', self.kernel_type)
        pmap.set('SplineRelaxationFactor', self.relaxation_factor)
        pmap.set('SplinePoissonRatio', self.poisson_ratio)
        pmap.set('TPSMatrixInversionMethod', self.matrix_inversion_method)
        return pmap


@dataclass
class LandmarkConfig:
    """Configuration for landmark resolution."""
    fixed_points: Optional[str] = None  # -fp
    moving_points: Optional[str] = None  # -mp
    input_points: Optional[str] = None  # -ipp, deprecated spelling of fixed_points
    use_composition: bool = True

    def __post_init__(self):
        if self.input_points:
            warnings.warn("'input_points' (-ipp) is deprecated, use 'fixed_points' (-fp) instead",
                          DeprecationWarning)
            if not self.fixed_points:
                self.fixed_points = self.input_points


@dataclass
class OutputConfig:
    """Configuration for transform application outputs."""
    output_directory: Optional[str] = None
    compute_spatial_jacobian: bool = False
    compute_determinant_of_spatial_jacobian: bool = False
    compute_deformation_field: bool = False
    input_point_set_file_name: Optional[str] = None
    log_to_file: bool = False
    log_to_console: bool = False
    log_file_name: Optional[str] = None


@dataclass
class ApplicationConfig:
    """Main configuration."""
    # Sub-configs
    kernel: KernelConfig = field(default_factory=KernelConfig)
    landmarks: LandmarkConfig = field(default_factory=LandmarkConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Global settings
    num_threads: Optional[int] = None  # None = os.cpu_count()
    chunk_size: int = 4096  # Points evaluated per worker task
    verbose: bool = True

    @property
    def resolved_num_threads(self) -> int:
        return max(1, self.num_threads or os.cpu_count() or 1)

    @classmethod
    def from_yaml(cls, path: str) -> 'ApplicationConfig':
        """
        Load configuration from YAML file.

        Args:
            path: Path to YAML config file

        Returns:
            ApplicationConfig instance
        """
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        kernel = KernelConfig(**data.get('kernel', {}))
        landmarks = LandmarkConfig(**data.get('landmarks', {}))
        output = OutputConfig(**data.get('output', {}))

        global_settings = {
            k: v for k, v in data.items()
            if k not in ['kernel', 'landmarks', 'output']
        }

        return cls(kernel=kernel, landmarks=landmarks, output=output, **global_settings)

    def to_yaml(self, path: str) -> None:
        """
        Save configuration to YAML file.

        Args:
            path: Output path
        """
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        landmarks = asdict(self.landmarks)
        landmarks.pop('input_points')
        return {
            'kernel': asdict(self.kernel),
            'landmarks': landmarks,
            'output': asdict(self.output),
            'num_threads': self.num_threads,
            'chunk_size': self.chunk_size,
            'verbose': self.verbose,
        }


def create_default_config() -> ApplicationConfig:
    """Create default configuration."""
    return ApplicationConfig()
