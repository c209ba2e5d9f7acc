"""
Request and result objects for transform application runs.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from splinereg.core.config import OutputConfig
from splinereg.io.points import write_output_points
from splinereg.io.savers import save_field, save_volume

OUTPUT_PATH_NOT_SET = 'output_path_not_set'
DEFAULT_LOG_FILE_NAME = 'transformix.log'


@dataclass
class ApplicationRequest:
    """Which derived outputs to produce, and where logs and files go."""
    compute_spatial_jacobian: bool = False
    compute_determinant_of_spatial_jacobian: bool = False
    compute_deformation_field: bool = False
    input_point_set_file_name: Optional[str] = None
    output_directory: Optional[str] = None
    log_to_file: bool = False
    log_to_console: bool = False
    log_file_name: Optional[str] = None

    @classmethod
    def from_config(cls, config: OutputConfig) -> 'ApplicationRequest':
        return cls(
            compute_spatial_jacobian=config.compute_spatial_jacobian,
            compute_determinant_of_spatial_jacobian=config.compute_determinant_of_spatial_jacobian,
            compute_deformation_field=config.compute_deformation_field,
            input_point_set_file_name=config.input_point_set_file_name,
            output_directory=config.output_directory,
            log_to_file=config.log_to_file,
            log_to_console=config.log_to_console,
            log_file_name=config.log_file_name,
        )

    @property
    def wants_derived_field(self) -> bool:
        return (self.compute_spatial_jacobian
                or self.compute_determinant_of_spatial_jacobian
                or self.compute_deformation_field)

    @property
    def needs_output_directory(self) -> bool:
        return self.wants_derived_field or bool(self.input_point_set_file_name) or self.log_to_file


class ArgumentMap(dict):
    """
    Engine-agnostic request built from an ApplicationRequest.

    Keys: '-out' (output directory), '-jacmat' and '-jac' ('all'), and
    '-def' ('all' for a deformation field, otherwise a point-set path).
    """

    @property
    def output_directory(self) -> Optional[str]:
        out = self.get('-out')
        return None if out in (None, OUTPUT_PATH_NOT_SET) else out

    @property
    def wants_spatial_jacobian(self) -> bool:
        return self.get('-jacmat') == 'all'

    @property
    def wants_determinant(self) -> bool:
        return self.get('-jac') == 'all'

    @property
    def wants_deformation_field(self) -> bool:
        return self.get('-def') == 'all'

    @property
    def point_set_path(self) -> Optional[str]:
        value = self.get('-def')
        return None if value in (None, 'all') else value


@dataclass
class PointSetResult:
    """Transformed point set, in input order."""
    input_points: np.ndarray
    output_points: np.ndarray
    input_indices: Optional[np.ndarray] = None
    output_indices_fixed: Optional[np.ndarray] = None

    @property
    def deformation(self) -> np.ndarray:
        return self.output_points - self.input_points

    def __len__(self) -> int:
        return len(self.output_points)


@dataclass
class OutputBundle:
    """
    Data objects produced by one application run.

    Derived fields are sampled on the output grid; vector and matrix
    fields carry the components on trailing axes.
    """
    result_image: Optional[np.ndarray] = None
    result_metadata: Optional[Dict[str, Any]] = None
    deformation_field: Optional[np.ndarray] = None
    spatial_jacobian: Optional[np.ndarray] = None
    determinant_of_spatial_jacobian: Optional[np.ndarray] = None
    output_points: Optional[PointSetResult] = None
    output_directory: Optional[str] = None
    log_file: Optional[str] = None
    timing: Dict[str, float] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return all(v is None for v in (
            self.result_image, self.deformation_field, self.spatial_jacobian,
            self.determinant_of_spatial_jacobian, self.output_points,
        ))

    def save(self, output_directory: Optional[str] = None, image_format: str = '.nii.gz') -> List[Path]:
        """
        Write all produced objects using transformix file names.

        Args:
            output_directory: Target directory (default: the run's output directory)
            image_format: Extension for image outputs

        Returns:
            Paths written
        """
        directory = output_directory or self.output_directory or os.getcwd()
        directory = Path(directory)
        written = []

        images = [
            ('result', self.result_image),
            ('deformationField', self.deformation_field),
            ('fullSpatialJacobian', self.spatial_jacobian),
            ('spatialJacobian', self.determinant_of_spatial_jacobian),
        ]
        for stem, data in images:
            if data is None:
                continue
            path = directory / f'{stem}{image_format}'
            if stem == 'result' or stem == 'spatialJacobian':
                save_volume(str(path), data, self.result_metadata)
            else:
                save_field(str(path), data, self.result_metadata)
            written.append(path)

        if self.output_points is not None:
            path = directory / 'outputpoints.txt'
            write_output_points(str(path), self.output_points)
            written.append(path)

        return written
