"""
Landmark-based spline kernel registration.

Coordinates the fit side: landmark resolution, kernel selection, the
kernel solve and serialization of the result as parameter maps.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np

from splinereg.core.config import ApplicationConfig
from splinereg.core.errors import ConfigurationError
from splinereg.evaluation.metrics import landmark_residuals
from splinereg.io.loaders import ImageGeometry
from splinereg.io.parameter_file import write_parameter_files
from splinereg.landmarks.resolver import LandmarkResolver, PointsSource
from splinereg.transforms.base import Transform, compose
from splinereg.transforms.kernel_transform import KernelTransform
from splinereg.transforms.parameter_store import fit_kernel_transform, write_transform_chain

logger = logging.getLogger(__name__)


class SplineKernelRegistration:
    """
    Fit a spline kernel transform between two landmark sets.

    The fixed landmarks are the source points and the moving landmarks the
    targets, so the fitted transform maps fixed-image points into the
    moving image.
    """

    def __init__(self, config: Optional[ApplicationConfig] = None):
        """
        Initialize registration.

        Args:
            config: Application configuration (uses default if None)
        """
        if config is None:
            config = ApplicationConfig()
        self.config = config

    def register(self,
                 fixed_points: Optional[PointsSource] = None,
                 moving_points: Optional[PointsSource] = None,
                 fixed_metadata: Optional[Dict[str, Any]] = None,
                 moving_metadata: Optional[Dict[str, Any]] = None,
                 fixed_shape: Optional[Tuple[int, ...]] = None,
                 moving_shape: Optional[Tuple[int, ...]] = None,
                 initial_transform: Optional[Transform] = None,
                 dimension: Optional[int] = None,
                 output_directory: Optional[str] = None,
                 ) -> Dict[str, Any]:
        """
        Resolve landmarks, fit the kernel transform and serialize it.

        Args:
            fixed_points: Fixed landmark file or PointSet (default: config.landmarks.fixed_points)
            moving_points: Moving landmark file or PointSet (default: config.landmarks.moving_points)
            fixed_metadata: Fixed image metadata, needed for index landmarks
            moving_metadata: Moving image metadata, needed for index landmarks
            fixed_shape: Fixed image shape; written as the output grid when given
            moving_shape: Moving image shape
            initial_transform: Transform preceding the kernel transform
            dimension: Space dimension (default: from the metadata, else the landmark file)
            output_directory: Write TransformParameters.<i>.txt files here

        Returns:
            Dictionary containing:
                - transform: Fitted KernelTransform
                - combined_transform: Kernel transform combined with the initial transform
                - parameter_maps: Maps ordered as applied (the last one is the kernel transform)
                - parameter_map: The kernel transform's map
                - fixed_landmarks / moving_landmarks: Resolved physical points
                - residuals: Per-landmark residual |T(p) - q| (None for identity)
                - parameter_files: Paths written (empty if no output directory)
                - timing: Stage timings in seconds

        Raises:
            ConfigurationError: Unknown kernel type or inconsistent landmarks
            LandmarkFileError: Malformed landmark file
        """
        kernel_config = self.config.kernel
        landmark_config = self.config.landmarks
        if fixed_points is None:
            fixed_points = landmark_config.fixed_points
        if moving_points is None:
            moving_points = landmark_config.moving_points
        if fixed_points is None:
            raise ConfigurationError("No fixed landmarks given; unable to configure SplineKernelTransform")

        timing = {}
        t_start = time.time()

        fixed_geometry = _geometry(fixed_metadata, fixed_shape)
        moving_geometry = _geometry(moving_metadata, moving_shape)

        # Step 1: Landmarks
        logger.info("[1/3] Resolving landmarks...")
        t0 = time.time()
        resolver = LandmarkResolver(
            fixed_geometry=fixed_geometry,
            moving_geometry=moving_geometry,
            initial_transform=initial_transform,
            use_composition=landmark_config.use_composition,
            dimension=dimension,
        )
        fixed, moving = resolver.resolve_pair(fixed_points, moving_points)
        if dimension is None:
            dimension = resolver.dimension or fixed.dimension or 3
        timing['landmark_resolution'] = time.time() - t0

        # Step 2: Kernel solve
        logger.info(f"[2/3] Fitting {kernel_config.kernel_type} transform...")
        t0 = time.time()
        transform = fit_kernel_transform(
            kernel_config.to_parameter_map(),
            fixed.points,
            moving.points if moving is not None else None,
            dimension=dimension,
        )
        timing['kernel_fit'] = time.time() - t0

        residuals = None
        if moving is not None:
            residuals = landmark_residuals(transform, fixed.points, moving.points)
            logger.info(f"    Landmark residual: mean {residuals.mean():.4g}, max {residuals.max():.4g}")

        # Step 3: Parameter maps
        logger.info("[3/3] Writing transform parameters...")
        t0 = time.time()
        how = 'Compose' if landmark_config.use_composition else 'Add'
        combined = compose(initial_transform, transform, how=how)
        maps = write_transform_chain(combined, fixed_geometry if fixed_shape is not None else None)
        paths = []
        if output_directory is not None:
            paths = write_parameter_files(output_directory, maps)
            for path in paths:
                logger.info(f"    Wrote {Path(path)}")
        timing['serialization'] = time.time() - t0
        timing['total'] = time.time() - t_start

        logger.info(f"Registration completed in {timing['total']:.2f}s")

        return {
            'transform': transform,
            'combined_transform': combined,
            'parameter_maps': maps,
            'parameter_map': maps[-1],
            'fixed_landmarks': fixed.points,
            'moving_landmarks': moving.points if moving is not None else None,
            'residuals': residuals,
            'parameter_files': paths,
            'timing': timing,
        }

    def __repr__(self) -> str:
        kernel = self.config.kernel
        return (f"SplineKernelRegistration(kernel={kernel.kernel_type}, "
                f"relaxation={kernel.relaxation_factor})")


def _geometry(metadata: Optional[Dict[str, Any]], shape) -> Optional[ImageGeometry]:
    if metadata is None and shape is None:
        return None
    return ImageGeometry.from_metadata(metadata or {}, shape)


def fit_landmarks(fixed_points: np.ndarray,
                  moving_points: Optional[np.ndarray] = None,
                  kernel_type: str = 'ThinPlateSpline',
                  relaxation_factor: float = 0.0,
                  poisson_ratio: float = 0.3,
                  matrix_inversion_method: str = 'SVD',
                  ) -> KernelTransform:
    """Fit a kernel transform directly from physical (N, D) point arrays."""
    fixed_points = np.asarray(fixed_points, dtype=np.float64)
    config = ApplicationConfig()
    config.kernel.kernel_type = kernel_type
    config.kernel.relaxation_factor = relaxation_factor
    config.kernel.poisson_ratio = poisson_ratio
    config.kernel.matrix_inversion_method = matrix_inversion_method
    return fit_kernel_transform(config.kernel.to_parameter_map(), fixed_points, moving_points,
                                dimension=fixed_points.shape[1])
