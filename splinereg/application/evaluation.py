"""
Evaluation of a configured transform over grids and point sets.

Points are split into chunks that are evaluated on a thread pool. The
transform is only read, so workers share it without locking; numpy
releases the GIL inside the heavy array operations.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import numpy as np
from scipy.ndimage import map_coordinates

from splinereg.application.request import PointSetResult
from splinereg.core.errors import ConfigurationError
from splinereg.io.loaders import ImageGeometry
from splinereg.landmarks.resolver import round_half_up
from splinereg.transforms.base import Transform


def evaluate_in_chunks(func: Callable[[np.ndarray], np.ndarray],
                       points: np.ndarray,
                       num_threads: int = 1,
                       chunk_size: int = 4096,
                       ) -> np.ndarray:
    """
    Apply ``func`` to consecutive chunks of ``points`` and concatenate.

    Args:
        func: Maps a (M, D) chunk to an array with leading dimension M
        points: (N, D) points
        num_threads: Worker threads (1 = evaluate inline)
        chunk_size: Points per chunk

    Returns:
        Results in input order
    """
    n = len(points)
    chunk_size = max(1, int(chunk_size))
    bounds = [(start, min(start + chunk_size, n)) for start in range(0, n, chunk_size)]
    if not bounds:
        return func(points)

    if num_threads <= 1 or len(bounds) == 1:
        parts = [func(points[a:b]) for a, b in bounds]
    else:
        with ThreadPoolExecutor(max_workers=num_threads) as executor:
            parts = list(executor.map(lambda ab: func(points[ab[0]:ab[1]]), bounds))
    return np.concatenate(parts, axis=0)


def evaluate_points(transform: Transform, points: np.ndarray,
                    num_threads: int = 1, chunk_size: int = 4096) -> np.ndarray:
    """T(x) for (N, D) points."""
    return evaluate_in_chunks(transform.transform_points, points, num_threads, chunk_size)


def evaluate_jacobians(transform: Transform, points: np.ndarray,
                       num_threads: int = 1, chunk_size: int = 4096) -> np.ndarray:
    """Spatial Jacobians (N, D, D) for (N, D) points."""
    return evaluate_in_chunks(transform.jacobian, points, num_threads, chunk_size)


def map_grid(transform: Transform, geometry: ImageGeometry,
             num_threads: int = 1, chunk_size: int = 4096) -> np.ndarray:
    """Transformed physical position of every grid node, (*size, D)."""
    _check_dimension(transform, geometry)
    mapped = evaluate_points(transform, geometry.physical_grid(), num_threads, chunk_size)
    return mapped.reshape(*geometry.size, geometry.dimension)


def compute_deformation_field(transform: Transform, geometry: ImageGeometry,
                              num_threads: int = 1, chunk_size: int = 4096,
                              mapped: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Displacement T(x) - x at every grid node, (*size, D).

    Args:
        mapped: Precomputed output of ``map_grid`` to reuse
    """
    if mapped is None:
        mapped = map_grid(transform, geometry, num_threads, chunk_size)
    grid = geometry.physical_grid().reshape(mapped.shape)
    return mapped - grid


def compute_spatial_jacobian_field(transform: Transform, geometry: ImageGeometry,
                                   num_threads: int = 1, chunk_size: int = 4096) -> np.ndarray:
    """Spatial Jacobian at every grid node, (*size, D, D)."""
    _check_dimension(transform, geometry)
    D = geometry.dimension
    jac = evaluate_jacobians(transform, geometry.physical_grid(), num_threads, chunk_size)
    return jac.reshape(*geometry.size, D, D)


def determinant_field(spatial_jacobian: np.ndarray) -> np.ndarray:
    """Determinant of a (*size, D, D) Jacobian field."""
    return np.linalg.det(spatial_jacobian)


def resample_image(volume: np.ndarray,
                   input_geometry: ImageGeometry,
                   transform: Transform,
                   output_geometry: ImageGeometry,
                   order: int = 3,
                   default_pixel_value: float = 0.0,
                   num_threads: int = 1,
                   chunk_size: int = 4096,
                   mapped: Optional[np.ndarray] = None,
                   ) -> np.ndarray:
    """
    Sample ``volume`` at T(x) for every node x of the output grid.

    Args:
        volume: Input image indexed (x, y[, z])
        input_geometry: Geometry of ``volume``
        transform: Maps output-grid points into the input image
        output_geometry: Output grid
        order: Spline interpolation order (0 = nearest, 1 = linear, 3 = cubic)
        default_pixel_value: Value outside the input image
        mapped: Precomputed output of ``map_grid`` to reuse

    Returns:
        Resampled image of shape output_geometry.size and the input dtype
    """
    if volume.ndim != input_geometry.dimension:
        raise ConfigurationError(
            f"Image has {volume.ndim} dimensions but its geometry has {input_geometry.dimension}"
        )
    if mapped is None:
        mapped = map_grid(transform, output_geometry, num_threads, chunk_size)

    D = output_geometry.dimension
    indices = input_geometry.physical_to_index(mapped.reshape(-1, D))
    resampled = map_coordinates(
        np.asarray(volume, dtype=np.float64),
        indices.T,
        order=order,
        mode='constant',
        cval=default_pixel_value,
        prefilter=order > 1,
    ).reshape(output_geometry.size)

    if np.issubdtype(volume.dtype, np.integer):
        info = np.iinfo(volume.dtype)
        resampled = np.clip(np.rint(resampled), info.min, info.max)
    return resampled.astype(volume.dtype)


def transform_point_set(transform: Transform,
                        points: np.ndarray,
                        are_indices: bool = False,
                        geometry: Optional[ImageGeometry] = None,
                        num_threads: int = 1,
                        chunk_size: int = 4096,
                        ) -> PointSetResult:
    """
    Transform every point of a point set individually.

    Args:
        points: (N, D) points, physical or indices
        are_indices: Interpret ``points`` as indices of ``geometry``
        geometry: Fixed-domain geometry; needed for index input and index outputs

    Returns:
        PointSetResult, same order and cardinality as the input
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, transform.dimension)
    input_indices = None
    if are_indices:
        if geometry is None:
            raise ConfigurationError("Points are given as indices but no image geometry is available")
        input_indices = round_half_up(points).astype(np.int64)
        physical = geometry.index_to_physical(input_indices)
    else:
        physical = points
        if geometry is not None:
            input_indices = round_half_up(geometry.physical_to_index(physical)).astype(np.int64)

    output = evaluate_points(transform, physical, num_threads, chunk_size) if len(physical) else physical.copy()
    output_indices = None
    if geometry is not None:
        output_indices = round_half_up(geometry.physical_to_index(output)).astype(np.int64)

    return PointSetResult(
        input_points=physical,
        output_points=output,
        input_indices=input_indices,
        output_indices_fixed=output_indices,
    )


def _check_dimension(transform: Transform, geometry: ImageGeometry) -> None:
    if geometry.size is None:
        raise ConfigurationError("Output grid size is not defined")
    if transform.dimension != geometry.dimension:
        raise ConfigurationError(
            f"Transform dimension {transform.dimension} does not match image dimension {geometry.dimension}"
        )
