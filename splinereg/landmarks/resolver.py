"""
Landmark resolution for kernel transform fitting.

Loads fixed (source) and moving (target) point sets, converts index
points to physical coordinates and optionally warps the fixed points by
an initial transform.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np

from splinereg.core.errors import ConfigurationError
from splinereg.io.loaders import ImageGeometry
from splinereg.io.points import read_point_file
from splinereg.transforms.base import Transform

logger = logging.getLogger(__name__)


@dataclass
class PointSet:
    """Ordered (N, D) coordinates plus the representation they were read in."""
    points: np.ndarray
    are_indices: bool = False

    def __post_init__(self):
        points = np.asarray(self.points, dtype=np.float64)
        if points.ndim == 1:
            points = points[None, :] if points.size else points.reshape(0, 0)
        self.points = points

    @property
    def dimension(self) -> int:
        return self.points.shape[1]

    def __len__(self) -> int:
        return len(self.points)


PointsSource = Union[str, os.PathLike, PointSet]


class InitialTransformDecorator:
    """Warps fixed-side landmarks by a previously registered transform."""

    def __init__(self, transform: Transform):
        self.transform = transform

    def __call__(self, points: np.ndarray) -> np.ndarray:
        if len(points) == 0:
            return points
        return self.transform.transform_points(points)


def round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5)


class LandmarkResolver:
    """
    Resolve landmark sources into physical point sets.

    Args:
        fixed_geometry: Geometry of the fixed image, for fixed-side index points
        moving_geometry: Geometry of the moving image, for moving-side index points
        initial_transform: Optional transform applied to fixed-side points
        use_composition: Apply ``initial_transform`` only when True
        dimension: Expected point dimension (None = from the geometries or the file)
    """

    def __init__(self,
                 fixed_geometry: Optional[ImageGeometry] = None,
                 moving_geometry: Optional[ImageGeometry] = None,
                 initial_transform: Optional[Transform] = None,
                 use_composition: bool = True,
                 dimension: Optional[int] = None,
                 ):
        self.fixed_geometry = fixed_geometry
        self.moving_geometry = moving_geometry
        self.decorator = InitialTransformDecorator(initial_transform) if initial_transform is not None else None
        self.use_composition = use_composition
        if dimension is None:
            for geometry in (fixed_geometry, moving_geometry):
                if geometry is not None:
                    dimension = geometry.dimension
                    break
        self.dimension = dimension

    def resolve(self, source: PointsSource, is_fixed_side: bool) -> PointSet:
        """
        Load one side's landmarks as physical points.

        Args:
            source: Point file path, or an in-memory PointSet
            is_fixed_side: True for source (fixed image) landmarks

        Returns:
            PointSet with physical coordinates; ``are_indices`` reports the input representation

        Raises:
            LandmarkFileError: Malformed or unreadable point file
            ConfigurationError: Index points without the matching image geometry
        """
        if isinstance(source, PointSet):
            points, are_indices = source.points.copy(), source.are_indices
        else:
            points, are_indices = read_point_file(source, dimension=self.dimension)

        if are_indices:
            logger.info("  Landmarks are specified as image indices.")
        else:
            logger.info("  Landmarks are specified in world coordinates.")
        logger.info(f"  Number of specified input points: {len(points)}")

        if self.dimension is not None and len(points) and points.shape[1] != self.dimension:
            raise ConfigurationError(
                f"Landmarks have dimension {points.shape[1]}, expected {self.dimension}"
            )

        if are_indices and len(points):
            geometry = self.fixed_geometry if is_fixed_side else self.moving_geometry
            if geometry is None:
                side = 'fixed' if is_fixed_side else 'moving'
                raise ConfigurationError(
                    f"Landmarks are given as indices but no {side} image is available to resolve them"
                )
            points = geometry.index_to_physical(round_half_up(points))

        if is_fixed_side and self.use_composition and self.decorator is not None:
            points = self.decorator(points)

        return PointSet(points, are_indices=are_indices)

    def resolve_pair(self,
                     fixed_source: PointsSource,
                     moving_source: Optional[PointsSource] = None,
                     ) -> Tuple[PointSet, Optional[PointSet]]:
        """
        Resolve fixed and (optional) moving landmarks.

        Returns:
            (fixed, moving); moving is None when no moving source is given,
            meaning the kernel transform should be the identity
        """
        fixed = self.resolve(fixed_source, is_fixed_side=True)
        if moving_source is None:
            logger.info("Moving landmarks unspecified, assuming identity")
            return fixed, None
        moving = self.resolve(moving_source, is_fixed_side=False)
        if len(moving) != len(fixed):
            raise ConfigurationError(
                f"Fixed ({len(fixed)}) and moving ({len(moving)}) landmark counts differ"
            )
        return fixed, moving
