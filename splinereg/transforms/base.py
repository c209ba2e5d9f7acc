"""
Spatial transforms in physical coordinates.

All transforms map arrays of points (N, D) to (N, D) and report their
spatial Jacobian (N, D, D). Evaluation never mutates the transform, so a
configured transform can be shared between worker threads.
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from splinereg.core.errors import ConfigurationError


def as_points(points, dimension: int) -> np.ndarray:
    """
    Coerce input to a float (N, D) array.

    A single point of shape (D,) is promoted to (1, D).
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim == 1:
        points = points[None, :]
    if points.ndim != 2 or points.shape[1] != dimension:
        raise ConfigurationError(
            f"Expected points of shape (N, {dimension}), got {points.shape}"
        )
    return points


class Transform(ABC):
    """Base class for spatial transforms."""

    name = 'Transform'

    def __init__(self, dimension: int = 3):
        if dimension not in (2, 3):
            raise ConfigurationError(f"Unsupported dimension {dimension}, expected 2 or 3")
        self.dimension = int(dimension)

    @abstractmethod
    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Map (N, D) physical points through the transform."""

    @abstractmethod
    def jacobian(self, points: np.ndarray) -> np.ndarray:
        """Spatial Jacobian (N, D, D) at each point; [n, i, j] = dT_i/dx_j."""

    def transform_point(self, point) -> np.ndarray:
        return self.transform_points(point)[0]

    def jacobian_determinant(self, points: np.ndarray) -> np.ndarray:
        return np.linalg.det(self.jacobian(points))

    def __call__(self, points: np.ndarray) -> np.ndarray:
        return self.transform_points(points)

    @property
    def parameters(self) -> np.ndarray:
        """Flat vector stored as `TransformParameters`."""
        return np.zeros(0)

    def set_parameters(self, parameters) -> None:
        parameters = np.asarray(parameters, dtype=np.float64).ravel()
        if parameters.size != 0:
            raise ConfigurationError(f"{self.name} takes no parameters, got {parameters.size}")

    @property
    def number_of_parameters(self) -> int:
        return int(self.parameters.size)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dimension={self.dimension})"


class IdentityTransform(Transform):
    """T(x) = x."""

    name = 'IdentityTransform'

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        return as_points(points, self.dimension).copy()

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        points = as_points(points, self.dimension)
        return np.broadcast_to(np.eye(self.dimension), (len(points), self.dimension, self.dimension)).copy()


class TranslationTransform(Transform):
    """T(x) = x + t."""

    name = 'TranslationTransform'

    def __init__(self, dimension: int = 3, offset=None):
        super().__init__(dimension)
        self.offset = np.zeros(self.dimension)
        if offset is not None:
            self.set_parameters(offset)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        return as_points(points, self.dimension) + self.offset

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        points = as_points(points, self.dimension)
        return np.broadcast_to(np.eye(self.dimension), (len(points), self.dimension, self.dimension)).copy()

    @property
    def parameters(self) -> np.ndarray:
        return self.offset.copy()

    def set_parameters(self, parameters) -> None:
        parameters = np.asarray(parameters, dtype=np.float64).ravel()
        if parameters.size != self.dimension:
            raise ConfigurationError(
                f"TranslationTransform expects {self.dimension} parameters, got {parameters.size}"
            )
        self.offset = parameters.copy()


class AffineTransform(Transform):
    """
    T(x) = A (x - c) + t + c.

    Parameters are the matrix A in row-major order followed by the
    translation t; the center of rotation c is a fixed parameter.
    """

    name = 'AffineTransform'

    def __init__(self, dimension: int = 3, matrix=None, translation=None, center=None):
        super().__init__(dimension)
        D = self.dimension
        self.matrix = np.eye(D) if matrix is None else np.asarray(matrix, dtype=np.float64).reshape(D, D)
        self.translation = np.zeros(D) if translation is None else np.asarray(translation, dtype=np.float64).reshape(D)
        self.center = np.zeros(D) if center is None else np.asarray(center, dtype=np.float64).reshape(D)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        points = as_points(points, self.dimension)
        return (points - self.center) @ self.matrix.T + self.translation + self.center

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        points = as_points(points, self.dimension)
        return np.broadcast_to(self.matrix, (len(points), self.dimension, self.dimension)).copy()

    @property
    def parameters(self) -> np.ndarray:
        return np.concatenate([self.matrix.ravel(), self.translation])

    def set_parameters(self, parameters) -> None:
        D = self.dimension
        parameters = np.asarray(parameters, dtype=np.float64).ravel()
        if parameters.size != D * D + D:
            raise ConfigurationError(
                f"AffineTransform expects {D * D + D} parameters, got {parameters.size}"
            )
        self.matrix = parameters[:D * D].reshape(D, D).copy()
        self.translation = parameters[D * D:].copy()


class ComposedTransform(Transform):
    """
    Combination of an initial transform with a current one.

    'Compose': T(x) = current(initial(x))
    'Add':     T(x) = current(x) + initial(x) - x
    """

    name = 'ComposedTransform'

    def __init__(self, initial: Transform, current: Transform, how: str = 'Compose'):
        if initial.dimension != current.dimension:
            raise ConfigurationError(
                f"Cannot combine {initial.dimension}-D and {current.dimension}-D transforms"
            )
        if how not in ('Compose', 'Add'):
            raise ConfigurationError(f"Unknown HowToCombineTransforms value: {how}")
        super().__init__(current.dimension)
        self.initial = initial
        self.current = current
        self.how = how

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        points = as_points(points, self.dimension)
        if self.how == 'Compose':
            return self.current.transform_points(self.initial.transform_points(points))
        return self.current.transform_points(points) + self.initial.transform_points(points) - points

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        points = as_points(points, self.dimension)
        if self.how == 'Compose':
            inner = self.initial.transform_points(points)
            # Chain rule: J_current(T0(x)) @ J_initial(x)
            return np.einsum('nij,njk->nik', self.current.jacobian(inner), self.initial.jacobian(points))
        return self.current.jacobian(points) + self.initial.jacobian(points) - np.eye(self.dimension)

    @property
    def parameters(self) -> np.ndarray:
        return self.current.parameters

    def flatten(self) -> list:
        """Transforms in the order they are applied."""
        chain = self.initial.flatten() if isinstance(self.initial, ComposedTransform) else [self.initial]
        return chain + [self.current]

    def __repr__(self) -> str:
        return f"ComposedTransform({self.initial!r} -> {self.current!r}, how={self.how!r})"


def compose(initial: Optional[Transform], current: Transform, how: str = 'Compose') -> Transform:
    """Combine ``current`` with an optional ``initial`` transform."""
    if initial is None:
        return current
    return ComposedTransform(initial, current, how=how)
