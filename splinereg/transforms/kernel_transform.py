"""
Landmark-based spline kernel transform.

Given source landmarks p_i and target landmarks q_i the transform is

    T(x) = x + sum_i G(x - p_i) w_i + A x + b

where G is the kernel of the selected family. The coefficients (w, A, b)
solve the block system

    [ K + s lambda I   P ] [ w     ]   [ q - p ]
    [ P^T              0 ] [ (A,b) ] = [ 0     ]

with K_ij = G(p_i - p_j), P_i = [p_i (x) I, I] and lambda the relaxation
factor (0 gives exact interpolation of the landmarks). s is -1 for the
conditionally negative definite kernels (r I and the elastic-body
reciprocal kernel) and +1 otherwise, so the landmark residual grows
monotonically with lambda for every family.
"""

import logging
import time
import warnings
from typing import Optional

import numpy as np
from scipy import linalg

from splinereg.core.errors import ConfigurationError, SingularSystemError
from splinereg.transforms.base import Transform, as_points
from splinereg.transforms.kernels import KernelFamily, KernelRegistry, default_kernel_registry

logger = logging.getLogger(__name__)

INVERSION_METHODS = ('SVD', 'QR')


class KernelTransform(Transform):
    """
    Spline kernel transform (interpolating or approximating).

    The engine starts in the 'unknown' family; ``select_family`` enables it,
    ``fit`` computes the coefficients. Without target landmarks the
    transform is the identity.
    """

    name = 'SplineKernelTransform'

    def __init__(self,
                 dimension: int = 3,
                 kernel_registry: Optional[KernelRegistry] = None,
                 ):
        """
        Initialize an unconfigured kernel transform.

        Args:
            dimension: Space dimension (2 or 3)
            kernel_registry: Family -> kernel factory table (default: built-in kernels)
        """
        super().__init__(dimension)
        self.kernel_registry = kernel_registry if kernel_registry is not None else default_kernel_registry()

        self.kernel_type = KernelFamily.UNKNOWN.value
        self.family = KernelFamily.UNKNOWN
        self.stiffness = 0.0
        self.poisson_ratio = 0.3
        self.matrix_inversion_method = 'SVD'

        self._kernel = None
        self._source = np.zeros((0, self.dimension))
        self._target = np.zeros((0, self.dimension))
        self._coefficients = np.zeros(self._coefficient_count(0))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def select_family(self, name: str) -> bool:
        """
        Select the kernel family by its parameter-map name.

        In 2-D only the r^2 log r kernel is available and is selected for
        any name. In 3-D an unrecognized name leaves the transform in the
        disabled 'unknown' state.

        Returns:
            True if a kernel was selected
        """
        self.kernel_type = name
        if self.dimension == 2:
            family = KernelFamily.THIN_PLATE_R2LOGR
        else:
            family = KernelFamily.from_name(name)

        if family is KernelFamily.UNKNOWN or family not in self.kernel_registry:
            self.family = KernelFamily.UNKNOWN
            self._kernel = None
            return False

        self.family = family
        self._kernel = self.kernel_registry.create(family, poisson_ratio=self.poisson_ratio)
        return True

    def set_poisson_ratio(self, poisson_ratio: float) -> None:
        """Set the Poisson ratio; only elastic-body kernels depend on it."""
        self.poisson_ratio = float(poisson_ratio)
        if self.family.is_elastic:
            self._kernel = self.kernel_registry.create(self.family, poisson_ratio=self.poisson_ratio)

    def set_matrix_inversion_method(self, method: str) -> None:
        if method not in INVERSION_METHODS:
            raise ConfigurationError(
                f"Unknown TPSMatrixInversionMethod '{method}', expected one of {INVERSION_METHODS}"
            )
        self.matrix_inversion_method = method

    @property
    def is_enabled(self) -> bool:
        return self._kernel is not None

    def _require_enabled(self) -> None:
        if not self.is_enabled:
            raise ConfigurationError(
                f"Kernel transform is not configured: kernel type '{self.kernel_type}' is not supported"
            )

    # ------------------------------------------------------------------
    # Landmarks and coefficients
    # ------------------------------------------------------------------

    @property
    def source_landmarks(self) -> np.ndarray:
        return self._source.copy()

    @property
    def target_landmarks(self) -> np.ndarray:
        return self._target.copy()

    @property
    def number_of_landmarks(self) -> int:
        return len(self._source)

    @property
    def coefficients(self) -> np.ndarray:
        """Fitted solution vector (w, A, b) flattened, length (N + D + 1) * D."""
        return self._coefficients.copy()

    @property
    def is_identity(self) -> bool:
        return not np.any(self._coefficients)

    def _coefficient_count(self, n: int) -> int:
        D = self.dimension
        return n * D + D * (D + 1)

    def _split_coefficients(self):
        D = self.dimension
        n = self.number_of_landmarks
        W = self._coefficients
        weights = W[:n * D].reshape(n, D)
        affine = W[n * D:n * D + D * D].reshape(D, D).T  # block j holds column j
        translation = W[n * D + D * D:]
        return weights, affine, translation

    def set_source_landmarks(self, source) -> None:
        source = self._check_landmarks(source, 'source')
        self._source = source
        self._target = source.copy()
        self._coefficients = np.zeros(self._coefficient_count(len(source)))

    def set_identity(self) -> None:
        """Reset to the identity mapping; target landmarks equal the source."""
        self._target = self._source.copy()
        self._coefficients = np.zeros(self._coefficient_count(self.number_of_landmarks))

    def set_coefficients(self, coefficients) -> None:
        """
        Reinstate previously fitted coefficients for the current source landmarks.

        The target landmarks are re-derived by evaluating the transform at
        the source landmarks.
        """
        coefficients = np.asarray(coefficients, dtype=np.float64).ravel()
        expected = self._coefficient_count(self.number_of_landmarks)
        if coefficients.size != expected:
            raise ConfigurationError(
                f"Expected {expected} kernel coefficients for {self.number_of_landmarks} landmarks, "
                f"got {coefficients.size}"
            )
        self._coefficients = coefficients.copy()
        if self.number_of_landmarks:
            self._target = self.transform_points(self._source)

    def _check_landmarks(self, landmarks, label: str) -> np.ndarray:
        landmarks = np.asarray(landmarks, dtype=np.float64)
        if landmarks.size == 0:
            return np.zeros((0, self.dimension))
        if landmarks.ndim != 2 or landmarks.shape[1] != self.dimension:
            raise ConfigurationError(
                f"{label.capitalize()} landmarks must have shape (N, {self.dimension}), got {landmarks.shape}"
            )
        return landmarks.copy()

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------

    def fit(self,
            source_landmarks,
            target_landmarks=None,
            stiffness: Optional[float] = None,
            poisson_ratio: Optional[float] = None,
            inversion_method: Optional[str] = None,
            ) -> 'KernelTransform':
        """
        Fit the kernel coefficients mapping source onto target landmarks.

        Args:
            source_landmarks: (N, D) fixed image landmarks in physical space
            target_landmarks: (N, D) moving image landmarks; empty or None gives identity
            stiffness: Relaxation factor (0 = interpolating spline)
            poisson_ratio: Poisson ratio for elastic-body kernels
            inversion_method: 'SVD' or 'QR'

        Returns:
            self

        Raises:
            ConfigurationError: Kernel not selected, count mismatch or too few landmarks
            SingularSystemError: QR inversion of a degenerate system
        """
        self._require_enabled()
        if stiffness is not None:
            self.stiffness = float(stiffness)
        if poisson_ratio is not None:
            self.set_poisson_ratio(poisson_ratio)
        if inversion_method is not None:
            self.set_matrix_inversion_method(inversion_method)

        self.set_source_landmarks(source_landmarks)
        target = self._check_landmarks(target_landmarks if target_landmarks is not None else [], 'target')
        if len(target) == 0:
            self.set_identity()
            return self

        if len(target) != self.number_of_landmarks:
            raise ConfigurationError(
                f"Number of source landmarks ({self.number_of_landmarks}) and target landmarks "
                f"({len(target)}) differ"
            )
        self._target = target
        self._solve()
        return self

    def set_target_landmarks(self, target) -> None:
        """Set new target landmarks for the current source landmarks and re-fit."""
        self.fit(self._source, target)

    def _system_matrix(self) -> np.ndarray:
        D = self.dimension
        n = self.number_of_landmarks
        p = self._source

        u = p[:, None, :] - p[None, :, :]
        K = self._kernel.matrix(u)  # (n, n, D, D)
        idx = np.arange(n)
        # Relaxation sign follows the definiteness of the kernel
        sign = getattr(self._kernel, 'relaxation_sign', 1.0)
        K[idx, idx] = sign * self.stiffness * np.eye(D)
        K = K.transpose(0, 2, 1, 3).reshape(n * D, n * D)

        P = np.zeros((n * D, D * (D + 1)))
        for j in range(D):
            for d in range(D):
                P[d::D, j * D + d] = p[:, j]
        for d in range(D):
            P[d::D, D * D + d] = 1.0

        m = D * (D + 1)
        L = np.zeros((n * D + m, n * D + m))
        L[:n * D, :n * D] = K
        L[:n * D, n * D:] = P
        L[n * D:, :n * D] = P.T
        return L

    def _solve(self) -> None:
        D = self.dimension
        n = self.number_of_landmarks
        if n < D + 1:
            raise ConfigurationError(
                f"At least {D + 1} landmarks are required for a {D}-D kernel transform, got {n}"
            )

        t0 = time.time()
        L = self._system_matrix()
        Y = np.zeros(L.shape[0])
        Y[:n * D] = (self._target - self._source).ravel()

        if self.matrix_inversion_method == 'QR':
            W = _solve_qr(L, Y)
        else:
            W = _solve_svd(L, Y)

        self._coefficients = W
        logger.info(f"Kernel system of size {L.shape[0]} solved ({self.matrix_inversion_method}) "
                    f"in {time.time() - t0:.3f}s")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Evaluate T at (M, D) points."""
        points = as_points(points, self.dimension)
        if self.is_identity:
            return points.copy()
        self._require_enabled()
        weights, affine, translation = self._split_coefficients()
        u = points[:, None, :] - self._source[None, :, :]
        return points + self._kernel.apply(u, weights) + points @ affine.T + translation

    evaluate = transform_points

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        """Spatial Jacobian (M, D, D) of T."""
        points = as_points(points, self.dimension)
        identity = np.broadcast_to(np.eye(self.dimension), (len(points), self.dimension, self.dimension))
        if self.is_identity:
            return identity.copy()
        self._require_enabled()
        weights, affine, _ = self._split_coefficients()
        u = points[:, None, :] - self._source[None, :, :]
        return identity + affine + self._kernel.gradient(u, weights)

    # ------------------------------------------------------------------
    # Parameter vectors
    # ------------------------------------------------------------------

    @property
    def parameters(self) -> np.ndarray:
        """Target landmarks, flattened."""
        return self._target.ravel().copy()

    def set_parameters(self, parameters) -> None:
        """Set target landmarks from a flat vector and re-fit."""
        parameters = np.asarray(parameters, dtype=np.float64).ravel()
        if parameters.size != self._source.size:
            raise ConfigurationError(
                f"Expected {self._source.size} transform parameters, got {parameters.size}"
            )
        self.set_target_landmarks(parameters.reshape(-1, self.dimension))

    @property
    def fixed_parameters(self) -> np.ndarray:
        """Source landmarks, flattened."""
        return self._source.ravel().copy()

    def set_fixed_parameters(self, fixed_parameters) -> None:
        fixed_parameters = np.asarray(fixed_parameters, dtype=np.float64).ravel()
        if fixed_parameters.size % self.dimension:
            raise ConfigurationError(
                f"Number of fixed parameters ({fixed_parameters.size}) is not a multiple "
                f"of the dimension ({self.dimension})"
            )
        self.set_source_landmarks(fixed_parameters.reshape(-1, self.dimension))

    def __repr__(self) -> str:
        return (f"KernelTransform(dimension={self.dimension}, kernel={self.kernel_type!r}, "
                f"landmarks={self.number_of_landmarks}, stiffness={self.stiffness})")


def _solve_svd(L: np.ndarray, Y: np.ndarray, rcond: float = 1e-12) -> np.ndarray:
    """Pseudo-inverse solve; singular values below rcond * s_max are suppressed."""
    U, s, Vt = linalg.svd(L, full_matrices=False)
    cutoff = rcond * s.max() if s.size else 0.0
    keep = s > cutoff
    if not keep.all():
        warnings.warn(
            f"Kernel matrix is ill-conditioned: {int((~keep).sum())} singular value(s) suppressed "
            "(duplicate or degenerate landmarks?)"
        )
    s_inv = np.zeros_like(s)
    s_inv[keep] = 1.0 / s[keep]
    return Vt.T @ (s_inv * (U.T @ Y))


def _solve_qr(L: np.ndarray, Y: np.ndarray, rtol: float = 1e-12) -> np.ndarray:
    """QR solve; raises SingularSystemError for a rank-deficient system."""
    Q, R = linalg.qr(L)
    diag = np.abs(np.diag(R))
    if diag.size == 0 or diag.min() <= rtol * diag.max():
        raise SingularSystemError(
            "Kernel matrix is singular; landmarks are duplicated or insufficient"
        )
    return linalg.solve_triangular(R, Q.T @ Y)
