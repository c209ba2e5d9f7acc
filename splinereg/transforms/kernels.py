"""
Spline kernel families for landmark-based kernel transforms.

Each kernel is a matrix-valued function G(u) of the difference vector
u = x - p between a query point and a landmark. Kernels provide three
batched operations:

- ``matrix(u)``: G for an array of difference vectors (..., D) -> (..., D, D),
  used to assemble the system matrix.
- ``apply(u, w)``: sum over landmarks of G(u_mn) w_n for u of shape (M, N, D)
  and weights w (N, D), giving the (M, D) deformation contribution.
- ``gradient(u, w)``: derivative of ``apply`` with respect to the query
  point, shape (M, D, D).

G(0) is zero for every family; the diagonal of the system matrix carries
the relaxation factor instead.
"""

from enum import Enum
from typing import Callable, Dict

import numpy as np

from splinereg.core.errors import ConfigurationError


class KernelFamily(Enum):
    """Closed set of supported kernel families, valued by their parameter-map name."""
    THIN_PLATE = 'ThinPlateSpline'
    THIN_PLATE_R2LOGR = 'ThinPlateR2LogRSpline'
    VOLUME = 'VolumeSpline'
    ELASTIC_BODY = 'ElasticBodySpline'
    ELASTIC_BODY_RECIPROCAL = 'ElasticBodyReciprocalSpline'
    UNKNOWN = 'unknown'

    @property
    def is_elastic(self) -> bool:
        return self in (KernelFamily.ELASTIC_BODY, KernelFamily.ELASTIC_BODY_RECIPROCAL)

    @classmethod
    def from_name(cls, name: str) -> 'KernelFamily':
        """Look up a family by name; unrecognized names map to UNKNOWN."""
        for family in cls:
            if family.value == name and family is not cls.UNKNOWN:
                return family
        return cls.UNKNOWN


def _norm(u: np.ndarray) -> np.ndarray:
    return np.sqrt(np.einsum('...d,...d->...', u, u))


def _safe_reciprocal(r: np.ndarray) -> np.ndarray:
    return np.divide(1.0, r, out=np.zeros_like(r), where=r > 0)


class RadialKernel:
    """
    Kernel of the form G(u) = f(r) I with r = |u|.

    Subclasses define ``radial(r)`` = f(r) and ``radial_slope(r)`` = f'(r) / r.
    """

    family = KernelFamily.UNKNOWN
    # Sign of the relaxation term on the kernel matrix diagonal
    relaxation_sign = 1.0

    def radial(self, r: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def radial_slope(self, r: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def matrix(self, u: np.ndarray) -> np.ndarray:
        D = u.shape[-1]
        return self.radial(_norm(u))[..., None, None] * np.eye(D)

    def apply(self, u: np.ndarray, w: np.ndarray) -> np.ndarray:
        return self.radial(_norm(u)) @ w

    def gradient(self, u: np.ndarray, w: np.ndarray) -> np.ndarray:
        slope = self.radial_slope(_norm(u))
        return np.einsum('mn,nd,mne->mde', slope, w, u)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ThinPlateKernel(RadialKernel):
    """G = r I (3-D thin-plate spline)."""

    family = KernelFamily.THIN_PLATE
    # Conditionally negative definite
    relaxation_sign = -1.0

    def radial(self, r):
        return r

    def radial_slope(self, r):
        return _safe_reciprocal(r)


class ThinPlateR2LogRKernel(RadialKernel):
    """G = r^2 log(r) I, zero at r = 0."""

    family = KernelFamily.THIN_PLATE_R2LOGR

    def radial(self, r):
        log_r = np.log(r, out=np.zeros_like(r), where=r > 0)
        return r * r * log_r

    def radial_slope(self, r):
        log_r = np.log(r, out=np.zeros_like(r), where=r > 0)
        return np.where(r > 0, 2.0 * log_r + 1.0, 0.0)


class VolumeKernel(RadialKernel):
    """G = r^3 I."""

    family = KernelFamily.VOLUME

    def radial(self, r):
        return r * r * r

    def radial_slope(self, r):
        return 3.0 * r


class ElasticBodyKernel:
    """
    G = alpha r^3 I - 3 r u u^T with alpha = 12 (1 - nu) - 1.

    nu is the Poisson ratio of the modelled material.
    """

    family = KernelFamily.ELASTIC_BODY
    relaxation_sign = 1.0

    def __init__(self, poisson_ratio: float = 0.3):
        self.poisson_ratio = float(poisson_ratio)
        self.alpha = 12.0 * (1.0 - self.poisson_ratio) - 1.0

    def matrix(self, u):
        D = u.shape[-1]
        r = _norm(u)
        outer = u[..., :, None] * u[..., None, :]
        return (self.alpha * r ** 3)[..., None, None] * np.eye(D) - (3.0 * r)[..., None, None] * outer

    def apply(self, u, w):
        r = _norm(u)
        uw = np.einsum('mnd,nd->mn', u, w)
        return (self.alpha * r ** 3) @ w - np.einsum('mn,mnd->md', 3.0 * r * uw, u)

    def gradient(self, u, w):
        D = u.shape[-1]
        r = _norm(u)
        inv_r = _safe_reciprocal(r)
        uw = np.einsum('mnd,nd->mn', u, w)
        grad = np.einsum('mn,nd,mne->mde', 3.0 * self.alpha * r, w, u)
        grad -= np.einsum('mn,mnd,mne->mde', 3.0 * uw * inv_r, u, u)
        grad -= np.einsum('mn,mnd,ne->mde', 3.0 * r, u, w)
        grad -= (3.0 * r * uw).sum(axis=1)[:, None, None] * np.eye(D)
        return grad

    def __repr__(self) -> str:
        return f"{type(self).__name__}(poisson_ratio={self.poisson_ratio})"


class ElasticBodyReciprocalKernel(ElasticBodyKernel):
    """
    G = alpha r I - u u^T / r with alpha = 8 (1 - nu) - 1, zero at r = 0.
    """

    family = KernelFamily.ELASTIC_BODY_RECIPROCAL
    # Conditionally negative definite for nu < 0.5
    relaxation_sign = -1.0

    def __init__(self, poisson_ratio: float = 0.3):
        self.poisson_ratio = float(poisson_ratio)
        self.alpha = 8.0 * (1.0 - self.poisson_ratio) - 1.0

    def matrix(self, u):
        D = u.shape[-1]
        r = _norm(u)
        outer = u[..., :, None] * u[..., None, :]
        return (self.alpha * r)[..., None, None] * np.eye(D) - _safe_reciprocal(r)[..., None, None] * outer

    def apply(self, u, w):
        r = _norm(u)
        uw = np.einsum('mnd,nd->mn', u, w)
        return (self.alpha * r) @ w - np.einsum('mn,mnd->md', uw * _safe_reciprocal(r), u)

    def gradient(self, u, w):
        D = u.shape[-1]
        r = _norm(u)
        inv_r = _safe_reciprocal(r)
        uw = np.einsum('mnd,nd->mn', u, w)
        grad = np.einsum('mn,nd,mne->mde', self.alpha * inv_r, w, u)
        grad -= np.einsum('mn,mnd,ne->mde', inv_r, u, w)
        grad += np.einsum('mn,mnd,mne->mde', uw * inv_r ** 3, u, u)
        grad -= (uw * inv_r).sum(axis=1)[:, None, None] * np.eye(D)
        return grad


KernelFactory = Callable[..., object]


class KernelRegistry:
    """
    Dispatch table from kernel family to kernel factory.

    Factories accept ``poisson_ratio`` as keyword argument; non-elastic
    kernels ignore it.
    """

    def __init__(self, factories: Dict[KernelFamily, KernelFactory] = None):
        self._factories = dict(factories or {})

    def register(self, family: KernelFamily, factory: KernelFactory) -> None:
        if family is KernelFamily.UNKNOWN:
            raise ConfigurationError("Cannot register a kernel for the unknown family")
        self._factories[family] = factory

    def create(self, family: KernelFamily, poisson_ratio: float = 0.3):
        if family not in self._factories:
            raise ConfigurationError(f"No kernel registered for family {family.value}")
        return self._factories[family](poisson_ratio=poisson_ratio)

    def __contains__(self, family: KernelFamily) -> bool:
        return family in self._factories

    def families(self):
        return list(self._factories)


def default_kernel_registry() -> KernelRegistry:
    """Registry holding the five built-in kernel families."""
    return KernelRegistry({
        KernelFamily.THIN_PLATE: lambda poisson_ratio=0.3: ThinPlateKernel(),
        KernelFamily.THIN_PLATE_R2LOGR: lambda poisson_ratio=0.3: ThinPlateR2LogRKernel(),
        KernelFamily.VOLUME: lambda poisson_ratio=0.3: VolumeKernel(),
        KernelFamily.ELASTIC_BODY: ElasticBodyKernel,
        KernelFamily.ELASTIC_BODY_RECIPROCAL: ElasticBodyReciprocalKernel,
    })
