"""
Unit tests for the spline kernel families.
"""

import pytest
import numpy as np

from splinereg.core import ConfigurationError
from splinereg.transforms.kernels import (
    KernelFamily,
    KernelRegistry,
    default_kernel_registry,
    ElasticBodyKernel,
    ElasticBodyReciprocalKernel,
    ThinPlateKernel,
    ThinPlateR2LogRKernel,
    VolumeKernel,
)

ALL_FAMILIES = [
    KernelFamily.THIN_PLATE,
    KernelFamily.THIN_PLATE_R2LOGR,
    KernelFamily.VOLUME,
    KernelFamily.ELASTIC_BODY,
    KernelFamily.ELASTIC_BODY_RECIPROCAL,
]


def test_family_names():
    """Test lookup of families by parameter-map name."""
    assert KernelFamily.from_name('ThinPlateSpline') is KernelFamily.THIN_PLATE
    assert KernelFamily.from_name('ElasticBodyReciprocalSpline') is KernelFamily.ELASTIC_BODY_RECIPROCAL
    assert KernelFamily.from_name('thinplatespline') is KernelFamily.UNKNOWN
    assert KernelFamily.from_name('unknown') is KernelFamily.UNKNOWN
    assert KernelFamily.from_name('') is KernelFamily.UNKNOWN


def test_elastic_flag():
    """Only the elastic-body families depend on the Poisson ratio."""
    elastic = [f for f in ALL_FAMILIES if f.is_elastic]
    assert elastic == [KernelFamily.ELASTIC_BODY, KernelFamily.ELASTIC_BODY_RECIPROCAL]


def test_radial_values():
    """Test radial kernel functions at known distances."""
    r = np.array([0.0, 1.0, 2.0, np.e])

    np.testing.assert_allclose(ThinPlateKernel().radial(r), r)
    np.testing.assert_allclose(VolumeKernel().radial(r), r ** 3)
    np.testing.assert_allclose(ThinPlateR2LogRKernel().radial(r), [0.0, 0.0, 4 * np.log(2), np.e ** 2])


def test_zero_at_origin():
    """G(0) vanishes for every family."""
    registry = default_kernel_registry()
    for family in ALL_FAMILIES:
        for D in (2, 3):
            G = registry.create(family).matrix(np.zeros((1, D)))
            np.testing.assert_allclose(G, 0.0, err_msg=family.value)


def test_matrix_symmetry():
    """G(u) = G(-u) and G(u) is a symmetric matrix."""
    rng = np.random.default_rng(0)
    u = rng.normal(size=(20, 3))
    registry = default_kernel_registry()
    for family in ALL_FAMILIES:
        kernel = registry.create(family)
        G = kernel.matrix(u)
        assert G.shape == (20, 3, 3)
        np.testing.assert_allclose(G, kernel.matrix(-u))
        np.testing.assert_allclose(G, np.swapaxes(G, -1, -2))


def test_elastic_alpha():
    """Test alpha constants of the elastic-body kernels."""
    assert ElasticBodyKernel(0.3).alpha == pytest.approx(12 * 0.7 - 1)
    assert ElasticBodyReciprocalKernel(0.3).alpha == pytest.approx(8 * 0.7 - 1)
    assert ElasticBodyKernel(0.5).alpha == pytest.approx(5.0)


def test_elastic_matrix_closed_form():
    """Test the elastic-body kernel against its closed form for one vector."""
    u = np.array([[1.0, 2.0, 2.0]])  # r = 3
    kernel = ElasticBodyKernel(0.25)
    expected = kernel.alpha * 27 * np.eye(3) - 9 * np.outer(u[0], u[0])
    np.testing.assert_allclose(kernel.matrix(u)[0], expected)

    kernel = ElasticBodyReciprocalKernel(0.25)
    expected = kernel.alpha * 3 * np.eye(3) - np.outer(u[0], u[0]) / 3
    np.testing.assert_allclose(kernel.matrix(u)[0], expected)


def test_apply_matches_matrix():
    """apply(u, w) equals the explicit sum of G(u_mn) w_n."""
    rng = np.random.default_rng(1)
    u = rng.normal(size=(5, 7, 3))
    w = rng.normal(size=(7, 3))
    registry = default_kernel_registry()
    for family in ALL_FAMILIES:
        kernel = registry.create(family, poisson_ratio=0.4)
        expected = np.einsum('mnij,nj->mi', kernel.matrix(u), w)
        np.testing.assert_allclose(kernel.apply(u, w), expected, rtol=1e-10, atol=1e-10)


@pytest.mark.parametrize('family', ALL_FAMILIES, ids=lambda f: f.value)
def test_gradient_finite_difference(family):
    """Analytic gradient of apply() agrees with central differences."""
    rng = np.random.default_rng(2)
    landmarks = rng.uniform(0, 10, size=(6, 3))
    w = rng.normal(size=(6, 3))
    x = rng.uniform(0, 10, size=(4, 3))
    kernel = default_kernel_registry().create(family, poisson_ratio=0.3)

    def f(points):
        return kernel.apply(points[:, None, :] - landmarks[None, :, :], w)

    eps = 1e-6
    numeric = np.empty((4, 3, 3))
    for e in range(3):
        step = np.zeros(3)
        step[e] = eps
        numeric[:, :, e] = (f(x + step) - f(x - step)) / (2 * eps)

    analytic = kernel.gradient(x[:, None, :] - landmarks[None, :, :], w)
    np.testing.assert_allclose(analytic, numeric, rtol=1e-5, atol=1e-5)


def test_registry():
    """Test kernel registry dispatch."""
    registry = default_kernel_registry()
    assert set(registry.families()) == set(ALL_FAMILIES)
    assert KernelFamily.UNKNOWN not in registry

    kernel = registry.create(KernelFamily.ELASTIC_BODY, poisson_ratio=0.45)
    assert isinstance(kernel, ElasticBodyKernel)
    assert kernel.poisson_ratio == 0.45

    # Non-elastic factories ignore the Poisson ratio
    assert isinstance(registry.create(KernelFamily.VOLUME, poisson_ratio=0.1), VolumeKernel)

    empty = KernelRegistry()
    with pytest.raises(ConfigurationError):
        empty.create(KernelFamily.THIN_PLATE)
    with pytest.raises(ConfigurationError):
        empty.register(KernelFamily.UNKNOWN, ThinPlateKernel)


@pytest.mark.parametrize('family', ALL_FAMILIES)
def test_relaxation_sign_matches_definiteness(family):
    """On displacements orthogonal to affine maps, sign * K is positive definite."""
    from scipy.linalg import null_space

    kernel = default_kernel_registry().create(family, poisson_ratio=0.3)
    p = np.random.default_rng(8).uniform(0, 20, size=(12, 3))
    n, D = p.shape

    K = kernel.matrix(p[:, None, :] - p[None, :, :]).transpose(0, 2, 1, 3).reshape(n * D, n * D)
    P = np.hstack([np.kron(p, np.eye(D)), np.kron(np.ones((n, 1)), np.eye(D))])
    Z = null_space(P.T)

    eigenvalues = np.linalg.eigvalsh(kernel.relaxation_sign * Z.T @ K @ Z)
    assert eigenvalues.min() > 0
