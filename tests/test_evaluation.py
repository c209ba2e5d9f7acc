"""
Tests for evaluation metrics and plotting.
"""

import matplotlib
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import pytest
import numpy as np

from splinereg.evaluation import (
    jacobian_determinant,
    jacobian_statistics,
    landmark_residuals,
    target_registration_error,
)
from splinereg.transforms import KernelTransform, TranslationTransform
from splinereg.visualization import (
    plot_deformation_magnitude,
    plot_jacobian_determinant,
    plot_landmarks,
    plot_registration_overlay,
)


def test_residuals_of_interpolating_fit():
    rng = np.random.default_rng(0)
    source = rng.uniform(0, 30, size=(10, 3))
    target = source + rng.normal(scale=2.0, size=(10, 3))
    transform = KernelTransform(3)
    transform.select_family('ThinPlateSpline')
    transform.fit(source, target)

    residuals = landmark_residuals(transform, source, target)

    assert residuals.shape == (10,)
    np.testing.assert_allclose(residuals, 0.0, atol=1e-6)


def test_residual_count_mismatch():
    with pytest.raises(ValueError):
        landmark_residuals(TranslationTransform(3), np.zeros((3, 3)), np.zeros((2, 3)))


def test_target_registration_error():
    """A translation that misses every landmark by 2 mm."""
    transform = TranslationTransform(3, offset=[1.0, 0.0, 0.0])
    fixed = np.random.default_rng(1).uniform(0, 10, size=(5, 3))
    moving = fixed + [1.0, 2.0, 0.0]

    tre = target_registration_error(transform, fixed, moving)

    assert tre['mean'] == pytest.approx(2.0)
    assert tre['max'] == pytest.approx(2.0)
    assert tre['std'] == pytest.approx(0.0, abs=1e-12)
    assert tre['num_landmarks'] == 5


def test_target_registration_error_empty():
    tre = target_registration_error(TranslationTransform(3), np.zeros((0, 3)), np.zeros((0, 3)))
    assert np.isnan(tre['mean'])


def test_jacobian_determinant_of_linear_field():
    """Finite differences are exact for a linear displacement field."""
    M = np.array([[0.1, 0.05, 0.0], [0.0, -0.2, 0.1], [0.02, 0.0, 0.3]])
    spacing = (1.0, 2.0, 0.5)
    grid = np.stack(np.meshgrid(*[np.arange(n) * s for n, s in zip((6, 7, 8), spacing)], indexing='ij'), axis=-1)
    field = grid @ M.T

    jac_det = jacobian_determinant(field, spacing)

    assert jac_det.shape == (6, 7, 8)
    np.testing.assert_allclose(jac_det, np.linalg.det(np.eye(3) + M))


def test_jacobian_determinant_shape_check():
    with pytest.raises(ValueError):
        jacobian_determinant(np.zeros((4, 4, 4, 3)), spacing=(1.0, 1.0))


def test_jacobian_statistics():
    jac_det = np.array([[1.0, 0.5], [-0.5, 2.0]])

    stats = jacobian_statistics(jac_det)
    assert stats['num_folding'] == 1
    assert stats['percent_folding'] == pytest.approx(25.0)
    assert stats['min'] == -0.5
    assert stats['mean'] == pytest.approx(0.75)

    masked = jacobian_statistics(jac_det, mask=np.array([[1, 1], [0, 1]]))
    assert masked['num_folding'] == 0


def test_jacobian_statistics_empty():
    with pytest.warns(UserWarning):
        stats = jacobian_statistics(np.zeros((0,)))
    assert np.isnan(stats['mean'])


def test_plots(tmp_path):
    """Each plot returns a figure and writes the requested file."""
    rng = np.random.default_rng(2)
    volume = rng.random((16, 16, 8))
    field = rng.normal(size=(16, 16, 8, 3))
    jac_det = 1.0 + rng.normal(scale=0.5, size=(16, 16, 8))
    landmarks = rng.uniform(0, 16, size=(6, 3))

    figures = {
        'overlay.png': plot_registration_overlay(volume, volume, volume, save_path=str(tmp_path / 'overlay.png')),
        'dvf.png': plot_deformation_magnitude(field, subsample=4, save_path=str(tmp_path / 'dvf.png')),
        'dvf2d.png': plot_deformation_magnitude(field[:, :, 0, :2], subsample=4,
                                                save_path=str(tmp_path / 'dvf2d.png')),
        'jac.png': plot_jacobian_determinant(jac_det, save_path=str(tmp_path / 'jac.png')),
        'landmarks.png': plot_landmarks(landmarks, landmarks + 1.0, landmarks + 0.9,
                                        save_path=str(tmp_path / 'landmarks.png')),
    }

    for name, fig in figures.items():
        assert (tmp_path / name).exists()
        plt.close(fig)
