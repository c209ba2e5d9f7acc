"""Visualization utilities."""

from splinereg.visualization.plots import (
    plot_registration_overlay,
    plot_deformation_magnitude,
    plot_jacobian_determinant,
    plot_landmarks,
)

__all__ = [
    'plot_registration_overlay',
    'plot_deformation_magnitude',
    'plot_jacobian_determinant',
    'plot_landmarks',
]
