"""Evaluation metrics."""

from splinereg.evaluation.metrics import (
    landmark_residuals,
    target_registration_error,
    jacobian_determinant,
    jacobian_statistics,
)

__all__ = [
    'landmark_residuals',
    'target_registration_error',
    'jacobian_determinant',
    'jacobian_statistics',
]
