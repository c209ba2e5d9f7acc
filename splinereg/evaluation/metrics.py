"""
Physical-space evaluation metrics for landmark registration.

Includes landmark residuals, TRE and Jacobian determinant statistics.
"""

import numpy as np
from typing import Optional, Sequence
import warnings

from splinereg.transforms.base import Transform, as_points


def landmark_residuals(transform: Transform,
                       source_landmarks: np.ndarray,
                       target_landmarks: np.ndarray,
                       ) -> np.ndarray:
    """
    Distance between each mapped source landmark and its target.

    Args:
        transform: Fitted transform
        source_landmarks: (N, D) fixed image landmarks
        target_landmarks: (N, D) moving image landmarks

    Returns:
        residuals: (N,) |T(p_i) - q_i| in physical units
    """
    source = as_points(source_landmarks, transform.dimension)
    target = as_points(target_landmarks, transform.dimension)
    if len(source) != len(target):
        raise ValueError(f"Landmark counts differ: {len(source)} vs {len(target)}")
    if len(source) == 0:
        return np.zeros(0)
    return np.linalg.norm(transform.transform_points(source) - target, axis=1)


def target_registration_error(transform: Transform,
                              landmarks_fixed: np.ndarray,
                              landmarks_moving: np.ndarray,
                              ) -> dict:
    """
    Compute Target Registration Error (TRE) for landmarks.

    The landmarks are typically held out of the fit, so this measures how
    well the transform generalizes between the fitted landmarks.

    Args:
        transform: Transform mapping fixed-image points into the moving image
        landmarks_fixed: (N, D) landmark coordinates in the fixed image (physical)
        landmarks_moving: (N, D) landmark coordinates in the moving image (physical)

    Returns:
        Dictionary with TRE statistics
    """
    N = len(landmarks_fixed)

    if N == 0:
        return {'mean': np.nan, 'std': np.nan, 'max': np.nan}

    errors = landmark_residuals(transform, landmarks_fixed, landmarks_moving)

    tre_stats = {
        'mean': float(errors.mean()),
        'std': float(errors.std()),
        'max': float(errors.max()),
        'median': float(np.median(errors)),
        'num_landmarks': N,
    }

    return tre_stats


def jacobian_determinant(deformation_field: np.ndarray,
                         spacing: Sequence[float],
                         ) -> np.ndarray:
    """
    Finite-difference Jacobian determinant of a sampled deformation field.

    The transform's own ``jacobian`` is exact; this is the version for
    fields read back from disk.

    Args:
        deformation_field: (*size, D) displacements in physical units
        spacing: Grid spacing per axis

    Returns:
        jac_det: (*size) determinant of I + grad(u)
    """
    D = deformation_field.shape[-1]
    spacing = np.asarray(spacing, dtype=np.float64)
    if spacing.size != D or deformation_field.ndim != D + 1:
        raise ValueError(f"Field of shape {deformation_field.shape} does not match spacing {spacing}")

    # J[..., i, j] = d(x_i + u_i) / dx_j
    J = np.empty(deformation_field.shape[:-1] + (D, D))
    for i in range(D):
        grads = np.gradient(deformation_field[..., i], *spacing)
        for j in range(D):
            J[..., i, j] = grads[j] + (1.0 if i == j else 0.0)

    return np.linalg.det(J)


def jacobian_statistics(jac_det: np.ndarray,
                        mask: Optional[np.ndarray] = None,
                        ) -> dict:
    """
    Compute statistics of a Jacobian determinant field.

    Args:
        jac_det: Determinant field
        mask: Optional mask restricting the statistics

    Returns:
        Dictionary of Jacobian statistics
    """
    values = jac_det[mask > 0] if mask is not None else np.ravel(jac_det)
    if values.size == 0:
        warnings.warn("Empty Jacobian determinant field, returning NaN statistics")
        return {'mean': np.nan, 'std': np.nan, 'min': np.nan, 'max': np.nan,
                'num_folding': 0, 'percent_folding': 0.0}

    stats = {
        'mean': float(values.mean()),
        'std': float(values.std()),
        'min': float(values.min()),
        'max': float(values.max()),
        'num_folding': int((values <= 0).sum()),
        'percent_folding': float((values <= 0).mean() * 100),
    }

    return stats
