"""
Static visualization utilities using matplotlib.

Slice plots of resampled images, deformation fields, Jacobian
determinants and landmark pairs.
"""

import numpy as np
import matplotlib.pyplot as plt
from typing import Optional, Tuple


def _take_slice(volume: np.ndarray, slice_idx: Optional[int], axis: int) -> np.ndarray:
    """2-D slice of a 3-D array (2-D arrays are returned unchanged)."""
    if volume.ndim == 2:
        return volume
    if slice_idx is None:
        slice_idx = volume.shape[axis] // 2
    return np.take(volume, slice_idx, axis=axis)


def _finish(fig, save_path: Optional[str]):
    plt.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches='tight')
    return fig


def plot_registration_overlay(fixed: np.ndarray,
                              moving: np.ndarray,
                              result: np.ndarray,
                              slice_idx: Optional[int] = None,
                              axis: int = 2,
                              figsize: Tuple[int, int] = (20, 5),
                              save_path: Optional[str] = None,
                              ):
    """
    Plot fixed, moving and resampled images side by side, plus a color overlay.

    Args:
        fixed: Fixed image
        moving: Moving image
        result: Moving image resampled onto the fixed grid
        slice_idx: Slice index (None = middle slice)
        axis: Slice axis for 3-D images
        figsize: Figure size
        save_path: Path to save figure
    """
    slices = [_take_slice(np.asarray(v, dtype=np.float64), slice_idx, axis) for v in (fixed, moving, result)]

    fig, axes = plt.subplots(1, 4, figsize=figsize)
    for ax, data, title in zip(axes, slices, ('Fixed', 'Moving', 'Result')):
        ax.imshow(data.T, cmap='gray', origin='lower')
        ax.set_title(title)
        ax.axis('off')

    # Fixed in magenta, result in green
    def _normalize(a):
        span = a.max() - a.min()
        return (a - a.min()) / span if span > 0 else np.zeros_like(a)

    f, r = _normalize(slices[0]), _normalize(slices[2])
    rgb = np.stack([f, r, f], axis=-1).transpose(1, 0, 2)
    axes[3].imshow(rgb, origin='lower')
    axes[3].set_title('Overlay (Fixed / Result)')
    axes[3].axis('off')

    return _finish(fig, save_path)


def plot_deformation_magnitude(deformation_field: np.ndarray,
                               slice_idx: Optional[int] = None,
                               axis: int = 2,
                               subsample: int = 8,
                               figsize: Tuple[int, int] = (10, 10),
                               save_path: Optional[str] = None,
                               ):
    """
    Plot displacement magnitude with in-plane arrows.

    Args:
        deformation_field: (*size, D) displacement field in physical units
        slice_idx: Slice index
        axis: Slice axis for 3-D fields
        subsample: Arrow subsampling factor
        figsize: Figure size
        save_path: Save path
    """
    D = deformation_field.shape[-1]
    magnitude = np.linalg.norm(deformation_field, axis=-1)
    if D == 3:
        in_plane = [a for a in range(3) if a != axis]
        if slice_idx is None:
            slice_idx = deformation_field.shape[axis] // 2
        field_slice = np.take(deformation_field, slice_idx, axis=axis)[..., in_plane]
    else:
        field_slice = deformation_field
    mag_slice = _take_slice(magnitude, slice_idx, axis)

    fig, ax = plt.subplots(figsize=figsize)
    im = ax.imshow(mag_slice.T, cmap='hot', origin='lower')
    plt.colorbar(im, ax=ax, label='Displacement magnitude')

    sub = field_slice[::subsample, ::subsample]
    X, Y = np.meshgrid(np.arange(0, field_slice.shape[0], subsample),
                       np.arange(0, field_slice.shape[1], subsample), indexing='ij')
    ax.quiver(X, Y, sub[..., 0], sub[..., 1], color='cyan', alpha=0.7)

    ax.set_title('Deformation Field')
    ax.axis('off')

    return _finish(fig, save_path)


def plot_jacobian_determinant(jac_det: np.ndarray,
                              slice_idx: Optional[int] = None,
                              axis: int = 2,
                              figsize: Tuple[int, int] = (10, 8),
                              save_path: Optional[str] = None,
                              ):
    """
    Plot a Jacobian determinant slice with folding regions outlined.

    Args:
        jac_det: Determinant field
        slice_idx: Slice index
        axis: Slice axis
        figsize: Figure size
        save_path: Save path
    """
    jac_slice = _take_slice(jac_det, slice_idx, axis)

    fig, ax = plt.subplots(figsize=figsize)

    # Diverging colormap centered at 1
    im = ax.imshow(jac_slice.T, cmap='RdBu_r', vmin=0, vmax=2, origin='lower')
    plt.colorbar(im, ax=ax, label='Jacobian Determinant')

    ax.set_title('Jacobian Determinant (1 = volume preserving)')
    ax.axis('off')

    folding = jac_slice <= 0
    if folding.any():
        ax.contour(folding.T, colors='yellow', linewidths=2, levels=[0.5], origin='lower')
        ax.text(0.02, 0.98, f'Folding: {folding.sum()} pixels',
                transform=ax.transAxes, color='yellow',
                verticalalignment='top', fontweight='bold')

    return _finish(fig, save_path)


def plot_landmarks(fixed_landmarks: np.ndarray,
                   moving_landmarks: np.ndarray,
                   mapped_landmarks: Optional[np.ndarray] = None,
                   dims: Tuple[int, int] = (0, 1),
                   figsize: Tuple[int, int] = (8, 8),
                   save_path: Optional[str] = None,
                   ):
    """
    Scatter landmark pairs projected onto two coordinate axes.

    Args:
        fixed_landmarks: (N, D) fixed points
        moving_landmarks: (N, D) moving points
        mapped_landmarks: (N, D) fixed points mapped by the transform
        dims: Coordinate axes to plot
        figsize: Figure size
        save_path: Save path
    """
    a, b = dims
    fixed_landmarks = np.asarray(fixed_landmarks)
    moving_landmarks = np.asarray(moving_landmarks)

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(fixed_landmarks[:, a], fixed_landmarks[:, b], c='tab:blue', marker='o', label='Fixed')
    ax.scatter(moving_landmarks[:, a], moving_landmarks[:, b], c='tab:red', marker='x', label='Moving')
    for p, q in zip(fixed_landmarks, moving_landmarks):
        ax.plot([p[a], q[a]], [p[b], q[b]], color='gray', linewidth=0.8, alpha=0.6)

    if mapped_landmarks is not None:
        mapped_landmarks = np.asarray(mapped_landmarks)
        ax.scatter(mapped_landmarks[:, a], mapped_landmarks[:, b], facecolors='none',
                   edgecolors='tab:green', marker='s', label='Mapped')

    ax.set_xlabel(f'axis {a}')
    ax.set_ylabel(f'axis {b}')
    ax.set_aspect('equal')
    ax.legend()
    ax.set_title('Landmarks')

    return _finish(fig, save_path)
