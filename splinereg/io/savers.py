"""
Save images and derived fields with their geometry.
"""

from pathlib import Path
from typing import Dict, Any, Optional

import nibabel as nib
import numpy as np
import SimpleITK as sitk

_LPS_TO_RAS = np.diag([-1.0, -1.0, 1.0])


def _default_metadata(dimension: int) -> Dict[str, Any]:
    return {
        'spacing': (1.0,) * dimension,
        'origin': (0.0,) * dimension,
        'direction': np.eye(dimension),
    }


def save_volume(path: str,
                volume: np.ndarray,
                metadata: Optional[Dict[str, Any]] = None,
                ) -> None:
    """
    Save an image volume with metadata.

    Format is determined by file extension.

    Args:
        path: Output file path
        volume: Array indexed (x, y[, z])
        metadata: Dictionary with spacing, origin, direction
    """
    path = Path(path)
    if metadata is None:
        metadata = _default_metadata(volume.ndim)

    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == '.nii' or path.name.lower().endswith('.nii.gz'):
        save_nifti(str(path), volume, metadata)
    elif path.suffix.lower() in ['.npy', '.npz']:
        save_numpy(str(path), volume, metadata)
    else:
        save_with_sitk(str(path), volume, metadata)


def _nifti_affine(metadata: Dict[str, Any]) -> np.ndarray:
    spacing = np.asarray(metadata.get('spacing', (1.0, 1.0, 1.0)), dtype=np.float64)
    dimension = spacing.size
    origin = np.asarray(metadata.get('origin', (0.0,) * dimension), dtype=np.float64)
    direction = np.asarray(metadata.get('direction', np.eye(dimension)), dtype=np.float64)

    lps = np.eye(4)
    lps[:dimension, :dimension] = direction * spacing
    lps[:dimension, 3] = origin
    affine = np.eye(4)
    affine[:3, :] = _LPS_TO_RAS @ lps[:3, :]
    return affine


def save_nifti(path: str,
               volume: np.ndarray,
               metadata: Dict[str, Any],
               ) -> None:
    """Save as NIfTI format."""
    img = nib.Nifti1Image(np.asarray(volume), _nifti_affine(metadata))
    nib.save(img, path)


def save_numpy(path: str,
               volume: np.ndarray,
               metadata: Dict[str, Any],
               ) -> None:
    """Save as NumPy format (.npz with metadata)."""
    path = Path(path)

    if path.suffix == '.npy':
        np.save(path, volume)
    else:
        dimension = len(metadata.get('spacing', (1.0,) * volume.ndim))
        defaults = _default_metadata(dimension)
        np.savez(
            path,
            volume=volume,
            spacing=np.array(metadata.get('spacing', defaults['spacing'])),
            origin=np.array(metadata.get('origin', defaults['origin'])),
            direction=np.asarray(metadata.get('direction', defaults['direction'])),
        )


def save_with_sitk(path: str,
                   volume: np.ndarray,
                   metadata: Dict[str, Any],
                   ) -> None:
    """Save using SimpleITK; trailing array axes beyond the spatial ones become pixel components."""
    dimension = len(metadata.get('spacing', (1.0,) * volume.ndim))
    spatial_axes = tuple(range(dimension - 1, -1, -1))
    if volume.ndim > dimension:
        components = int(np.prod(volume.shape[dimension:]))
        array = volume.reshape(*volume.shape[:dimension], components)
        image = sitk.GetImageFromArray(np.transpose(array, spatial_axes + (dimension,)), isVector=True)
    else:
        image = sitk.GetImageFromArray(np.transpose(volume, spatial_axes))

    defaults = _default_metadata(dimension)
    image.SetSpacing([float(s) for s in metadata.get('spacing', defaults['spacing'])])
    image.SetOrigin([float(o) for o in metadata.get('origin', defaults['origin'])])
    image.SetDirection(np.asarray(metadata.get('direction', defaults['direction']), dtype=np.float64).ravel().tolist())

    sitk.WriteImage(image, path)


def save_field(path: str,
               field: np.ndarray,
               metadata: Optional[Dict[str, Any]] = None,
               ) -> None:
    """
    Save a vector or matrix valued field.

    Args:
        path: Output file path
        field: Array (*size, D) or (*size, D, D); matrix fields are stored row-major
        metadata: Geometry of the grid the field is sampled on
    """
    path = Path(path)
    if metadata is None:
        metadata = _default_metadata(field.shape[-1])
    dimension = len(metadata['spacing'])
    size = field.shape[:dimension]
    flat = field.reshape(*size, -1)

    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == '.nii' or path.name.lower().endswith('.nii.gz'):
        # NIfTI vector intent: components on the 5th axis
        padded = flat.reshape(*size, *([1] * (3 - dimension)), 1, flat.shape[-1])
        img = nib.Nifti1Image(padded, _nifti_affine(metadata))
        img.header.set_intent('vector')
        nib.save(img, str(path))
    elif path.suffix.lower() in ['.npy', '.npz']:
        save_numpy(str(path), field, metadata)
    else:
        save_with_sitk(str(path), flat, metadata)


def save_dvf(path: str,
             dvf: np.ndarray,
             metadata: Optional[Dict[str, Any]] = None,
             ) -> None:
    """
    Save a deformation vector field (*size, D) in physical displacements.
    """
    save_field(path, dvf, metadata)


def load_dvf(path: str) -> np.ndarray:
    """
    Load a deformation vector field saved by ``save_dvf``.

    Returns:
        dvf: (*size, D) array
    """
    path = Path(path)

    if path.suffix.lower() == '.nii' or path.name.lower().endswith('.nii.gz'):
        data = np.asarray(nib.load(str(path)).dataobj)
        components = data.shape[-1]
        spatial = [s for s in data.shape[:3]]
        while len(spatial) > components and spatial[-1] == 1:
            spatial.pop()
        dvf = data.reshape(*spatial, components)
    elif path.suffix == '.npz':
        dvf = np.load(path)['volume']
    else:
        raise ValueError(f"Unsupported DVF format: {path.suffix}")

    return dvf
