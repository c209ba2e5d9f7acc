"""
Image I/O with index-to-physical geometry.

Supports NIfTI, DICOM, NumPy and any format SimpleITK reads. Arrays are
indexed in (x, y[, z]) order and metadata holds spacing, origin and
direction in the same order, using the LPS world convention of ITK.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Dict, Any, Optional

import nibabel as nib
import numpy as np
import SimpleITK as sitk

from splinereg.core.errors import ConfigurationError

# NIfTI stores RAS world coordinates, ITK uses LPS.
_RAS_TO_LPS = np.diag([-1.0, -1.0, 1.0])


@dataclass
class ImageGeometry:
    """
    Affine index-to-physical mapping of an image grid.

    physical = origin + direction @ (spacing * index)
    """
    origin: np.ndarray
    spacing: np.ndarray
    direction: np.ndarray
    size: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        self.origin = np.asarray(self.origin, dtype=np.float64).ravel()
        self.spacing = np.asarray(self.spacing, dtype=np.float64).ravel()
        D = self.origin.size
        self.direction = np.asarray(self.direction, dtype=np.float64).reshape(D, D)
        if self.spacing.size != D:
            raise ConfigurationError(f"Spacing {self.spacing} does not match dimension {D}")
        if np.any(self.spacing <= 0):
            raise ConfigurationError(f"Invalid spacing: {self.spacing}")
        if self.size is not None:
            self.size = tuple(int(s) for s in self.size)

    @property
    def dimension(self) -> int:
        return self.origin.size

    @classmethod
    def identity(cls, dimension: int, size=None) -> 'ImageGeometry':
        return cls(np.zeros(dimension), np.ones(dimension), np.eye(dimension), size)

    @classmethod
    def from_metadata(cls, metadata: Dict[str, Any], shape=None) -> 'ImageGeometry':
        """Build from loader metadata; missing entries default to unit geometry."""
        if shape is None:
            shape = metadata.get('shape')
        dimension = len(metadata.get('spacing', shape if shape is not None else (0, 0, 0)))
        spacing = metadata.get('spacing', (1.0,) * dimension)
        origin = metadata.get('origin', (0.0,) * dimension)
        direction = metadata.get('direction', np.eye(dimension))
        size = tuple(shape[:dimension]) if shape is not None else None
        return cls(origin, spacing, direction, size)

    def to_metadata(self) -> Dict[str, Any]:
        return {
            'spacing': tuple(self.spacing),
            'origin': tuple(self.origin),
            'direction': self.direction.copy(),
        }

    def index_to_physical(self, indices: np.ndarray) -> np.ndarray:
        """Map (N, D) continuous or integer indices to physical points."""
        indices = np.asarray(indices, dtype=np.float64)
        return self.origin + (indices * self.spacing) @ self.direction.T

    def physical_to_index(self, points: np.ndarray) -> np.ndarray:
        """Map (N, D) physical points to continuous indices."""
        points = np.asarray(points, dtype=np.float64)
        return np.linalg.solve(self.direction, (points - self.origin).T).T / self.spacing

    def physical_grid(self) -> np.ndarray:
        """
        Physical coordinates of every grid node, (prod(size), D).

        Rows follow C order of an array of shape ``size``.
        """
        if self.size is None:
            raise ConfigurationError("Image geometry has no size")
        axes = [np.arange(s) for s in self.size]
        grid = np.stack(np.meshgrid(*axes, indexing='ij'), axis=-1).reshape(-1, self.dimension)
        return self.index_to_physical(grid)


def load_volume(path: str) -> Tuple[np.ndarray, Dict[str, Any]]:
    """
    Load an image volume with metadata.

    Automatically detects format from file extension and loads appropriately.

    Args:
        path: Path to image file or DICOM directory

    Returns:
        volume: numpy array indexed (x, y[, z])
        metadata: Dictionary containing:
            - spacing: per-axis spacing in mm
            - origin: physical position of index 0
            - direction: D x D direction cosine matrix
            - dtype: original data type
            - path: original file path

    Raises:
        ValueError: If file format is not supported
        FileNotFoundError: If file does not exist
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if path.is_dir():
        return load_dicom_series(str(path))
    elif path.suffix.lower() == '.nii' or path.name.lower().endswith('.nii.gz'):
        return load_nifti(str(path))
    elif path.suffix.lower() in ['.npy', '.npz']:
        return load_numpy(str(path))
    else:
        try:
            return load_with_sitk(str(path))
        except RuntimeError as e:
            raise ValueError(f"Unsupported file format: {path.suffix}. Error: {e}") from e


def load_nifti(path: str) -> Tuple[np.ndarray, Dict[str, Any]]:
    """Load NIfTI format (.nii or .nii.gz)."""
    img = nib.load(path)
    volume = np.asarray(img.dataobj)
    dimension = 2 if volume.ndim == 2 else 3

    affine = _RAS_TO_LPS @ img.affine[:3, :4]
    linear = affine[:, :3]
    spacing = np.linalg.norm(linear, axis=0)
    direction = linear / spacing
    origin = affine[:, 3]

    metadata = {
        'spacing': tuple(spacing[:dimension]),
        'origin': tuple(origin[:dimension]),
        'direction': direction[:dimension, :dimension],
        'dtype': volume.dtype,
        'path': str(path),
    }
    return volume, metadata


def load_dicom_series(directory: str) -> Tuple[np.ndarray, Dict[str, Any]]:
    """Load DICOM series from directory."""
    reader = sitk.ImageSeriesReader()
    dicom_names = reader.GetGDCMSeriesFileNames(directory)

    if not dicom_names:
        raise ValueError(f"No DICOM series found in {directory}")

    reader.SetFileNames(dicom_names)
    volume, metadata = sitk_to_numpy(reader.Execute())
    metadata['path'] = str(directory)
    return volume, metadata


def load_numpy(path: str) -> Tuple[np.ndarray, Dict[str, Any]]:
    """
    Load NumPy array (.npy or .npz).

    For .npz files, expects key 'volume', optionally 'spacing', 'origin', 'direction'.
    """
    path = Path(path)

    if path.suffix == '.npy':
        volume = np.load(path)
        dimension = volume.ndim
        spacing, origin, direction = (1.0,) * dimension, (0.0,) * dimension, np.eye(dimension)
    elif path.suffix == '.npz':
        data = np.load(path)
        volume = data['volume']
        dimension = volume.ndim if 'spacing' not in data else len(data['spacing'])
        spacing = tuple(data['spacing']) if 'spacing' in data else (1.0,) * dimension
        origin = tuple(data['origin']) if 'origin' in data else (0.0,) * dimension
        direction = data['direction'] if 'direction' in data else np.eye(dimension)
    else:
        raise ValueError(f"Unsupported numpy format: {path.suffix}")

    metadata = {
        'spacing': spacing,
        'origin': origin,
        'direction': np.asarray(direction),
        'dtype': volume.dtype,
        'path': str(path),
    }
    return volume, metadata


def load_with_sitk(path: str) -> Tuple[np.ndarray, Dict[str, Any]]:
    """Load image using SimpleITK as fallback."""
    volume, metadata = sitk_to_numpy(sitk.ReadImage(path))
    metadata['path'] = str(path)
    return volume, metadata


def sitk_to_numpy(image: sitk.Image) -> Tuple[np.ndarray, Dict[str, Any]]:
    """Convert a SimpleITK image to an (x, y[, z]) array plus metadata."""
    dimension = image.GetDimension()
    array = sitk.GetArrayFromImage(image)  # (z, y, x[, components])
    if image.GetNumberOfComponentsPerPixel() > 1:
        axes = tuple(range(dimension - 1, -1, -1)) + (dimension,)
        volume = np.transpose(array, axes)
    else:
        volume = array.T

    metadata = {
        'spacing': tuple(image.GetSpacing()),
        'origin': tuple(image.GetOrigin()),
        'direction': np.array(image.GetDirection()).reshape(dimension, dimension),
        'dtype': volume.dtype,
    }
    return np.ascontiguousarray(volume), metadata


def validate_metadata(metadata: Dict[str, Any]) -> None:
    """Validate that metadata contains required fields."""
    required = ['spacing', 'origin', 'direction']
    for key in required:
        if key not in metadata:
            raise ValueError(f"Missing required metadata field: {key}")

    spacing = metadata['spacing']
    if len(spacing) not in (2, 3) or any(s <= 0 for s in spacing):
        raise ValueError(f"Invalid spacing: {spacing}")

    direction = np.asarray(metadata['direction'])
    if direction.shape != (len(spacing), len(spacing)):
        raise ValueError(f"Invalid direction matrix shape: {direction.shape}")


def get_physical_coords(volume_shape: Tuple[int, ...],
                        spacing: Tuple[float, ...],
                        origin: Optional[Tuple[float, ...]] = None,
                        direction: Optional[np.ndarray] = None,
                        ) -> np.ndarray:
    """
    Generate physical coordinate grid for a volume.

    Args:
        volume_shape: Grid size per axis
        spacing: Per-axis spacing in mm
        origin: Physical position of index 0 (default zero)
        direction: Direction cosines (default identity)

    Returns:
        coords: (*volume_shape, D) array of physical coordinates
    """
    dimension = len(spacing)
    geometry = ImageGeometry(
        np.zeros(dimension) if origin is None else origin,
        spacing,
        np.eye(dimension) if direction is None else direction,
        volume_shape[:dimension],
    )
    return geometry.physical_grid().reshape(*geometry.size, dimension)
