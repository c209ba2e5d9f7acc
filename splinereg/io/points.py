"""
Point-set files in the transformix text format.

Input files::

    index            <- optional, 'index' or 'point' (default 'point')
    2                <- number of points
    10 10 10
    20 20 20

Output files hold one line per point with the input index/point, the
output point and the displacement.
"""

from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np

from splinereg.core.errors import LandmarkFileError


def read_point_file(path: str, dimension: Optional[int] = None) -> Tuple[np.ndarray, bool]:
    """
    Read a point file.

    Args:
        path: Path to the point file
        dimension: Expected number of coordinates per point (None = infer)

    Returns:
        points: (N, D) array of coordinates
        are_indices: True if the file declares image indices

    Raises:
        LandmarkFileError: If the file is unreadable or malformed
    """
    path = Path(path)
    try:
        with open(path, 'r') as f:
            lines = [line.split('//')[0].strip() for line in f]
    except OSError as e:
        raise LandmarkFileError(f"Unable to read point file {path}: {e}") from e

    lines = [line for line in lines if line]
    if not lines:
        raise LandmarkFileError(f"Point file {path} is empty")

    are_indices = False
    header = lines[0].lower()
    if header in ('index', 'point'):
        are_indices = header == 'index'
        lines = lines[1:]

    if not lines:
        raise LandmarkFileError(f"Point file {path} does not state the number of points")
    try:
        num_points = int(lines[0])
    except ValueError:
        raise LandmarkFileError(f"Point file {path}: invalid number of points {lines[0]!r}") from None
    if num_points < 0:
        raise LandmarkFileError(f"Point file {path}: negative number of points")

    rows = lines[1:]
    if len(rows) != num_points:
        raise LandmarkFileError(
            f"Point file {path} declares {num_points} points but contains {len(rows)}"
        )

    points = []
    for i, row in enumerate(rows):
        try:
            coords = [float(v) for v in row.split()]
        except ValueError:
            raise LandmarkFileError(f"Point file {path}: malformed point {i}: {row!r}") from None
        points.append(coords)

    if dimension is None:
        dimension = len(points[0]) if points else 3
    for i, coords in enumerate(points):
        if len(coords) != dimension:
            raise LandmarkFileError(
                f"Point file {path}: point {i} has {len(coords)} coordinates, expected {dimension}"
            )

    return np.array(points, dtype=np.float64).reshape(-1, dimension), are_indices


def write_point_file(path: str, points: np.ndarray, are_indices: bool = False) -> None:
    """Write points in the input point-file format."""
    points = np.atleast_2d(np.asarray(points, dtype=np.float64))
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        f.write('index\n' if are_indices else 'point\n')
        f.write(f'{len(points)}\n')
        for p in points:
            f.write(' '.join(repr(float(v)) for v in p) + '\n')


def _format_vector(values: Optional[Sequence], integer: bool = False) -> str:
    if integer:
        return '[ ' + ' '.join(str(int(v)) for v in values) + ' ]'
    return '[ ' + ' '.join(f'{float(v):.6f}' for v in values) + ' ]'


def write_output_points(path: str, result) -> None:
    """
    Write transformed points in the transformix output-point layout.

    Args:
        path: Output file (usually ``outputpoints.txt``)
        result: PointSetResult
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        for i in range(len(result.output_points)):
            fields = [f'Point\t{i}']
            if result.input_indices is not None:
                fields.append(f'InputIndex = {_format_vector(result.input_indices[i], integer=True)}')
            fields.append(f'InputPoint = {_format_vector(result.input_points[i])}')
            if result.output_indices_fixed is not None:
                fields.append(f'OutputIndexFixed = {_format_vector(result.output_indices_fixed[i], integer=True)}')
            fields.append(f'OutputPoint = {_format_vector(result.output_points[i])}')
            fields.append(f'Deformation = {_format_vector(result.deformation[i])}')
            f.write('\t; '.join(fields) + '\n')
