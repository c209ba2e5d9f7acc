"""
Tests for image, point-file and parameter-file I/O.
"""

import pytest
import numpy as np

from splinereg.application import PointSetResult
from splinereg.core import ConfigurationError, LandmarkFileError
from splinereg.io import (
    ImageGeometry,
    format_parameter_map,
    load_dvf,
    load_volume,
    parse_parameter_text,
    read_parameter_file,
    read_parameter_files,
    read_point_file,
    save_dvf,
    save_volume,
    write_output_points,
    write_parameter_files,
    write_point_file,
)
from splinereg.transforms.parameter_store import ParameterMap


# ----------------------------------------------------------------------
# Geometry
# ----------------------------------------------------------------------

def test_geometry_round_trip():
    """index_to_physical and physical_to_index are inverse."""
    angle = np.deg2rad(30)
    direction = np.array([[np.cos(angle), -np.sin(angle), 0],
                          [np.sin(angle), np.cos(angle), 0],
                          [0, 0, 1]])
    geometry = ImageGeometry(origin=[5.0, -3.0, 1.0], spacing=[0.7, 1.1, 2.5], direction=direction)
    indices = np.random.default_rng(0).uniform(0, 20, size=(10, 3))

    np.testing.assert_allclose(geometry.physical_to_index(geometry.index_to_physical(indices)), indices)


def test_geometry_grid_order():
    geometry = ImageGeometry(origin=[10.0, 20.0], spacing=[2.0, 3.0], direction=np.eye(2), size=(2, 3))
    grid = geometry.physical_grid()
    assert grid.shape == (6, 2)
    np.testing.assert_allclose(grid[:4], [[10, 20], [10, 23], [10, 26], [12, 20]])


def test_geometry_validation():
    with pytest.raises(ConfigurationError):
        ImageGeometry(origin=[0, 0, 0], spacing=[1, 1], direction=np.eye(3))
    with pytest.raises(ConfigurationError):
        ImageGeometry(origin=[0, 0], spacing=[1, 0], direction=np.eye(2))
    with pytest.raises(ConfigurationError):
        ImageGeometry.identity(3).physical_grid()


def test_geometry_from_metadata():
    geometry = ImageGeometry.from_metadata({}, (4, 5, 6))
    assert geometry.dimension == 3
    assert geometry.size == (4, 5, 6)
    np.testing.assert_allclose(geometry.spacing, 1.0)


# ----------------------------------------------------------------------
# Images
# ----------------------------------------------------------------------

@pytest.mark.parametrize('suffix', ['.nii.gz', '.npz', '.mha'])
def test_volume_round_trip(tmp_path, suffix):
    """Saved images load back with their (x, y, z) orientation and geometry."""
    volume = np.arange(4 * 5 * 6, dtype=np.float32).reshape(4, 5, 6)
    metadata = {'spacing': (0.5, 1.0, 2.0), 'origin': (1.0, 2.0, 3.0), 'direction': np.eye(3)}
    path = tmp_path / f'image{suffix}'

    save_volume(str(path), volume, metadata)
    loaded, loaded_metadata = load_volume(str(path))

    np.testing.assert_allclose(loaded, volume)
    np.testing.assert_allclose(loaded_metadata['spacing'], metadata['spacing'])
    np.testing.assert_allclose(loaded_metadata['origin'], metadata['origin'], atol=1e-6)
    np.testing.assert_allclose(loaded_metadata['direction'], np.eye(3), atol=1e-6)


def test_load_missing_volume(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_volume(str(tmp_path / 'missing.nii.gz'))


@pytest.mark.parametrize('suffix', ['.nii.gz', '.npz'])
def test_dvf_round_trip(tmp_path, suffix):
    dvf = np.random.default_rng(1).normal(size=(4, 5, 6, 3)).astype(np.float32)
    path = tmp_path / f'deformationField{suffix}'
    save_dvf(str(path), dvf)
    np.testing.assert_allclose(load_dvf(str(path)), dvf)


# ----------------------------------------------------------------------
# Point files
# ----------------------------------------------------------------------

def test_point_file_round_trip(tmp_path):
    points = np.array([[0.1, 2.0, -3.5], [1e-3, 4.0, 5.0]])
    write_point_file(tmp_path / 'points.txt', points, are_indices=False)

    loaded, are_indices = read_point_file(tmp_path / 'points.txt')
    assert not are_indices
    np.testing.assert_array_equal(loaded, points)


def test_point_file_header_and_comments(tmp_path):
    path = tmp_path / 'points.txt'
    path.write_text('INDEX // image indices\n2\n\n1 2 3 // first\n4 5 6\n')

    points, are_indices = read_point_file(path)

    assert are_indices
    np.testing.assert_array_equal(points, [[1, 2, 3], [4, 5, 6]])


def test_point_file_zero_points(tmp_path):
    path = tmp_path / 'points.txt'
    path.write_text('point\n0\n')
    points, _ = read_point_file(path, dimension=3)
    assert points.shape == (0, 3)


def test_point_file_negative_count(tmp_path):
    path = tmp_path / 'points.txt'
    path.write_text('point\n-1\n')
    with pytest.raises(LandmarkFileError):
        read_point_file(path)


def test_output_points_layout(tmp_path):
    result = PointSetResult(
        input_points=np.array([[1.0, 2.0]]),
        output_points=np.array([[1.5, 2.5]]),
        input_indices=np.array([[1, 2]]),
        output_indices_fixed=np.array([[2, 3]]),
    )
    write_output_points(tmp_path / 'outputpoints.txt', result)

    line = (tmp_path / 'outputpoints.txt').read_text().strip()
    assert line == ('Point\t0\t; InputIndex = [ 1 2 ]\t; InputPoint = [ 1.000000 2.000000 ]\t; '
                    'OutputIndexFixed = [ 2 3 ]\t; OutputPoint = [ 1.500000 2.500000 ]\t; '
                    'Deformation = [ 0.500000 0.500000 ]')


def test_output_points_without_indices(tmp_path):
    result = PointSetResult(input_points=np.zeros((2, 3)), output_points=np.ones((2, 3)))
    write_output_points(tmp_path / 'outputpoints.txt', result)
    lines = (tmp_path / 'outputpoints.txt').read_text().splitlines()
    assert len(lines) == 2
    assert 'InputIndex' not in lines[0]
    assert 'OutputIndexFixed' not in lines[0]


# ----------------------------------------------------------------------
# Parameter files
# ----------------------------------------------------------------------

def test_parse_parameter_text():
    text = '''
    // Kernel transform
    (Transform "SplineKernelTransform")
    (SplineKernelType "ThinPlateSpline")  // kernel
    (FixedImageLandmarks 1.0 2 -3.5e-2)
    (Empty)
    (Path "C://data/x.txt")
    '''
    pmap = parse_parameter_text(text)

    assert pmap['Transform'] == ['SplineKernelTransform']
    assert pmap['FixedImageLandmarks'] == ['1.0', '2', '-3.5e-2']
    assert pmap['Empty'] == []
    assert pmap['Path'] == ['C://data/x.txt']


@pytest.mark.parametrize('line', ['(Transform "Spline', 'Transform "Spline"', '(Transform "Spline)', '()'])
def test_malformed_parameter_lines(line):
    with pytest.raises(ConfigurationError):
        parse_parameter_text(line)


def test_format_parameter_map():
    pmap = ParameterMap()
    pmap.set('Transform', 'SplineKernelTransform')
    pmap.set('NumberOfParameters', 6)
    pmap.set('Origin', [0.5, -1.0])

    assert format_parameter_map(pmap) == (
        '(NumberOfParameters 6)\n'
        '(Origin 0.5 -1.0)\n'
        '(Transform "SplineKernelTransform")\n'
    )
    assert parse_parameter_text(format_parameter_map(pmap)) == pmap


def test_read_missing_parameter_file(tmp_path):
    with pytest.raises(ConfigurationError):
        read_parameter_file(tmp_path / 'missing.txt')


def test_parameter_file_chain(tmp_path):
    """Chains are written with linked initial-transform file names and read back in order."""
    maps = []
    for name in ('TranslationTransform', 'SplineKernelTransform'):
        pmap = ParameterMap()
        pmap.set('Transform', name)
        pmap.set('InitialTransformParametersFileName', 'NoInitialTransform')
        maps.append(pmap)

    paths = write_parameter_files(tmp_path, maps)

    assert [p.name for p in paths] == ['TransformParameters.0.txt', 'TransformParameters.1.txt']
    loaded = read_parameter_files(paths[-1])
    assert [m['Transform'][0] for m in loaded] == ['TranslationTransform', 'SplineKernelTransform']
    assert loaded[1]['InitialTransformParametersFileName'] == [str(paths[0])]


def test_parameter_file_cycle(tmp_path):
    path = tmp_path / 'TransformParameters.0.txt'
    path.write_text(f'(InitialTransformParametersFileName "{path}")\n')
    with pytest.raises(ConfigurationError, match='Cyclic'):
        read_parameter_files(path)
