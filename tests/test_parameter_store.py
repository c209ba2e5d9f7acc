"""
Tests for writing and reading transform parameter maps.
"""

import pytest
import numpy as np

from splinereg.core import ConfigurationError, MissingParameterError, TransformRegistry, default_registry
from splinereg.io import format_parameter_map, parse_parameter_text
from splinereg.transforms import (
    AffineTransform,
    ComposedTransform,
    IdentityTransform,
    KernelTransform,
    TranslationTransform,
    read_transform,
    read_transform_chain,
    write_transform,
    write_transform_chain,
)
from splinereg.transforms.parameter_store import ParameterMap, format_value, merge_maps


def kernel_transform(kernel_type='ThinPlateSpline', dimension=3, n=8, stiffness=0.0, poisson_ratio=0.3, seed=0):
    rng = np.random.default_rng(seed)
    source = rng.uniform(0, 40, size=(n, dimension))
    target = source + rng.normal(scale=1.5, size=(n, dimension))
    transform = KernelTransform(dimension=dimension)
    transform.select_family(kernel_type)
    return transform.fit(source, target, stiffness=stiffness, poisson_ratio=poisson_ratio)


def sample_points(dimension=3, n=25, seed=1):
    return np.random.default_rng(seed).uniform(-10, 50, size=(n, dimension))


@pytest.mark.parametrize('kernel_type', [
    'ThinPlateSpline',
    'ThinPlateR2LogRSpline',
    'VolumeSpline',
    'ElasticBodySpline',
    'ElasticBodyReciprocalSpline',
])
def test_round_trip(kernel_type):
    """read(write(T)) evaluates like T."""
    original = kernel_transform(kernel_type, stiffness=0.5, poisson_ratio=0.41)
    restored = read_transform(write_transform(original))

    assert isinstance(restored, KernelTransform)
    assert restored.family is original.family
    assert restored.stiffness == original.stiffness
    x = sample_points()
    np.testing.assert_allclose(restored.transform_points(x), original.transform_points(x), rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(restored.jacobian(x), original.jacobian(x), rtol=1e-12, atol=1e-12)


def test_round_trip_through_text():
    """Round trip through the parameter-file text form is exact."""
    original = kernel_transform('ElasticBodySpline', poisson_ratio=0.27)
    text = format_parameter_map(write_transform(original))
    restored = read_transform(parse_parameter_text(text))

    x = sample_points()
    np.testing.assert_array_equal(restored.transform_points(x), original.transform_points(x))


def test_round_trip_does_not_refit(monkeypatch):
    """Stored coefficients are reinstated without a kernel solve."""
    pmap = write_transform(kernel_transform())

    def fail(self):
        raise AssertionError("kernel system solved during read")

    monkeypatch.setattr(KernelTransform, '_solve', fail)
    read_transform(pmap)


def test_round_trip_2d():
    """The stored kernel name is kept verbatim in 2-D."""
    original = kernel_transform('ThinPlateSpline', dimension=2)
    pmap = write_transform(original)
    assert pmap['SplineKernelType'] == ['ThinPlateSpline']
    assert pmap['FixedImageDimension'] == ['2']

    restored = read_transform(pmap)
    assert restored.dimension == 2
    assert restored.kernel_type == 'ThinPlateSpline'
    x = sample_points(dimension=2)
    np.testing.assert_allclose(restored.transform_points(x), original.transform_points(x))


def test_written_keys():
    """Test the keys and values of a written kernel transform."""
    transform = kernel_transform('ThinPlateSpline', n=5, stiffness=0.25)
    pmap = write_transform(transform)

    assert pmap['Transform'] == ['SplineKernelTransform']
    assert pmap['SplineKernelType'] == ['ThinPlateSpline']
    assert pmap['SplineRelaxationFactor'] == ['0.25']
    assert pmap['TPSMatrixInversionMethod'] == ['SVD']
    assert pmap['NumberOfParameters'] == ['15']
    assert len(pmap['FixedImageLandmarks']) == 15
    assert len(pmap['TransformParameters']) == 15
    assert len(pmap['SplineKernelCoefficients']) == (5 + 4) * 3
    np.testing.assert_array_equal(pmap.get_array('FixedImageLandmarks'), transform.fixed_parameters)


def test_poisson_ratio_written_for_elastic_only():
    assert 'SplinePoissonRatio' not in write_transform(kernel_transform('VolumeSpline'))

    pmap = write_transform(kernel_transform('ElasticBodyReciprocalSpline', poisson_ratio=0.2))
    assert pmap.get_float('SplinePoissonRatio') == 0.2


def test_refit_without_coefficients():
    """Maps without stored coefficients are re-derived from the targets."""
    original = kernel_transform('VolumeSpline')
    pmap = write_transform(original)
    del pmap['SplineKernelCoefficients']

    restored = read_transform(pmap)
    x = sample_points()
    np.testing.assert_allclose(restored.transform_points(x), original.transform_points(x), atol=1e-6)


@pytest.mark.parametrize('key', ['SplineKernelType', 'NumberOfParameters', 'FixedImageLandmarks'])
def test_missing_required_key(key):
    pmap = write_transform(kernel_transform())
    del pmap[key]
    with pytest.raises(MissingParameterError) as excinfo:
        read_transform(pmap)
    assert excinfo.value.key == key


def test_missing_targets_and_coefficients():
    pmap = write_transform(kernel_transform())
    del pmap['SplineKernelCoefficients']
    del pmap['TransformParameters']
    with pytest.raises(MissingParameterError):
        read_transform(pmap)


def test_parameter_count_mismatch():
    """NumberOfParameters must match the number of landmark values."""
    pmap = write_transform(kernel_transform(n=6))
    pmap.set('NumberOfParameters', 17)
    with pytest.raises(ConfigurationError, match='NumberOfParameters'):
        read_transform(pmap)


@pytest.mark.parametrize('value', ['nan', 'inf', '-inf', '2.5'])
def test_non_integer_parameter_count(value):
    pmap = write_transform(kernel_transform())
    pmap['NumberOfParameters'] = [value]
    with pytest.raises(ConfigurationError, match='not an integer'):
        read_transform(pmap)


def test_unknown_kernel_type():
    pmap = write_transform(kernel_transform())
    pmap.set('SplineKernelType', 'NoSuchSpline')
    with pytest.raises(ConfigurationError, match='not supported'):
        read_transform(pmap)


def test_unknown_transform_name():
    pmap = ParameterMap()
    pmap.set('Transform', 'BSplineTransform')
    with pytest.raises(ConfigurationError, match='not registered'):
        read_transform(pmap)


def test_non_numeric_value():
    pmap = write_transform(kernel_transform())
    pmap['SplineRelaxationFactor'] = ['stiff']
    with pytest.raises(ConfigurationError):
        read_transform(pmap)


def test_simple_transforms_round_trip():
    """Affine, translation and identity transforms round-trip as well."""
    affine = AffineTransform(3, matrix=[[1.0, 0.1, 0.0], [0.0, 1.2, 0.0], [0.0, 0.0, 0.9]],
                             translation=[1.0, 2.0, 3.0], center=[5.0, 5.0, 5.0])
    x = sample_points()
    for original in (affine, TranslationTransform(3, offset=[1.0, -2.0, 0.5]), IdentityTransform(2)):
        restored = read_transform(write_transform(original))
        assert type(restored) is type(original)
        points = x[:, :original.dimension]
        np.testing.assert_allclose(restored.transform_points(points), original.transform_points(points))


def test_chain_round_trip():
    """Combined transforms are written as maps ordered as applied."""
    initial = TranslationTransform(3, offset=[2.0, 0.0, -1.0])
    kernel = kernel_transform('ThinPlateSpline')
    combined = ComposedTransform(initial, kernel, how='Compose')

    maps = write_transform_chain(combined)
    assert [m['Transform'][0] for m in maps] == ['TranslationTransform', 'SplineKernelTransform']
    assert maps[0]['InitialTransformParametersFileName'] == ['NoInitialTransform']
    assert maps[1]['HowToCombineTransforms'] == ['Compose']

    restored = read_transform_chain(maps)
    x = sample_points()
    np.testing.assert_allclose(restored.transform_points(x), combined.transform_points(x))


def test_chain_add():
    initial = TranslationTransform(3, offset=[1.0, 1.0, 1.0])
    current = TranslationTransform(3, offset=[0.0, 2.0, 0.0])
    maps = write_transform_chain(ComposedTransform(initial, current, how='Add'))
    restored = read_transform_chain(maps)
    np.testing.assert_allclose(restored.transform_point([0.0, 0.0, 0.0]), [1.0, 3.0, 1.0])


def test_empty_chain():
    with pytest.raises(ConfigurationError):
        read_transform_chain([])


def test_explicit_registry():
    """Reading goes through the given registry only."""
    pmap = write_transform(kernel_transform())
    registry = TransformRegistry()
    with pytest.raises(ConfigurationError):
        read_transform(pmap, registry)

    registry.register('SplineKernelTransform', KernelTransform)
    assert isinstance(read_transform(pmap, registry), KernelTransform)


def test_registry_lifecycle():
    registry = default_registry()
    assert 'SplineKernelTransform' in registry
    assert len(registry) == 4
    copy = registry.copy()
    registry.clear()
    assert len(registry) == 0
    assert len(copy) == 4


def test_parameter_map_access():
    pmap = ParameterMap()
    pmap.set('Size', [10, 20, 30])
    pmap.set('Name', 'value')
    pmap.set('Flag', True)

    assert pmap['Size'] == ['10', '20', '30']
    assert pmap.get_int('Size') == 10
    assert pmap.get_string('Name') == 'value'
    assert pmap['Flag'] == ['true']
    assert pmap.get_float('Missing', default=1.5) == 1.5
    assert pmap.get_array('Missing') is None
    with pytest.raises(MissingParameterError):
        pmap.get_string('Missing', required=True)
    assert [k for k, _ in pmap.ordered_items()] == ['Flag', 'Name', 'Size']


def test_format_value_round_trips_floats():
    for value in [0.1, 1 / 3, 1e-300, -2.5e17, 123456.789]:
        assert float(format_value(value)) == value


def test_merge_maps():
    maps = [write_transform(IdentityTransform(3)), write_transform(TranslationTransform(3))]
    merged = merge_maps(maps, FixedImageDimension=3, ResultImagePixelType='float32')
    assert all(m['ResultImagePixelType'] == ['float32'] for m in merged)
    assert 'ResultImagePixelType' not in maps[0]
