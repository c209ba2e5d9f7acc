"""
Transform parameter maps.

A parameter map is the exact persisted form of a configured transform:
parameter name -> ordered list of string values. Writing a transform and
reading it back reproduces it without re-running any fitting solve.
"""

import logging
from typing import Iterable, List, Optional, Sequence

import numpy as np

from splinereg.core.errors import ConfigurationError, MissingParameterError
from splinereg.core.registry import TransformRegistry, default_registry
from splinereg.transforms.base import AffineTransform, ComposedTransform, Transform
from splinereg.transforms.kernel_transform import KernelTransform
from splinereg.transforms.kernels import KernelFamily

logger = logging.getLogger(__name__)

NO_INITIAL_TRANSFORM = 'NoInitialTransform'


def format_value(value) -> str:
    """String-encode a parameter value; floats round-trip exactly."""
    if isinstance(value, (bool, np.bool_)):
        return 'true' if value else 'false'
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        return repr(float(value))
    return str(value)


class ParameterMap(dict):
    """
    Mapping from parameter name to a list of string values.

    Lookup ignores insertion order; ``ordered_items`` gives the
    deterministic order used for serialization.
    """

    def set(self, key: str, *values) -> None:
        """Store values (scalars or iterables) under ``key`` as strings."""
        flat = []
        for value in values:
            if isinstance(value, (list, tuple, np.ndarray)):
                flat.extend(format_value(v) for v in np.asarray(value).ravel().tolist())
            else:
                flat.append(format_value(value))
        self[key] = flat

    def get_string(self, key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
        values = self.get(key)
        if not values:
            if required:
                raise MissingParameterError(key)
            return default
        return values[0]

    def get_float(self, key: str, default: Optional[float] = None, required: bool = False) -> Optional[float]:
        value = self.get_string(key, required=required)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Parameter '{key}' is not a number: {value!r}") from None

    def get_int(self, key: str, default: Optional[int] = None, required: bool = False) -> Optional[int]:
        value = self.get_float(key, required=required)
        if value is None:
            return default
        if not np.isfinite(value) or value != int(value):
            raise ConfigurationError(f"Parameter '{key}' is not an integer: {value}")
        return int(value)

    def get_array(self, key: str, required: bool = False) -> Optional[np.ndarray]:
        values = self.get(key)
        if values is None:
            if required:
                raise MissingParameterError(key)
            return None
        try:
            return np.array([float(v) for v in values], dtype=np.float64)
        except ValueError:
            raise ConfigurationError(f"Parameter '{key}' contains non-numeric values") from None

    def ordered_items(self):
        return sorted(self.items())

    def copy(self) -> 'ParameterMap':
        return ParameterMap({k: list(v) for k, v in self.items()})


# ----------------------------------------------------------------------
# Writing
# ----------------------------------------------------------------------

def write_transform(transform: Transform, geometry=None) -> ParameterMap:
    """
    Serialize a single transform.

    Args:
        transform: Configured transform
        geometry: Optional ImageGeometry of the fixed image domain; written as
            Size/Spacing/Origin/Direction so it can be applied without an input image

    Returns:
        ParameterMap
    """
    if isinstance(transform, ComposedTransform):
        raise ConfigurationError("Use write_transform_chain for combined transforms")

    pmap = ParameterMap()
    parameters = transform.parameters
    pmap.set('Transform', transform.name)
    pmap.set('NumberOfParameters', parameters.size)
    pmap.set('TransformParameters', parameters)
    pmap.set('InitialTransformParametersFileName', NO_INITIAL_TRANSFORM)
    pmap.set('HowToCombineTransforms', 'Compose')
    pmap.set('FixedImageDimension', transform.dimension)
    pmap.set('MovingImageDimension', transform.dimension)

    if isinstance(transform, KernelTransform):
        _write_kernel_entries(transform, pmap)
    elif isinstance(transform, AffineTransform):
        pmap.set('CenterOfRotationPoint', transform.center)

    if geometry is not None:
        pmap.set('Size', geometry.size)
        pmap.set('Spacing', geometry.spacing)
        pmap.set('Origin', geometry.origin)
        pmap.set('Direction', geometry.direction.T)  # column-major like ITK
        pmap.set('Index', [0] * len(geometry.size))
    return pmap


def _write_kernel_entries(transform: KernelTransform, pmap: ParameterMap) -> None:
    if not transform.is_enabled:
        raise ConfigurationError(
            f"Cannot write kernel transform with unsupported kernel type '{transform.kernel_type}'"
        )
    pmap.set('SplineKernelType', transform.kernel_type)
    pmap.set('SplineRelaxationFactor', transform.stiffness)
    if transform.family.is_elastic:
        pmap.set('SplinePoissonRatio', transform.poisson_ratio)
    pmap.set('TPSMatrixInversionMethod', transform.matrix_inversion_method)
    pmap.set('FixedImageLandmarks', transform.fixed_parameters)
    pmap.set('SplineKernelCoefficients', transform.coefficients)


def write_transform_chain(transform: Transform, geometry=None) -> List[ParameterMap]:
    """Serialize a possibly combined transform into maps ordered as applied."""
    if not isinstance(transform, ComposedTransform):
        return [write_transform(transform, geometry)]

    maps = write_transform_chain(transform.initial, geometry)
    current = write_transform(transform.current, geometry)
    current.set('InitialTransformParametersFileName', f'TransformParameters.{len(maps) - 1}.txt')
    current.set('HowToCombineTransforms', transform.how)
    return maps + [current]


# ----------------------------------------------------------------------
# Reading
# ----------------------------------------------------------------------

def read_transform(pmap: ParameterMap, registry: Optional[TransformRegistry] = None) -> Transform:
    """
    Reconstruct a single transform from its parameter map.

    Raises:
        MissingParameterError: A required key is absent
        ConfigurationError: Inconsistent or unknown parameters
    """
    if not isinstance(pmap, ParameterMap):
        pmap = ParameterMap(pmap)
    if registry is None:
        registry = default_registry()

    name = pmap.get_string('Transform', required=True)
    dimension = pmap.get_int('FixedImageDimension', default=3)
    transform = registry.create(name, dimension=dimension)

    if isinstance(transform, KernelTransform):
        _read_kernel_entries(transform, pmap)
        return transform

    if isinstance(transform, AffineTransform):
        center = pmap.get_array('CenterOfRotationPoint')
        if center is not None:
            transform.center = center.reshape(dimension)

    number_of_parameters = pmap.get_int('NumberOfParameters', default=0)
    parameters = pmap.get_array('TransformParameters')
    if parameters is None:
        parameters = np.zeros(0)
    if parameters.size != number_of_parameters:
        raise ConfigurationError(
            f"NumberOfParameters is {number_of_parameters} but {parameters.size} "
            "TransformParameters are given"
        )
    transform.set_parameters(parameters)
    return transform


def _read_kernel_entries(transform: KernelTransform, pmap: ParameterMap) -> None:
    # The kernel must be selected before landmarks are assigned.
    kernel_type = pmap.get_string('SplineKernelType', required=True)
    if not transform.select_family(kernel_type):
        raise ConfigurationError(f"The kernel type {kernel_type} is not supported")

    transform.stiffness = pmap.get_float('SplineRelaxationFactor', default=0.0)
    transform.set_poisson_ratio(pmap.get_float('SplinePoissonRatio', default=0.3))
    transform.set_matrix_inversion_method(pmap.get_string('TPSMatrixInversionMethod', default='SVD'))

    number_of_parameters = pmap.get_int('NumberOfParameters', required=True)
    landmarks = pmap.get_array('FixedImageLandmarks', required=True)
    if landmarks.size != number_of_parameters:
        raise ConfigurationError(
            f"NumberOfParameters is {number_of_parameters} but {landmarks.size} "
            "FixedImageLandmarks values are given"
        )
    transform.set_fixed_parameters(landmarks)

    coefficients = pmap.get_array('SplineKernelCoefficients')
    if coefficients is not None:
        transform.set_coefficients(coefficients)
        return

    targets = pmap.get_array('TransformParameters')
    if targets is None:
        raise MissingParameterError(
            'TransformParameters',
            "Neither SplineKernelCoefficients nor TransformParameters are given for the kernel transform",
        )
    if targets.size != number_of_parameters:
        raise ConfigurationError(
            f"NumberOfParameters is {number_of_parameters} but {targets.size} "
            "TransformParameters are given"
        )
    logger.info("No stored kernel coefficients, re-deriving them from the target landmarks")
    transform.set_parameters(targets)


def read_transform_chain(maps: Sequence[ParameterMap],
                         registry: Optional[TransformRegistry] = None,
                         ) -> Transform:
    """
    Reconstruct a transform from maps ordered as applied.

    Each map after the first is combined with the accumulated transform
    according to its HowToCombineTransforms value.
    """
    maps = list(maps)
    if not maps:
        raise ConfigurationError("Empty parameter map list")
    if registry is None:
        registry = default_registry()

    result = None
    for pmap in maps:
        if not isinstance(pmap, ParameterMap):
            pmap = ParameterMap(pmap)
        current = read_transform(pmap, registry)
        if result is None:
            result = current
        else:
            result = ComposedTransform(result, current, how=pmap.get_string('HowToCombineTransforms', 'Compose'))
    return result


def fit_kernel_transform(pmap: ParameterMap,
                         source_landmarks,
                         target_landmarks=None,
                         dimension: int = 3,
                         ) -> KernelTransform:
    """
    Configure and fit a kernel transform from fit-time parameters.

    Reads SplineKernelType (default ThinPlateSpline), SplineRelaxationFactor
    (default 0), SplinePoissonRatio (elastic families only, default 0.3) and
    TPSMatrixInversionMethod (default SVD).
    """
    if not isinstance(pmap, ParameterMap):
        pmap = ParameterMap(pmap)
    transform = KernelTransform(dimension=dimension)
    kernel_type = pmap.get_string('SplineKernelType', default=KernelFamily.THIN_PLATE.value)
    if not transform.select_family(kernel_type):
        raise ConfigurationError(
            f"The kernel type {kernel_type} is not supported; unable to configure SplineKernelTransform"
        )

    if transform.family.is_elastic:
        transform.set_poisson_ratio(pmap.get_float('SplinePoissonRatio', default=0.3))
    transform.fit(
        source_landmarks,
        target_landmarks,
        stiffness=pmap.get_float('SplineRelaxationFactor', default=0.0),
        inversion_method=pmap.get_string('TPSMatrixInversionMethod', default='SVD'),
    )
    return transform


def merge_maps(maps: Iterable[ParameterMap], **overrides) -> List[ParameterMap]:
    """Copy maps and overwrite the given keys in each."""
    merged = []
    for pmap in maps:
        pmap = ParameterMap(pmap).copy()
        for key, value in overrides.items():
            pmap.set(key, value)
        merged.append(pmap)
    return merged
