"""
Transform application pipeline.

Applies an already configured transform (any family) to an input image
and/or point set and produces the requested derived fields. One run goes
through Validate -> ResolveOutputDirectory -> BuildRequest -> Evaluate ->
Collect -> Cleanup.
"""

import dataclasses
import logging
import os
import time
from typing import Any, Callable, Dict, Optional, Sequence, Union

import numpy as np

from splinereg.application.evaluation import (
    compute_deformation_field,
    compute_spatial_jacobian_field,
    determinant_field,
    map_grid,
    resample_image,
    transform_point_set,
)
from splinereg.application.request import (
    ApplicationRequest,
    ArgumentMap,
    DEFAULT_LOG_FILE_NAME,
    OUTPUT_PATH_NOT_SET,
    OutputBundle,
)
from splinereg.core.config import ApplicationConfig
from splinereg.core.errors import (
    ApplicationError,
    ConfigurationError,
    ConflictingRequestError,
    DirectoryNotFoundError,
    EmptyRequestError,
)
from splinereg.core.registry import TransformRegistry, default_registry
from splinereg.io.loaders import ImageGeometry
from splinereg.io.points import read_point_file
from splinereg.transforms.base import Transform
from splinereg.transforms.parameter_store import ParameterMap, merge_maps, read_transform_chain
from splinereg.utils.logging import reset_logger, setup_logger

logger = logging.getLogger(__name__)

TransformInput = Union[Transform, ParameterMap, Sequence[ParameterMap]]

_INTERPOLATION_ORDERS = {
    'FinalNearestNeighborInterpolator': 0,
    'FinalLinearInterpolator': 1,
}


def _normalize_directory(directory: str) -> str:
    if directory.endswith(('/', '\\', os.sep)):
        return directory
    return directory + os.sep


def _is_empty_image(image: Optional[np.ndarray]) -> bool:
    return image is None or np.asarray(image).size == 0


class TransformixPipeline:
    """
    Apply a configured transform to images and point sets.

    The pipeline keeps no results between runs: each run creates its own
    transform registry from ``registry_factory`` and clears it on exit.
    """

    def __init__(self,
                 registry_factory: Callable[[], TransformRegistry] = default_registry,
                 num_threads: Optional[int] = None,
                 chunk_size: int = 4096,
                 verbose: bool = True,
                 ):
        """
        Initialize pipeline.

        Args:
            registry_factory: Creates the transform registry used to read parameter maps
            num_threads: Worker threads for evaluation (None = all cores)
            chunk_size: Points per evaluation task
            verbose: Log progress at INFO level (otherwise WARNING)
        """
        self.registry_factory = registry_factory
        self.num_threads = max(1, num_threads or os.cpu_count() or 1)
        self.chunk_size = chunk_size
        self.verbose = verbose
        self._registry: Optional[TransformRegistry] = None

    @classmethod
    def from_config(cls, config: ApplicationConfig, **kwargs) -> 'TransformixPipeline':
        return cls(
            num_threads=config.resolved_num_threads,
            chunk_size=config.chunk_size,
            verbose=config.verbose,
            **kwargs,
        )

    def run(self,
            transform: TransformInput,
            input_image: Optional[np.ndarray] = None,
            input_point_set_file_name: Optional[str] = None,
            request: Optional[ApplicationRequest] = None,
            input_metadata: Optional[Dict[str, Any]] = None,
            output_geometry: Optional[ImageGeometry] = None,
            ) -> OutputBundle:
        """
        Run one application of ``transform``.

        Args:
            transform: Configured transform, or parameter map(s) ordered as applied
            input_image: Image to resample, indexed (x, y[, z])
            input_point_set_file_name: Point file to transform (overrides the request)
            request: Requested outputs (default: none beyond the inputs)
            input_metadata: Geometry of ``input_image`` (spacing, origin, direction)
            output_geometry: Output grid (default: from the parameter map, else the input image)

        Returns:
            OutputBundle with the produced objects

        Raises:
            EmptyRequestError: Nothing to do
            ConflictingRequestError: Deformation field and point set requested together
            DirectoryNotFoundError: Configured output directory is missing
            ConfigurationError: Unusable transform parameters
            ApplicationError: Any failure while evaluating
        """
        request = request or ApplicationRequest()
        if input_point_set_file_name is not None:
            request = dataclasses.replace(request, input_point_set_file_name=input_point_set_file_name)

        timing = {}
        t_start = time.time()

        self._validate(input_image, request)
        request = self._resolve_output_directory(request)
        argument_map, log_file = self._build_request(request)

        try:
            setup_logger('splinereg',
                         level=logging.INFO if self.verbose else logging.WARNING,
                         log_file=log_file,
                         log_to_console=request.log_to_console)
            self._registry = self.registry_factory()

            input_geometry = None
            if not _is_empty_image(input_image):
                input_geometry = ImageGeometry.from_metadata(input_metadata or {}, np.shape(input_image))

            resolved, geometry, interpolation = self._prepare_transform(
                transform, input_image, input_geometry, output_geometry)
            logger.info(f"Applying {resolved!r}")

            t0 = time.time()
            try:
                results = self._evaluate(resolved, input_image, input_geometry, geometry,
                                         interpolation, argument_map)
            except Exception as e:
                logger.error(f"Errors occurred during transformation: {e}")
                raise ApplicationError(f"Errors occurred during transformation: {e}") from e
            timing['evaluation'] = time.time() - t0
            timing['total'] = time.time() - t_start

            return self._collect(results, geometry, argument_map, log_file, timing)
        finally:
            self._cleanup()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _validate(self, input_image: Optional[np.ndarray], request: ApplicationRequest) -> None:
        if (_is_empty_image(input_image)
                and not request.input_point_set_file_name
                and not request.wants_derived_field):
            raise EmptyRequestError(
                "Expected at least one of an input image, a point set file name, or one of the "
                "spatial Jacobian, determinant of spatial Jacobian or deformation field outputs"
            )
        # One legacy switch (-def) carries both meanings.
        if request.compute_deformation_field and request.input_point_set_file_name:
            raise ConflictingRequestError(
                "For backwards compatibility, only one of the deformation field output "
                "or an input point set file name can be active at any one time"
            )

    def _resolve_output_directory(self, request: ApplicationRequest) -> ApplicationRequest:
        directory = request.output_directory
        if request.needs_output_directory:
            if not directory:
                directory = os.getcwd()
            elif not os.path.isdir(directory):
                raise DirectoryNotFoundError(f'Output directory "{directory}" does not exist.')
        if directory:
            directory = _normalize_directory(directory)
        return dataclasses.replace(request, output_directory=directory)

    def _build_request(self, request: ApplicationRequest):
        argument_map = ArgumentMap()
        argument_map['-out'] = request.output_directory or OUTPUT_PATH_NOT_SET
        if request.compute_spatial_jacobian:
            argument_map['-jacmat'] = 'all'
        if request.compute_determinant_of_spatial_jacobian:
            argument_map['-jac'] = 'all'
        if request.compute_deformation_field:
            argument_map['-def'] = 'all'
        if request.input_point_set_file_name:
            argument_map['-def'] = request.input_point_set_file_name

        log_file = None
        if request.log_to_file:
            log_file = request.output_directory + (request.log_file_name or DEFAULT_LOG_FILE_NAME)
        return argument_map, log_file

    def _prepare_transform(self, transform, input_image, input_geometry, output_geometry):
        """Resolve the transform, the output grid and the interpolation settings."""
        interpolation = {'order': 3, 'default_pixel_value': 0.0}
        if isinstance(transform, Transform):
            return transform, output_geometry or input_geometry, interpolation

        maps = [transform] if isinstance(transform, dict) else list(transform)
        if not maps:
            raise ConfigurationError("Empty parameter map in parameter object.")
        maps = [ParameterMap(m) for m in maps]

        if input_geometry is not None:
            # Types follow the input image, whatever the maps say.
            pixel_type = np.asarray(input_image).dtype.name
            maps = merge_maps(
                maps,
                FixedImageDimension=input_geometry.dimension,
                MovingImageDimension=input_geometry.dimension,
                FixedInternalImagePixelType=pixel_type,
                MovingInternalImagePixelType=pixel_type,
                ResultImagePixelType=pixel_type,
            )

        resolved = read_transform_chain(maps, self._registry)

        last = maps[-1]
        interpolator = last.get_string('ResampleInterpolator', default='FinalBSplineInterpolator')
        interpolation['order'] = _INTERPOLATION_ORDERS.get(
            interpolator, last.get_int('FinalBSplineInterpolationOrder', default=3))
        interpolation['default_pixel_value'] = last.get_float('DefaultPixelValue', default=0.0)

        if output_geometry is None:
            output_geometry = _geometry_from_map(last, resolved.dimension) or input_geometry
        return resolved, output_geometry, interpolation

    def _evaluate(self, transform, input_image, input_geometry, geometry,
                  interpolation, argument_map: ArgumentMap) -> Dict[str, Any]:
        results = {}
        threads, chunk = self.num_threads, self.chunk_size

        needs_grid = not _is_empty_image(input_image) or argument_map.wants_deformation_field
        mapped = None
        if needs_grid:
            if geometry is None:
                raise ConfigurationError("No output grid: give an input image or Size/Spacing/Origin parameters")
            logger.info(f"Evaluating transform on a grid of size {geometry.size}")
            mapped = map_grid(transform, geometry, threads, chunk)

        if not _is_empty_image(input_image):
            logger.info("Resampling image")
            results['result_image'] = resample_image(
                np.asarray(input_image), input_geometry, transform, geometry,
                order=interpolation['order'],
                default_pixel_value=interpolation['default_pixel_value'],
                mapped=mapped,
            )

        if argument_map.wants_deformation_field:
            logger.info("Computing deformation field")
            results['deformation_field'] = compute_deformation_field(
                transform, geometry, mapped=mapped)

        if argument_map.wants_spatial_jacobian or argument_map.wants_determinant:
            if geometry is None:
                raise ConfigurationError("No output grid for the spatial Jacobian")
            logger.info("Computing spatial Jacobian")
            jacobian = compute_spatial_jacobian_field(transform, geometry, threads, chunk)
            if argument_map.wants_spatial_jacobian:
                results['spatial_jacobian'] = jacobian
            if argument_map.wants_determinant:
                results['determinant_of_spatial_jacobian'] = determinant_field(jacobian)

        if argument_map.point_set_path:
            logger.info(f"Transforming points from {argument_map.point_set_path}")
            points, are_indices = read_point_file(argument_map.point_set_path, dimension=transform.dimension)
            results['output_points'] = transform_point_set(
                transform, points, are_indices, geometry, threads, chunk)
            logger.info(f"  Number of transformed points: {len(points)}")

        return results

    def _collect(self, results, geometry, argument_map, log_file, timing) -> OutputBundle:
        return OutputBundle(
            result_image=results.get('result_image'),
            result_metadata=geometry.to_metadata() if geometry is not None else None,
            deformation_field=results.get('deformation_field'),
            spatial_jacobian=results.get('spatial_jacobian'),
            determinant_of_spatial_jacobian=results.get('determinant_of_spatial_jacobian'),
            output_points=results.get('output_points'),
            output_directory=argument_map.output_directory,
            log_file=log_file,
            timing=timing,
        )

    def _cleanup(self) -> None:
        if self._registry is not None:
            self._registry.clear()
            self._registry = None
        reset_logger('splinereg')


def _geometry_from_map(pmap: ParameterMap, dimension: int) -> Optional[ImageGeometry]:
    size = pmap.get_array('Size')
    if size is None:
        return None
    spacing = pmap.get_array('Spacing')
    origin = pmap.get_array('Origin')
    direction = pmap.get_array('Direction')
    return ImageGeometry(
        origin=origin if origin is not None else np.zeros(dimension),
        spacing=spacing if spacing is not None else np.ones(dimension),
        # Stored column-major
        direction=direction.reshape(dimension, dimension).T if direction is not None else np.eye(dimension),
        size=tuple(int(s) for s in size),
    )


def transformix(transform: TransformInput,
                input_image: Optional[np.ndarray] = None,
                input_metadata: Optional[Dict[str, Any]] = None,
                **request_kwargs) -> OutputBundle:
    """Convenience wrapper: one pipeline run with request flags as keyword arguments."""
    request = ApplicationRequest(**request_kwargs)
    return TransformixPipeline().run(transform, input_image=input_image,
                                     request=request, input_metadata=input_metadata)
