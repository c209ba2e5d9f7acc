"""Applying configured transforms to images and point sets."""

from splinereg.application.request import (
    ApplicationRequest,
    ArgumentMap,
    OutputBundle,
    PointSetResult,
)
from splinereg.application.evaluation import (
    evaluate_points,
    evaluate_jacobians,
    map_grid,
    compute_deformation_field,
    compute_spatial_jacobian_field,
    determinant_field,
    resample_image,
    transform_point_set,
)
from splinereg.application.pipeline import TransformixPipeline, transformix

__all__ = [
    'ApplicationRequest',
    'ArgumentMap',
    'OutputBundle',
    'PointSetResult',
    'evaluate_points',
    'evaluate_jacobians',
    'map_grid',
    'compute_deformation_field',
    'compute_spatial_jacobian_field',
    'determinant_field',
    'resample_image',
    'transform_point_set',
    'TransformixPipeline',
    'transformix',
]
