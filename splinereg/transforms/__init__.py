"""Spatial transforms, spline kernels and transform parameter maps."""

from splinereg.transforms.base import (
    Transform,
    IdentityTransform,
    TranslationTransform,
    AffineTransform,
    ComposedTransform,
    compose,
)
from splinereg.transforms.kernels import KernelFamily, KernelRegistry, default_kernel_registry
from splinereg.transforms.kernel_transform import KernelTransform
from splinereg.transforms.parameter_store import (
    ParameterMap,
    write_transform,
    write_transform_chain,
    read_transform,
    read_transform_chain,
    fit_kernel_transform,
)

__all__ = [
    'Transform',
    'IdentityTransform',
    'TranslationTransform',
    'AffineTransform',
    'ComposedTransform',
    'compose',
    'KernelFamily',
    'KernelRegistry',
    'default_kernel_registry',
    'KernelTransform',
    'ParameterMap',
    'write_transform',
    'write_transform_chain',
    'read_transform',
    'read_transform_chain',
    'fit_kernel_transform',
]
