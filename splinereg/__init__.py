"""
splinereg: landmark-based spline kernel transforms for image registration

Fits interpolating or approximating spline kernel transforms between two
landmark sets and applies configured transforms to images, point sets
and derived fields (deformation field, spatial Jacobian and its determinant).
"""

__version__ = "0.1.0"

from splinereg.core.config import ApplicationConfig
from splinereg.transforms.kernel_transform import KernelTransform
from splinereg.registration import SplineKernelRegistration
from splinereg.application.pipeline import TransformixPipeline

__all__ = [
    "SplineKernelRegistration",
    "TransformixPipeline",
    "KernelTransform",
    "ApplicationConfig",
    "__version__",
]
