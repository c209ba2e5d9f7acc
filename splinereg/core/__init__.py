"""Core components: configuration, errors and the transform registry."""

from splinereg.core.config import (
    ApplicationConfig,
    KernelConfig,
    LandmarkConfig,
    OutputConfig,
    create_default_config,
)
from splinereg.core.errors import (
    SplineRegError,
    ConfigurationError,
    MissingParameterError,
    SingularSystemError,
    LandmarkFileError,
    DirectoryNotFoundError,
    EmptyRequestError,
    ConflictingRequestError,
    ApplicationError,
)
from splinereg.core.registry import TransformRegistry, default_registry

__all__ = [
    'ApplicationConfig',
    'KernelConfig',
    'LandmarkConfig',
    'OutputConfig',
    'create_default_config',
    'SplineRegError',
    'ConfigurationError',
    'MissingParameterError',
    'SingularSystemError',
    'LandmarkFileError',
    'DirectoryNotFoundError',
    'EmptyRequestError',
    'ConflictingRequestError',
    'ApplicationError',
    'TransformRegistry',
    'default_registry',
]
