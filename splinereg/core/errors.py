"""
Exception hierarchy for splinereg.

Every error raised by the package derives from SplineRegError so callers
can catch the whole family at once.
"""


class SplineRegError(Exception):
    """Base class for all splinereg errors."""


class ConfigurationError(SplineRegError):
    """Invalid or missing parameters, unknown kernel family, dimension mismatch."""


class MissingParameterError(ConfigurationError):
    """A required key is absent from a transform parameter map."""

    def __init__(self, key: str, message: str = None):
        self.key = key
        if message is None:
            message = f"Required parameter '{key}' is not given in the transform parameter map"
        super().__init__(message)


class SingularSystemError(ConfigurationError):
    """The kernel system matrix could not be inverted (duplicate or too few landmarks)."""


class LandmarkFileError(SplineRegError, ValueError):
    """A landmark/point file is unreadable or malformed."""


class DirectoryNotFoundError(SplineRegError, FileNotFoundError):
    """A configured output directory does not exist."""


class EmptyRequestError(SplineRegError):
    """An application run was requested without any input or output."""


class ConflictingRequestError(SplineRegError):
    """Deformation-field output and a point-set path were requested together."""


class ApplicationError(SplineRegError):
    """Wraps any failure raised while evaluating a transform over its inputs."""
