"""
Registry of transform implementations keyed by their parameter-map name.

A registry is an ordinary object handed to whoever needs to instantiate
transforms by name (parameter store, application pipeline). There is no
process-wide table: each run can own its registry and clear it when done.
"""

from typing import Callable, Dict, Iterator, List

from splinereg.core.errors import ConfigurationError


TransformFactory = Callable[..., object]


class TransformRegistry:
    """
    Mapping from transform name (the `Transform` parameter) to a factory.

    Factories are called with the keyword argument ``dimension`` and must
    return an unconfigured transform of that dimension.
    """

    def __init__(self, factories: Dict[str, TransformFactory] = None):
        self._factories: Dict[str, TransformFactory] = dict(factories or {})

    def register(self, name: str, factory: TransformFactory) -> None:
        """Add or replace the factory for ``name``."""
        self._factories[name] = factory

    def create(self, name: str, dimension: int):
        """
        Instantiate the transform registered under ``name``.

        Raises:
            ConfigurationError: If no factory is registered for ``name``
        """
        try:
            factory = self._factories[name]
        except KeyError:
            raise ConfigurationError(
                f"Transform '{name}' is not registered; known transforms: {self.names()}"
            ) from None
        return factory(dimension=dimension)

    def names(self) -> List[str]:
        return sorted(self._factories)

    def clear(self) -> None:
        """Drop all registered factories."""
        self._factories.clear()

    def copy(self) -> 'TransformRegistry':
        return TransformRegistry(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._factories)

    def __repr__(self) -> str:
        return f"TransformRegistry({self.names()})"


def default_registry() -> TransformRegistry:
    """Create a fresh registry populated with the built-in transforms."""
    # Imported here: the transform modules import the core package.
    from splinereg.transforms.base import AffineTransform, IdentityTransform, TranslationTransform
    from splinereg.transforms.kernel_transform import KernelTransform

    return TransformRegistry({
        'SplineKernelTransform': KernelTransform,
        'AffineTransform': AffineTransform,
        'TranslationTransform': TranslationTransform,
        'IdentityTransform': IdentityTransform,
    })
