"""Landmark loading and resolution."""

from splinereg.landmarks.resolver import (
    PointSet,
    InitialTransformDecorator,
    LandmarkResolver,
    round_half_up,
)

__all__ = [
    'PointSet',
    'InitialTransformDecorator',
    'LandmarkResolver',
    'round_half_up',
]
