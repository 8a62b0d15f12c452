from __future__ import annotations

"""Coordinate normalisation for the triangulation primitive.

The Delaunay primitive performs no input conditioning of its own, so the
active (x, z) projection is centred on its bounding-box midpoint and rescaled
into a numerically comfortable range before it is handed over.  The returned
transform is diagnostic only: the final mesh is assembled from the original,
non-normalised coordinates.
"""

from dataclasses import dataclass

import numpy as np

from ..constants import (
    POINT_TOLERANCE,
    NORMALIZED_ZERO_EPSILON,
    LARGE_SPREAD_THRESHOLD,
    LARGE_SPREAD_SCALE,
    SMALL_SPREAD_THRESHOLD,
    SMALL_SPREAD_SCALE,
    EXTREME_ASPECT_RATIO,
)
from ..data_types import PointSet, BoundingBox


@dataclass(frozen=True)
class NormalizationTransform:
    offset_x: float
    offset_z: float
    scale_x: float
    scale_z: float


@dataclass(frozen=True)
class NormalizedCoordinates:
    """Centred/scaled 2D coordinates plus the transform that produced them.

    Attributes
    ----------
    coords : np.ndarray
        ``(N, 2)`` float64 array in the same order as the source points.
    transform : NormalizationTransform
        Offset and scale, kept for diagnostics.
    """

    coords: np.ndarray
    transform: NormalizationTransform

    @property
    def flat(self) -> np.ndarray:
        """Interleaved ``x0, z0, x1, z1, ...`` buffer."""
        return self.coords.reshape(-1)

    @property
    def coordinate_range(self) -> BoundingBox:
        return BoundingBox.from_coords(self.coords)


class CoordinateNormalizer:  # pylint: disable=too-few-public-methods
    """Map a point set's (x, z) projection into a stable numeric range."""

    def __init__(self, tolerance: float = POINT_TOLERANCE) -> None:
        self.tolerance = tolerance

    def normalize(self, points: PointSet) -> NormalizedCoordinates:
        """Return normalised coordinates for *points*."""
        return self.normalize_coords(points.xz)

    def normalize_coords(self, xz: np.ndarray) -> NormalizedCoordinates:
        xz = np.asarray(xz, dtype=np.float64).reshape(-1, 2)
        coord_range = BoundingBox.from_coords(xz)
        max_spread = coord_range.max_spread
        min_spread = coord_range.min_spread

        scale = 1.0
        if max_spread > LARGE_SPREAD_THRESHOLD:
            scale = LARGE_SPREAD_SCALE
        elif 0 < max_spread < SMALL_SPREAD_THRESHOLD:
            scale = SMALL_SPREAD_SCALE

        aspect_ratio = min_spread / max_spread if max_spread > 0 else 1.0
        if aspect_ratio < EXTREME_ASPECT_RATIO and max_spread > 0:
            scale *= 1 + aspect_ratio

        offset = np.array([coord_range.center_x, coord_range.center_z])
        with np.errstate(over='ignore', invalid='ignore'):
            coords = (xz - offset) * scale

        coords[np.abs(coords) < NORMALIZED_ZERO_EPSILON] = 0.0
        # overflow: the whole point collapses to the origin
        coords[~np.all(np.isfinite(coords), axis=1)] = 0.0

        normalized_spread = BoundingBox.from_coords(coords).max_spread
        if 0 < normalized_spread < self.tolerance:
            adjustment = self.tolerance / normalized_spread
            coords *= adjustment
            scale *= adjustment

        return NormalizedCoordinates(
            coords=coords,
            transform=NormalizationTransform(
                offset_x=coord_range.center_x,
                offset_z=coord_range.center_z,
                scale_x=scale,
                scale_z=scale,
            ),
        )


def normalize_coordinates(points: PointSet) -> NormalizedCoordinates:
    """Convenience wrapper around :class:`CoordinateNormalizer`."""
    return CoordinateNormalizer().normalize(points)
