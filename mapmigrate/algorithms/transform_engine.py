"""
Affine transform fitting and application for marker migration
"""

import dataclasses
import logging
import math
from typing import Iterable, List, Sequence, Tuple

import numpy as np
import skimage.transform

from ..core.affine import AffineTransform
from ..core.collection import MarkerCollection
from ..core.exceptions import DegenerateInputError, InsufficientPointsError
from ..core.marker import Marker
from ..core.reference_pair import Point, PointLike, ReferencePointPair, as_point
from .linalg import solve_affine_least_squares

logger = logging.getLogger(__name__)

MIN_PAIRS = 3


def fit(pairs: Sequence[ReferencePointPair]) -> AffineTransform:
    """
    Fit an affine transform to reference pairs by least squares.

    More than three pairs average out picking error; the residual of every
    pair and the RMSE over all pairs are attached to the result.

    Raises:
        InsufficientPointsError: Fewer than 3 pairs
        DegenerateInputError: Collinear, coincident or non-finite source points
    """
    pairs = list(pairs)
    if len(pairs) < MIN_PAIRS:
        raise InsufficientPointsError(len(pairs), MIN_PAIRS)

    transform = solve_affine_least_squares(pairs)

    residuals = []
    for pair in pairs:
        predicted = apply(transform, pair.source)
        residuals.append(Point(pair.target.x - predicted.x, pair.target.y - predicted.y))

    squared = [r.x * r.x + r.y * r.y for r in residuals]
    rmse = math.sqrt(sum(squared) / len(squared))

    logger.info(
        f"Fitted affine transform from {len(pairs)} pairs: RMSE {rmse:.3f}px, "
        f"scale ({transform.scale_x:.4f}, {transform.scale_y:.4f}), "
        f"rotation {transform.rotation:.2f} deg"
    )
    return dataclasses.replace(transform, rmse=rmse, residuals=tuple(residuals))


def apply(transform: AffineTransform, point: PointLike) -> Point:
    """Map a single point. Non-finite input yields non-finite output, never an error"""
    x, y = as_point(point)
    return Point(
        transform.a * x + transform.b * y + transform.e,
        transform.c * x + transform.d * y + transform.f,
    )


def apply_to_points(transform: AffineTransform, points) -> np.ndarray:
    """Map an (N, 2) array of points"""
    coords = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    tform = skimage.transform.AffineTransform(matrix=transform.matrix)
    return tform(coords)


def apply_to_markers(transform: AffineTransform, markers: Iterable[Marker]) -> Tuple[Marker, ...]:
    """Return new markers with mapped coordinates and every other field unchanged"""
    moved = []
    for marker in markers:
        x, y = apply(transform, (marker.x, marker.y))
        moved.append(dataclasses.replace(marker, x=x, y=y))
    return tuple(moved)


def invert(transform: AffineTransform) -> AffineTransform:
    """Inverse mapping, from target back to source pixel space"""
    if transform.is_degenerate:
        raise DegenerateInputError(
            "Cannot invert a singular transform",
            {"determinant": transform.determinant},
        )
    inverse = np.linalg.inv(transform.matrix)
    return AffineTransform.from_matrix(inverse)


def migrate_collection(transform: AffineTransform, collection: MarkerCollection) -> MarkerCollection:
    """Source collection with every marker mapped into target pixel space"""
    markers = apply_to_markers(transform, collection.markers)
    logger.info(f"Migrated {len(markers)} markers")
    return dataclasses.replace(collection, markers=markers)


def find_out_of_bounds(markers: Iterable[Marker], width: float, height: float) -> List[Marker]:
    """Markers whose coordinates fall outside [0, width] x [0, height]"""
    return [
        m for m in markers
        if not (0 <= m.x <= width and 0 <= m.y <= height)
    ]


def clamp_to_bounds(markers: Iterable[Marker], width: float, height: float) -> Tuple[Marker, ...]:
    """Return new markers clamped into [0, width] x [0, height]"""
    clamped = []
    for marker in markers:
        x = min(max(marker.x, 0.0), width)
        y = min(max(marker.y, 0.0), height)
        if (x, y) != (marker.x, marker.y):
            logger.debug(f"Clamped marker {marker.id} from ({marker.x}, {marker.y}) to ({x}, {y})")
            marker = dataclasses.replace(marker, x=x, y=y)
        clamped.append(marker)
    return tuple(clamped)
