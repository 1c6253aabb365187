"""
Quality checks for fitted transforms and reference point layouts
"""

import logging
import math
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import ConvexHull, QhullError

from ..core.affine import AffineTransform, TransformQuality, rate_rmse
from ..core.reference_pair import PointLike
from ..utils.config import TransformPolicy

logger = logging.getLogger(__name__)

# Hull area / bounding box area below which points count as collinear
MIN_AREA_RATIO = 0.01


class TransformAnomalies(NamedTuple):
    """Geometric red flags of a transform's linear part"""
    has_negative_determinant: bool
    has_extreme_scale: bool
    has_extreme_shear: bool
    is_degenerate: bool
    scale_x: float
    scale_y: float
    rotation: float
    determinant: float


@dataclass(frozen=True)
class TransformValidation:
    """Advisory verdict on a fitted transform"""
    is_acceptable: bool
    warnings: Tuple[str, ...]
    quality: TransformQuality


class PointDistribution(NamedTuple):
    is_valid: bool
    warning: Optional[str]
    area_ratio: float


class PointSuggestion(NamedTuple):
    x: float
    y: float
    reason: str


def detect_anomalies(transform: AffineTransform,
                     policy: Optional[TransformPolicy] = None) -> TransformAnomalies:
    policy = policy or TransformPolicy()
    det = transform.determinant
    sx, sy = transform.scale_x, transform.scale_y

    is_degenerate = not abs(det) >= policy.degenerate_determinant
    extreme_scale = any(
        s <= policy.min_scale or s >= policy.max_scale for s in (sx, sy)
    )
    extreme_shear = not is_degenerate and abs(transform.shear) > policy.extreme_shear

    return TransformAnomalies(
        has_negative_determinant=det < 0,
        has_extreme_scale=extreme_scale,
        has_extreme_shear=extreme_shear,
        is_degenerate=is_degenerate,
        scale_x=sx,
        scale_y=sy,
        rotation=transform.rotation,
        determinant=det,
    )


def validate(transform: AffineTransform,
             policy: Optional[TransformPolicy] = None) -> TransformValidation:
    """
    Judge a fitted transform against policy thresholds.

    Only produces warnings; whether to proceed is left to the caller. The
    fit is flagged as not acceptable for a high RMSE, a degenerate or
    mirrored linear part, or an extreme scale.
    """
    policy = policy or TransformPolicy()
    anomalies = detect_anomalies(transform, policy)
    warnings: List[str] = []
    severe = False

    rmse = transform.rmse
    if rmse is not None and not rmse <= policy.max_rmse:
        warnings.append(f"High RMSE error ({rmse:.2f}px) - point placement may be inaccurate")
        severe = True

    if anomalies.is_degenerate:
        warnings.append("Degenerate transformation - points may be collinear")
        severe = True
    else:
        if transform.anisotropy > policy.max_anisotropy:
            warnings.append(
                f"Unequal scaling detected ({anomalies.scale_x:.4f} vs {anomalies.scale_y:.4f}) "
                "- maps may have different aspect ratios"
            )
            if abs(anomalies.rotation) > policy.rotation_warning_degrees:
                warnings.append(
                    "Rotation combined with unequal scaling - a reference point may be misplaced"
                )

        if anomalies.has_extreme_shear:
            warnings.append("Extreme shear detected - maps may be heavily skewed")
        elif abs(transform.shear) > policy.max_shear:
            warnings.append("Shear transformation detected - maps may be skewed")

    if anomalies.has_negative_determinant:
        warnings.append("Transformation includes reflection/mirroring")
        severe = True

    if anomalies.has_extreme_scale:
        warnings.append("Extreme scaling detected - verify your reference points")
        severe = True

    for warning in warnings:
        logger.warning(f"Transform check: {warning}")

    return TransformValidation(
        is_acceptable=not severe,
        warnings=tuple(warnings),
        quality=rate_rmse(rmse, policy.good_rmse, policy.max_rmse),
    )


def validate_point_distribution(points: Sequence[PointLike]) -> PointDistribution:
    """
    Check that reference points span an area rather than a line.

    The ratio of convex hull area to bounding box area is 1 for a filled
    rectangle, 0.5 for a right triangle and 0 for collinear points. Fewer
    than 3 points are accepted without a check.
    """
    if points is None or len(points) < 3:
        return PointDistribution(True, None, 0.0)

    coords = np.asarray([[p[0], p[1]] for p in points], dtype=np.float64)
    if len(np.unique(coords, axis=0)) < 3:
        return PointDistribution(False, "Reference points are duplicates or collinear", 0.0)

    span = coords.max(axis=0) - coords.min(axis=0)
    box_area = float(span[0] * span[1])
    if box_area <= 0:
        return PointDistribution(False, "Reference points are collinear", 0.0)

    try:
        hull_area = float(ConvexHull(coords).volume)
    except QhullError:
        return PointDistribution(False, "Reference points are collinear", 0.0)

    ratio = hull_area / box_area
    if ratio < MIN_AREA_RATIO:
        return PointDistribution(False, "Reference points are nearly collinear", ratio)
    return PointDistribution(True, None, ratio)


def suggest_additional_points(points: Optional[Sequence[PointLike]],
                              width: float, height: float) -> List[PointSuggestion]:
    """Suggest where to pick more reference points for better coverage"""
    corners = [
        PointSuggestion(0.0, 0.0, "top-left corner"),
        PointSuggestion(float(width), 0.0, "top-right corner"),
        PointSuggestion(0.0, float(height), "bottom-left corner"),
        PointSuggestion(float(width), float(height), "bottom-right corner"),
    ]
    if not points:
        return corners

    half_w, half_h = width / 2.0, height / 2.0
    occupied = set()
    for p in points:
        occupied.add((p[0] >= half_w, p[1] >= half_h))

    quadrants = [
        ((False, False), "top-left"),
        ((True, False), "top-right"),
        ((False, True), "bottom-left"),
        ((True, True), "bottom-right"),
    ]
    suggestions = []
    for (right, bottom), name in quadrants:
        if (right, bottom) not in occupied:
            suggestions.append(PointSuggestion(
                half_w * (1.5 if right else 0.5),
                half_h * (1.5 if bottom else 0.5),
                f"No reference points in the {name} quadrant",
            ))
    if suggestions:
        return suggestions

    # Every quadrant covered: point at corners nobody has picked near
    reach = 0.1 * math.hypot(width, height)
    return [
        corner for corner in corners
        if all(math.hypot(p[0] - corner.x, p[1] - corner.y) > reach for p in points)
    ]
