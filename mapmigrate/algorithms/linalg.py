"""
Least-squares solver for 2-D affine systems
"""

from typing import Sequence

import numpy as np

from ..core.affine import AffineTransform
from ..core.exceptions import DegenerateInputError
from ..core.reference_pair import ReferencePointPair

# Scale-free collinearity measure below which the system is treated as singular.
# 4*det(S)/trace(S)^2 is 1 for isotropic spreads and 0 for collinear points.
MIN_SPREAD_RATIO = 1e-10


def solve_affine_least_squares(pairs: Sequence[ReferencePointPair]) -> AffineTransform:
    """
    Solve the normal equations for the six affine coefficients.

    Source points are centred first, which decouples the translation from
    the linear part: the 2x2 scatter matrix S of the centred source points
    is the only block that can be singular, so its conditioning decides
    whether the pairs determine a unique transform.

    Args:
        pairs: At least three reference pairs with non-collinear sources

    Returns:
        AffineTransform without fit metrics

    Raises:
        DegenerateInputError: If the system is singular, ill-conditioned or
            contains non-finite coordinates
    """
    if len(pairs) < 3:
        raise DegenerateInputError(
            "An affine fit needs at least 3 distinct reference pairs",
            {"pairs": len(pairs)},
        )

    source = np.array([[p.source.x, p.source.y] for p in pairs], dtype=np.float64)
    target = np.array([[p.target.x, p.target.y] for p in pairs], dtype=np.float64)

    if not (np.all(np.isfinite(source)) and np.all(np.isfinite(target))):
        raise DegenerateInputError("Reference points must have finite coordinates")

    distinct = len(np.unique(source, axis=0))
    if distinct < 3:
        raise DegenerateInputError(
            "Reference pairs contain fewer than 3 distinct source points",
            {"distinct": distinct},
        )

    source_centroid = source.mean(axis=0)
    centered = source - source_centroid

    scatter = centered.T @ centered
    trace = np.trace(scatter)
    det = np.linalg.det(scatter)
    spread_ratio = 4.0 * det / (trace * trace) if trace > 0 else 0.0
    if not spread_ratio > MIN_SPREAD_RATIO:
        raise DegenerateInputError(
            "Source reference points are collinear",
            {"spread_ratio": float(spread_ratio)},
        )

    # Rows of the linear part: S @ [a, b] = C^T tx and S @ [c, d] = C^T ty
    rhs = centered.T @ target
    linear = np.linalg.solve(scatter, rhs).T
    translation = target.mean(axis=0) - linear @ source_centroid

    if not np.all(np.isfinite(linear)) or not np.all(np.isfinite(translation)):
        raise DegenerateInputError("Affine solve produced non-finite coefficients")

    return AffineTransform(
        a=float(linear[0, 0]), b=float(linear[0, 1]), e=float(translation[0]),
        c=float(linear[1, 0]), d=float(linear[1, 1]), f=float(translation[1]),
    )
