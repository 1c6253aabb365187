"""
Affine transform data structure and derived quality attributes
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from .reference_pair import Point

# RMSE bands (target pixels) used by the quality verdict
GOOD_RMSE = 5.0
POOR_RMSE = 15.0

DEGENERATE_DETERMINANT = 1e-10


class TransformQuality(Enum):
    """Fit quality verdict derived from RMSE"""
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNKNOWN = "unknown"


def rate_rmse(rmse: Optional[float], good_rmse: float = GOOD_RMSE,
              poor_rmse: float = POOR_RMSE) -> TransformQuality:
    if rmse is None or not math.isfinite(rmse):
        return TransformQuality.UNKNOWN
    if rmse < good_rmse:
        return TransformQuality.GOOD
    if rmse < poor_rmse:
        return TransformQuality.FAIR
    return TransformQuality.POOR


@dataclass(frozen=True)
class AffineTransform:
    """
    2-D affine mapping (x, y) -> (a*x + b*y + e, c*x + d*y + f).

    Transforms produced by a fit carry the per-pair residuals (target minus
    predicted) and the RMSE over those pairs; hand-built transforms leave
    both empty.
    """

    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    e: float = 0.0
    f: float = 0.0
    rmse: Optional[float] = None
    residuals: Tuple[Point, ...] = field(default=(), repr=False)

    @classmethod
    def identity(cls) -> 'AffineTransform':
        return cls()

    @classmethod
    def from_matrix(cls, matrix) -> 'AffineTransform':
        """Create from a 2x3 or 3x3 matrix [[a, b, e], [c, d, f], ...]"""
        m = np.asarray(matrix, dtype=np.float64)
        return cls(
            a=float(m[0, 0]), b=float(m[0, 1]), e=float(m[0, 2]),
            c=float(m[1, 0]), d=float(m[1, 1]), f=float(m[1, 2]),
        )

    @property
    def coefficients(self) -> Tuple[float, float, float, float, float, float]:
        return (self.a, self.b, self.c, self.d, self.e, self.f)

    @property
    def matrix(self) -> np.ndarray:
        """Homogeneous 3x3 matrix"""
        return np.array([
            [self.a, self.b, self.e],
            [self.c, self.d, self.f],
            [0.0, 0.0, 1.0],
        ])

    @property
    def determinant(self) -> float:
        return self.a * self.d - self.b * self.c

    @property
    def scale_x(self) -> float:
        """Length of the image of the unit x vector"""
        return math.hypot(self.a, self.c)

    @property
    def scale_y(self) -> float:
        """Length of the image of the unit y vector"""
        return math.hypot(self.b, self.d)

    @property
    def anisotropy(self) -> float:
        """Relative difference between the two scale factors, 0 for uniform scale"""
        largest = max(self.scale_x, self.scale_y)
        if largest == 0:
            return 0.0
        return abs(self.scale_x - self.scale_y) / largest

    @property
    def rotation(self) -> float:
        """Rotation of the linear part in degrees, normalized to (-180, 180]"""
        angle = math.degrees(math.atan2(self.c, self.a))
        if angle <= -180.0:
            angle += 360.0
        return angle

    @property
    def shear(self) -> float:
        """Shear factor of the linear part after removing rotation and scale"""
        det = self.determinant
        if det == 0:
            return math.inf
        return (self.a * self.b + self.c * self.d) / det

    @property
    def is_degenerate(self) -> bool:
        return abs(self.determinant) < DEGENERATE_DETERMINANT

    @property
    def residual_magnitudes(self) -> Tuple[float, ...]:
        return tuple(math.hypot(r.x, r.y) for r in self.residuals)

    @property
    def quality(self) -> TransformQuality:
        """Verdict under the default RMSE bands; validate() applies a policy's bands"""
        return rate_rmse(self.rmse)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        data = {
            'a': self.a, 'b': self.b, 'c': self.c,
            'd': self.d, 'e': self.e, 'f': self.f,
        }
        if self.rmse is not None:
            data['rmse'] = self.rmse
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'AffineTransform':
        """Create from dictionary"""
        return cls(
            a=float(data['a']), b=float(data['b']), c=float(data['c']),
            d=float(data['d']), e=float(data['e']), f=float(data['f']),
            rmse=data.get('rmse'),
        )
