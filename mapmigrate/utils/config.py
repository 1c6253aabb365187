"""
Options structures for fitting and merging.

Configuration is passed in explicitly; nothing is read from the
environment or the filesystem.
"""

import logging
import math
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from ..core.affine import DEGENERATE_DETERMINANT, GOOD_RMSE, POOR_RMSE
from ..core.exceptions import ConfigurationError
from .ids import generate_id, now_iso

logger = logging.getLogger(__name__)

# Coordinate tolerance derived from a fit is RMSE times this factor
RMSE_TOLERANCE_MULTIPLIER = 2.5

MATCH_STRATEGY_NAMES = ('photos', 'labels', 'coordinates')
DEFAULT_MATCH_ORDER = ('photos', 'labels', 'coordinates')
DUPLICATE_PHOTO_STRATEGIES = ('skip', 'rename')

_CAMEL_CASE_KEYS = {
    'coordinateTolerance': 'coordinate_tolerance',
    'duplicatePhotoStrategy': 'duplicate_photo_strategy',
    'preserveTimestamps': 'preserve_timestamps',
    'idGenerator': 'id_generator',
    'matchOrder': 'match_order',
    'photoOverlapThreshold': 'photo_overlap_threshold',
}


def _check_non_negative(key: str, value: float):
    if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
        raise ConfigurationError(key, value, "a finite non-negative number")


def tolerance_from_rmse(rmse: Optional[float], multiplier: float = RMSE_TOLERANCE_MULTIPLIER) -> float:
    """Coordinate matching tolerance (pixels) implied by a fit's RMSE"""
    _check_non_negative('multiplier', multiplier)
    if rmse is None or not math.isfinite(rmse):
        return 0.0
    return rmse * multiplier


@dataclass(frozen=True)
class TransformPolicy:
    """Thresholds used when judging a fitted transform"""

    max_rmse: float = POOR_RMSE  # pixels, above this the fit is not acceptable
    good_rmse: float = GOOD_RMSE  # pixels
    max_anisotropy: float = 0.1  # |sx - sy| / max(sx, sy)
    max_shear: float = 0.1
    extreme_shear: float = 0.5
    min_scale: float = 0.1
    max_scale: float = 10.0
    rotation_warning_degrees: float = 1.0
    degenerate_determinant: float = DEGENERATE_DETERMINANT

    def __post_init__(self):
        for f in fields(self):
            _check_non_negative(f.name, getattr(self, f.name))
        if self.good_rmse > self.max_rmse:
            raise ConfigurationError('good_rmse', self.good_rmse, f"at most max_rmse ({self.max_rmse})")
        if self.min_scale > self.max_scale:
            raise ConfigurationError('min_scale', self.min_scale, f"at most max_scale ({self.max_scale})")


@dataclass(frozen=True)
class MergeOptions:
    """
    Options for merging one marker collection into another.

    Attributes:
        coordinate_tolerance: Per-axis pixel tolerance for coordinate matching
        duplicate_photo_strategy: 'skip' drops duplicate photos, 'rename'
            adds them under a new file name
        preserve_timestamps: Keep source createdDate instead of stamping now
        id_generator: Called with 'marker' or 'photo' to synthesize ids
        match_order: Precedence of the built-in duplicate strategies
        strategies: Explicit ordered strategies, overrides match_order
        photo_overlap_threshold: Shared-filename fraction for photo matching
        clock: Returns the current timestamp string
    """

    coordinate_tolerance: float = 0.0
    duplicate_photo_strategy: str = 'skip'
    preserve_timestamps: bool = True
    id_generator: Callable[[str], str] = generate_id
    match_order: Tuple[str, ...] = DEFAULT_MATCH_ORDER
    strategies: Optional[Sequence[Any]] = None
    photo_overlap_threshold: float = 0.7
    clock: Callable[[], str] = field(default=now_iso, repr=False)

    def __post_init__(self):
        _check_non_negative('coordinate_tolerance', self.coordinate_tolerance)

        if self.duplicate_photo_strategy not in DUPLICATE_PHOTO_STRATEGIES:
            raise ConfigurationError(
                'duplicate_photo_strategy', self.duplicate_photo_strategy,
                f"one of {', '.join(DUPLICATE_PHOTO_STRATEGIES)}",
            )

        threshold = self.photo_overlap_threshold
        if not isinstance(threshold, (int, float)) or not 0 < threshold <= 1:
            raise ConfigurationError('photo_overlap_threshold', threshold, "a number in (0, 1]")

        order = tuple(self.match_order)
        unknown = [name for name in order if name not in MATCH_STRATEGY_NAMES]
        if unknown or len(set(order)) != len(order):
            raise ConfigurationError(
                'match_order', self.match_order,
                f"distinct names from {', '.join(MATCH_STRATEGY_NAMES)}",
            )
        object.__setattr__(self, 'match_order', order)

        if self.strategies is not None:
            object.__setattr__(self, 'strategies', tuple(self.strategies))

        if not callable(self.id_generator):
            raise ConfigurationError('id_generator', self.id_generator, "a callable")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MergeOptions':
        """Create from a mapping using camelCase or snake_case keys"""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in (data or {}).items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                logger.warning(f"Ignoring unknown merge option: {key}")
                continue
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_transform(cls, transform, multiplier: float = RMSE_TOLERANCE_MULTIPLIER,
                       **overrides) -> 'MergeOptions':
        """Options whose coordinate tolerance follows the fit's RMSE"""
        overrides.setdefault('coordinate_tolerance', tolerance_from_rmse(transform.rmse, multiplier))
        return cls(**overrides)
