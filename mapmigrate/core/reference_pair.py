"""
Reference point pair data structures for map migration
"""

from dataclasses import dataclass
from typing import NamedTuple, Sequence, Tuple, Union


class Point(NamedTuple):
    """A 2-D point in the pixel space of one map image"""
    x: float
    y: float


PointLike = Union[Point, Tuple[float, float], Sequence[float]]


def as_point(value) -> Point:
    """Coerce a Point, (x, y) sequence or {'x', 'y'} mapping to a Point"""
    if isinstance(value, Point):
        return value
    if isinstance(value, dict):
        return Point(float(value['x']), float(value['y']))
    x, y = value
    return Point(float(x), float(y))


@dataclass(frozen=True)
class ReferencePointPair:
    """The same physical landmark picked on the source and the target map"""

    source: Point  # Source map pixel coordinates
    target: Point  # Target map pixel coordinates
    label: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'source', as_point(self.source))
        object.__setattr__(self, 'target', as_point(self.target))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            'label': self.label,
            'sourcePoint': {'x': self.source.x, 'y': self.source.y},
            'targetPoint': {'x': self.target.x, 'y': self.target.y},
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ReferencePointPair':
        """Create from dictionary"""
        return cls(
            source=as_point(data['sourcePoint']),
            target=as_point(data['targetPoint']),
            label=data.get('label', ''),
        )
