"""
Marker and photo data structures
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .exceptions import InvalidExportStructureError

MARKER_KEYS = ('id', 'x', 'y', 'label', 'description', 'photoIds', 'createdDate', 'lastModified')
PHOTO_KEYS = ('id', 'markerId', 'fileName', 'createdDate')


def _require(data: dict, key: str, kind: str):
    if not isinstance(data, dict):
        raise InvalidExportStructureError(f"{kind} must be a mapping", {"got": type(data).__name__})
    if data.get(key) is None:
        raise InvalidExportStructureError(
            f"{kind} missing required field: {key}",
            {"id": data.get('id')},
        )
    return data[key]


@dataclass(frozen=True)
class Marker:
    """A point of interest on a map, in that map's pixel space"""

    id: str
    x: float
    y: float
    label: Optional[str] = None
    description: Optional[str] = None
    photo_ids: Tuple[str, ...] = ()
    created_date: Optional[str] = None
    last_modified: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise InvalidExportStructureError("Marker id must be a non-empty string", {"id": self.id})
        try:
            object.__setattr__(self, 'x', float(self.x))
            object.__setattr__(self, 'y', float(self.y))
        except (TypeError, ValueError):
            raise InvalidExportStructureError(
                "Marker coordinates must be numbers",
                {"id": self.id, "x": self.x, "y": self.y},
            ) from None
        object.__setattr__(self, 'photo_ids', tuple(self.photo_ids))
        object.__setattr__(self, 'extra', dict(self.extra))

    @property
    def text(self) -> str:
        """Label if present, otherwise description"""
        return self.label or self.description or ""

    @property
    def has_finite_position(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        data = dict(self.extra)
        data.update({
            'id': self.id,
            'x': self.x,
            'y': self.y,
            'photoIds': list(self.photo_ids),
            'createdDate': self.created_date,
            'lastModified': self.last_modified,
        })
        if self.label is not None:
            data['label'] = self.label
        if self.description is not None:
            data['description'] = self.description
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'Marker':
        """Create from dictionary"""
        return cls(
            id=_require(data, 'id', 'marker'),
            x=_require(data, 'x', 'marker'),
            y=_require(data, 'y', 'marker'),
            label=data.get('label'),
            description=data.get('description'),
            photo_ids=tuple(data.get('photoIds') or ()),
            created_date=data.get('createdDate'),
            last_modified=data.get('lastModified'),
            extra={k: v for k, v in data.items() if k not in MARKER_KEYS},
        )


@dataclass(frozen=True)
class Photo:
    """A photo attached to exactly one marker"""

    id: str
    marker_id: str
    file_name: str
    created_date: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise InvalidExportStructureError("Photo id must be a non-empty string", {"id": self.id})
        if not isinstance(self.marker_id, str) or not self.marker_id:
            raise InvalidExportStructureError(
                "Photo markerId must be a non-empty string",
                {"id": self.id, "markerId": self.marker_id},
            )
        if not isinstance(self.file_name, str):
            raise InvalidExportStructureError(
                "Photo fileName must be a string",
                {"id": self.id, "fileName": self.file_name},
            )
        object.__setattr__(self, 'extra', dict(self.extra))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        data = dict(self.extra)
        data.update({
            'id': self.id,
            'markerId': self.marker_id,
            'fileName': self.file_name,
            'createdDate': self.created_date,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'Photo':
        """Create from dictionary"""
        return cls(
            id=_require(data, 'id', 'photo'),
            marker_id=_require(data, 'markerId', 'photo'),
            file_name=data.get('fileName') or "",
            created_date=data.get('createdDate'),
            extra={k: v for k, v in data.items() if k not in PHOTO_KEYS},
        )
