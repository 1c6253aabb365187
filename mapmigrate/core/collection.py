"""
Marker collection (export) data structures
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .exceptions import InvalidExportStructureError
from .marker import Marker, Photo


@dataclass(frozen=True)
class MapInfo:
    """Map image description carried by a collection"""

    image_hash: Optional[str] = None
    last_modified: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'extra', dict(self.extra))

    def to_dict(self) -> dict:
        data = dict(self.extra)
        if self.image_hash is not None:
            data['imageHash'] = self.image_hash
        if self.last_modified is not None:
            data['lastModified'] = self.last_modified
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'MapInfo':
        data = data or {}
        return cls(
            image_hash=data.get('imageHash'),
            last_modified=data.get('lastModified'),
            extra={k: v for k, v in data.items() if k not in ('imageHash', 'lastModified')},
        )


@dataclass(frozen=True)
class MergeProvenance:
    """Record of one source collection folded into a target"""

    source_app: Optional[str]
    source_timestamp: Optional[str]
    marker_count: int
    photo_count: int
    merged_at: Optional[str] = None
    image_hash: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'sourceApp': self.source_app,
            'timestamp': self.source_timestamp,
            'markerCount': self.marker_count,
            'photoCount': self.photo_count,
            'mergedAt': self.merged_at,
            'imageHash': self.image_hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'MergeProvenance':
        return cls(
            source_app=data.get('sourceApp'),
            source_timestamp=data.get('timestamp'),
            marker_count=int(data.get('markerCount', 0)),
            photo_count=int(data.get('photoCount', 0)),
            merged_at=data.get('mergedAt'),
            image_hash=data.get('imageHash'),
        )


def _is_array(value) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _duplicates(ids) -> List[str]:
    return sorted(i for i, n in Counter(ids).items() if n > 1)


@dataclass(frozen=True)
class MarkerCollection:
    """
    Markers and photos of one map, as exchanged between exports.

    Marker ids and photo ids are unique within a collection. Referential
    integrity between photos and markers is reported by integrity_errors()
    rather than enforced, since upstream exports are not always consistent.
    """

    markers: Tuple[Marker, ...] = ()
    photos: Tuple[Photo, ...] = ()
    map: MapInfo = field(default_factory=MapInfo)
    merged_from: Tuple[MergeProvenance, ...] = ()
    timestamp: Optional[str] = None
    source_app: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, repr=False)
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'markers', tuple(self.markers))
        object.__setattr__(self, 'photos', tuple(self.photos))
        object.__setattr__(self, 'merged_from', tuple(self.merged_from))
        object.__setattr__(self, 'metadata', dict(self.metadata))
        object.__setattr__(self, 'extra', dict(self.extra))

        duplicate_markers = _duplicates(m.id for m in self.markers)
        if duplicate_markers:
            raise InvalidExportStructureError("Duplicate marker ids", {"ids": duplicate_markers})
        duplicate_photos = _duplicates(p.id for p in self.photos)
        if duplicate_photos:
            raise InvalidExportStructureError("Duplicate photo ids", {"ids": duplicate_photos})

    @property
    def origin_app(self) -> Optional[str]:
        return self.source_app or self.metadata.get('sourceApp')

    @property
    def origin_timestamp(self) -> Optional[str]:
        return self.timestamp or self.metadata.get('exportDate')

    def get_marker(self, marker_id: str) -> Optional[Marker]:
        return next((m for m in self.markers if m.id == marker_id), None)

    def photos_by_marker(self) -> Dict[str, List[Photo]]:
        """Group photos by marker id, keeping collection order"""
        grouped: Dict[str, List[Photo]] = {}
        for photo in self.photos:
            grouped.setdefault(photo.marker_id, []).append(photo)
        return grouped

    def integrity_errors(self) -> List[str]:
        """List photo/marker references that do not resolve"""
        errors = []
        marker_ids = {m.id for m in self.markers}
        photo_ids = {p.id for p in self.photos}

        for photo in self.photos:
            if photo.marker_id not in marker_ids:
                errors.append(f"photo {photo.id} references missing marker {photo.marker_id}")
        for marker in self.markers:
            for photo_id in marker.photo_ids:
                if photo_id not in photo_ids:
                    errors.append(f"marker {marker.id} references missing photo {photo_id}")
        return errors

    def to_dict(self) -> dict:
        """Convert to the interchange mapping shape"""
        data = dict(self.extra)
        metadata = dict(self.metadata)
        metadata['mergedFrom'] = [p.to_dict() for p in self.merged_from]
        data.update({
            'timestamp': self.timestamp,
            'map': self.map.to_dict(),
            'markers': [m.to_dict() for m in self.markers],
            'photos': [p.to_dict() for p in self.photos],
            'metadata': metadata,
        })
        if self.source_app is not None:
            data['sourceApp'] = self.source_app
        return data

    @classmethod
    def from_dict(cls, data: dict, role: str = "export") -> 'MarkerCollection':
        """Create from the interchange mapping shape"""
        if not isinstance(data, dict):
            raise InvalidExportStructureError(
                f"Invalid {role}: expected a mapping",
                {"got": type(data).__name__},
            )
        markers = data.get('markers')
        photos = data.get('photos')
        if not _is_array(markers) or not _is_array(photos):
            raise InvalidExportStructureError(
                f"Invalid {role}: missing markers or photos array",
                {"markers": type(markers).__name__, "photos": type(photos).__name__},
            )

        metadata = dict(data.get('metadata') or {})
        merged_from = metadata.pop('mergedFrom', None) or []
        known = ('markers', 'photos', 'map', 'metadata', 'timestamp', 'sourceApp')
        return cls(
            markers=[Marker.from_dict(m) for m in markers],
            photos=[Photo.from_dict(p) for p in photos],
            map=MapInfo.from_dict(data.get('map')),
            merged_from=[MergeProvenance.from_dict(p) for p in merged_from],
            timestamp=data.get('timestamp'),
            source_app=data.get('sourceApp'),
            metadata=metadata,
            extra={k: v for k, v in data.items() if k not in known},
        )

    @classmethod
    def coerce(cls, value, role: str = "export") -> 'MarkerCollection':
        """Accept a collection or an interchange mapping"""
        if isinstance(value, cls):
            return value
        return cls.from_dict(value, role=role)
