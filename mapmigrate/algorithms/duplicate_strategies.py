"""
Duplicate detection predicates and strategies for merging marker collections.

Each strategy answers "which existing marker is this incoming marker?" in
its own way. Strategies are prepared once against the target markers and
then queried per incoming marker; a cascade asks them in order and takes
the first answer.
"""

from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np
from scipy.spatial import cKDTree

from ..core.marker import Marker, Photo


# =============================================================================
# PREDICATES
# =============================================================================

def _within(existing: Marker, candidate: Marker, tolerance: float) -> bool:
    return (abs(existing.x - candidate.x) <= tolerance and
            abs(existing.y - candidate.y) <= tolerance)


def find_duplicate_marker(existing_markers: Iterable[Marker], candidate: Marker,
                          tolerance: float = 0.0) -> Optional[Marker]:
    """
    First existing marker within tolerance pixels of the candidate on both
    axes independently. A zero tolerance requires exact coordinates.
    Markers with non-finite coordinates never match.
    """
    if candidate is None or not candidate.has_finite_position:
        return None
    finite = (m for m in existing_markers if m.has_finite_position)
    if tolerance == 0:
        return next((m for m in finite if m.x == candidate.x and m.y == candidate.y), None)
    return next((m for m in finite if _within(m, candidate, tolerance)), None)


def is_label_match(existing: Marker, candidate: Marker) -> bool:
    """Case-insensitive exact match of marker text; empty text never matches"""
    candidate_text = candidate.text.casefold()
    return bool(candidate_text) and existing.text.casefold() == candidate_text


def photo_overlap_ratio(candidate_names: Iterable[str], existing_names: Iterable[str]) -> float:
    """Fraction of the candidate's file names that the existing marker also has"""
    candidate_set = {n for n in candidate_names if n}
    if not candidate_set:
        return 0.0
    shared = candidate_set & set(existing_names)
    return len(shared) / len(candidate_set)


def has_photo_overlap(candidate_photos: Iterable[Photo], existing_photos: Iterable[Photo],
                      threshold: float = 0.7) -> bool:
    ratio = photo_overlap_ratio(
        (p.file_name for p in candidate_photos),
        (p.file_name for p in existing_photos),
    )
    return ratio > 0 and ratio >= threshold


def find_duplicate_photo(existing_photos: Iterable[Photo], candidate: Photo,
                         target_marker_id: str) -> Optional[Photo]:
    """Existing photo on the same marker with an identical (case-sensitive) file name"""
    if candidate is None:
        return None
    return next(
        (p for p in existing_photos
         if p.marker_id == target_marker_id and p.file_name == candidate.file_name),
        None,
    )


def is_duplicate_photo(existing_photos: Iterable[Photo], candidate: Photo,
                       target_marker_id: str) -> bool:
    return find_duplicate_photo(existing_photos, candidate, target_marker_id) is not None


# =============================================================================
# STRATEGIES
# =============================================================================

class CoordinateStrategy:
    """Match markers whose coordinates agree within a per-axis tolerance"""

    name = 'coordinates'

    def __init__(self, tolerance: float = 0.0):
        self.tolerance = float(tolerance)

    def prepare(self, markers: Sequence[Marker],
                photos_by_marker: Dict[str, List[Photo]]) -> '_CoordinateIndex':
        return _CoordinateIndex(markers, self.tolerance)


class _CoordinateIndex:

    def __init__(self, markers: Sequence[Marker], tolerance: float):
        self.tolerance = tolerance
        self.markers = [m for m in markers if m.has_finite_position]
        self._exact: Dict[Tuple[float, float], Marker] = {}
        self._tree = None

        if tolerance == 0:
            for marker in self.markers:
                self._exact.setdefault((marker.x, marker.y), marker)
        elif self.markers:
            coords = np.array([[m.x, m.y] for m in self.markers])
            self._tree = cKDTree(coords)

    def find(self, candidate: Marker, candidate_photos: Sequence[Photo]) -> Optional[Marker]:
        if not candidate.has_finite_position:
            return None
        if self.tolerance == 0:
            return self._exact.get((candidate.x, candidate.y))
        if self._tree is None:
            return None

        # Chebyshev ball, widened slightly and re-checked exactly
        radius = self.tolerance * (1 + 1e-9) + 1e-12
        hits = self._tree.query_ball_point([candidate.x, candidate.y], r=radius, p=np.inf)
        for index in sorted(hits):
            if _within(self.markers[index], candidate, self.tolerance):
                return self.markers[index]
        return None


class LabelStrategy:
    """Match markers by case-insensitive label (or description) text"""

    name = 'labels'

    def prepare(self, markers: Sequence[Marker],
                photos_by_marker: Dict[str, List[Photo]]) -> '_LabelIndex':
        return _LabelIndex(markers)


class _LabelIndex:

    def __init__(self, markers: Sequence[Marker]):
        self._by_text: Dict[str, Marker] = {}
        for marker in markers:
            text = marker.text.casefold()
            if text:
                self._by_text.setdefault(text, marker)

    def find(self, candidate: Marker, candidate_photos: Sequence[Photo]) -> Optional[Marker]:
        text = candidate.text.casefold()
        if not text:
            return None
        return self._by_text.get(text)


class PhotoOverlapStrategy:
    """Match markers sharing at least a threshold fraction of photo file names"""

    name = 'photos'

    def __init__(self, threshold: float = 0.7):
        self.threshold = float(threshold)

    def prepare(self, markers: Sequence[Marker],
                photos_by_marker: Dict[str, List[Photo]]) -> '_PhotoIndex':
        return _PhotoIndex(markers, photos_by_marker, self.threshold)


class _PhotoIndex:

    def __init__(self, markers: Sequence[Marker],
                 photos_by_marker: Dict[str, List[Photo]], threshold: float):
        self.threshold = threshold
        self.markers = list(markers)
        self._names: List[Set[str]] = []
        self._by_name: Dict[str, List[int]] = {}
        for index, marker in enumerate(self.markers):
            names = {p.file_name for p in photos_by_marker.get(marker.id, ()) if p.file_name}
            self._names.append(names)
            for name in names:
                self._by_name.setdefault(name, []).append(index)

    def find(self, candidate: Marker, candidate_photos: Sequence[Photo]) -> Optional[Marker]:
        names = {p.file_name for p in candidate_photos if p.file_name}
        if not names:
            return None

        hits = Counter(i for name in names for i in self._by_name.get(name, ()))
        best_index, best_ratio = None, 0.0
        for index in sorted(hits):
            ratio = photo_overlap_ratio(names, self._names[index])
            if ratio >= self.threshold and ratio > best_ratio:
                best_index, best_ratio = index, ratio
        return None if best_index is None else self.markers[best_index]


def build_strategies(options) -> Tuple:
    """Ordered strategies for merge options; explicit strategies win over match_order"""
    if options.strategies is not None:
        return tuple(options.strategies)

    factories = {
        'photos': lambda: PhotoOverlapStrategy(options.photo_overlap_threshold),
        'labels': LabelStrategy,
        'coordinates': lambda: CoordinateStrategy(options.coordinate_tolerance),
    }
    return tuple(factories[name]() for name in options.match_order)


class DuplicateMatcher:
    """Cascade of prepared strategies, asked in order"""

    def __init__(self, strategies: Sequence, markers: Sequence[Marker],
                 photos_by_marker: Dict[str, List[Photo]]):
        self._prepared = [(s.name, s.prepare(markers, photos_by_marker)) for s in strategies]

    def find(self, candidate: Marker,
             candidate_photos: Sequence[Photo]) -> Tuple[Optional[Marker], Optional[str]]:
        for name, index in self._prepared:
            match = index.find(candidate, candidate_photos)
            if match is not None:
                return match, name
        return None, None
