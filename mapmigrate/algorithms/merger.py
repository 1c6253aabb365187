"""
Merging of marker collections with duplicate detection.

Combines a source collection (already in target pixel space) into a target
collection:
    - Incoming markers that match an existing marker donate their photos
    - Unmatched markers are added with fresh ids
    - Duplicate photos are skipped or renamed

Inputs are never modified; every merge returns a new collection. The
dry-run statistics are computed from the same merge plan, so a preview
always agrees with the merge that follows it.
"""

import dataclasses
import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Set, Tuple, Union

from ..core.collection import MarkerCollection, MergeProvenance
from ..core.exceptions import IdCollisionError
from ..core.marker import Marker, Photo
from ..utils.config import MergeOptions
from .duplicate_strategies import (
    DuplicateMatcher,
    build_strategies,
    find_duplicate_marker,
    find_duplicate_photo,
    has_photo_overlap,
    is_duplicate_photo,
    is_label_match,
    photo_overlap_ratio,
)

logger = logging.getLogger(__name__)

__all__ = [
    "MergeResult",
    "MergeStatistics",
    "find_duplicate_marker",
    "find_duplicate_photo",
    "get_merge_statistics",
    "has_photo_overlap",
    "is_duplicate_photo",
    "is_label_match",
    "merge_exports",
    "merge_photo_ids",
    "photo_overlap_ratio",
]

NEW = 'new'
DUPLICATE = 'duplicate'
RENAME = 'rename'


@dataclass(frozen=True)
class MergeStatistics:
    """What a merge does (or would do), counted per entity"""
    duplicate_markers: int = 0
    new_markers: int = 0
    duplicate_photos: int = 0
    new_photos: int = 0
    renamed_photos: int = 0
    orphan_photos: int = 0
    total_source_markers: int = 0
    total_source_photos: int = 0
    matches_by_strategy: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'duplicateMarkers': self.duplicate_markers,
            'newMarkers': self.new_markers,
            'duplicatePhotos': self.duplicate_photos,
            'newPhotos': self.new_photos,
            'renamedPhotos': self.renamed_photos,
            'orphanPhotos': self.orphan_photos,
            'totalSourceMarkers': self.total_source_markers,
            'totalSourcePhotos': self.total_source_photos,
            'matchesByStrategy': dict(self.matches_by_strategy),
        }


@dataclass(frozen=True)
class MergeResult:
    """Merged collection plus the bookkeeping of how it was produced"""
    collection: MarkerCollection
    statistics: MergeStatistics
    marker_id_map: Dict[str, str]  # source marker id -> merged marker id
    photo_id_map: Dict[str, str]  # source photo id -> merged photo id
    updated_marker_ids: Tuple[str, ...]
    warnings: Tuple[str, ...] = ()


class _PhotoDecision(NamedTuple):
    photo: Photo
    action: str
    file_name: str
    duplicate_of: Optional[Photo] = None
    duplicate_in_target: bool = False


class _MarkerDecision(NamedTuple):
    marker: Marker
    match: Optional[Marker]
    strategy: Optional[str]
    photos: Tuple[_PhotoDecision, ...]


class _MergePlan(NamedTuple):
    target: MarkerCollection
    source: MarkerCollection
    decisions: Tuple[_MarkerDecision, ...]
    orphan_photos: Tuple[Photo, ...]
    warnings: Tuple[str, ...]


def merge_photo_ids(existing_ids, new_ids) -> Tuple[str, ...]:
    """Union of photo ids keeping existing order, then unseen new ids"""
    return tuple(dict.fromkeys([*(existing_ids or ()), *(new_ids or ())]))


def _unique_file_name(file_name: str, taken: Set[str]) -> str:
    stem, ext = os.path.splitext(file_name)
    counter = 1
    candidate = f"{stem} ({counter}){ext}"
    while candidate in taken:
        counter += 1
        candidate = f"{stem} ({counter}){ext}"
    return candidate


def _resolve_options(options) -> MergeOptions:
    if options is None:
        return MergeOptions()
    if isinstance(options, dict):
        return MergeOptions.from_dict(options)
    return options


def _plan_merge(target_export, source_export, options: MergeOptions) -> _MergePlan:
    """Classify every source marker and photo without creating anything"""
    target = MarkerCollection.coerce(target_export, role="target export")
    source = MarkerCollection.coerce(source_export, role="source export")
    warnings: List[str] = []

    target_hash, source_hash = target.map.image_hash, source.map.image_hash
    if target_hash and source_hash and target_hash != source_hash:
        warnings.append(
            f"Target and source have different image hashes ({target_hash} vs {source_hash})"
        )

    target_photos = target.photos_by_marker()
    source_photos = source.photos_by_marker()

    source_marker_ids = {m.id for m in source.markers}
    orphans = tuple(p for p in source.photos if p.marker_id not in source_marker_ids)
    if orphans:
        warnings.append(f"{len(orphans)} source photos reference missing markers and are skipped")

    matcher = DuplicateMatcher(build_strategies(options), target.markers, target_photos)
    attached: Dict[str, List[Photo]] = {}  # matched marker id -> photos added in this merge, original names
    taken_names: Dict[str, Set[str]] = {}  # matched marker id -> file names in use after this merge
    # Renamed photos also avoid every incoming name, so a later source photo keeps its own
    source_names = {p.file_name for p in source.photos}
    decisions = []

    for marker in source.markers:
        photos = source_photos.get(marker.id, [])
        match, strategy = matcher.find(marker, photos)

        if match is None:
            decisions.append(_MarkerDecision(
                marker, None, None,
                tuple(_PhotoDecision(p, NEW, p.file_name) for p in photos),
            ))
            continue

        in_target = target_photos.get(match.id, [])
        added = attached.setdefault(match.id, [])
        taken = taken_names.setdefault(match.id, {p.file_name for p in in_target})
        photo_decisions = []
        for photo in photos:
            duplicate = find_duplicate_photo(in_target, photo, match.id)
            duplicate_in_target = duplicate is not None
            if duplicate is None:
                duplicate = find_duplicate_photo(added, photo, match.id)

            if duplicate is None:
                decision = _PhotoDecision(photo, NEW, photo.file_name)
            elif options.duplicate_photo_strategy == 'rename':
                new_name = _unique_file_name(photo.file_name, taken | source_names)
                decision = _PhotoDecision(photo, RENAME, new_name, duplicate, duplicate_in_target)
            else:
                decision = _PhotoDecision(photo, DUPLICATE, photo.file_name, duplicate, duplicate_in_target)

            if decision.action != DUPLICATE:
                # Later duplicates compare against the incoming name, not the synthesized one
                added.append(dataclasses.replace(photo, marker_id=match.id))
                taken.add(decision.file_name)
            photo_decisions.append(decision)

        decisions.append(_MarkerDecision(marker, match, strategy, tuple(photo_decisions)))

    return _MergePlan(target, source, tuple(decisions), orphans, tuple(warnings))


def _statistics(plan: _MergePlan) -> MergeStatistics:
    actions = Counter(pd.action for d in plan.decisions for pd in d.photos)
    matched = [d for d in plan.decisions if d.match is not None]
    return MergeStatistics(
        duplicate_markers=len(matched),
        new_markers=len(plan.decisions) - len(matched),
        duplicate_photos=actions[DUPLICATE] + actions[RENAME],
        new_photos=actions[NEW] + actions[RENAME],
        renamed_photos=actions[RENAME],
        orphan_photos=len(plan.orphan_photos),
        total_source_markers=len(plan.source.markers),
        total_source_photos=len(plan.source.photos),
        matches_by_strategy=dict(Counter(d.strategy for d in matched)),
    )


def get_merge_statistics(target_export: Union[MarkerCollection, dict],
                         source_export: Union[MarkerCollection, dict],
                         options=None) -> MergeStatistics:
    """Dry run of merge_exports: the counts it would produce, nothing created"""
    plan = _plan_merge(target_export, source_export, _resolve_options(options))
    return _statistics(plan)


def merge_exports(target_export: Union[MarkerCollection, dict],
                  source_export: Union[MarkerCollection, dict],
                  options=None) -> MergeResult:
    """
    Merge a source collection into a target collection.

    Args:
        target_export: Collection (or interchange mapping) to merge into
        source_export: Collection (or interchange mapping) already in target
            pixel space
        options: MergeOptions, an options mapping, or None for defaults

    Returns:
        MergeResult with the new collection, statistics and id mappings

    Raises:
        InvalidExportStructureError: If either input lacks markers or photos
        IdCollisionError: If the id generator repeats an existing id
    """
    options = _resolve_options(options)
    plan = _plan_merge(target_export, source_export, options)
    target, source = plan.target, plan.source
    now = options.clock()

    for warning in plan.warnings:
        logger.warning(f"Merger: {warning}")

    used_ids = {m.id for m in target.markers} | {p.id for p in target.photos}
    used_ids |= {m.id for m in source.markers} | {p.id for p in source.photos}

    def new_id(kind: str) -> str:
        entity_id = options.id_generator(kind)
        if not isinstance(entity_id, str) or not entity_id or entity_id in used_ids:
            raise IdCollisionError(kind, entity_id)
        used_ids.add(entity_id)
        return entity_id

    def stamp(original: Optional[str]) -> Optional[str]:
        return original if options.preserve_timestamps else now

    marker_id_map: Dict[str, str] = {}
    photo_id_map: Dict[str, str] = {}
    attached_ids: Dict[str, List[str]] = {}
    new_markers: List[Marker] = []
    new_photos: List[Photo] = []

    for decision in plan.decisions:
        source_marker = decision.marker
        if decision.match is not None:
            owner_id = decision.match.id
            logger.debug(
                f"Merger: marker {source_marker.id} at ({source_marker.x}, {source_marker.y}) "
                f"matches {owner_id} by {decision.strategy}"
            )
        else:
            owner_id = new_id('marker')
            logger.debug(
                f"Merger: adding marker {source_marker.id} at ({source_marker.x}, {source_marker.y}) as {owner_id}"
            )
        marker_id_map[source_marker.id] = owner_id

        photo_ids = []
        for pd in decision.photos:
            if pd.action == DUPLICATE:
                if pd.duplicate_in_target:
                    photo_id_map[pd.photo.id] = pd.duplicate_of.id
                else:
                    photo_id_map[pd.photo.id] = photo_id_map[pd.duplicate_of.id]
                logger.debug(f"Merger: skipping duplicate photo '{pd.photo.file_name}'")
                continue

            photo_id = new_id('photo')
            photo_id_map[pd.photo.id] = photo_id
            photo_ids.append(photo_id)
            new_photos.append(dataclasses.replace(
                pd.photo,
                id=photo_id,
                marker_id=owner_id,
                file_name=pd.file_name,
                created_date=stamp(pd.photo.created_date),
            ))

        if decision.match is not None:
            if photo_ids:
                attached_ids.setdefault(owner_id, []).extend(photo_ids)
        else:
            new_markers.append(dataclasses.replace(
                source_marker,
                id=owner_id,
                photo_ids=tuple(photo_ids),
                created_date=stamp(source_marker.created_date),
                last_modified=now,
            ))

    markers = []
    for marker in target.markers:
        if marker.id in attached_ids:
            marker = dataclasses.replace(
                marker,
                photo_ids=merge_photo_ids(marker.photo_ids, attached_ids[marker.id]),
                last_modified=now,
            )
        markers.append(marker)
    markers.extend(new_markers)

    provenance = MergeProvenance(
        source_app=source.origin_app,
        source_timestamp=source.origin_timestamp,
        marker_count=len(source.markers),
        photo_count=len(source.photos),
        merged_at=now,
        image_hash=source.map.image_hash,
    )
    merged = dataclasses.replace(
        target,
        markers=tuple(markers),
        photos=target.photos + tuple(new_photos),
        merged_from=target.merged_from + (provenance,),
        timestamp=now,
        map=dataclasses.replace(target.map, last_modified=now),
    )

    statistics = _statistics(plan)
    logger.info(
        f"Merger: added {len(new_markers)} new markers, {len(new_photos)} new photos; "
        f"updated {len(attached_ids)} existing markers"
    )
    return MergeResult(
        collection=merged,
        statistics=statistics,
        marker_id_map=marker_id_map,
        photo_id_map=photo_id_map,
        updated_marker_ids=tuple(attached_ids),
        warnings=plan.warnings,
    )
