"""
Manager for the reference point pairs of a migration session
"""

import logging
from typing import Callable, Dict, List, Optional

from ..algorithms.transform_engine import fit
from .affine import AffineTransform
from .reference_pair import PointLike, ReferencePointPair, as_point


class ReferencePointSet:
    """
    Holds the reference pairs picked during one migration session and the
    transform fitted to them. The transform is refitted lazily after any
    change to the pairs; listeners are called on every change.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._pairs: Dict[str, ReferencePointPair] = {}  # label -> pair
        self._listeners: List[Callable[[], None]] = []
        self._transform: Optional[AffineTransform] = None
        self._counter = 0

    def subscribe(self, listener: Callable[[], None]):
        """Register a callback invoked whenever the pairs change"""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _changed(self):
        self._transform = None
        for listener in list(self._listeners):
            listener()

    def _next_label(self) -> str:
        self._counter += 1
        while f"P{self._counter}" in self._pairs:
            self._counter += 1
        return f"P{self._counter}"

    def add_pair(self, source: PointLike, target: PointLike, label: str = "") -> str:
        """Add a pair, or move the existing pair with the same label"""
        if not label:
            label = self._next_label()

        if label in self._pairs:
            self.logger.debug(f"Updating reference pair {label}")

        self._pairs[label] = ReferencePointPair(as_point(source), as_point(target), label)
        self._changed()
        return label

    def remove_pair(self, label: str) -> bool:
        """Remove a pair by label"""
        if label not in self._pairs:
            return False
        del self._pairs[label]
        self._changed()
        return True

    def get_pair(self, label: str) -> Optional[ReferencePointPair]:
        return self._pairs.get(label)

    @property
    def pairs(self) -> List[ReferencePointPair]:
        """Pairs in insertion order"""
        return list(self._pairs.values())

    def __len__(self) -> int:
        return len(self._pairs)

    def clear(self):
        """Remove all pairs"""
        self._pairs.clear()
        self._counter = 0
        self._changed()

    @property
    def transform(self) -> AffineTransform:
        """
        Transform fitted to the current pairs.

        Raises the fit errors (InsufficientPointsError, DegenerateInputError)
        while the pairs cannot determine a transform.
        """
        if self._transform is None:
            self._transform = fit(self.pairs)
        return self._transform

    def export_pairs(self) -> dict:
        """Export pairs for serialization"""
        return {
            'pairs': [pair.to_dict() for pair in self._pairs.values()],
            'version': '1.0'
        }

    def import_pairs(self, data: dict):
        """Replace all pairs with serialized ones"""
        self._pairs.clear()
        for pair_data in data.get('pairs', []):
            pair = ReferencePointPair.from_dict(pair_data)
            label = pair.label or self._next_label()
            self._pairs[label] = ReferencePointPair(pair.source, pair.target, label)
        self._changed()
