"""
Exception hierarchy for map migration
"""

from typing import Any, Dict, Optional


class MapMigrateError(Exception):
    """Base exception for all mapmigrate errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# =============================================================================
# GEOMETRY
# =============================================================================

class TransformError(MapMigrateError):
    """Base exception for transform fitting errors"""
    pass


class InsufficientPointsError(TransformError):
    """Raised when fewer reference pairs are supplied than a fit needs"""

    def __init__(self, provided: int, required: int = 3):
        super().__init__(
            f"At least {required} reference point pairs are required, got {provided}",
            {"provided": provided, "required": required},
        )


class DegenerateInputError(TransformError):
    """Raised when reference pairs cannot determine a unique transform.

    Covers collinear or coincident source points, non-finite coordinates
    and singular linear parts.
    """
    pass


# =============================================================================
# DATA
# =============================================================================

class InvalidExportStructureError(MapMigrateError):
    """Raised when a marker collection is structurally malformed"""
    pass


class IdCollisionError(MapMigrateError):
    """Raised when an id generator returns an id that is already taken"""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(
            f"Generated {kind} id '{entity_id}' collides with an existing id",
            {"kind": kind, "id": entity_id},
        )


# =============================================================================
# CONFIGURATION
# =============================================================================

class ConfigurationError(MapMigrateError, ValueError):
    """Raised when an options structure holds an invalid value"""

    def __init__(self, key: str, value: Any, expected: str):
        super().__init__(
            f"Invalid option '{key}': expected {expected}, got {value!r}",
            {"key": key, "value": value, "expected": expected},
        )
