"""
Shared fixtures for the mapmigrate test suite.
"""
import itertools

import pytest


def marker_dict(marker_id, x, y, label=None, photo_ids=(), **extra):
    data = {
        "id": marker_id,
        "x": x,
        "y": y,
        "photoIds": list(photo_ids),
        "createdDate": "2024-01-01T00:00:00.000Z",
        "lastModified": "2024-01-01T00:00:00.000Z",
    }
    if label is not None:
        data["label"] = label
    data.update(extra)
    return data


def photo_dict(photo_id, marker_id, file_name):
    return {
        "id": photo_id,
        "markerId": marker_id,
        "fileName": file_name,
        "createdDate": "2024-01-02T00:00:00.000Z",
    }


def export_dict(markers=(), photos=(), image_hash="hash-1", source_app="SnapSpot"):
    return {
        "timestamp": "2024-02-01T12:00:00.000Z",
        "map": {"imageHash": image_hash},
        "markers": list(markers),
        "photos": list(photos),
        "metadata": {"sourceApp": source_app, "exportDate": "2024-02-01T12:00:00.000Z"},
    }


@pytest.fixture
def sequential_ids():
    """Deterministic id generator: marker_new_1, photo_new_2, ..."""
    counter = itertools.count(1)
    return lambda kind: f"{kind}_new_{next(counter)}"


@pytest.fixture
def fixed_clock():
    return lambda: "2025-05-05T05:05:05.000Z"


@pytest.fixture
def merge_options(sequential_ids, fixed_clock):
    """Options mapping with deterministic ids and clock"""
    return {"idGenerator": sequential_ids, "clock": fixed_clock}
