"""Pairing of map points with the measurements found for them in a frame."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any


@dataclass
class Match:
    """A map point together with the measurement that observed it."""

    map_point: Any
    measurement: Any


def pair_matches(map_points: Sequence, matched_indexes: Iterable[int], measurements: Iterable) -> list[Match]:
    """Pair each matched index's map point with its measurement, in order."""
    points = list(map_points)
    indexes = list(matched_indexes)
    found = list(measurements)
    if len(indexes) != len(found):
        raise ValueError(
            f"{len(indexes)} matched indexes but {len(found)} measurements"
        )
    matches = []
    for index, measurement in zip(indexes, found):
        if not 0 <= index < len(points):
            raise IndexError(f"matched index {index} out of range")
        matches.append(Match(points[index], measurement))
    return matches


def match_to_points(
    map_points: Iterable,
    find_matches: Callable[[list, list], tuple[Iterable[int], Iterable]],
) -> list[Match]:
    """Match map points against a frame.

    Each map point provides ``position`` and ``descriptor``.
    ``find_matches(positions, descriptors)`` returns the indexes of the
    matched points and the measurements found for them.
    """
    points = list(map_points)
    positions = [point.position for point in points]
    descriptors = [point.descriptor for point in points]
    matched_indexes, measurements = find_matches(positions, descriptors)
    return pair_matches(points, matched_indexes, measurements)