"""Four-way descriptor matching between two stereo frames."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np

LOWE_RATIO = 0.8
"""A match is kept when its distance is below this ratio of the second best."""


@dataclass(frozen=True)
class DMatch:
    """A correspondence between a query descriptor and a train descriptor."""

    query_idx: int
    train_idx: int
    distance: float = 0.0


@dataclass(frozen=True)
class SDMatch:
    """A feature seen by all four cameras of two stereo frames.

    Cameras 1 and 2 belong to the first stereo frame, 3 and 4 to the second.
    """

    m1vs2: DMatch
    m3vs4: DMatch
    m1vs3: DMatch
    m2vs4: DMatch


class Norm(Enum):
    """Distance used to compare descriptors."""

    HAMMING = "hamming"
    L1 = "l1"
    L2 = "l2"


def hamming_distance(a, b) -> int:
    """Number of differing bits between two byte descriptors."""
    first = np.asarray(a, dtype=np.uint8).reshape(-1)
    second = np.asarray(b, dtype=np.uint8).reshape(-1)
    if first.shape != second.shape:
        raise ValueError("descriptors differ in length")
    return int(np.unpackbits(np.bitwise_xor(first, second)).sum())


def _as_rows(descriptors) -> np.ndarray:
    array = np.asarray(descriptors)
    if array.size == 0:
        return array.reshape(0, 0)
    if array.ndim == 1:
        array = array.reshape(1, -1)
    return array


class BruteForceMatcher:
    """Exhaustive descriptor matcher."""

    def __init__(self, norm: Norm = Norm.HAMMING, cross_check: bool = False) -> None:
        self.norm = Norm(norm)
        self.cross_check = cross_check

    def _distances(self, query: np.ndarray, train: np.ndarray) -> np.ndarray:
        if self.norm is Norm.HAMMING:
            q = query.astype(np.uint8)
            t = train.astype(np.uint8)
            xor = np.bitwise_xor(q[:, None, :], t[None, :, :])
            return np.unpackbits(xor, axis=2).sum(axis=2).astype(float)
        diff = query.astype(float)[:, None, :] - train.astype(float)[None, :, :]
        if self.norm is Norm.L1:
            return np.abs(diff).sum(axis=2)
        return np.sqrt((diff * diff).sum(axis=2))

    def radius_match(self, query, train, max_distance) -> list[list[DMatch]]:
        """For every query row, the train rows closer than ``max_distance``.

        Each list is sorted by increasing distance. With cross checking,
        only pairs that are each other's nearest neighbour are kept.
        """
        query_rows = _as_rows(query)
        train_rows = _as_rows(train)
        if len(query_rows) == 0:
            return []
        if len(train_rows) == 0:
            return [[] for _ in range(len(query_rows))]
        if query_rows.shape[1] != train_rows.shape[1]:
            raise ValueError("query and train descriptors differ in length")

        distances = self._distances(query_rows, train_rows)
        nearest_query = np.argmin(distances, axis=0)

        result = []
        for q, row in enumerate(distances):
            order = np.argsort(row, kind="stable")
            matches = [
                DMatch(q, int(t), float(row[t]))
                for t in order
                if row[t] < max_distance
                and (not self.cross_check or (nearest_query[t] == q and t == order[0]))
            ]
            result.append(matches)
        return result


def _accepted(radius_matches: list[list[DMatch]]) -> dict[int, DMatch]:
    accepted = {}
    for candidates in radius_matches:
        if len(candidates) == 1 or (
            len(candidates) > 1
            and candidates[0].distance < LOWE_RATIO * candidates[1].distance
        ):
            best = candidates[0]
            accepted[best.query_idx] = best
    return accepted


def match_stereo_descriptors(
    matcher: BruteForceMatcher,
    max_distance: float,
    descriptors1,
    descriptors2,
    matches12: Sequence[DMatch],
    descriptors3,
    descriptors4,
    matches34: Sequence[DMatch],
) -> list[SDMatch]:
    """Find features seen consistently by all four cameras.

    ``matches12`` relates cameras 1 and 2, ``matches34`` cameras 3 and 4.
    Cameras 1 and 3, and 2 and 4, are matched by radius search with a
    ratio test; a four-way match is kept when the 3-4 relation agrees with
    the 2-4 one. Results follow the order of ``matches12``.
    """
    map13 = _accepted(matcher.radius_match(descriptors1, descriptors3, max_distance))
    map24 = _accepted(matcher.radius_match(descriptors2, descriptors4, max_distance))
    map34 = {m.query_idx: m for m in matches34}

    matches = []
    for m12 in matches12:
        shared13 = map13.get(m12.query_idx)
        shared24 = map24.get(m12.train_idx)
        if shared13 is None or shared24 is None:
            continue
        shared34 = map34.get(shared13.train_idx)
        if shared34 is not None and shared34.train_idx == shared24.train_idx:
            matches.append(SDMatch(m12, shared34, shared13, shared24))
    return matches


class StereoMatcher:
    """Matches features between two stereo frames."""

    def __init__(self, max_distance: float, norm: Norm = Norm.HAMMING, cross_check: bool = False) -> None:
        self.matcher = BruteForceMatcher(norm, cross_check)
        self.max_distance = max_distance

    def match(
        self, descriptors1, descriptors2, matches12, descriptors3, descriptors4, matches34
    ) -> list[SDMatch]:
        """Four-way matches between the frames; see :func:`match_stereo_descriptors`."""
        return match_stereo_descriptors(
            self.matcher, self.max_distance,
            descriptors1, descriptors2, matches12,
            descriptors3, descriptors4, matches34,
        )