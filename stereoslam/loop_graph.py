"""Pose-graph building and map correction used when closing a loop."""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass

import numpy as np

from stereoslam.pose_graph import PoseGraph, invert_isometry

MIN_LOOP_INLIERS = 20
"""Fewest pose-estimation inliers for a loop to be accepted."""

MIN_INLIER_RATIO = 0.8
"""Smallest fraction of matches that must be inliers."""

MAX_LOOP_OFFSET = 5.0
"""Largest allowed offset, per axis, between query position and estimated pose."""

MIN_PROPAGATION_DISTANCE = 20.0
PROPAGATION_FRACTION = 0.1


@dataclass(frozen=True)
class LoopConstraint:
    """A closed loop: the pose of ``match_id`` expressed in ``query_id``'s frame."""

    query_id: int
    match_id: int
    transform: np.ndarray


def _pose_items(keyframe_poses) -> list[tuple[int, np.ndarray]]:
    items = keyframe_poses.items() if isinstance(keyframe_poses, Mapping) else keyframe_poses
    return [(keyframe_id, np.asarray(pose, dtype=float)) for keyframe_id, pose in items]


def build_pose_graph(
    keyframe_poses,
    loops: Iterable[LoopConstraint],
    query_id: int,
    match_id: int,
    match_pose,
) -> tuple[PoseGraph, LoopConstraint]:
    """Build the pose graph for a newly detected loop.

    ``keyframe_poses`` maps keyframe ids to 4x4 world poses, in keyframe
    order; the first keyframe is held fixed. Consecutive keyframes are
    linked by their relative pose, earlier ``loops`` (in keyframe order)
    add their constraints, and the new loop links ``query_id`` to
    ``match_id`` using ``match_pose``, the estimated world pose of the
    match. Returns the graph and the new loop's constraint.
    """
    items = _pose_items(keyframe_poses)
    if not items:
        raise ValueError("the pose graph needs at least one keyframe")

    graph = PoseGraph()
    pending = iter(loops)
    next_loop = next(pending, None)
    previous = None

    for position, (keyframe_id, pose) in enumerate(items):
        current = graph.add_vertex(keyframe_id, pose, fixed=position == 0)
        if previous is not None:
            relative = invert_isometry(previous.estimate) @ current.estimate
            graph.add_edge(previous.id, current.id, relative)
        if next_loop is not None and keyframe_id == next_loop.query_id:
            graph.add_edge(keyframe_id, next_loop.match_id, next_loop.transform)
            next_loop = next(pending, None)
        previous = current

    query_vertex = graph.vertex(query_id)
    graph.vertex(match_id)
    transform = invert_isometry(query_vertex.estimate) @ np.asarray(match_pose, dtype=float)
    graph.add_edge(query_id, match_id, transform)
    return graph, LoopConstraint(query_id, match_id, transform)


def is_loop_accepted(inliers, matches, query_position, match_pose) -> bool:
    """Whether a detected loop passes the inlier and distance checks."""
    if not (inliers >= MIN_LOOP_INLIERS and float(inliers) >= matches * MIN_INLIER_RATIO):
        return False
    position = np.asarray(query_position, dtype=float).reshape(3)
    translation = np.asarray(match_pose, dtype=float)[:3, 3]
    return bool(np.all(np.abs(position - translation) <= MAX_LOOP_OFFSET))


def correct_point(point, original_pose, corrected_pose) -> np.ndarray:
    """Move a point so it keeps its place relative to a camera whose pose changed."""
    homogeneous = np.append(np.asarray(point, dtype=float).reshape(3), 1.0)
    moved = (
        np.asarray(corrected_pose, dtype=float)
        @ (invert_isometry(original_pose) @ homogeneous)
    )
    return moved[:3] / moved[3]


def corrected_poses(
    keyframe_poses, graph: PoseGraph, excluded: Collection = ()
) -> dict[int, np.ndarray]:
    """Optimised poses of the keyframes not in ``excluded``, by keyframe id."""
    return {
        keyframe_id: graph.vertex(keyframe_id).estimate.copy()
        for keyframe_id, _pose in _pose_items(keyframe_poses)
        if keyframe_id not in excluded
    }


def apply_rigid_correction(poses, transform):
    """Right-multiply every pose by ``transform``.

    A mapping gives back a dict with the same keys; any other iterable
    gives back a list.
    """
    correction = np.asarray(transform, dtype=float)
    if isinstance(poses, Mapping):
        return {key: np.asarray(pose, dtype=float) @ correction for key, pose in poses.items()}
    return [np.asarray(pose, dtype=float) @ correction for pose in poses]


def propagation_distance(num_keyframes) -> float:
    """How far a loop correction is smoothly propagated through the graph."""
    return max(MIN_PROPAGATION_DISTANCE, num_keyframes * PROPAGATION_FRACTION)