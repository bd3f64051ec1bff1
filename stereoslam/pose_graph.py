"""Pose graph of rigid transforms, its optimisation and smooth estimate propagation."""

from __future__ import annotations

import heapq
import itertools
import math
import sys
from dataclasses import dataclass, field

import numpy as np

_DOUBLE_MAX = sys.float_info.max
_RAMP_STEEPNESS = 50.0


def make_isometry(rotation, translation) -> np.ndarray:
    """Build a 4x4 rigid transform from a 3x3 rotation and a translation."""
    transform = np.eye(4)
    transform[:3, :3] = np.asarray(rotation, dtype=float)
    transform[:3, 3] = np.asarray(translation, dtype=float).reshape(3)
    return transform


def invert_isometry(transform) -> np.ndarray:
    """Inverse of a 4x4 rigid transform."""
    transform = np.asarray(transform, dtype=float)
    rotation = transform[:3, :3]
    return make_isometry(rotation.T, -rotation.T @ transform[:3, 3])


def _quat_from_matrix(r: np.ndarray) -> np.ndarray:
    trace = r[0, 0] + r[1, 1] + r[2, 2]
    if trace > 0:
        s = math.sqrt(trace + 1.0) * 2
        q = (0.25 * s, (r[2, 1] - r[1, 2]) / s, (r[0, 2] - r[2, 0]) / s, (r[1, 0] - r[0, 1]) / s)
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        s = math.sqrt(1.0 + r[0, 0] - r[1, 1] - r[2, 2]) * 2
        q = ((r[2, 1] - r[1, 2]) / s, 0.25 * s, (r[0, 1] + r[1, 0]) / s, (r[0, 2] + r[2, 0]) / s)
    elif r[1, 1] > r[2, 2]:
        s = math.sqrt(1.0 + r[1, 1] - r[0, 0] - r[2, 2]) * 2
        q = ((r[0, 2] - r[2, 0]) / s, (r[0, 1] + r[1, 0]) / s, 0.25 * s, (r[1, 2] + r[2, 1]) / s)
    else:
        s = math.sqrt(1.0 + r[2, 2] - r[0, 0] - r[1, 1]) * 2
        q = ((r[1, 0] - r[0, 1]) / s, (r[0, 2] + r[2, 0]) / s, (r[1, 2] + r[2, 1]) / s, 0.25 * s)
    return np.array(q)


def _matrix_from_quat(q: np.ndarray) -> np.ndarray:
    w, x, y, z = q / np.linalg.norm(q)
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
        [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
        [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
    ])


def _slerp(q0: np.ndarray, q1: np.ndarray, t: float) -> np.ndarray:
    d = float(q0 @ q1)
    abs_d = abs(d)
    if abs_d >= 1.0 - np.finfo(float).eps:
        scale0, scale1 = 1.0 - t, t
    else:
        theta = math.acos(abs_d)
        sin_theta = math.sin(theta)
        scale0 = math.sin((1.0 - t) * theta) / sin_theta
        scale1 = math.sin(t * theta) / sin_theta
    if d < 0:
        scale1 = -scale1
    return scale0 * q0 + scale1 * q1


def exponential_interpolation(start, end, step, max_distance) -> np.ndarray:
    """Blend two rigid transforms along an exponential ramp.

    A step of 1 yields ``end``; a step of ``max_distance - 1`` yields
    ``start``. Rotations are interpolated by slerp, translations linearly.
    """
    max_dist = max_distance - 2
    if max_dist == 0:
        raise ValueError("max_distance must not be 2")
    x = 1 - ((max_dist - (step - 1)) / max_dist)
    ramp = 1 - (x / (1 + _RAMP_STEEPNESS * (1 - x)))

    start = np.asarray(start, dtype=float)
    end = np.asarray(end, dtype=float)
    q = _slerp(_quat_from_matrix(start[:3, :3]), _quat_from_matrix(end[:3, :3]), ramp)
    translation = (1 - ramp) * start[:3, 3] + ramp * end[:3, 3]
    return make_isometry(_matrix_from_quat(q), translation)


def _increment(update: np.ndarray) -> np.ndarray:
    vector = update[3:]
    norm2 = float(vector @ vector)
    if norm2 >= 1.0:
        vector = vector / math.sqrt(norm2)
        w = 0.0
    else:
        w = math.sqrt(1.0 - norm2)
    return make_isometry(_matrix_from_quat(np.array([w, *vector])), update[:3])


@dataclass(eq=False)
class PoseVertex:
    """A pose in the graph: a 4x4 rigid transform estimate."""

    id: int
    estimate: np.ndarray
    fixed: bool = False


@dataclass(eq=False)
class PoseEdge:
    """Relative pose of ``target`` expressed in ``source``'s frame."""

    source: int
    target: int
    measurement: np.ndarray
    information: np.ndarray = field(default_factory=lambda: np.eye(6))

    def error(self, source_pose: np.ndarray, target_pose: np.ndarray) -> np.ndarray:
        delta = invert_isometry(self.measurement) @ invert_isometry(source_pose) @ target_pose
        q = _quat_from_matrix(delta[:3, :3])
        if q[0] < 0:
            q = -q
        return np.concatenate([delta[:3, 3], q[1:]])


class PoseGraph:
    """Graph of pose vertices linked by relative pose constraints."""

    def __init__(self) -> None:
        self.vertices: dict[int, PoseVertex] = {}
        self.edges: list[PoseEdge] = []
        self._adjacency: dict[int, list[PoseEdge]] = {}

    def add_vertex(self, vertex_id, pose, fixed=False) -> PoseVertex:
        if vertex_id in self.vertices:
            raise ValueError(f"vertex {vertex_id} already exists")
        vertex = PoseVertex(vertex_id, np.array(pose, dtype=float), bool(fixed))
        self.vertices[vertex_id] = vertex
        self._adjacency[vertex_id] = []
        return vertex

    def add_edge(self, source, target, measurement) -> PoseEdge:
        for vertex_id in (source, target):
            if vertex_id not in self.vertices:
                raise KeyError(vertex_id)
        edge = PoseEdge(source, target, np.array(measurement, dtype=float))
        self.edges.append(edge)
        self._adjacency[source].append(edge)
        if target != source:
            self._adjacency[target].append(edge)
        return edge

    def vertex(self, vertex_id) -> PoseVertex:
        return self.vertices[vertex_id]

    def edges_of(self, vertex_id) -> list[PoseEdge]:
        return list(self._adjacency[vertex_id])

    def _chi2(self) -> float:
        total = 0.0
        for edge in self.edges:
            e = edge.error(self.vertices[edge.source].estimate, self.vertices[edge.target].estimate)
            total += float(e @ edge.information @ e)
        return total

    def _linearize(self, index: dict[int, int]):
        size = 6 * len(index)
        hessian = np.zeros((size, size))
        gradient = np.zeros(size)
        eps = 1e-6
        for edge in self.edges:
            poses = {edge.source: self.vertices[edge.source].estimate,
                     edge.target: self.vertices[edge.target].estimate}
            e0 = edge.error(poses[edge.source], poses[edge.target])
            blocks = []
            for vertex_id in dict.fromkeys((edge.source, edge.target)):
                if vertex_id not in index:
                    continue
                jac = np.zeros((6, 6))
                for k in range(6):
                    delta = np.zeros(6)
                    delta[k] = eps
                    errors = []
                    for sign in (1.0, -1.0):
                        moved = dict(poses)
                        moved[vertex_id] = poses[vertex_id] @ _increment(sign * delta)
                        errors.append(edge.error(moved[edge.source], moved[edge.target]))
                    jac[:, k] = (errors[0] - errors[1]) / (2 * eps)
                blocks.append((index[vertex_id], jac))
            for i, ji in blocks:
                gradient[6 * i:6 * i + 6] += ji.T @ edge.information @ e0
                for j, jj in blocks:
                    hessian[6 * i:6 * i + 6, 6 * j:6 * j + 6] += ji.T @ edge.information @ jj
        return hessian, gradient

    def optimize(self, iterations) -> float:
        """Run Levenberg-Marquardt for at most ``iterations`` steps; return the final chi2."""
        free = [v for v in self.vertices.values() if not v.fixed]
        chi2 = self._chi2()
        if not free or not self.edges or iterations <= 0:
            return chi2
        index = {v.id: k for k, v in enumerate(free)}
        damping = None
        for _ in range(iterations):
            hessian, gradient = self._linearize(index)
            if damping is None:
                damping = 1e-5 * max(float(np.max(np.diag(hessian))), 1e-12)
            saved = {v.id: v.estimate.copy() for v in free}
            improved = False
            for _attempt in range(10):
                system = hessian + damping * np.eye(hessian.shape[0])
                try:
                    step = np.linalg.solve(system, -gradient)
                except np.linalg.LinAlgError:
                    damping *= 2
                    continue
                for vertex in free:
                    k = index[vertex.id]
                    vertex.estimate = saved[vertex.id] @ _increment(step[6 * k:6 * k + 6])
                trial = self._chi2()
                if trial < chi2:
                    improved = True
                    damping = max(damping / 3.0, 1e-12)
                    converged = chi2 - trial < 1e-12
                    chi2 = trial
                    break
                for vertex in free:
                    vertex.estimate = saved[vertex.id].copy()
                damping *= 2
            if not improved or converged:
                break
        return chi2


class SmoothEstimatePropagator:
    """Propagates pose constraints outward from a vertex, relaxing them with distance.

    Vertices close to the origin follow the edge constraints fully; far
    vertices stay almost where they were.
    """

    def __init__(self, graph: PoseGraph, max_distance=_DOUBLE_MAX, max_edge_cost=_DOUBLE_MAX):
        self.graph = graph
        self.max_distance = max_distance
        self.max_edge_cost = max_edge_cost

    def propagate(self, vertex_id) -> None:
        graph = self.graph
        graph.vertex(vertex_id)
        distance = {vid: _DOUBLE_MAX for vid in graph.vertices}
        level: dict[int, int] = {vertex_id: 0}
        parents: dict[int, set] = {vertex_id: set()}
        via: dict[int, PoseEdge] = {}
        distance[vertex_id] = 0.0
        counter = itertools.count()
        frontier = [(0.0, next(counter), vertex_id)]

        while frontier:
            u_distance, _, u = heapq.heappop(frontier)
            if u_distance > distance[u]:
                continue
            if level[u] > 0:
                self._smooth(via[u], parents[u], u, distance)
            for edge in graph.edges_of(u):
                ends = (edge.source, edge.target)
                initialized = {z for z in ends if distance[z] != _DOUBLE_MAX}
                max_frontier = max(level[z] for z in initialized)
                for z in ends:
                    if z == u:
                        continue
                    edge_cost = 1.0
                    if edge_cost >= self.max_edge_cost:
                        continue
                    z_distance = u_distance + edge_cost
                    if z_distance < distance[z] and z_distance < self.max_distance:
                        distance[z] = z_distance
                        parents[z] = initialized - {z}
                        via[z] = edge
                        level[z] = max_frontier + 1
                        heapq.heappush(frontier, (z_distance, next(counter), z))

    def _smooth(self, edge: PoseEdge, parents: set, vertex_id, distance: dict) -> None:
        if self.graph.vertex(vertex_id).fixed:
            return
        source = self.graph.vertex(edge.source)
        target = self.graph.vertex(edge.target)
        if edge.source in parents:
            target.estimate = exponential_interpolation(
                target.estimate, source.estimate @ edge.measurement,
                distance[edge.target], self.max_distance,
            )
        else:
            source.estimate = exponential_interpolation(
                source.estimate, target.estimate @ invert_isometry(edge.measurement),
                distance[edge.source], self.max_distance,
            )