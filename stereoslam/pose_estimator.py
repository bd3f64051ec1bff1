"""Absolute pose estimation from 3D points and bearing vectors.

RANSAC over a minimal solver rejects outliers, an optional generic solver
re-estimates the pose from all inliers, and an optional non-linear step
refines the result.
"""

from __future__ import annotations

import math
from enum import Enum

import numpy as np
from numpy.polynomial import polynomial as poly

_RANSAC_PROBABILITY = 0.99
_DEFAULT_FOCAL_LENGTH = 800.0
_DEFAULT_PIXEL_TOLERANCE = 0.5
_DEFAULT_ITERATIONS = 50
_MIN_INLIERS_FOR_REFINEMENT = 4
_MIN_POINTS_FOR_LINEAR = 6


class EstimatorType(Enum):
    """Camera model of the estimation problem."""

    CENTRAL = "central"
    NONCENTRAL = "noncentral"


class MinimalAlgorithm(Enum):
    """Solver used on the minimal samples drawn by RANSAC."""

    KNEIP = "kneip"
    GAO = "gao"
    EPNP = "epnp"
    GP3P = "gp3p"


class GenericAlgorithm(Enum):
    """Solver used on all inliers once RANSAC is done."""

    NONE = "none"
    EPNP = "epnp"
    GPNP = "gpnp"
    UPNP = "upnp"


def pixel_threshold(pixels, focal_length) -> float:
    """Angular RANSAC threshold equivalent to a reprojection tolerance in pixels."""
    return 1.0 - math.cos(math.atan(pixels / focal_length))


def bearing_vector(point, intrinsics) -> np.ndarray:
    """Unit vector from the camera centre towards an image point.

    The camera looks along +Z; ``intrinsics`` is the 3x3 calibration matrix.
    """
    k = np.asarray(intrinsics, dtype=float)
    x, y = float(point[0]), float(point[1])
    vector = np.array([x - k[0, 2], y - k[1, 2], k[0, 0]])
    return vector / np.linalg.norm(vector)


def triangulate(bearing1, bearing2, translation, rotation) -> np.ndarray:
    """Linear triangulation of one point seen by two cameras.

    ``translation`` is the position of the second camera in the first
    camera's frame and ``rotation`` takes directions from the second
    camera's frame to the first's. The point is returned in the first
    camera's frame.
    """
    f1 = np.asarray(bearing1, dtype=float).reshape(3)
    f2 = np.asarray(bearing2, dtype=float).reshape(3)
    t = np.asarray(translation, dtype=float).reshape(3)
    r = np.asarray(rotation, dtype=float).reshape(3, 3)

    p1 = np.hstack([np.eye(3), np.zeros((3, 1))])
    p2 = np.hstack([r.T, (-r.T @ t)[:, None]])
    system = np.array([
        f1[0] * p1[2] - f1[2] * p1[0],
        f1[1] * p1[2] - f1[2] * p1[1],
        f2[0] * p2[2] - f2[2] * p2[0],
        f2[1] * p2[2] - f2[2] * p2[1],
    ])
    _, _, vt = np.linalg.svd(system)
    homogeneous = vt[-1]
    if homogeneous[3] == 0:
        raise ValueError("the rays do not meet at a finite point")
    return homogeneous[:3] / homogeneous[3]


def _skew(v: np.ndarray) -> np.ndarray:
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0],
    ])


def _rotation_from_vector(w: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(w))
    if theta == 0.0:
        return np.eye(3)
    k = _skew(w / theta)
    return np.eye(3) + math.sin(theta) * k + (1.0 - math.cos(theta)) * (k @ k)


def _camera_points(model: np.ndarray, points: np.ndarray) -> np.ndarray:
    # model is [R | t]: R takes camera directions to the world, t is the camera position.
    return (points - model[:, 3]) @ model[:, :3]


def _scores(model: np.ndarray, points: np.ndarray, bearings: np.ndarray) -> np.ndarray:
    cam = _camera_points(model, points)
    norms = np.linalg.norm(cam, axis=1)
    safe = np.where(norms > 0, norms, 1.0)
    cosines = np.einsum("ij,ij->i", cam, bearings) / safe
    return np.where(norms > 0, 1.0 - cosines, 2.0)


def _align(camera_points: np.ndarray, world_points: np.ndarray) -> np.ndarray:
    cam_centre = camera_points.mean(axis=0)
    world_centre = world_points.mean(axis=0)
    h = (camera_points - cam_centre).T @ (world_points - world_centre)
    u, _, vt = np.linalg.svd(h)
    d = np.diag([1.0, 1.0, float(np.sign(np.linalg.det(vt.T @ u.T))) or 1.0])
    rotation = vt.T @ d @ u.T
    translation = world_centre - rotation @ cam_centre
    return np.hstack([rotation, translation[:, None]])


def _p3p(points: np.ndarray, bearings: np.ndarray) -> list[np.ndarray]:
    """All poses consistent with three point-bearing pairs."""
    p1, p2, p3 = points
    f1, f2, f3 = bearings
    a2 = float(np.sum((p2 - p3) ** 2))
    b2 = float(np.sum((p1 - p3) ** 2))
    c2 = float(np.sum((p1 - p2) ** 2))
    if min(a2, b2, c2) <= 1e-18:
        return []
    cos_a = float(f2 @ f3)
    cos_b = float(f1 @ f3)
    cos_g = float(f1 @ f2)

    # Depths s2 = u*s1, s3 = v*s1; two quadratics in u whose coefficients are
    # polynomials in v. Their resultant vanishes at the admissible v.
    d = np.array([1.0, -2.0 * cos_b, 1.0])
    p_2 = np.array([b2])
    p_1 = np.array([-2.0 * b2 * cos_g])
    p_0 = poly.polysub([b2], c2 * d)
    q_2 = np.array([b2])
    q_1 = np.array([0.0, -2.0 * b2 * cos_a])
    q_0 = poly.polysub([0.0, 0.0, b2], a2 * d)

    first = poly.polysub(poly.polymul(p_2, q_0), poly.polymul(p_0, q_2))
    second = poly.polysub(poly.polymul(p_2, q_1), poly.polymul(p_1, q_2))
    third = poly.polysub(poly.polymul(p_1, q_0), poly.polymul(p_0, q_1))
    resultant = poly.polysub(poly.polymul(first, first), poly.polymul(second, third))
    scale = float(np.max(np.abs(resultant)))
    if scale == 0.0:
        return []
    resultant = poly.polytrim(resultant / scale, 1e-14)
    if len(resultant) < 2:
        return []

    solutions = []
    for root in poly.polyroots(resultant):
        if abs(root.imag) > 1e-8 * (1.0 + abs(root.real)):
            continue
        v = float(root.real)
        numerator = poly.polyval(v, p_0) - poly.polyval(v, q_0)
        denominator = poly.polyval(v, p_1) - poly.polyval(v, q_1)
        if abs(denominator) < 1e-15:
            continue
        u = -numerator / denominator
        dv = 1.0 + v * v - 2.0 * v * cos_b
        if dv <= 0:
            continue
        s1 = math.sqrt(b2 / dv)
        s2, s3 = u * s1, v * s1
        if s2 <= 0 or s3 <= 0:
            continue
        cam = np.array([s1 * f1, s2 * f2, s3 * f3])
        solutions.append(_align(cam, points))
    return solutions


def _linear_pose(points: np.ndarray, bearings: np.ndarray) -> np.ndarray | None:
    """Direct linear estimate of the pose from six or more correspondences."""
    centroid = points.mean(axis=0)
    spread = math.sqrt(float(np.mean(np.sum((points - centroid) ** 2, axis=1))))
    if spread == 0.0:
        return None
    normalized = (points - centroid) / spread
    rows = []
    for point, bearing in zip(normalized, bearings):
        homogeneous = np.append(point, 1.0)
        skew = _skew(bearing)
        rows.extend(np.kron(skew_row, homogeneous) for skew_row in skew)
    _, _, vt = np.linalg.svd(np.array(rows))
    projection = vt[-1].reshape(3, 4)

    normalizer = np.eye(4)
    normalizer[:3, :3] /= spread
    normalizer[:3, 3] = -centroid / spread
    projection = projection @ normalizer

    m = projection[:, :3]
    det = float(np.linalg.det(m))
    if det == 0.0:
        return None
    if det < 0:
        projection = -projection
        m = -m
    u, s, vt = np.linalg.svd(m)
    rotation = u @ vt
    translation = projection[:, 3] / float(s.mean())
    return np.hstack([rotation.T, (-rotation.T @ translation)[:, None]])


def _residuals(model: np.ndarray, points: np.ndarray, bearings: np.ndarray) -> np.ndarray:
    cam = _camera_points(model, points)
    cam = cam / np.linalg.norm(cam, axis=1, keepdims=True)
    return (cam - bearings).ravel()


def _perturb(model: np.ndarray, delta: np.ndarray) -> np.ndarray:
    rotation = model[:, :3] @ _rotation_from_vector(delta[:3])
    return np.hstack([rotation, (model[:, 3] + delta[3:])[:, None]])


def _refine(model: np.ndarray, points: np.ndarray, bearings: np.ndarray, iterations: int = 20) -> np.ndarray:
    """Levenberg-Marquardt on the bearing residuals of the inliers."""
    current = model
    residual = _residuals(current, points, bearings)
    cost = float(residual @ residual)
    damping = 1e-3
    eps = 1e-7
    for _ in range(iterations):
        if cost < 1e-24:
            break
        jacobian = np.empty((residual.size, 6))
        for k in range(6):
            delta = np.zeros(6)
            delta[k] = eps
            forward = _residuals(_perturb(current, delta), points, bearings)
            backward = _residuals(_perturb(current, -delta), points, bearings)
            jacobian[:, k] = (forward - backward) / (2 * eps)
        hessian = jacobian.T @ jacobian
        gradient = jacobian.T @ residual
        improved = False
        for _attempt in range(10):
            try:
                step = np.linalg.solve(hessian + damping * np.eye(6), -gradient)
            except np.linalg.LinAlgError:
                damping *= 10
                continue
            candidate = _perturb(current, step)
            candidate_residual = _residuals(candidate, points, bearings)
            candidate_cost = float(candidate_residual @ candidate_residual)
            if candidate_cost < cost:
                converged = cost - candidate_cost < 1e-15 * max(cost, 1.0)
                current, residual, cost = candidate, candidate_residual, candidate_cost
                damping = max(damping / 10, 1e-12)
                improved = True
                break
            damping *= 10
        if not improved or converged:
            break
    return current


class PoseEstimator:
    """Robust absolute pose estimator for a central camera."""

    def __init__(
        self,
        estimator_type: EstimatorType = EstimatorType.CENTRAL,
        minimal_method: MinimalAlgorithm = MinimalAlgorithm.KNEIP,
        generic_method: GenericAlgorithm = GenericAlgorithm.NONE,
        nonlinear_optimization: bool = False,
        seed=None,
    ) -> None:
        self.estimator_type = EstimatorType(estimator_type)
        self.minimal_method = MinimalAlgorithm(minimal_method)
        self.generic_method = GenericAlgorithm(generic_method)
        self.nonlinear_optimization = nonlinear_optimization
        self.ransac_threshold = pixel_threshold(_DEFAULT_PIXEL_TOLERANCE, _DEFAULT_FOCAL_LENGTH)
        self.ransac_iterations = _DEFAULT_ITERATIONS
        self._rng = np.random.default_rng(seed)

    def set_ransac_threshold(self, threshold) -> None:
        self.ransac_threshold = float(threshold)

    def set_ransac_pixel_threshold(self, pixels, focal_length) -> None:
        self.ransac_threshold = pixel_threshold(pixels, focal_length)

    def set_ransac_iterations(self, iterations) -> None:
        self.ransac_iterations = int(iterations)

    @property
    def _sample_size(self) -> int:
        return _MIN_POINTS_FOR_LINEAR if self.minimal_method is MinimalAlgorithm.EPNP else 4

    def _minimal_model(self, points: np.ndarray, bearings: np.ndarray) -> np.ndarray | None:
        if self.minimal_method is MinimalAlgorithm.EPNP:
            return _linear_pose(points, bearings)
        candidates = _p3p(points[:3], bearings[:3])
        if not candidates:
            return None
        return min(candidates, key=lambda m: float(_scores(m, points[3:], bearings[3:]).sum()))

    def _ransac(self, points: np.ndarray, bearings: np.ndarray):
        n = len(points)
        size = self._sample_size
        best_model = None
        best_inliers = np.empty(0, dtype=int)
        needed = math.inf
        iterations = 0
        while iterations < self.ransac_iterations and iterations < needed:
            iterations += 1
            sample = self._rng.choice(n, size=size, replace=False)
            model = self._minimal_model(points[sample], bearings[sample])
            if model is None:
                continue
            inliers = np.flatnonzero(_scores(model, points, bearings) < self.ransac_threshold)
            if len(inliers) > len(best_inliers):
                best_model, best_inliers = model, inliers
                all_inliers = (len(inliers) / n) ** size
                if all_inliers >= 1.0:
                    needed = 0
                elif all_inliers > 0.0:
                    needed = math.log(1 - _RANSAC_PROBABILITY) / math.log(1 - all_inliers)
        return best_model, best_inliers

    def estimate_pose(self, points, bearing_vectors, reference_pose=None):
        """Estimate the pose of the camera that sees ``points`` along ``bearing_vectors``.

        ``points`` are expressed in the frame of ``reference_pose`` (identity
        when omitted). Returns the number of RANSAC inliers and the 4x4 pose
        of the camera in the world frame.
        """
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        bvs = np.asarray(bearing_vectors, dtype=float).reshape(-1, 3)
        if len(pts) != len(bvs):
            raise ValueError(f"{len(pts)} points but {len(bvs)} bearing vectors")
        norms = np.linalg.norm(bvs, axis=1, keepdims=True)
        if np.any(norms == 0):
            raise ValueError("bearing vectors must not be zero")
        bvs = bvs / norms
        if len(pts) < self._sample_size:
            raise ValueError(
                f"at least {self._sample_size} correspondences are needed, got {len(pts)}"
            )

        estimation, inliers = self._ransac(pts, bvs)
        if estimation is None:
            raise ValueError("no pose hypothesis is consistent with the data")

        if len(inliers) >= _MIN_INLIERS_FOR_REFINEMENT:
            if (
                self.generic_method in (GenericAlgorithm.EPNP, GenericAlgorithm.UPNP)
                and len(inliers) >= _MIN_POINTS_FOR_LINEAR
            ):
                linear = _linear_pose(pts[inliers], bvs[inliers])
                if linear is not None:
                    estimation = linear
            if self.nonlinear_optimization:
                estimation = _refine(estimation, pts[inliers], bvs[inliers])

        relative = np.eye(4)
        relative[:3, :] = estimation
        reference = np.eye(4) if reference_pose is None else np.asarray(reference_pose, dtype=float)
        return len(inliers), reference @ relative