import math

import numpy as np
import pytest

from stereoslam.pose_graph import (
    PoseGraph,
    SmoothEstimatePropagator,
    exponential_interpolation,
    invert_isometry,
    make_isometry,
)


def _rot_z(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def _rot_x(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def test_make_isometry_places_parts():
    rotation = _rot_z(0.3)
    t = make_isometry(rotation, [1.0, 2.0, 3.0])
    assert np.allclose(t[:3, :3], rotation)
    assert np.allclose(t[:3, 3], [1.0, 2.0, 3.0])
    assert np.allclose(t[3], [0, 0, 0, 1])


def test_invert_isometry_round_trip():
    t = make_isometry(_rot_z(0.4) @ _rot_x(-0.2), [0.5, -1.0, 2.0])
    assert np.allclose(t @ invert_isometry(t), np.eye(4))
    assert np.allclose(invert_isometry(invert_isometry(t)), t)


def test_interpolation_step_one_reaches_end():
    start = make_isometry(np.eye(3), [0, 0, 0])
    end = make_isometry(_rot_z(0.5), [1.0, 2.0, 3.0])
    assert np.allclose(exponential_interpolation(start, end, 1, 10), end)


def test_interpolation_far_step_keeps_start():
    start = make_isometry(_rot_x(0.2), [4.0, 0.0, 0.0])
    end = make_isometry(_rot_z(0.5), [1.0, 2.0, 3.0])
    assert np.allclose(exponential_interpolation(start, end, 9, 10), start)


def test_interpolation_midway_is_between():
    start = make_isometry(np.eye(3), [0, 0, 0])
    end = make_isometry(np.eye(3), [2.0, 0, 0])
    mid = exponential_interpolation(start, end, 5, 10)
    assert 0.0 < mid[0, 3] < 2.0
    assert np.allclose(mid[:3, :3] @ mid[:3, :3].T, np.eye(3))


def test_interpolation_rejects_degenerate_distance():
    with pytest.raises(ValueError):
        exponential_interpolation(np.eye(4), np.eye(4), 1, 2)


def test_graph_errors():
    graph = PoseGraph()
    graph.add_vertex(0, np.eye(4), True)
    with pytest.raises(ValueError):
        graph.add_vertex(0, np.eye(4), False)
    with pytest.raises(KeyError):
        graph.add_edge(0, 1, np.eye(4))
    with pytest.raises(KeyError):
        graph.vertex(7)


def test_edges_of_lists_incident_edges():
    graph = PoseGraph()
    for i in range(3):
        graph.add_vertex(i, np.eye(4), i == 0)
    e01 = graph.add_edge(0, 1, np.eye(4))
    e12 = graph.add_edge(1, 2, np.eye(4))
    assert graph.edges_of(1) == [e01, e12]
    assert graph.edges_of(0) == [e01]


def _chain(length, step):
    graph = PoseGraph()
    for i in range(length):
        graph.add_vertex(i, np.eye(4), i == 0)
    for i in range(length - 1):
        graph.add_edge(i, i + 1, step)
    return graph


def test_propagation_follows_constraints_with_default_distance():
    step = make_isometry(_rot_z(0.1), [1.0, 0.0, 0.0])
    graph = _chain(4, step)
    SmoothEstimatePropagator(graph).propagate(0)
    expected = np.eye(4)
    for i in range(4):
        assert np.allclose(graph.vertex(i).estimate, expected)
        expected = expected @ step


def test_propagation_relaxes_with_distance():
    step = make_isometry(np.eye(3), [1.0, 0.0, 0.0])
    graph = _chain(5, step)
    SmoothEstimatePropagator(graph, max_distance=4).propagate(0)
    assert np.allclose(graph.vertex(1).estimate, step)
    x2 = graph.vertex(2).estimate[0, 3]
    assert 0.0 < x2 < 2.0
    assert np.allclose(graph.vertex(3).estimate, np.eye(4))
    assert np.allclose(graph.vertex(4).estimate, np.eye(4))


def test_propagation_leaves_fixed_vertex():
    step = make_isometry(np.eye(3), [1.0, 0.0, 0.0])
    graph = PoseGraph()
    graph.add_vertex(0, np.eye(4), False)
    fixed_pose = make_isometry(np.eye(3), [5.0, 5.0, 5.0])
    graph.add_vertex(1, fixed_pose, True)
    graph.add_edge(0, 1, step)
    SmoothEstimatePropagator(graph).propagate(0)
    assert np.allclose(graph.vertex(1).estimate, fixed_pose)


def test_propagation_backwards_along_edge():
    step = make_isometry(np.eye(3), [1.0, 0.0, 0.0])
    graph = PoseGraph()
    graph.add_vertex(0, np.eye(4), False)
    graph.add_vertex(1, make_isometry(np.eye(3), [3.0, 0.0, 0.0]), True)
    graph.add_edge(0, 1, step)
    SmoothEstimatePropagator(graph).propagate(1)
    assert np.allclose(graph.vertex(0).estimate, graph.vertex(1).estimate @ invert_isometry(step))


def test_optimize_recovers_measurement():
    measurement = make_isometry(_rot_z(0.1), [1.0, 0.0, 0.0])
    graph = PoseGraph()
    graph.add_vertex(0, np.eye(4), True)
    graph.add_vertex(1, make_isometry(_rot_x(0.05), [0.3, -0.2, 0.5]), False)
    graph.add_edge(0, 1, measurement)
    chi2 = graph.optimize(20)
    assert chi2 < 1e-10
    assert np.allclose(graph.vertex(1).estimate, measurement, atol=1e-5)


def test_optimize_reduces_error_of_loop():
    step = make_isometry(np.eye(3), [1.0, 0.0, 0.0])
    graph = _chain(4, step)
    graph.add_edge(0, 3, make_isometry(np.eye(3), [2.5, 0.0, 0.0]))
    for i in range(4):
        graph.vertex(i).estimate = make_isometry(np.eye(3), [float(i), 0.0, 0.0])
    before = graph.optimize(0)
    after = graph.optimize(10)
    assert after < before
    assert np.allclose(graph.vertex(0).estimate, np.eye(4))