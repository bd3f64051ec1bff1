import numpy as np
import pytest

from stereoslam.stereo_matcher import (
    BruteForceMatcher,
    DMatch,
    Norm,
    SDMatch,
    StereoMatcher,
    hamming_distance,
    match_stereo_descriptors,
)

A = [0x00] * 4
B = [0xFF] * 4
C = [0x0F] * 4
D = [0xF0] * 4


def _frames():
    d1 = np.array([A, B], dtype=np.uint8)
    d2 = np.array([C, D], dtype=np.uint8)
    d3 = np.array([A, B], dtype=np.uint8)
    d4 = np.array([C, D], dtype=np.uint8)
    return d1, d2, d3, d4


def test_hamming_distance_all_bits():
    assert hamming_distance([0xFF], [0x00]) == 8


def test_hamming_distance_identical_is_zero():
    assert hamming_distance(B, B) == 0


def test_hamming_distance_symmetric():
    assert hamming_distance(A, C) == hamming_distance(C, A)


def test_hamming_distance_length_mismatch():
    with pytest.raises(ValueError):
        hamming_distance([1, 2], [1])


def test_radius_match_sorted_and_strict():
    matcher = BruteForceMatcher()
    query = np.array([A], dtype=np.uint8)
    train = np.array([B, A, C], dtype=np.uint8)
    result = matcher.radius_match(query, train, 16)
    # distance 16 is not strictly below the radius
    assert [m.train_idx for m in result[0]] == [1]
    result = matcher.radius_match(query, train, 100)
    distances = [m.distance for m in result[0]]
    assert distances == sorted(distances)
    assert all(m.query_idx == 0 for m in result[0])


def test_radius_match_empty_train():
    matcher = BruteForceMatcher()
    assert matcher.radius_match(np.array([A], dtype=np.uint8), np.zeros((0, 4)), 10) == [[]]


def test_radius_match_l2():
    matcher = BruteForceMatcher(Norm.L2)
    result = matcher.radius_match([[0.0, 0.0]], [[3.0, 4.0]], 10)
    assert result[0][0].distance == pytest.approx(5.0)


def test_consistent_four_way_match():
    d1, d2, d3, d4 = _frames()
    m12 = [DMatch(0, 0), DMatch(1, 1)]
    m34 = [DMatch(0, 0), DMatch(1, 1)]
    matches = match_stereo_descriptors(BruteForceMatcher(), 10, d1, d2, m12, d3, d4, m34)
    assert len(matches) == 2
    for k, sd in enumerate(matches):
        assert isinstance(sd, SDMatch)
        assert sd.m1vs2 == m12[k]
        assert sd.m1vs3.train_idx == k
        assert sd.m2vs4.train_idx == k
        assert sd.m3vs4.train_idx == sd.m2vs4.train_idx


def test_inconsistent_34_relation_rejected():
    d1, d2, d3, d4 = _frames()
    m12 = [DMatch(0, 0), DMatch(1, 1)]
    m34 = [DMatch(0, 1), DMatch(1, 0)]
    assert StereoMatcher(10).match(d1, d2, m12, d3, d4, m34) == []


def test_ambiguous_matches_rejected():
    d1, d2, _, d4 = _frames()
    d3 = np.array([A, A], dtype=np.uint8)
    m12 = [DMatch(0, 0)]
    m34 = [DMatch(0, 0), DMatch(1, 0)]
    assert StereoMatcher(10).match(d1, d2, m12, d3, d4, m34) == []


def test_no_match_beyond_radius():
    d1, d2, d3, d4 = _frames()
    d3 = np.array([B, A], dtype=np.uint8)
    m12 = [DMatch(0, 0)]
    m34 = [DMatch(0, 0)]
    assert StereoMatcher(1).match(d1, d2, m12, d3, d4, m34) == []