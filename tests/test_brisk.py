import numpy as np
import pytest

from stereoslam import brisk


def _random_descriptor(seed):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=brisk.DESCRIPTOR_LENGTH, dtype=np.uint8)


def test_mean_of_empty_is_none():
    assert brisk.mean_value([]) is None


def test_mean_of_single_is_copy():
    d = _random_descriptor(1)
    mean = brisk.mean_value([d])
    assert np.array_equal(mean, d)
    mean[0] ^= 0xFF
    assert not np.array_equal(mean, d)


def test_mean_of_identical_descriptors():
    d = _random_descriptor(2)
    assert np.array_equal(brisk.mean_value([d, d, d]), d)


def test_mean_majority_vote():
    a = _random_descriptor(3)
    b = _random_descriptor(4)
    assert np.array_equal(brisk.mean_value([a, a, b]), a)


def test_mean_tie_sets_bit():
    zeros = np.zeros(brisk.DESCRIPTOR_LENGTH, dtype=np.uint8)
    ones = np.full(brisk.DESCRIPTOR_LENGTH, 0xFF, dtype=np.uint8)
    assert np.array_equal(brisk.mean_value([zeros, ones]), ones)


def test_distance_to_self_is_zero():
    d = _random_descriptor(5)
    assert brisk.distance(d, d) == 0


def test_distance_is_symmetric():
    a = _random_descriptor(6)
    b = _random_descriptor(7)
    assert brisk.distance(a, b) == brisk.distance(b, a)


def test_distance_to_complement_counts_all_bits():
    d = _random_descriptor(8)
    assert brisk.distance(d, np.bitwise_not(d)) == d.size * 8


def test_distance_ignores_partial_word():
    a = np.zeros(4, dtype=np.uint8)
    b = np.full(4, 0xFF, dtype=np.uint8)
    assert brisk.distance(a, b) == 0


def test_distance_second_too_short():
    with pytest.raises(ValueError):
        brisk.distance(_random_descriptor(9), np.zeros(8, dtype=np.uint8))


def test_to_string_format():
    assert brisk.to_string([1, 2, 255]) == "1 2 255 "


def test_string_round_trip():
    d = _random_descriptor(10)
    assert np.array_equal(brisk.from_string(brisk.to_string(d)), d)


def test_from_string_stops_at_bad_token():
    result = brisk.from_string("5 7 x 9")
    assert result.size == brisk.DESCRIPTOR_LENGTH
    assert list(result[:2]) == [5, 7]
    assert not result[2:].any()


def test_to_mat32f_bits_round_trip():
    rows = [_random_descriptor(11), _random_descriptor(12)]
    bits = brisk.to_mat32f(rows)
    assert bits.shape == (2, brisk.DESCRIPTOR_LENGTH * 8)
    assert bits.dtype == np.float32
    packed = np.packbits(bits.astype(np.uint8), axis=1)
    assert np.array_equal(packed, np.stack(rows))


def test_to_mat32f_empty_sequence():
    assert brisk.to_mat32f([]).shape[0] == 0


def test_to_mat32f_matrix_converts_values():
    matrix = np.stack([_random_descriptor(13), _random_descriptor(14)])
    converted = brisk.to_mat32f(matrix)
    assert converted.shape == matrix.shape
    assert np.array_equal(converted, matrix.astype(np.float32))


def test_to_mat8u_stacks_rows():
    rows = [_random_descriptor(15), _random_descriptor(16), _random_descriptor(17)]
    stacked = brisk.to_mat8u(rows)
    assert np.array_equal(stacked, np.stack(rows))


def test_to_mat8u_short_descriptor():
    with pytest.raises(ValueError):
        brisk.to_mat8u([np.zeros(3, dtype=np.uint8)])