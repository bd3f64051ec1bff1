"""Binary descriptor helpers for BRISK-style descriptors of 64 bytes."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

DESCRIPTOR_LENGTH = 64
"""Length of a descriptor in bytes."""

_BITS = DESCRIPTOR_LENGTH * 8


def _as_bytes(descriptor) -> np.ndarray:
    return np.asarray(descriptor, dtype=np.uint8).reshape(-1)


def mean_value(descriptors: Sequence) -> np.ndarray | None:
    """Bitwise majority of the descriptors.

    Returns None for an empty sequence and a copy of the only descriptor
    when there is just one. A bit is set when at least half of the
    descriptors (rounded up) have it set.
    """
    rows = [_as_bytes(d) for d in descriptors]
    if not rows:
        return None
    if len(rows) == 1:
        return rows[0].copy()

    sums = np.zeros(_BITS, dtype=np.int64)
    for row in rows:
        bits = np.unpackbits(row)
        if bits.size > _BITS:
            raise ValueError(
                f"descriptor longer than {DESCRIPTOR_LENGTH} bytes: {row.size}"
            )
        sums[: bits.size] += bits

    count = len(rows)
    threshold = count // 2 + count % 2
    return np.packbits(sums >= threshold)


def distance(a, b) -> float:
    """Hamming distance over the whole 8-byte words of the descriptors."""
    first = _as_bytes(a)
    second = _as_bytes(b)
    used = (first.size // 8) * 8
    if second.size < used:
        raise ValueError("second descriptor is shorter than the first")
    xor = np.bitwise_xor(first[:used], second[:used])
    return float(np.unpackbits(xor).sum())


def to_string(a) -> str:
    """Bytes of the descriptor as decimal numbers, each followed by a space."""
    return "".join(f"{int(value)} " for value in _as_bytes(a))


def from_string(s: str) -> np.ndarray:
    """Parse a descriptor written by :func:`to_string`.

    Reading stops at the first token that is not an integer; bytes that
    were not read stay zero.
    """
    result = np.zeros(DESCRIPTOR_LENGTH, dtype=np.uint8)
    for index, token in zip(range(DESCRIPTOR_LENGTH), s.split()):
        try:
            number = int(token)
        except ValueError:
            break
        result[index] = number & 0xFF
    return result


def to_mat32f(descriptors) -> np.ndarray:
    """Descriptors as a float matrix.

    A two-dimensional array of bytes is converted element by element.
    A sequence of descriptors is expanded to one 0/1 value per bit,
    most significant bit first, giving an N x 512 matrix.
    """
    if isinstance(descriptors, np.ndarray) and descriptors.ndim == 2:
        return descriptors.astype(np.float32)

    rows = [_as_bytes(d) for d in descriptors]
    result = np.zeros((len(rows), _BITS), dtype=np.float32)
    for out, row in zip(result, rows):
        bits = np.unpackbits(row)
        if bits.size > _BITS:
            raise ValueError(
                f"descriptor longer than {DESCRIPTOR_LENGTH} bytes: {row.size}"
            )
        out[: bits.size] = bits
    return result


def to_mat8u(descriptors: Sequence) -> np.ndarray:
    """Stack descriptors into an N x 64 matrix of bytes."""
    rows = [_as_bytes(d) for d in descriptors]
    result = np.zeros((len(rows), DESCRIPTOR_LENGTH), dtype=np.uint8)
    for out, row in zip(result, rows):
        if row.size < DESCRIPTOR_LENGTH:
            raise ValueError(
                f"descriptor shorter than {DESCRIPTOR_LENGTH} bytes: {row.size}"
            )
        out[:] = row[:DESCRIPTOR_LENGTH]
    return result