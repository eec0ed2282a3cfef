# bhgrav/tests/test_morton.py
"""
Tests for Morton keys.

Validates:
1. Bit interleaving order (x lowest)
2. Decode inverts encode over the full 10-bit range
3. Parent / child key arithmetic
"""

import numpy as np
import pytest

from gravsim.octree.morton import (
    morton_encode,
    morton_decode,
    morton_parent,
    morton_child,
    encode_coords,
    decode_keys,
)


class TestEncode:
    """Tests for single-key interleaving."""

    def test_axis_bits(self):
        assert morton_encode(1, 0, 0) == 1
        assert morton_encode(0, 1, 0) == 2
        assert morton_encode(0, 0, 1) == 4
        assert morton_encode(1, 1, 1) == 7

    def test_second_bit(self):
        assert morton_encode(2, 0, 0) == 8
        assert morton_encode(3, 3, 3) == 63

    def test_max_coordinate(self):
        assert morton_encode(1023, 1023, 1023) == (1 << 30) - 1

    def test_decode_inverts_encode(self):
        rng = np.random.default_rng(7)
        coords = rng.integers(0, 1024, size=(500, 3))
        for x, y, z in coords:
            assert morton_decode(morton_encode(x, y, z)) == (x, y, z)


class TestHierarchy:
    """Parent/child relationships of keys."""

    def test_child_of_parent(self):
        key = morton_encode(5, 9, 12)
        for octant in range(8):
            assert morton_parent(morton_child(key, octant)) == key

    def test_parent_halves_coordinates(self):
        key = morton_encode(6, 11, 3)
        assert morton_decode(morton_parent(key)) == (3, 5, 1)

    def test_child_octant_bits(self):
        # octant bit 0 is x, bit 1 is y, bit 2 is z
        assert morton_decode(morton_child(0, 1)) == (1, 0, 0)
        assert morton_decode(morton_child(0, 6)) == (0, 1, 1)


class TestArrayWrappers:
    """Vectorised encode/decode helpers."""

    def test_round_trip_array(self):
        coords = np.array([[0, 0, 0], [1, 2, 3], [1023, 0, 511]])
        keys = encode_coords(coords)
        assert keys.dtype == np.int64
        np.testing.assert_array_equal(decode_keys(keys), coords)

    def test_bad_shape_raises(self):
        with pytest.raises(ValueError):
            encode_coords(np.zeros((4, 2), dtype=np.int64))

    def test_scalar_key(self):
        np.testing.assert_array_equal(decode_keys(7), [[1, 1, 1]])
