# bhgrav/gravsim/octree/morton.py
"""
3D Morton (Z-order) keys for the dense octree grid.

Each axis gets 10 bits, interleaved with a 3-bit stride (x in bit 0, y in
bit 1, z in bit 2 of every triple), so a 30-bit key addresses a cell of a
2^10 grid and the key of a child cell is `(parent_key << 3) | octant`.
Coordinates are not range-checked: values outside 0..1023 silently wrap,
callers bound-check before encoding.
"""

import numpy as np
from numba import njit, prange, int64, void, types

int64_1d = types.Array(types.int64, 1, 'C')
int64_2d = types.Array(types.int64, 2, 'C')


@njit(int64(int64), cache=True, nogil=True)
def _spread_bits(v):
    """(Numba Kernel) Spreads the low 10 bits of v two zero bits apart."""
    v = (v | (v << 16)) & 0x030000ff
    v = (v | (v << 8)) & 0x0300f00f
    v = (v | (v << 4)) & 0x030c30c3
    v = (v | (v << 2)) & 0x09249249
    return v


@njit(int64(int64), cache=True, nogil=True)
def _compact_bits(v):
    """(Numba Kernel) Inverse of _spread_bits."""
    v &= 0x09249249
    v = (v ^ (v >> 2)) & 0x030c30c3
    v = (v ^ (v >> 4)) & 0x0300f00f
    v = (v ^ (v >> 8)) & 0x030000ff
    v = (v ^ (v >> 16)) & 0x000003ff
    return v


@njit(int64(int64, int64, int64), cache=True, nogil=True)
def morton_encode(x, y, z):
    """(Numba Kernel) Interleaves grid coordinates (x, y, z) into a Morton key."""
    return _spread_bits(x) | (_spread_bits(y) << 1) | (_spread_bits(z) << 2)


@njit(types.UniTuple(int64, 3)(int64), cache=True, nogil=True)
def morton_decode(key):
    """(Numba Kernel) Splits a Morton key back into grid coordinates (x, y, z)."""
    return _compact_bits(key), _compact_bits(key >> 1), _compact_bits(key >> 2)


@njit(int64(int64), cache=True, nogil=True)
def morton_parent(key):
    return key >> 3


@njit(int64(int64, int64), cache=True, nogil=True)
def morton_child(key, octant):
    return (key << 3) | (octant & 7)


@njit(void(int64_2d, int64_1d), cache=True, nogil=True, parallel=True)
def morton_encode_many(coords, keys_out):
    """(Numba Kernel) Encodes an (n, 3) array of grid coordinates in parallel."""
    for i in prange(coords.shape[0]):
        keys_out[i] = morton_encode(coords[i, 0], coords[i, 1], coords[i, 2])


@njit(void(int64_1d, int64_2d), cache=True, nogil=True, parallel=True)
def morton_decode_many(keys, coords_out):
    """(Numba Kernel) Decodes an array of keys into an (n, 3) coordinate array."""
    for i in prange(keys.shape[0]):
        x, y, z = morton_decode(keys[i])
        coords_out[i, 0] = x
        coords_out[i, 1] = y
        coords_out[i, 2] = z


def encode_coords(coords: np.ndarray) -> np.ndarray:
    """Encodes grid coordinates of shape (n, 3) into an int64 key array."""
    coords_c = np.require(coords, dtype=np.int64, requirements=['C'])
    if coords_c.ndim != 2 or coords_c.shape[1] != 3:
        raise ValueError(f"Expected coordinates of shape (n, 3), got {coords_c.shape}")
    keys = np.empty(coords_c.shape[0], dtype=np.int64)
    morton_encode_many(coords_c, keys)
    return keys


def decode_keys(keys: np.ndarray) -> np.ndarray:
    """Decodes an int64 key array into grid coordinates of shape (n, 3)."""
    keys_c = np.require(np.atleast_1d(keys), dtype=np.int64, requirements=['C'])
    coords = np.empty((keys_c.shape[0], 3), dtype=np.int64)
    morton_decode_many(keys_c, coords)
    return coords
