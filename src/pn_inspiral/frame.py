from __future__ import annotations

from typing import Tuple

import numpy as np
from numpy.typing import NDArray

# Quaternions are stored scalar-first: (w, x, y, z).


def normalize_quaternion(R: NDArray) -> NDArray:
    R = np.asarray(R)
    norm = np.sqrt(np.sum(R * R))
    if norm == 0 or not np.isfinite(norm):
        return R.copy()
    return R / norm


def conjugate(R: NDArray) -> NDArray:
    R = np.asarray(R)
    return np.array([R[0], -R[1], -R[2], -R[3]], dtype=R.dtype)


def quaternion_multiply(a: NDArray, b: NDArray) -> NDArray:
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array([
        aw*bw - ax*bx - ay*by - az*bz,
        aw*bx + ax*bw + ay*bz - az*by,
        aw*by - ax*bz + ay*bw + az*bx,
        aw*bz + ax*by - ay*bx + az*bw,
    ], dtype=np.result_type(np.asarray(a).dtype, np.asarray(b).dtype))


def pure(vec: NDArray) -> NDArray:
    """Embed a 3-vector as a quaternion with zero scalar part."""
    vec = np.asarray(vec)
    out = np.zeros(4, dtype=vec.dtype)
    out[1:] = vec
    return out


def rotate(R: NDArray, vec: NDArray) -> NDArray:
    """R vec R-bar for a unit quaternion R."""
    return quaternion_multiply(quaternion_multiply(R, pure(vec)), conjugate(R))[1:]


def rotation_matrix(R: NDArray) -> NDArray:
    w, x, y, z = normalize_quaternion(R)
    return np.array([
        [1 - 2*(y*y + z*z), 2*(x*y - w*z), 2*(x*z + w*y)],
        [2*(x*y + w*z), 1 - 2*(x*x + z*z), 2*(y*z - w*x)],
        [2*(x*z - w*y), 2*(y*z + w*x), 1 - 2*(x*x + y*y)],
    ])


def frame_vectors(R: NDArray) -> Tuple[NDArray, NDArray, NDArray]:
    """Orbital frame (n-hat, lambda-hat, ell-hat) as the columns of the rotor's matrix.

    n-hat points from body 2 to body 1, ell-hat along the Newtonian orbital
    angular momentum, and lambda-hat = ell-hat x n-hat.
    """
    m = rotation_matrix(R)
    return m[:, 0], m[:, 1], m[:, 2]


def exp_z(phi: float) -> NDArray:
    """Rotor for a rotation by phi about z."""
    return np.array([np.cos(phi / 2), 0.0, 0.0, np.sin(phi / 2)])
