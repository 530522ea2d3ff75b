"""Binary state: the full ODE vector plus the derived combinations PN terms use."""

from __future__ import annotations

from fractions import Fraction
from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from .errors import ConfigurationError, InvalidParameters
from .frame import frame_vectors, normalize_quaternion
from .series import UNBOUNDED

# Layout of the state vector.
I_M1, I_M2 = 0, 1
I_CHI1 = slice(2, 5)
I_CHI2 = slice(5, 8)
I_R = slice(8, 12)
I_V = 12
I_PHI = 13
I_LAMBDA1, I_LAMBDA2 = 14, 15

N_VARS_BBH = 14
N_VARS_MATTER = 16

_NAMES = (
    "M1", "M2",
    "chi1x", "chi1y", "chi1z",
    "chi2x", "chi2y", "chi2z",
    "Rw", "Rx", "Ry", "Rz",
    "v", "Phi",
    "Lambda1", "Lambda2",
)


def variable_names(n: int = N_VARS_BBH) -> Tuple[str, ...]:
    if n not in (N_VARS_BBH, N_VARS_MATTER):
        raise ValueError(f"state vectors have {N_VARS_BBH} or {N_VARS_MATTER} entries, got {n}")
    return _NAMES[:n]


def spin_tolerance(dtype=np.float64) -> float:
    # |chi| may graze 1 by a few ulps
    return float(64 * np.finfo(dtype).eps)


def prepare_pn_order(pn_order) -> Optional[Fraction]:
    """Round to the nearest half-integer; None or inf means every known term."""
    if pn_order is None:
        return None
    if isinstance(pn_order, float) and np.isinf(pn_order):
        if pn_order > 0:
            return None
        raise ConfigurationError("pn_order must be non-negative")
    order = Fraction(round(2 * float(pn_order)), 2)
    if order < 0:
        raise ConfigurationError(f"pn_order must be non-negative, got {pn_order}")
    return order


def v_of_omega(Omega, M):
    return (M * Omega) ** (1.0 / 3.0)


def omega_of_v(v, M):
    return v**3 / M


class BinaryState:
    """Owned state of one compact binary.

    The vector is only replaced wholesale through ``assign``; every accessor
    returns a copy or a scalar so callers cannot edit it piecemeal.
    """

    __slots__ = ("_y", "pn_order", "dtype")

    def __init__(self, M1: float, M2: float,
                 chi1: Sequence[float], chi2: Sequence[float],
                 v: float,
                 R: Sequence[float] = (1.0, 0.0, 0.0, 0.0),
                 Phi: float = 0.0,
                 Lambda1: float = 0.0,
                 Lambda2: float = 0.0,
                 pn_order=None,
                 dtype=np.float64):
        self.dtype = np.dtype(dtype)
        self.pn_order = prepare_pn_order(pn_order)
        matter = (Lambda1 != 0) or (Lambda2 != 0)
        y = np.zeros(N_VARS_MATTER if matter else N_VARS_BBH, dtype=self.dtype)
        y[I_M1] = M1
        y[I_M2] = M2
        y[I_CHI1] = np.asarray(chi1, dtype=self.dtype)
        y[I_CHI2] = np.asarray(chi2, dtype=self.dtype)
        y[I_R] = normalize_quaternion(np.asarray(R, dtype=self.dtype))
        y[I_V] = v
        y[I_PHI] = Phi
        if matter:
            y[I_LAMBDA1] = Lambda1
            y[I_LAMBDA2] = Lambda2
        self._validate(y)
        self._y = y

    @classmethod
    def from_vector(cls, y: NDArray, pn_order=None, dtype=None) -> "BinaryState":
        y = np.asarray(y)
        dtype = y.dtype if dtype is None else dtype
        variable_names(y.size)
        out = cls.__new__(cls)
        out.dtype = np.dtype(dtype)
        out.pn_order = prepare_pn_order(pn_order)
        y = np.array(y, dtype=out.dtype)
        out._validate(y)
        out._y = y
        return out

    def _validate(self, y: NDArray) -> None:
        m1, m2 = y[I_M1], y[I_M2]
        if not (np.isfinite(m1) and np.isfinite(m2)) or m1 <= 0 or m2 <= 0:
            raise InvalidParameters(f"masses must be positive and finite, got M1={m1}, M2={m2}")
        tol = spin_tolerance(self.dtype)
        for name, chi in (("chi1", y[I_CHI1]), ("chi2", y[I_CHI2])):
            mag = np.sqrt(np.sum(chi * chi))
            if not np.isfinite(mag) or mag > 1 + tol:
                raise InvalidParameters(f"|{name}| must not exceed 1, got {mag}")
        if not np.isfinite(y[I_V]) or y[I_V] <= 0:
            raise InvalidParameters(f"v must be positive, got {y[I_V]}")
        if y.size == N_VARS_MATTER:
            l1, l2 = y[I_LAMBDA1], y[I_LAMBDA2]
            if l1 < 0 or l2 < 0:
                raise InvalidParameters(f"tidal deformabilities must be non-negative, got {l1}, {l2}")
            if l1 != 0 and l2 == 0:
                # BHNS systems carry the neutron star as body 2
                raise InvalidParameters("for a single neutron star, pass its deformability as Lambda2")

    # ---- whole-vector access ----

    @property
    def vector(self) -> NDArray:
        return self._y.copy()

    def assign(self, y: NDArray) -> None:
        """Replace the full state vector. No validation: used inside the RHS."""
        y = np.asarray(y, dtype=self.dtype)
        if y.shape != self._y.shape:
            raise ValueError(f"expected state of shape {self._y.shape}, got {y.shape}")
        self._y[:] = y

    def copy(self) -> "BinaryState":
        out = BinaryState.__new__(BinaryState)
        out.dtype = self.dtype
        out.pn_order = self.pn_order
        out._y = self._y.copy()
        return out

    def __len__(self) -> int:
        return self._y.size

    def __repr__(self) -> str:
        return (f"BinaryState(M1={self.M1:g}, M2={self.M2:g}, chi1={self.chi1.tolist()}, "
                f"chi2={self.chi2.tolist()}, v={self.v:g}, pn_order={self.pn_order})")

    @property
    def max_power(self):
        """Largest power of v kept in PN series."""
        if self.pn_order is None:
            return UNBOUNDED
        return 2 * self.pn_order

    @property
    def has_matter(self) -> bool:
        return self._y.size == N_VARS_MATTER

    # ---- fundamental variables ----

    @property
    def M1(self):
        return self._y[I_M1]

    @property
    def M2(self):
        return self._y[I_M2]

    @property
    def chi1(self) -> NDArray:
        return self._y[I_CHI1].copy()

    @property
    def chi2(self) -> NDArray:
        return self._y[I_CHI2].copy()

    @property
    def R(self) -> NDArray:
        return self._y[I_R].copy()

    @property
    def v(self):
        return self._y[I_V]

    @property
    def Phi(self):
        return self._y[I_PHI]

    @property
    def Lambda1(self):
        return self._y[I_LAMBDA1] if self.has_matter else self.dtype.type(0)

    @property
    def Lambda2(self):
        return self._y[I_LAMBDA2] if self.has_matter else self.dtype.type(0)

    # ---- mass combinations ----

    @property
    def M(self):
        return self.M1 + self.M2

    @property
    def mu(self):
        return self.M1 * self.M2 / self.M

    @property
    def nu(self):
        return self.M1 * self.M2 / self.M**2

    @property
    def delta(self):
        return (self.M1 - self.M2) / self.M

    @property
    def q(self):
        return self.M1 / self.M2

    @property
    def X1(self):
        return self.M1 / self.M

    @property
    def X2(self):
        return self.M2 / self.M

    @property
    def chirp_mass(self):
        return self.M * self.nu**0.6

    @property
    def Omega(self):
        return omega_of_v(self.v, self.M)

    # ---- spin combinations ----

    @property
    def chi1_mag(self):
        chi = self._y[I_CHI1]
        return np.sqrt(np.sum(chi * chi))

    @property
    def chi2_mag(self):
        chi = self._y[I_CHI2]
        return np.sqrt(np.sum(chi * chi))

    @property
    def S(self) -> NDArray:
        return self.M1**2 * self._y[I_CHI1] + self.M2**2 * self._y[I_CHI2]

    @property
    def Sigma(self) -> NDArray:
        return self.M * (self.M2 * self._y[I_CHI2] - self.M1 * self._y[I_CHI1])

    @property
    def chi_s(self) -> NDArray:
        return (self._y[I_CHI1] + self._y[I_CHI2]) / 2

    @property
    def chi_a(self) -> NDArray:
        return (self._y[I_CHI1] - self._y[I_CHI2]) / 2

    # ---- frame projections ----

    @property
    def frame(self) -> Tuple[NDArray, NDArray, NDArray]:
        return frame_vectors(self._y[I_R])

    @property
    def chi1_l(self):
        return np.dot(self._y[I_CHI1], self.frame[2])

    @property
    def chi2_l(self):
        return np.dot(self._y[I_CHI2], self.frame[2])

    @property
    def chi_perp(self):
        """Magnitude of the spin components orthogonal to ell-hat, summed in quadrature."""
        ell = self.frame[2]
        c1, c2 = self._y[I_CHI1], self._y[I_CHI2]
        c1l, c2l = np.dot(c1, ell), np.dot(c2, ell)
        return np.sqrt(max(np.sum(c1 * c1) - c1l**2 + np.sum(c2 * c2) - c2l**2, 0))

