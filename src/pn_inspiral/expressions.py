"""Post-Newtonian flux, binding energy, precession and tidal heating.

Every series here is relative: it starts at 1 (or at the leading physical
combination) and the overall prefactor is applied by the caller. Terms above
the state's truncation order are dropped by the series itself.

References (coefficients follow the literature exactly):
  flux        Blanchet et al. (2023) Eq. (6.11), Marsat et al. (2013) Eq. (4.9),
              Bohe et al. (2015) Eq. (4.14), Marsat (2014) Eq. (6.19),
              Fujita (2012) App. A, Vines et al. (2011) Eq. (3.6)
  energy      Blanchet (2014) Eq. (233), Jaranowski & Schafer (2013),
              Bini & Damour (2013), Bohe et al. (2012) Eq. (4.6),
              Arun et al. (2009) Eq. (C4), Vines et al. (2011) Eq. (2.11)
  precession  Bohe et al. (2013) Eqs. (4.3)-(4.5), Bohe et al. (2015) Eq. (3.32),
              Kidder (1995) Eq. (2.4), Racine (2008) Eq. (2.7)
  heating     Alvi (2001)
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.special import zeta

from .errors import SeriesMismatchError
from .series import UNBOUNDED, DenseSeries, SeriesLayout, TruncatedSeries
from .state import BinaryState

pi = np.pi
euler_gamma = np.euler_gamma
ln2 = np.log(2.0)
ln3 = np.log(3.0)
ln5 = np.log(5.0)
zeta3 = float(zeta(3.0, 1.0))

# Black-hole values of the spin-induced quadrupole and octupole constants.
KAPPA1 = KAPPA2 = 1.0
LAMBDA_OCT1 = LAMBDA_OCT2 = 1.0

# Energy coefficients not yet known are set to zero; a6_ln1 is the nu
# coefficient of Bini & Damour (2013b) Eq. (64).
a6_c1 = 0.0
a6_ln1 = -144.0 / 5.0
a65_c1 = 0.0
a7_ln1 = 0.0
a7_c1 = 0.0

P = {k: Fraction(k) for k in range(13)}


@dataclass(frozen=True)
class PNQuantities:
    """Scalar and vector combinations shared by all expressions at one state."""
    M1: float
    M2: float
    M: float
    nu: float
    delta: float
    X1: float
    X2: float
    v: float
    n_hat: NDArray
    lambda_hat: NDArray
    ell_hat: NDArray
    chi1: NDArray
    chi2: NDArray
    chi1_sq: float
    chi2_sq: float
    chi12: float
    s_l: float
    sigma_l: float
    S_n: float
    Sigma_n: float
    chi_s_l: float
    chi_a_l: float
    Lambda1: float
    Lambda2: float
    max_power: object
    # per body (I0 / v**12, Omega_H, phidot / Omega), None for a neutron star
    horizon: tuple


def pn_quantities(state: BinaryState) -> PNQuantities:
    M1, M2 = state.M1, state.M2
    M = M1 + M2
    chi1, chi2 = state.chi1, state.chi2
    n_hat, lambda_hat, ell_hat = state.frame
    S = M1**2 * chi1 + M2**2 * chi2
    Sigma = M * (M2 * chi2 - M1 * chi1)
    chi_s = (chi1 + chi2) / 2
    chi_a = (chi1 - chi2) / 2
    chi1_sq = np.dot(chi1, chi1)
    chi2_sq = np.dot(chi2, chi2)
    horizon = tuple(
        None if Lam != 0 else _horizon_terms(Mj, Mk, chi, chi_sq, M, n_hat, ell_hat)
        for Mj, Mk, chi, chi_sq, Lam in ((M1, M2, chi1, chi1_sq, state.Lambda1),
                                         (M2, M1, chi2, chi2_sq, state.Lambda2)))
    return PNQuantities(
        M1=M1, M2=M2, M=M,
        nu=M1 * M2 / M**2,
        delta=(M1 - M2) / M,
        X1=M1 / M, X2=M2 / M,
        v=state.v,
        n_hat=n_hat, lambda_hat=lambda_hat, ell_hat=ell_hat,
        chi1=chi1, chi2=chi2,
        chi1_sq=chi1_sq,
        chi2_sq=chi2_sq,
        chi12=np.dot(chi1, chi2),
        s_l=np.dot(S, ell_hat) / M**2,
        sigma_l=np.dot(Sigma, ell_hat) / M**2,
        S_n=np.dot(S, n_hat),
        Sigma_n=np.dot(Sigma, n_hat),
        chi_s_l=np.dot(chi_s, ell_hat),
        chi_a_l=np.dot(chi_a, ell_hat),
        Lambda1=state.Lambda1,
        Lambda2=state.Lambda2,
        max_power=state.max_power,
        horizon=horizon,
    )


def _truncation(terms, max_power):
    # a series is trusted up to the highest power actually implemented
    return min(max_power, max(p for _, p, _ in terms))


def _series(terms, max_power) -> TruncatedSeries:
    return TruncatedSeries(terms, _truncation(terms, max_power))


# ---- gravitational-wave energy flux ----

def flux_series(state: BinaryState, pq: PNQuantities | None = None) -> TruncatedSeries:
    """Relative flux; the full flux is ``flux_prefactor(state) * v**10 * series(v)``."""
    pq = pn_quantities(state) if pq is None else pq
    return _series(flux_terms(pq), pq.max_power)


def flux_terms(pq: PNQuantities) -> list:
    """(coefficient, power, log_power) terms of the relative flux."""
    nu, delta = pq.nu, pq.delta
    sl, sigl = pq.s_l, pq.sigma_l
    kp, km = KAPPA1 + KAPPA2, KAPPA1 - KAPPA2
    lp, lm = LAMBDA_OCT1 + LAMBDA_OCT2, LAMBDA_OCT1 - LAMBDA_OCT2

    terms = [
        (1.0, P[0], 0),
        (-1247 / 336 - 35 * nu / 12, P[2], 0),
        (4 * pi, P[3], 0),
        (-44711 / 9072 + 9271 * nu / 504 + 65 * nu**2 / 18, P[4], 0),
        ((-8191 / 672 - 583 * nu / 24) * pi, P[5], 0),
        (6643739519 / 69854400 + 16 * pi**2 / 3 - 1712 * (euler_gamma + 2 * ln2) / 105
         + (-134543 / 7776 + 41 * pi**2 / 48) * nu - 94403 * nu**2 / 3024 - 775 * nu**3 / 324, P[6], 0),
        (-1712 / 105, P[6], 1),
        ((-16285 / 504 + 214745 * nu / 1728 + 193385 * nu**2 / 3024) * pi, P[7], 0),
        (-323105549467 / 3178375200 + 232597 * euler_gamma / 4410 - 1369 * pi**2 / 126
         + 39931 * ln2 / 294 - 47385 * ln3 / 1568
         + (-1452202403629 / 1466942400 + 41478 * euler_gamma / 245 - 267127 * pi**2 / 4608
            + 479062 * ln2 / 2205 + 47385 * ln3 / 392) * nu
         + (1607125 / 6804 - 3157 * pi**2 / 384) * nu**2 + 6875 * nu**3 / 504 + 5 * nu**4 / 6, P[8], 0),
        (232597 / 4410 + 41478 * nu / 245, P[8], 1),
        ((265978667519 / 745113600 - 6848 * (euler_gamma + 2 * ln2) / 105
          + (2062241 / 22176 + 41 * pi**2 / 12) * nu - 133112905 * nu**2 / 290304
          - 3719141 * nu**3 / 38016) * pi, P[9], 0),
        (-6848 * pi / 105, P[9], 1),

        # spin-orbit
        (-4 * sl - 5 * delta * sigl / 4, P[3], 0),
        ((-9 / 2 + 272 * nu / 9) * sl + (-13 / 16 + 43 * nu / 4) * delta * sigl, P[5], 0),
        (-16 * pi * sl - 31 * pi * delta * sigl / 6, P[6], 0),
        ((476645 / 6804 + 6172 * nu / 189 - 2810 * nu**2 / 27) * sl
         + (9535 / 336 + 1849 * nu / 126 - 1501 * nu**2 / 36) * delta * sigl, P[7], 0),
        ((-3485 / 96 + 13879 * nu / 72) * pi * sl
         + (-7163 / 672 + 130583 * nu / 2016) * pi * delta * sigl, P[8], 0),

        # spin-squared
        (sl**2 * (2 * kp + 4)
         + sl * sigl * (2 * delta * kp + 4 * delta - 2 * km)
         + sigl**2 * (-delta * km + kp + 1 / 16 + (-2 * kp - 4) * nu), P[4], 0),
        (sl**2 * (41 * delta * km / 16 - 271 * kp / 112 - 5239 / 504 + (-43 * kp / 4 - 43 / 2) * nu)
         + sl * sigl * (-279 * delta * kp / 56 - 817 * delta / 56 + 279 * km / 56
                        + (-43 * delta * kp / 4 - 43 * delta / 2 + km / 2) * nu)
         + sigl**2 * (279 * delta * km / 112 - 279 * kp / 112 - 25 / 8
                      + (45 * delta * km / 16 + 243 * kp / 112 + 344 / 21) * nu
                      + (43 * kp / 4 + 43 / 2) * nu**2), P[6], 0),

        # spin-cubed
        (sl**3 * (-16 * kp / 3 - 4 * lp + 40 / 3)
         + sl**2 * sigl * (-35 * delta * kp / 6 - 6 * delta * lp + 73 * delta / 3 - 3 * km / 4 + 6 * lm)
         + sl * sigl**2 * (-35 * delta * km / 12 + 6 * delta * lm + 35 * kp / 12 - 6 * lp + 32 / 3
                           + (22 * kp / 3 + 12 * lp - 172 / 3) * nu)
         + sigl**3 * (67 * delta * kp / 24 - 2 * delta * lp - delta / 8 - 67 * km / 24 + 2 * lm
                      + (delta * kp / 2 + 2 * delta * lp - 11 * delta + 61 * km / 12 - 6 * lm) * nu),
         P[7], 0),

        # extreme-mass-ratio terms beyond 4.5PN
        (-2500861660823683 / 2831932303200 - 424223 * pi**2 / 6804 - 83217611 * ln2 / 1122660
         + 916628467 * euler_gamma / 7858620 + 47385 * ln3 / 196, P[10], 0),
        (916628467 / 7858620, P[10], 1),
        (-142155 * pi * ln3 / 784 + 8399309750401 * pi / 101708006400
         + 177293 * euler_gamma * pi / 1176 + 8521283 * pi * ln2 / 17640, P[11], 0),
        (177293 * pi / 1176, P[11], 1),
        (-271272899815409 * ln2 / 157329572400
         - 54784 * pi**2 * ln2 / 315 - 246137536815857 * euler_gamma / 157329572400
         - 437114506833 * ln3 / 789268480 - 256 * pi**4 / 45 - 27392 * euler_gamma * pi**2 / 315
         - 27392 * zeta3 / 105 - 37744140625 * ln5 / 260941824
         + 1465472 * euler_gamma**2 / 11025 + 5861888 * euler_gamma * ln2 / 11025
         + 5861888 * ln2**2 / 11025
         + 2067586193789233570693 / 602387400044430000 + 3803225263 * pi**2 / 10478160, P[12], 0),
        (-246137536815857 / 157329572400 - 27392 * pi**2 / 315
         + 2930944 * euler_gamma / 11025 + 5861888 * ln2 / 11025, P[12], 1),
        (1465472 / 11025, P[12], 2),
    ]

    if pq.Lambda1 != 0 or pq.Lambda2 != 0:
        X1, X2, L1, L2 = pq.X1, pq.X2, pq.Lambda1, pq.Lambda2
        terms += [
            ((18 - 12 * X1) * L1 * X1**4 + (18 - 12 * X2) * L2 * X2**4, P[10], 0),
            ((-704 - 1803 * X1 + 4501 * X1**2 - 2170 * X1**3) * L1 * X1**4 / 28
             + (-704 - 1803 * X2 + 4501 * X2**2 - 2170 * X2**3) * L2 * X2**4 / 28, P[12], 0),
        ]
    return terms


def flux_prefactor(state: BinaryState):
    return 32 * state.nu**2 / 5


def gw_energy_flux(state: BinaryState):
    """Energy flux to infinity, evaluated at the state's v."""
    v = state.v
    return flux_prefactor(state) * v**10 * flux_series(state).evaluate(v)


# ---- binding energy ----

def binding_energy_series(state: BinaryState, pq: PNQuantities | None = None) -> TruncatedSeries:
    """Relative binding energy; E = -M nu v**2 / 2 * series(v)."""
    pq = pn_quantities(state) if pq is None else pq
    return _series(binding_energy_terms(pq), pq.max_power)


def binding_energy_terms(pq: PNQuantities) -> list:
    nu, delta = pq.nu, pq.delta
    sl, sigl = pq.s_l, pq.sigma_l
    cal, csl = pq.chi_a_l, pq.chi_s_l

    terms = [
        (1.0, P[0], 0),
        (-3 / 4 - nu / 12, P[2], 0),
        (-27 / 8 + 19 * nu / 8 - nu**2 / 24, P[4], 0),
        (-675 / 64 + (34445 / 576 - 205 * pi**2 / 96) * nu - 155 * nu**2 / 96 - 35 * nu**3 / 5184, P[6], 0),
        (-3969 / 128 + (-123671 / 5760 + 9037 * pi**2 / 1536 + 1792 * ln2 / 15 + 896 * euler_gamma / 15) * nu
         + (-498449 / 3456 + 3157 * pi**2 / 576) * nu**2 + 301 * nu**3 / 1728 + 77 * nu**4 / 31104, P[8], 0),
        (896 * nu / 15, P[8], 1),

        # partially known beyond 4PN
        (-45927 / 512
         + (-228916843 / 115200 - 9976 * euler_gamma / 35 + 729 * ln3 / 7 - 23672 * ln2 / 35
            + 126779 * pi**2 / 512) * nu
         + (189745 / 576 - 21337 * pi**2 / 1024 + 3 * a6_c1 - 896 * ln2 / 5 - 448 * euler_gamma / 5
            + 2 * a6_ln1 / 3) * nu**2
         + (-1353 * pi**2 / 256 + 69423 / 512) * nu**3 + 55 * nu**4 / 512 + nu**5 / 512, P[10], 0),
        (-9976 * nu / 35 + (-448 / 5 + 6 * a6_ln1) * nu**2, P[10], 1),
        (10 * nu / 3 * (13696 * pi / 525 + nu * a65_c1), P[11], 0),
        (-264627 / 1024
         + (-389727504721 / 43545600 + 74888 * ln2 / 243 - 7128 * ln3 / 7
            - 3934568 * euler_gamma / 8505 + 9118627045 * pi**2 / 5308416 - 30809603 * pi**4 / 786432) * nu
         + (113594718743 / 14515200 + 18491 * pi**4 / 2304 + 246004 * ln2 / 105
            + 112772 * euler_gamma / 105 + 11 * a6_c1 / 2 + a6_ln1 + 2 * a7_ln1 / 3
            + 11 * a7_c1 / 3 - 86017789 * pi**2 / 110592 - 2673 * ln3 / 14) * nu**2
         + (-75018547 / 51840 + 1232 * euler_gamma / 27 + 6634243 * pi**2 / 110592
            - 11 * a6_c1 / 2 + 2464 * ln2 / 27 - 20 * a6_ln1 / 9) * nu**3
         + (272855 * pi**2 / 124416 - 20543435 / 373248) * nu**4
         + 5159 * nu**5 / 248832 + 2717 * nu**6 / 6718464, P[12], 0),
        (2 * (11 * a7_ln1 / 3 - 1967284 * nu / 8505 + (56386 / 105 + 11 * a6_ln1 / 2) * nu**2
              + (616 / 27 - 11 * a6_ln1 / 2) * nu**3), P[12], 1),

        # spin-orbit
        (14 * sl / 3 + 2 * delta * sigl, P[3], 0),
        ((11 - 61 * nu / 9) * sl + delta * (3 - 10 * nu / 3) * sigl, P[5], 0),
        ((135 / 4 - 367 * nu / 4 + 29 * nu**2 / 12) * sl
         + delta * (27 / 4 - 39 * nu + 5 * nu**2 / 4) * sigl, P[7], 0),

        # spin-squared
        ((1 + delta - 2 * nu) * (pq.chi1_sq + pq.chi2_sq) / 4 - 3 * (cal**2 + csl**2) / 2
         - delta * (pq.chi2_sq / 2 + 3 * cal * csl) + (pq.chi12 + 6 * cal**2) * nu, P[4], 0),
    ]

    if pq.Lambda1 != 0 or pq.Lambda2 != 0:
        X1, X2, L1, L2 = pq.X1, pq.X2, pq.Lambda1, pq.Lambda2
        terms += [
            (-9 * (L2 * X1 * X2**4 + L1 * X2 * X1**4), P[10], 0),
            (-11 / 2 * (X1 * X2**4 * (3 + 2 * X2 + 3 * X2**2) * L2
                        + X2 * X1**4 * (3 + 2 * X1 + 3 * X1**2) * L1), P[12], 0),
        ]
    return terms


def binding_energy(state: BinaryState):
    v = state.v
    return -state.M * state.nu * v**2 / 2 * binding_energy_series(state).evaluate(v)


def energy_derivative_bracket(energy: TruncatedSeries) -> TruncatedSeries:
    """Bracket B with dE/dv = -M nu v B, given E = -M nu v**2 / 2 * energy(v).

    d/dv [v**(p+2) ln(v)**L] / (2 v) = (1 + p/2) v**p ln**L + (L/2) v**p ln**(L-1).
    """
    terms = []
    for term in energy.terms:
        c, p, L = term.coefficient, term.power, term.log_power
        terms.append((c * (1 + float(p) / 2), p, L))
        if L:
            terms.append((c * L / 2, p, L - 1))
    return TruncatedSeries(terms, energy.max_order, energy.variable)


def binding_energy_deriv_series(state: BinaryState, pq: PNQuantities | None = None) -> TruncatedSeries:
    return energy_derivative_bracket(binding_energy_series(state, pq))


def binding_energy_deriv(state: BinaryState):
    """dE/dv at the state's v."""
    v = state.v
    return -state.M * state.nu * v * binding_energy_deriv_series(state).evaluate(v)


# ---- tidal heating of black-hole horizons ----

def _horizon_terms(Mj, Mk, chi, chi_sq, M, n_hat, ell_hat):
    """(I0 / v**12, Omega_H, phidot / Omega) for one black hole, from Alvi (2001)."""
    chi_mag = np.sqrt(chi_sq)
    r_h = Mj * (1 + np.sqrt(1 - min(chi_sq, 1)))
    Omega_h = chi_mag / (2 * r_h)
    cross = np.cross(n_hat, chi)
    cross2 = np.dot(cross, cross)
    denominator = cross2 + np.dot(n_hat, chi)**2
    sin2theta = cross2 / denominator if denominator != 0 else 1.0
    denominator = chi_mag * sin2theta
    k = np.dot(ell_hat, chi) / denominator if denominator != 0 else 1.0
    # I0 = 16 r_h / (5 b**6) Mj**5 Mk**2 sin2theta (...), with b = M / v**2
    A = (16 * r_h / (5 * M**6)) * Mj**5 * Mk**2 * sin2theta * (1 - 0.75 * chi_sq + 3.75 * chi_sq * sin2theta)
    return A, Omega_h, k


def tidal_heating(state: BinaryState, pq: PNQuantities | None = None) -> Tuple[float, float, float, float]:
    """Rates (Sdot1, Mdot1, Sdot2, Mdot2) of horizon absorption.

    Bodies carrying a tidal deformability are treated as neutron stars and
    absorb nothing.
    """
    pq = pn_quantities(state) if pq is None else pq
    v = pq.v
    Omega = v**3 / pq.M
    out = []
    for body in pq.horizon:
        if body is None:
            out += [0.0 * v, 0.0 * v]
            continue
        A, Omega_h, k = body
        phidot = k * Omega
        Sdot = (phidot - Omega_h) * A * v**12
        out += [Sdot, phidot * Sdot]
    return tuple(out)


def mass_loss_terms(pq: PNQuantities) -> list:
    """(Mdot1 + Mdot2) relative to the flux prefactor ``32 nu**2 v**10 / 5``.

    Mdot = A k**2 v**18 / M**2 - A k Omega_H v**15 / M contributes at relative
    powers 8 and 5.
    """
    M = pq.M
    F0 = 32 * pq.nu**2 / 5
    c5 = 0.0
    c8 = 0.0
    for body in pq.horizon:
        if body is None:
            continue
        A, Omega_h, k = body
        c5 = c5 - A * k * Omega_h / (M * F0)
        c8 = c8 + A * k**2 / (M**2 * F0)
    return [(c5, P[5], 0), (c8, P[8], 0)]


def mass_loss_series(state: BinaryState, order=UNBOUNDED, pq: PNQuantities | None = None) -> TruncatedSeries:
    pq = pn_quantities(state) if pq is None else pq
    return TruncatedSeries(mass_loss_terms(pq), order)


# ---- precession ----

def gamma_pn_series(state: BinaryState, pq: PNQuantities | None = None) -> TruncatedSeries:
    """gamma_PN = M / r = v**2 * series(v)."""
    pq = pn_quantities(state) if pq is None else pq
    return _series(gamma_pn_terms(pq), pq.max_power)


def gamma_pn_terms(pq: PNQuantities) -> list:
    nu, delta = pq.nu, pq.delta
    sl, sigl = pq.s_l, pq.sigma_l
    kp, km = KAPPA1 + KAPPA2, KAPPA1 - KAPPA2
    return [
        (1.0, P[0], 0),
        (1 - nu / 3, P[2], 0),
        (1 - 65 * nu / 12, P[4], 0),
        (1 + (-2203 / 2520 - 41 * pi**2 / 192) * nu + 229 * nu**2 / 36 + nu**3 / 81, P[6], 0),
        (5 * sl / 3 + delta * sigl, P[3], 0),
        ((10 / 3 + 8 * nu / 9) * sl + 2 * delta * sigl, P[5], 0),
        ((5 - 127 * nu / 12 - 6 * nu**2) * sl + delta * (3 - 61 * nu / 6 - 8 * nu**2 / 3) * sigl, P[7], 0),
        (sl**2 * (-kp / 2 - 1) + sl * sigl * (-delta * kp / 2 - delta + km / 2)
         + sigl**2 * (delta * km / 4 - kp / 4 + (kp / 2 + 1) * nu), P[4], 0),
        (sl**2 * (-11 * delta * km / 12 - 11 * kp / 12 + 14 / 9 + (-kp / 6 - 1 / 3) * nu)
         + sl * sigl * (5 * delta / 3 + (-delta * kp / 6 - delta / 3 + 23 * km / 6) * nu)
         + sigl**2 * (1 + (delta * km - kp - 2) * nu + (kp / 6 + 1 / 3) * nu**2), P[6], 0),
    ]


def a_ell_series(state: BinaryState, pq: PNQuantities | None = None) -> TruncatedSeries:
    """a_ell = v**7 / M**3 * series(v)."""
    pq = pn_quantities(state) if pq is None else pq
    return _series(a_ell_terms(pq), pq.max_power)


def a_ell_terms(pq: PNQuantities) -> list:
    nu, delta = pq.nu, pq.delta
    Sn, Sigman = pq.S_n, pq.Sigma_n
    return [
        (7 * Sn + 3 * delta * Sigman, P[0], 0),
        ((-10 - 29 * nu / 3) * Sn + delta * (-6 - 9 * nu / 2) * Sigman, P[2], 0),
        ((3 / 2 + 59 * nu / 4 + 52 * nu**2 / 9) * Sn + delta * (3 / 2 + 73 * nu / 8 + 17 * nu**2 / 6) * Sigman,
         P[4], 0),
    ]


def orbital_precession(state: BinaryState, pq: PNQuantities | None = None, layouts=None) -> NDArray:
    """Angular velocity of ell-hat, gamma_PN a_ell / v**3 along n-hat."""
    pq = pn_quantities(state) if pq is None else pq
    v, M = pq.v, pq.M
    if layouts is None:
        product = gamma_pn_series(state, pq).multiply(a_ell_series(state, pq))
    else:
        product = layouts.gamma.collapse(gamma_pn_terms(pq)).multiply(layouts.a_ell.collapse(a_ell_terms(pq)))
    return (v**6 / M**3) * product.evaluate(v) * pq.n_hat


def _spin_orbit_terms(nu, delta) -> list:
    return [
        (3 / 4 + nu / 2 - 3 * delta / 4, P[0], 0),
        (9 / 16 + 5 * nu / 4 - nu**2 / 24 + delta * (-9 / 16 + 5 * nu / 8), P[2], 0),
        (27 / 32 + 3 * nu / 16 - 105 * nu**2 / 32 - nu**3 / 48
         + delta * (-27 / 32 + 39 * nu / 8 - 5 * nu**2 / 32), P[4], 0),
    ]


def _spin_precession(Mj, Mk, chi_j, chi_k, pq: PNQuantities, layouts=None) -> NDArray:
    M = Mj + Mk
    nu = Mj * Mk / M**2
    delta = (Mj - Mk) / M
    v = pq.v
    n_hat, ell_hat = pq.n_hat, pq.ell_hat
    max_power = pq.max_power

    terms = _spin_orbit_terms(nu, delta)
    if layouts is None:
        spin_orbit = TruncatedSeries(terms, min(max_power, P[4]))
    else:
        spin_orbit = layouts.spin_orbit.collapse(terms)
    omega = spin_orbit.evaluate(v) * ell_hat
    if max_power >= 1:
        chi_jn = np.dot(chi_j, n_hat)
        chi_kn = np.dot(chi_k, n_hat)
        # spin-spin and quadrupole-monopole
        omega = omega + v * (Mk**2 / M**2) * (-chi_k + 3 * chi_kn * n_hat)
        omega = omega + v * 3 * nu * chi_jn * n_hat
    return (v**5 / M) * omega


def spin_precession_1(state: BinaryState, pq: PNQuantities | None = None, layouts=None) -> NDArray:
    """Angular velocity with which chi1 precesses."""
    pq = pn_quantities(state) if pq is None else pq
    return _spin_precession(pq.M1, pq.M2, pq.chi1, pq.chi2, pq, layouts)


def spin_precession_2(state: BinaryState, pq: PNQuantities | None = None, layouts=None) -> NDArray:
    pq = pn_quantities(state) if pq is None else pq
    return _spin_precession(pq.M2, pq.M1, pq.chi2, pq.chi1, pq, layouts)


# ---- cached term layouts ----

class ExpressionLayouts:
    """Power and log structure of every series in the RHS, built once per run.

    The term lists only depend on which bodies carry a tidal deformability
    and on the truncation order, both fixed along an inspiral. Each call then
    collapses the current coefficients onto a dense grid with log(v)
    substituted, which yields the same values as the exact series.
    """

    def __init__(self, state: BinaryState):
        pq = pn_quantities(state)
        max_power = pq.max_power
        flux = flux_terms(pq)
        energy = binding_energy_terms(pq)
        gamma = gamma_pn_terms(pq)
        a_ell = a_ell_terms(pq)
        spin_orbit = _spin_orbit_terms(pq.nu, pq.delta)
        flux_order = _truncation(flux, max_power)
        self.max_power = max_power
        self.flux = SeriesLayout.from_terms(flux, flux_order)
        self.mass_loss = SeriesLayout.from_terms(mass_loss_terms(pq), flux_order)
        self.energy = SeriesLayout.from_terms(energy, _truncation(energy, max_power))
        self.gamma = SeriesLayout.from_terms(gamma, _truncation(gamma, max_power))
        self.a_ell = SeriesLayout.from_terms(a_ell, _truncation(a_ell, max_power))
        self.spin_orbit = SeriesLayout.from_terms(spin_orbit, min(max_power, P[4]))
        steps = {layout.step for layout in (self.flux, self.mass_loss, self.energy,
                                            self.gamma, self.a_ell, self.spin_orbit)}
        if len(steps) != 1:
            raise SeriesMismatchError(f"expression layouts use different power grids: {sorted(steps)}")

    def energy_balance(self, pq: PNQuantities) -> Tuple[DenseSeries, DenseSeries]:
        """(flux + mass loss, energy-derivative bracket) at log(v) of the state."""
        log_v = np.log(pq.v)
        num = self.flux.collapse(flux_terms(pq), log_v).add(self.mass_loss.collapse(mass_loss_terms(pq)))
        terms = binding_energy_terms(pq)
        e = self.energy.collapse(terms, log_v).coefficients
        de = self.energy.collapse_log_derivative(terms, log_v).coefficients
        den = DenseSeries((1 + self.energy.powers / 2) * e + de / 2, self.energy.step)
        return num, den


# ---- kinematic estimates ----

def estimated_time_to_merger(M, nu, v):
    """Leading-order time to reach v -> infinity, 5M / (256 nu v**8)."""
    return 5 * M / (256 * nu * v**8)


def f_isco(q, M=1.0):
    """BKL estimate of the ISCO frequency, Hanna et al. (2008) Eq. (5). Ignores spins."""
    if q > 1:
        q = 1 / q
    return (10 + q * (28 + q * (-26 + q * 8))) / (10 * pi * (6 * M)**1.5)


def omega_isco(q, M=1.0):
    return 2 * pi * f_isco(q, M)
