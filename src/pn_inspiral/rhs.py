from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Union

import numpy as np
from numpy.typing import NDArray

from .errors import ConfigurationError
from .expressions import (
    ExpressionLayouts,
    binding_energy_deriv_series,
    flux_series,
    mass_loss_series,
    orbital_precession,
    pn_quantities,
    spin_precession_1,
    spin_precession_2,
    tidal_heating,
)
from .frame import pure, quaternion_multiply
from .series import TruncatedSeries
from .state import (
    I_CHI1, I_CHI2, I_M1, I_M2, I_PHI, I_R, I_V,
    BinaryState,
)


class Approximant(str, Enum):
    TAYLOR_T1 = "TaylorT1"
    TAYLOR_T4 = "TaylorT4"
    TAYLOR_T5 = "TaylorT5"


def parse_approximant(name: Union[str, Approximant]) -> Approximant:
    if isinstance(name, Approximant):
        return name
    for a in Approximant:
        if str(name).lower() in (a.value.lower(), a.name.lower()):
            return a
    raise ConfigurationError(f"unknown approximant {name!r}; expected one of "
                             f"{[a.value for a in Approximant]}")


# Each strategy maps (numerator, denominator, v) to numerator/denominator,
# where vdot = 32 nu / (5 M) * v**9 * ratio.

def _ratio_t1(num: TruncatedSeries, den: TruncatedSeries, v):
    """Evaluate both truncated series, then divide the numbers."""
    return num.evaluate(v) / den.evaluate(v)


def _ratio_t4(num: TruncatedSeries, den: TruncatedSeries, v):
    """Re-expand the quotient as one truncated series."""
    return num.divide(den).evaluate(v)


def _ratio_t5(num: TruncatedSeries, den: TruncatedSeries, v):
    """Re-expand the inverse quotient, then invert the number."""
    return 1 / den.divide(num).evaluate(v)


RATIO_STRATEGIES: Dict[Approximant, Callable] = {
    Approximant.TAYLOR_T1: _ratio_t1,
    Approximant.TAYLOR_T4: _ratio_t4,
    Approximant.TAYLOR_T5: _ratio_t5,
}


def causes_domain_error(y: NDArray) -> bool:
    """States at which the PN expressions are meaningless.

    Only v <= 0 and non-finite entries qualify. Super-extremal spins and
    vanishing masses still evaluate, so the continuous termination criteria
    can locate and name those crossings.
    """
    if not np.all(np.isfinite(y)):
        return True
    return bool(y[I_V] <= 0)


def vdot(state: BinaryState, approximant=Approximant.TAYLOR_T1, pq=None, layouts=None):
    """dv/dt = -(F + Mdot1 + Mdot2) / E'.

    With cached ``layouts`` the series are collapsed onto dense grids instead
    of being rebuilt term by term; both paths give the same value.
    """
    approximant = parse_approximant(approximant)
    pq = pn_quantities(state) if pq is None else pq
    if layouts is not None:
        num, den = layouts.energy_balance(pq)
    else:
        flux = flux_series(state, pq)
        num = flux.add(mass_loss_series(state, flux.max_order, pq))
        den = binding_energy_deriv_series(state, pq)
    v = pq.v
    return 32 * pq.nu / (5 * pq.M) * v**9 * RATIO_STRATEGIES[approximant](num, den, v)


def pn_rhs(state: BinaryState, approximant=Approximant.TAYLOR_T1, layouts=None) -> NDArray:
    """Time derivative of the full state vector. The state is not modified."""
    approximant = parse_approximant(approximant)
    pq = pn_quantities(state)
    M1, M2, v, M = pq.M1, pq.M2, pq.v, pq.M
    chi1, chi2 = pq.chi1, pq.chi2
    ell_hat = pq.ell_hat
    Omega = v**3 / M

    Sdot1, Mdot1, Sdot2, Mdot2 = tidal_heating(state, pq)
    Omega_p = orbital_precession(state, pq, layouts)
    Omega_chi1 = spin_precession_1(state, pq, layouts)
    Omega_chi2 = spin_precession_2(state, pq, layouts)

    chi1_mag = np.sqrt(pq.chi1_sq)
    chi2_mag = np.sqrt(pq.chi2_sq)
    chi1_hat = chi1 / chi1_mag if chi1_mag != 0 else ell_hat
    chi2_hat = chi2 / chi2_mag if chi2_mag != 0 else ell_hat

    ydot = np.zeros(len(state), dtype=state.dtype)
    ydot[I_M1] = Mdot1
    ydot[I_M2] = Mdot2
    ydot[I_CHI1] = Sdot1 / M1**2 * chi1_hat - 2 * Mdot1 / M1 * chi1 + np.cross(Omega_chi1, chi1)
    ydot[I_CHI2] = Sdot2 / M2**2 * chi2_hat - 2 * Mdot2 / M2 * chi2 + np.cross(Omega_chi2, chi2)
    ydot[I_R] = 0.5 * quaternion_multiply(pure(Omega_p + Omega * ell_hat), state.R)
    ydot[I_V] = vdot(state, approximant, pq, layouts)
    ydot[I_PHI] = Omega
    # tidal deformabilities, when present, are constant
    return ydot


class InspiralRHS:
    """Callable f(t, y) for the ODE solver.

    Owns a private working state; domain errors return a NaN vector so the
    solver rejects the step, and are counted for the driver.
    """

    def __init__(self, template: BinaryState, approximant=Approximant.TAYLOR_T1):
        self.approximant = parse_approximant(approximant)
        self._state = template.copy()
        self.layouts = ExpressionLayouts(self._state)
        self.n_evals = 0
        self.domain_errors = 0

    @property
    def pn_order(self):
        return self._state.pn_order

    def __call__(self, t: float, y: NDArray) -> NDArray:
        self.n_evals += 1
        if causes_domain_error(y):
            self.domain_errors += 1
            return np.full(y.shape, np.nan)
        self._state.assign(y)
        return pn_rhs(self._state, self.approximant, self.layouts)
