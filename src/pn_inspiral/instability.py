"""Up-down instability of binaries with aligned/anti-aligned spins.

Gerosa et al. (2015), arXiv:1506.09116: when the heavier body's spin is aligned
with the orbital angular momentum and the lighter body's is anti-aligned, the
configuration is unstable to growth of precession between two separations

    r_pm = M (sqrt(chi_h) pm sqrt(q |chi_l|))**4 / (1 - q)**2,   q = m_l / m_h <= 1.

With the leading-order relation v = sqrt(M / r) these become bounds on v.
"""

from __future__ import annotations

import logging
import warnings
from typing import Tuple

import numpy as np

from .state import BinaryState

logger = logging.getLogger(__name__)

# precession this small counts as "initially non-precessing"
CHI_PERP_THRESHOLD = 1e-2


class UpDownInstabilityWarning(UserWarning):
    """The requested frequency range overlaps the up-down unstable region."""


def _clamp_v(r, M) -> float:
    with np.errstate(divide="ignore", invalid="ignore"):
        v = np.sqrt(M / r)
    if np.isnan(v):
        return 0.0
    return float(min(max(v, 0.0), 1.0))


def up_down_instability(state: BinaryState) -> Tuple[float, float]:
    """(v_lower, v_upper) of the unstable range; (1, 1) when there is none."""
    M = state.M
    ell_hat = state.frame[2]
    if state.M1 >= state.M2:
        m_h, m_l = state.M1, state.M2
        chi_h, chi_l = np.dot(state.chi1, ell_hat), np.dot(state.chi2, ell_hat)
    else:
        m_h, m_l = state.M2, state.M1
        chi_h, chi_l = np.dot(state.chi2, ell_hat), np.dot(state.chi1, ell_hat)
    q = m_l / m_h

    if not (chi_h > 0 and chi_l < 0):
        return 1.0, 1.0

    with np.errstate(divide="ignore", invalid="ignore"):
        r_plus = M * (np.sqrt(chi_h) + np.sqrt(q * abs(chi_l)))**4 / (1 - q)**2
        r_minus = M * (np.sqrt(chi_h) - np.sqrt(q * abs(chi_l)))**4 / (1 - q)**2
    # larger separation => smaller v
    return _clamp_v(r_plus, M), _clamp_v(r_minus, M)


def up_down_instability_warn(state: BinaryState, v_1: float, v_e: float,
                             v_limit: float = 0.5) -> bool:
    """Warn if [v_1, v_e] reaches into the unstable range of a nearly aligned system.

    Only applies when the initial in-plane spin is small but nonzero;
    returns True if a warning was issued.
    """
    chi_perp = state.chi_perp
    if not (0 < chi_perp <= CHI_PERP_THRESHOLD):
        return False
    v_lower, v_upper = up_down_instability(state)
    if v_1 < min(v_upper, v_limit) and min(v_e, v_limit) > v_lower:
        M = float(state.M)
        Omega_lower = v_lower**3 / M
        Omega_upper = v_upper**3 / M
        message = (
            "This system is likely to encounter the up-down instability in the frequency "
            f"range ({Omega_lower:.6g}, {Omega_upper:.6g}), i.e. v in ({v_lower:.6g}, {v_upper:.6g}). "
            "Its spins are nearly aligned/anti-aligned (chi_perp = "
            f"{float(chi_perp):.3g}), so precession may grow unexpectedly fast there; "
            "see Gerosa et al. (2015), arXiv:1506.09116."
        )
        logger.debug(message)
        warnings.warn(message, UpDownInstabilityWarning, stacklevel=2)
        return True
    return False
