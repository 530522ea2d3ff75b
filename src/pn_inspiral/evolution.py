"""Forward/backward orbital evolution of a compact binary.

The driver integrates forwards in time from the initial frequency Omega_i
until a termination criterion fires (normally v reaching v_e), then, when an
earlier first frequency Omega_1 < Omega_i is requested, backwards until v
drops to v_1. The two legs are stitched into one time-ascending solution with
t = 0 at the initial condition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.integrate import OdeSolution
from scipy.interpolate import CubicSpline

from .config import SolverParams, solver_tolerances
from .errors import BeyondPNValidity, ConfigurationError, InvalidParameters
from .expressions import estimated_time_to_merger
from .instability import up_down_instability_warn
from .integrate import LegResult, integrate_leg
from .rhs import Approximant, InspiralRHS, parse_approximant
from .state import BinaryState, omega_of_v, v_of_omega, variable_names
from .termination import Criterion, TerminationEvent, termination_backwards, termination_forwards

logger = logging.getLogger(__name__)


class DriverPhase(str, Enum):
    IDLE = "idle"
    FORWARD_RUNNING = "forward_running"
    FORWARD_DONE = "forward_done"
    BACKWARD_RUNNING = "backward_running"
    BACKWARD_DONE = "backward_done"
    STITCHED = "stitched"


@dataclass
class InspiralResult:
    t: NDArray[np.float64]
    y: NDArray[np.float64]
    forward: LegResult
    backward: Optional[LegResult]
    approximant: Approximant
    pn_order: object
    interpolant: Optional[OdeSolution] = None

    @property
    def variable_names(self) -> Tuple[str, ...]:
        return variable_names(self.y.shape[1])

    @property
    def events(self) -> Tuple[TerminationEvent, ...]:
        legs = [self.forward] if self.backward is None else [self.backward, self.forward]
        return tuple(leg.event for leg in legs)

    @property
    def stop_reason(self) -> str:
        return self.forward.event.reason

    def __len__(self) -> int:
        return self.t.size

    def __getitem__(self, name: str) -> NDArray:
        if name == "t":
            return self.t
        return self.y[:, self.variable_names.index(name)]

    def __call__(self, t):
        """Dense interpolation of the state at time(s) t."""
        if self.interpolant is None:
            raise ValueError("no dense output available for this result")
        return self.interpolant(t)

    def final_state(self) -> BinaryState:
        return BinaryState.from_vector(self.y[-1], pn_order=self.pn_order)

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self.y, columns=list(self.variable_names))
        df.insert(0, "t", self.t)
        return df


def _combine_interpolants(backward: Optional[LegResult], forward: LegResult):
    """OdeSolution over the stitched time range, or None if a leg has no steps."""
    ts = []
    interps = []
    if backward is not None and backward.interpolants:
        # backward samples run from 0 to negative t; flip them to ascending order
        ts.extend(backward.t[::-1].tolist())
        interps.extend(backward.interpolants[::-1])
        ts.extend(forward.t[1:].tolist())
    else:
        ts.extend(forward.t.tolist())
    interps.extend(forward.interpolants)
    if not interps or len(ts) != len(interps) + 1:
        return None
    return OdeSolution(np.array(ts), interps)


def stitch(backward: Optional[LegResult], forward: LegResult) -> Tuple[NDArray, NDArray]:
    """Reverse the backward leg, drop its copy of the initial sample, prepend it.

    The result is strictly increasing in time and t = 0 is the initial condition.
    """
    if backward is None:
        return forward.t.copy(), forward.y.copy()
    t = np.concatenate([backward.t[1:][::-1], forward.t])
    y = np.concatenate([backward.y[1:][::-1], forward.y], axis=0)
    return t, y


class InspiralDriver:
    """Runs one evolution; owns its BinaryState and RHS for the whole run."""

    def __init__(self,
                 state: BinaryState,
                 approximant=Approximant.TAYLOR_T1,
                 v_1: Optional[float] = None,
                 v_e: float = 1.0,
                 solver: SolverParams = SolverParams(),
                 check_up_down_instability: bool = True,
                 termination_criteria_forwards: Optional[Sequence[Criterion]] = None,
                 termination_criteria_backwards: Optional[Sequence[Criterion]] = None,
                 extra_criteria: Sequence[Criterion] = (),
                 quiet: bool = True):
        self.state = state.copy()
        self.approximant = parse_approximant(approximant)
        self.v_i = float(self.state.v)
        self.v_1 = self.v_i if v_1 is None else float(v_1)
        self.v_e = float(v_e)
        self.solver = solver
        self.check_up_down_instability = check_up_down_instability
        self.quiet = quiet
        dtype = self.state.dtype
        if termination_criteria_forwards is None:
            termination_criteria_forwards = termination_forwards(self.v_e, dtype)
        if termination_criteria_backwards is None:
            termination_criteria_backwards = termination_backwards(self.v_1, dtype)
        self.criteria_forwards = list(termination_criteria_forwards) + list(extra_criteria)
        self.criteria_backwards = list(termination_criteria_backwards) + list(extra_criteria)
        self.phase = DriverPhase.IDLE
        self.forward: Optional[LegResult] = None
        self.backward: Optional[LegResult] = None

        if self.v_i >= 1:
            raise BeyondPNValidity(f"initial velocity v_i={self.v_i:g} must be less than 1")
        if self.v_1 > self.v_i:
            raise ConfigurationError(f"v_1={self.v_1:g} must not exceed v_i={self.v_i:g}")
        if self.v_i > self.v_e:
            raise ConfigurationError(f"v_i={self.v_i:g} must not exceed v_e={self.v_e:g}")

    def _horizon(self, v_from: float, v_to: Optional[float] = None) -> float:
        M, nu = float(self.state.M), float(self.state.nu)
        tau = estimated_time_to_merger(M, nu, v_from)
        if v_to is not None:
            tau = tau - estimated_time_to_merger(M, nu, v_to)
        return self.solver.horizon_factor * tau

    def run(self) -> InspiralResult:
        if self.phase is not DriverPhase.IDLE:
            raise RuntimeError(f"driver already ran (phase {self.phase.value})")
        state = self.state
        if self.check_up_down_instability:
            up_down_instability_warn(state, self.v_1, self.v_e)

        rhs = InspiralRHS(state, self.approximant)
        y0 = state.vector
        if not np.all(np.isfinite(rhs(0.0, y0))):
            raise InvalidParameters(f"non-finite derivative at the initial state {state!r}")
        rtol, atol = solver_tolerances(self.solver, float(state.M), y0.size, state.dtype)

        self.phase = DriverPhase.FORWARD_RUNNING
        self.forward = integrate_leg(
            rhs, y0, (0.0, self._horizon(self.v_i)), self.criteria_forwards,
            solver=self.solver, rtol=rtol, atol=atol, direction="forwards", quiet=self.quiet)
        self.phase = DriverPhase.FORWARD_DONE

        if self.v_1 < self.v_i:
            self.phase = DriverPhase.BACKWARD_RUNNING
            self.backward = integrate_leg(
                rhs, y0, (0.0, -self._horizon(self.v_1, self.v_i)), self.criteria_backwards,
                solver=self.solver, rtol=rtol, atol=atol, direction="backwards", quiet=self.quiet)
            self.phase = DriverPhase.BACKWARD_DONE

        t, y = stitch(self.backward, self.forward)
        self.phase = DriverPhase.STITCHED
        logger.debug("stitched %d samples, t in [%.6g, %.6g]", t.size, t[0], t[-1])
        return InspiralResult(
            t=t, y=y,
            forward=self.forward,
            backward=self.backward,
            approximant=self.approximant,
            pn_order=state.pn_order,
            interpolant=_combine_interpolants(self.backward, self.forward),
        )


def uniform_in_phase(result: InspiralResult, saves_per_orbit: int) -> InspiralResult:
    """Resample at uniform steps in orbital phase, 2 pi / saves_per_orbit apart."""
    if saves_per_orbit <= 0:
        raise ValueError(f"saves_per_orbit must be positive, got {saves_per_orbit}")
    if len(result) < 2:
        # a leg that stopped at its initial sample has nothing to resample
        return result
    if result.interpolant is None:
        raise ValueError("uniform_in_phase needs dense output")
    Phi = result["Phi"]
    t_of_phi = CubicSpline(Phi, result.t)
    dPhi = 2 * np.pi / saves_per_orbit
    n = int(np.floor((Phi[-1] - Phi[0]) / dPhi)) + 1
    phis = Phi[0] + dPhi * np.arange(n)
    t = np.clip(t_of_phi(phis), result.t[0], result.t[-1])
    y = np.asarray(result(t)).T
    # the spline is exact at the first sample
    t[0] = result.t[0]
    y[0] = result.y[0]
    return InspiralResult(
        t=t, y=y,
        forward=result.forward,
        backward=result.backward,
        approximant=result.approximant,
        pn_order=result.pn_order,
        interpolant=result.interpolant,
    )


def _velocity_bounds(Omega_i: float, Omega_1: Optional[float], Omega_e: Optional[float],
                     v_i: float, M: float) -> Tuple[float, float]:
    """Check the frequency ordering and convert Omega_1, Omega_e to v_1, v_e."""
    if Omega_1 is not None and Omega_1 > Omega_i:
        raise ConfigurationError(f"Omega_1={Omega_1:g} must not exceed Omega_i={Omega_i:g}")
    if Omega_e is not None and Omega_i > Omega_e:
        raise ConfigurationError(f"Omega_i={Omega_i:g} must not exceed Omega_e={Omega_e:g}")
    if v_i >= 1:
        raise BeyondPNValidity(f"initial velocity v_i={v_i:g} must be less than 1")
    # equal frequencies map to v_i exactly, whatever the cube-root rounding
    v_1 = v_i if Omega_1 is None or Omega_1 == Omega_i else min(float(v_of_omega(Omega_1, M)), v_i)
    if Omega_e is None:
        v_e = 1.0
    elif Omega_e == Omega_i:
        v_e = v_i
    else:
        v_e = max(min(float(v_of_omega(Omega_e, M)), 1.0), v_i)
    return v_1, v_e


def evolve(state: BinaryState,
           approximant="TaylorT1",
           Omega_1: Optional[float] = None,
           Omega_e: Optional[float] = None,
           solver: Optional[SolverParams] = None,
           check_up_down_instability: bool = True,
           termination_criteria_forwards: Optional[Sequence[Criterion]] = None,
           termination_criteria_backwards: Optional[Sequence[Criterion]] = None,
           extra_criteria: Sequence[Criterion] = (),
           quiet: bool = True,
           saves_per_orbit: int = 0,
           Omega_i: Optional[float] = None) -> InspiralResult:
    """Evolve an existing state.

    Omega_i is the frequency the state was built from, used only for the
    ordering checks; it defaults to v**3 / M. Omega_1 defaults to Omega_i and
    Omega_e to v = 1.
    """
    M = float(state.M)
    v_i = float(state.v)
    Omega_i = float(omega_of_v(v_i, M)) if Omega_i is None else float(Omega_i)
    v_1, v_e = _velocity_bounds(Omega_i, Omega_1, Omega_e, v_i, M)

    driver = InspiralDriver(
        state, approximant,
        v_1=v_1, v_e=v_e,
        solver=SolverParams() if solver is None else solver,
        check_up_down_instability=check_up_down_instability,
        termination_criteria_forwards=termination_criteria_forwards,
        termination_criteria_backwards=termination_criteria_backwards,
        extra_criteria=extra_criteria,
        quiet=quiet,
    )
    result = driver.run()
    if saves_per_orbit:
        result = uniform_in_phase(result, saves_per_orbit)
    return result


def orbital_evolution(M1: float, M2: float,
                      chi1: Sequence[float], chi2: Sequence[float],
                      Omega_i: float,
                      *,
                      Omega_1: Optional[float] = None,
                      Omega_e: Optional[float] = None,
                      R_i: Sequence[float] = (1.0, 0.0, 0.0, 0.0),
                      Lambda1: float = 0.0,
                      Lambda2: float = 0.0,
                      approximant="TaylorT1",
                      pn_order=None,
                      dtype=np.float64,
                      solver: Optional[SolverParams] = None,
                      check_up_down_instability: bool = True,
                      termination_criteria_forwards: Optional[Sequence[Criterion]] = None,
                      termination_criteria_backwards: Optional[Sequence[Criterion]] = None,
                      extra_criteria: Sequence[Criterion] = (),
                      quiet: bool = True,
                      saves_per_orbit: int = 0) -> InspiralResult:
    """Integrate the orbital dynamics of a compact binary from Omega_i.

    Frequencies are orbital angular frequencies in units of 1/M (G = c = 1).
    Omega_1 < Omega_i adds a backward leg so the output starts at Omega_1;
    Omega_e defaults to v = 1. Returns the stitched solution with the stop
    reason of each leg.
    """
    if not (M1 > 0 and M2 > 0):
        raise InvalidParameters(f"masses must be positive, got M1={M1}, M2={M2}")
    M = M1 + M2
    v_i = float(v_of_omega(Omega_i, M))
    # ordering errors come before state validation
    _velocity_bounds(Omega_i, Omega_1, Omega_e, v_i, M)

    state = BinaryState(M1, M2, chi1, chi2, v_i, R=R_i,
                        Lambda1=Lambda1, Lambda2=Lambda2,
                        pn_order=pn_order, dtype=dtype)
    return evolve(state, approximant,
                  Omega_1=Omega_1, Omega_e=Omega_e,
                  solver=solver,
                  check_up_down_instability=check_up_down_instability,
                  termination_criteria_forwards=termination_criteria_forwards,
                  termination_criteria_backwards=termination_criteria_backwards,
                  extra_criteria=extra_criteria,
                  quiet=quiet,
                  saves_per_orbit=saves_per_orbit,
                  Omega_i=Omega_i)
