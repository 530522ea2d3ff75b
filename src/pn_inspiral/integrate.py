from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.integrate import BDF, DOP853, LSODA, RK23, RK45, Radau
from scipy.optimize import brentq

from .config import SolverParams
from .errors import ConfigurationError, HorizonExhausted
from .state import I_V
from .termination import (
    DOMAIN_ERROR, HORIZON, STEP_COLLAPSE,
    Criterion, Severity, StepInfo, TerminationEvent,
    log_termination, split_criteria,
)

logger = logging.getLogger(__name__)

METHODS = {
    "RK23": RK23,
    "RK45": RK45,
    "DOP853": DOP853,
    "Radau": Radau,
    "BDF": BDF,
    "LSODA": LSODA,
}


@dataclass
class LegResult:
    """One integration leg, in its own integration order (t decreasing when backwards)."""
    t: NDArray[np.float64]
    y: NDArray[np.float64]
    interpolants: list
    event: TerminationEvent
    direction: str
    n_steps: int = 0
    n_rhs: int = 0
    domain_errors: int = 0
    runtime_sec: float = 0.0
    solver_status: str = ""
    solver_message: str = ""
    extra: dict = field(default_factory=dict)

    @property
    def stop_reason(self) -> str:
        return self.event.reason


def make_solver(rhs, t_span: Tuple[float, float], y0: NDArray, solver: SolverParams,
                rtol, atol):
    try:
        cls = METHODS[solver.method]
    except KeyError:
        raise ConfigurationError(f"unknown solver method {solver.method!r}; "
                                 f"expected one of {sorted(METHODS)}") from None
    kwargs = dict(rtol=rtol, atol=atol)
    max_step = solver.max_step
    if max_step is not None and np.isfinite(max_step) and max_step > 0:
        kwargs["max_step"] = float(max_step)
    if solver.first_step is not None:
        kwargs["first_step"] = float(solver.first_step)
    return cls(rhs, float(t_span[0]), np.asarray(y0, dtype=float), float(t_span[1]), **kwargs)


def _locate_crossing(criterion, sol, t_old: float, t_new: float) -> float:
    """Root of a criterion inside one step, using the step's dense output."""
    g = lambda s: criterion(s, sol(s))
    if g(t_new) == 0.0:
        return t_new
    if g(t_old) <= 0.0:
        return t_old
    a, b = (t_old, t_new) if t_old < t_new else (t_new, t_old)
    return float(brentq(g, a, b, xtol=1e-14 * max(1.0, abs(t_new)), rtol=4 * np.finfo(float).eps))


def integrate_leg(rhs,
                  y0: NDArray,
                  t_span: Tuple[float, float],
                  criteria: Sequence[Criterion],
                  solver: SolverParams = SolverParams(),
                  rtol=1e-10,
                  atol=1e-12,
                  direction: str = "forwards",
                  quiet: bool = True) -> LegResult:
    """Step a scipy OdeSolver until a termination criterion fires.

    Continuous criteria are checked at each accepted step and located to
    machine precision with brentq; the located point becomes the final
    sample. One that is already <= 0 at the start fires there, leaving the
    initial point as the only sample. Discrete criteria are checked after each accepted step. Running
    out of time without any criterion firing is reported as "horizon".
    """
    continuous, discrete = split_criteria(criteria)
    start = time.time()
    domain_errors_start = getattr(rhs, "domain_errors", 0)

    ode = make_solver(rhs, t_span, y0, solver, rtol, atol)
    t_prev = float(ode.t)
    y_prev = np.array(ode.y)

    # keep at least initial point
    t_list: List[float] = [t_prev]
    y_list: List[NDArray] = [y_prev.copy()]
    interpolants: list = []

    g_prev = [c(t_prev, y_prev) for c in continuous]
    event: Optional[TerminationEvent] = None
    n_steps = 0

    # a criterion already at or past its threshold stops the leg at the initial sample
    for crit, g in zip(continuous, g_prev):
        if g <= 0:
            event = TerminationEvent(crit.name, crit.severity, t_prev, float(y_prev[I_V]),
                                     direction, crit.message)
            break

    while event is None:
        message = ode.step()
        n_steps += 1

        if ode.status == "failed":
            if getattr(rhs, "domain_errors", 0) > domain_errors_start:
                event = TerminationEvent(DOMAIN_ERROR, Severity.SUSPICIOUS, t_prev, float(y_prev[I_V]),
                                         direction, f"solver failed after RHS domain errors: {message}")
            else:
                event = TerminationEvent(STEP_COLLAPSE, Severity.SUSPICIOUS, t_prev, float(y_prev[I_V]),
                                         direction, f"solver failed: {message}")
            break

        t_new = float(ode.t)
        y_new = np.array(ode.y)
        finite = bool(np.all(np.isfinite(y_new)) and np.isfinite(t_new))
        sol = ode.dense_output() if finite else None

        # continuous criteria: earliest crossing in integration order wins
        if finite:
            g_new = [c(t_new, y_new) for c in continuous]
            fired = [i for i, (a, b) in enumerate(zip(g_prev, g_new)) if a > 0 and b <= 0]
            if fired:
                crossings = [(_locate_crossing(continuous[i], sol, t_prev, t_new), i) for i in fired]
                sign = 1.0 if t_new >= t_prev else -1.0
                t_root, i = min(crossings, key=lambda ti: sign * ti[0])
                y_root = np.asarray(sol(t_root))
                crit = continuous[i]
                if t_root != t_prev:
                    t_list.append(t_root)
                    y_list.append(y_root)
                    interpolants.append(sol)
                event = TerminationEvent(crit.name, crit.severity, t_root, float(y_root[I_V]),
                                         direction, crit.message)
                break
            g_prev = g_new
            t_list.append(t_new)
            y_list.append(y_new)
            interpolants.append(sol)

        if finite and ode.status == "finished":
            event = TerminationEvent(HORIZON, Severity.SUSPICIOUS, t_new, float(y_new[I_V]), direction,
                                     f"reached the time bound {t_span[1]:.6g} before any criterion fired")
            break

        step = StepInfo(t_old=t_prev, y_old=y_prev, t=t_new, y=y_new, step_size=t_new - t_prev)
        for crit in discrete:
            if crit(step):
                v_stop = float(y_new[I_V]) if finite else float(y_prev[I_V])
                t_stop = t_new if finite else t_prev
                event = TerminationEvent(crit.name, crit.severity, t_stop, v_stop, direction, crit.message)
                break
        if event is not None:
            break
        if not finite:
            event = TerminationEvent("nonfinite", Severity.SUSPICIOUS, t_prev, float(y_prev[I_V]), direction,
                                     "state or time became non-finite")
            break

        t_prev, y_prev = t_new, y_new

    log_termination(event, quiet=quiet, log=logger)

    result = LegResult(
        t=np.array(t_list, dtype=float),
        y=np.vstack(y_list),
        interpolants=interpolants,
        event=event,
        direction=direction,
        n_steps=n_steps,
        n_rhs=int(getattr(ode, "nfev", 0)),
        domain_errors=getattr(rhs, "domain_errors", 0) - domain_errors_start,
        runtime_sec=float(time.time() - start),
        solver_status=str(ode.status),
        solver_message=str(event.message),
    )
    if event.reason == HORIZON and solver.raise_on_horizon:
        raise HorizonExhausted(f"{direction} integration: {event.message}", event)
    return result
