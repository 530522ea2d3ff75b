"""Termination criteria for one integration leg.

Continuous criteria are functions g(t, y) that fire when g goes from > 0 to
<= 0 across an accepted step (in integration order); the crossing is then
located by root-finding on the step's dense output. Discrete criteria are
checked once per accepted step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray

from .state import I_CHI1, I_CHI2, I_M1, I_M2, I_V

logger = logging.getLogger(__name__)

# Stop reasons that do not come from a criterion object.
DOMAIN_ERROR = "domain_error"
STEP_COLLAPSE = "step_collapse"
HORIZON = "horizon"


class Severity(str, Enum):
    GRACEFUL = "graceful"
    SUSPICIOUS = "suspicious"


@dataclass(frozen=True)
class StepInfo:
    t_old: float
    y_old: NDArray
    t: float
    y: NDArray
    step_size: float


@dataclass(frozen=True)
class ContinuousCriterion:
    name: str
    function: Callable[[float, NDArray], float]
    severity: Severity = Severity.SUSPICIOUS
    message: str = ""

    def __call__(self, t: float, y: NDArray) -> float:
        return float(self.function(t, y))


@dataclass(frozen=True)
class DiscreteCriterion:
    name: str
    condition: Callable[[StepInfo], bool]
    severity: Severity = Severity.SUSPICIOUS
    message: str = ""

    def __call__(self, step: StepInfo) -> bool:
        return bool(self.condition(step))


Criterion = Union[ContinuousCriterion, DiscreteCriterion]


@dataclass(frozen=True)
class TerminationEvent:
    reason: str
    severity: Severity
    t: float
    v: float
    direction: str
    message: str = ""

    @property
    def graceful(self) -> bool:
        return self.severity is Severity.GRACEFUL


def mass_criteria() -> List[ContinuousCriterion]:
    return [
        ContinuousCriterion("M1_nonpositive", lambda t, y: y[I_M1], Severity.SUSPICIOUS,
                            "M1 reached zero"),
        ContinuousCriterion("M2_nonpositive", lambda t, y: y[I_M2], Severity.SUSPICIOUS,
                            "M2 reached zero"),
    ]


def spin_criteria() -> List[ContinuousCriterion]:
    return [
        ContinuousCriterion("chi1_superextremal", lambda t, y: 1 - np.dot(y[I_CHI1], y[I_CHI1]),
                            Severity.SUSPICIOUS, "|chi1| reached 1"),
        ContinuousCriterion("chi2_superextremal", lambda t, y: 1 - np.dot(y[I_CHI2], y[I_CHI2]),
                            Severity.SUSPICIOUS, "|chi2| reached 1"),
    ]


def target_v_criterion(v_target: float, direction: str = "forwards") -> ContinuousCriterion:
    if direction == "forwards":
        return ContinuousCriterion("v_end", lambda t, y: v_target - y[I_V], Severity.GRACEFUL,
                                   f"v reached v_end = {v_target:g}")
    if direction == "backwards":
        return ContinuousCriterion("v_1", lambda t, y: y[I_V] - v_target, Severity.GRACEFUL,
                                   f"v reached v_1 = {v_target:g}")
    raise ValueError(f"direction must be 'forwards' or 'backwards', got {direction!r}")


def step_collapse_criterion(dtype=np.float64) -> DiscreteCriterion:
    floor = float(np.sqrt(np.finfo(dtype).eps))
    return DiscreteCriterion(
        STEP_COLLAPSE, lambda s: abs(s.step_size) < floor, Severity.SUSPICIOUS,
        f"step size fell below {floor:.3g}")


def nonfinite_criterion() -> DiscreteCriterion:
    def condition(s: StepInfo) -> bool:
        return not (np.all(np.isfinite(s.y)) and np.isfinite(s.t) and np.isfinite(s.step_size))
    return DiscreteCriterion("nonfinite", condition, Severity.SUSPICIOUS,
                             "state, time or step became non-finite")


def decreasing_v_criterion() -> DiscreteCriterion:
    # v should grow monotonically on the inspiral; a decrease means PN has broken down
    return DiscreteCriterion("decreasing_v", lambda s: s.y[I_V] < s.y_old[I_V], Severity.SUSPICIOUS,
                             "v decreased during the forward inspiral")


def termination_forwards(v_e: float, dtype=np.float64) -> List[Criterion]:
    return [
        *mass_criteria(),
        *spin_criteria(),
        target_v_criterion(v_e, "forwards"),
        step_collapse_criterion(dtype),
        nonfinite_criterion(),
        decreasing_v_criterion(),
    ]


def termination_backwards(v_1: float, dtype=np.float64) -> List[Criterion]:
    return [
        *mass_criteria(),
        *spin_criteria(),
        target_v_criterion(v_1, "backwards"),
        step_collapse_criterion(dtype),
        nonfinite_criterion(),
    ]


def split_criteria(criteria: Sequence[Criterion]):
    continuous = [c for c in criteria if isinstance(c, ContinuousCriterion)]
    discrete = [c for c in criteria if isinstance(c, DiscreteCriterion)]
    if len(continuous) + len(discrete) != len(criteria):
        raise TypeError("criteria must be ContinuousCriterion or DiscreteCriterion instances")
    return continuous, discrete


def log_termination(event: TerminationEvent, quiet: bool = True,
                    log: Optional[logging.Logger] = None) -> None:
    log = logger if log is None else log
    text = (f"{event.direction} integration stopped at t={event.t:.6g}, v={event.v:.6g}: "
            f"{event.reason}" + (f" ({event.message})" if event.message else ""))
    if event.graceful:
        if not quiet:
            log.info(text)
    else:
        log.warning(text)
