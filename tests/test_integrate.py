import numpy as np
import pytest

from pn_inspiral.config import SolverParams
from pn_inspiral.errors import ConfigurationError, HorizonExhausted
from pn_inspiral.integrate import integrate_leg
from pn_inspiral.rhs import causes_domain_error
from pn_inspiral.state import I_CHI1, I_CHI2, I_M1, I_M2, I_V, N_VARS_BBH
from pn_inspiral.termination import (
    ContinuousCriterion, Severity, target_v_criterion, termination_backwards, termination_forwards,
)


class LinearV:
    """v grows at unit rate; every other entry is constant."""

    def __init__(self, v_max=np.inf):
        self.v_max = v_max
        self.domain_errors = 0

    def __call__(self, t, y):
        if y[I_V] > self.v_max:
            self.domain_errors += 1
            return np.full(y.shape, np.nan)
        out = np.zeros_like(y)
        out[I_V] = 1.0
        return out


def initial(v=0.1):
    y = np.zeros(N_VARS_BBH)
    y[0], y[1] = 0.6, 0.4
    y[8] = 1.0
    y[I_V] = v
    return y


SOLVER = SolverParams(max_step=0.05)


def test_forward_leg_stops_exactly_at_target():
    res = integrate_leg(LinearV(), initial(0.1), (0.0, 10.0), termination_forwards(0.5),
                        solver=SOLVER, rtol=1e-10, atol=1e-12)
    assert res.stop_reason == "v_end", res.event
    assert res.event.graceful
    assert np.isclose(res.t[-1], 0.4, rtol=0, atol=1e-12), f"root not located: t={res.t[-1]}"
    assert np.isclose(res.y[-1, I_V], 0.5, rtol=0, atol=1e-12)
    assert res.t[0] == 0.0 and np.all(np.diff(res.t) > 0)
    assert len(res.interpolants) == len(res.t) - 1


def test_backward_leg_runs_to_negative_time():
    rhs = LinearV()
    res = integrate_leg(rhs, initial(0.1), (0.0, -10.0), termination_backwards(0.05),
                        solver=SOLVER, rtol=1e-10, atol=1e-12, direction="backwards")
    assert res.stop_reason == "v_1"
    assert res.direction == "backwards"
    assert np.all(np.diff(res.t) < 0), "a backward leg is stored in integration order"
    assert np.isclose(res.t[-1], -0.05, atol=1e-12)


def test_earliest_crossing_wins():
    early = ContinuousCriterion("early", lambda t, y: 0.2 - y[I_V], Severity.SUSPICIOUS)
    crits = termination_forwards(0.5) + [early]
    res = integrate_leg(LinearV(), initial(0.1), (0.0, 10.0), crits, solver=SOLVER)
    assert res.stop_reason == "early"
    assert not res.event.graceful
    assert np.isclose(res.t[-1], 0.1, atol=1e-10)


def test_horizon_is_reported_or_raised():
    res = integrate_leg(LinearV(), initial(0.1), (0.0, 0.2), termination_forwards(0.5), solver=SOLVER)
    assert res.stop_reason == "horizon"
    assert np.isclose(res.t[-1], 0.2)
    with pytest.raises(HorizonExhausted) as err:
        integrate_leg(LinearV(), initial(0.1), (0.0, 0.2), termination_forwards(0.5),
                      solver=SolverParams(max_step=0.05, raise_on_horizon=True))
    assert err.value.event.reason == "horizon"


def test_domain_errors_end_the_leg():
    rhs = LinearV(v_max=0.3)
    crits = [target_v_criterion(0.5, "forwards")]
    res = integrate_leg(rhs, initial(0.1), (0.0, 10.0), crits, solver=SOLVER)
    assert res.stop_reason == "domain_error", res.event
    assert res.domain_errors > 0
    assert res.y[-1, I_V] <= 0.3 + 1e-12
    assert np.all(np.isfinite(res.y)), "rejected NaN states are never stored"


def test_unknown_method():
    with pytest.raises(ConfigurationError):
        integrate_leg(LinearV(), initial(), (0.0, 1.0), termination_forwards(0.5),
                      solver=SolverParams(method="Euler"))


@pytest.mark.parametrize("method", ["RK45", "DOP853", "Radau", "LSODA"])
def test_scipy_methods(method):
    res = integrate_leg(LinearV(), initial(0.1), (0.0, 10.0), termination_forwards(0.3),
                        solver=SolverParams(method=method, max_step=0.05), rtol=1e-9, atol=1e-12)
    assert res.stop_reason == "v_end"
    assert np.isclose(res.t[-1], 0.2, atol=1e-8)


class Drift:
    """One entry changes at a constant rate; the PN domain check is applied."""

    def __init__(self, index, rate):
        self.index = index
        self.rate = rate
        self.domain_errors = 0

    def __call__(self, t, y):
        if causes_domain_error(y):
            self.domain_errors += 1
            return np.full(y.shape, np.nan)
        out = np.zeros_like(y)
        out[self.index] = self.rate
        return out


@pytest.mark.parametrize("index, start, rate, reason, t_stop", [
    (I_CHI1.start + 2, 0.5, 1.0, "chi1_superextremal", 0.5),
    (I_CHI2.start, -0.2, -1.0, "chi2_superextremal", 0.8),
    (I_M1, 0.6, -1.0, "M1_nonpositive", 0.6),
    (I_M2, 0.4, -1.0, "M2_nonpositive", 0.4),
])
def test_spin_and_mass_bounds_are_located_and_named(index, start, rate, reason, t_stop):
    y0 = initial(0.1)
    y0[index] = start
    rhs = Drift(index, rate)
    res = integrate_leg(rhs, y0, (0.0, 10.0), termination_forwards(0.9), solver=SOLVER,
                        rtol=1e-10, atol=1e-12)
    assert res.stop_reason == reason, res.event
    assert not res.event.graceful
    assert np.isclose(res.t[-1], t_stop, rtol=0, atol=1e-10), f"crossing not located: t={res.t[-1]}"
    assert res.domain_errors == 0, "crossing a spin or mass bound is not a domain error"


def test_criterion_already_satisfied_stops_at_the_initial_sample():
    res = integrate_leg(LinearV(), initial(0.3), (0.0, 10.0), termination_forwards(0.3), solver=SOLVER)
    assert res.stop_reason == "v_end" and res.event.graceful
    assert res.n_steps == 0
    assert np.array_equal(res.t, [0.0])
    assert res.y.shape == (1, N_VARS_BBH) and res.y[0, I_V] == 0.3
    assert res.interpolants == []
