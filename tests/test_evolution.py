import logging
import warnings

import numpy as np
import pytest

from pn_inspiral.config import SolverParams
from pn_inspiral.errors import BeyondPNValidity, ConfigurationError, HorizonExhausted, InvalidParameters
from pn_inspiral.evolution import (
    DriverPhase, InspiralDriver, evolve, orbital_evolution, stitch, uniform_in_phase,
)
from pn_inspiral.expressions import estimated_time_to_merger
from pn_inspiral.frame import frame_vectors
from pn_inspiral.instability import UpDownInstabilityWarning
from pn_inspiral.integrate import LegResult
from pn_inspiral.state import I_PHI, I_R, I_V, BinaryState, omega_of_v, variable_names
from pn_inspiral.termination import ContinuousCriterion, Severity, TerminationEvent

ZERO = (0.0, 0.0, 0.0)
LOOSE = SolverParams(rtol=1e-9, atol=1e-11)


def newtonian_time(M, nu, v_from, v_to):
    # dv/dt = 32 nu v^9 / (5 M) integrates in closed form
    return estimated_time_to_merger(M, nu, v_from) - estimated_time_to_merger(M, nu, v_to)


def run_newtonian(v_i, v_e=1.0, **kw):
    M1, M2 = 1.0, 0.2
    M = M1 + M2
    return orbital_evolution(M1, M2, ZERO, ZERO, omega_of_v(v_i, M),
                             Omega_e=omega_of_v(v_e, M), pn_order=0, **kw)


def assert_well_formed(res):
    assert np.all(np.diff(res.t) > 0), "stitched times must be strictly increasing"
    assert np.count_nonzero(res.t == 0.0) == 1, "t = 0 appears exactly once"
    assert np.all(np.isfinite(res.y))


def test_newtonian_inspiral_reaches_v_one():
    res = run_newtonian(0.2)
    assert_well_formed(res)
    assert res.stop_reason == "v_end", res.forward.event
    assert res.backward is None
    assert len(res.events) == 1 and res.events[0].graceful
    v = res["v"]
    assert np.isclose(v[0], 0.2, rtol=1e-12)
    assert np.isclose(v[-1], 1.0, rtol=0, atol=1e-8), f"final v = {v[-1]}"
    assert np.all(np.diff(v) > 0)
    assert np.all(np.diff(res["Phi"]) > 0), "orbital phase must increase monotonically"
    nu = 0.2 / 1.2**2
    expected = newtonian_time(1.2, nu, 0.2, 1.0)
    assert np.isclose(res.t[-1], expected, rtol=1e-4), f"t_end = {res.t[-1]}, expected {expected}"


@pytest.mark.slow
def test_newtonian_inspiral_from_low_frequency():
    res = run_newtonian(0.1)
    assert res.stop_reason == "v_end"
    assert np.isclose(res["v"][-1], 1.0, rtol=0, atol=1e-8)
    nu = 0.2 / 1.2**2
    assert np.isclose(res.t[-1], newtonian_time(1.2, nu, 0.1, 1.0), rtol=1e-4)


@pytest.mark.slow
def test_full_order_inspiral_from_low_frequency():
    M1, M2 = 1.0, 0.2
    M = M1 + M2
    res = orbital_evolution(M1, M2, ZERO, ZERO, omega_of_v(0.1, M), Omega_e=omega_of_v(0.3, M))
    assert res.stop_reason == "v_end"
    assert np.isclose(res["v"][-1], 0.3, rtol=0, atol=1e-8)
    assert_well_formed(res)
    assert np.all(np.diff(res.y[:, I_PHI]) > 0), "orbital phase must increase monotonically"
    assert res.t[-1] > 0


def test_forward_and_backward_legs_are_stitched():
    M1, M2 = 1.0, 0.2
    M = M1 + M2
    res = orbital_evolution(M1, M2, ZERO, ZERO, omega_of_v(0.3, M),
                            Omega_1=omega_of_v(0.25, M), Omega_e=omega_of_v(0.4, M),
                            solver=LOOSE)
    assert_well_formed(res)
    assert [e.reason for e in res.events] == ["v_1", "v_end"]
    assert all(e.graceful for e in res.events)
    assert res.t[0] < 0 < res.t[-1]

    v = res["v"]
    assert np.isclose(v[0], 0.25, atol=1e-9)
    assert np.isclose(v[-1], 0.4, atol=1e-9)
    assert np.all(np.diff(v) > 0)
    assert np.all(np.diff(res["Phi"]) > 0)

    i0 = int(np.flatnonzero(res.t == 0.0)[0])
    assert np.isclose(res.y[i0, I_V], 0.3, rtol=1e-12), "the initial condition sits at t = 0"
    assert np.isclose(res.y[i0, I_PHI], 0.0)

    # dense output agrees with the samples on both sides of t = 0
    for k in (1, i0, len(res.t) - 2):
        assert np.allclose(res(res.t[k]), res.y[k], rtol=1e-8, atol=1e-10), k
    t_mid = 0.5 * (res.t[i0 - 1] + res.t[i0 + 1])
    v_mid = res(t_mid)[I_V]
    assert res.y[i0 - 1, I_V] < v_mid < res.y[i0 + 1, I_V]


def test_approximants_agree_over_a_short_inspiral():
    M1, M2 = 1.0, 0.2
    M = M1 + M2
    t_end = {}
    for approximant in ("TaylorT1", "TaylorT4", "TaylorT5"):
        res = orbital_evolution(M1, M2, ZERO, ZERO, omega_of_v(0.3, M), Omega_e=omega_of_v(0.31, M),
                                approximant=approximant, pn_order=3.5, solver=LOOSE)
        assert res.stop_reason == "v_end", approximant
        assert res.approximant.value == approximant
        t_end[approximant] = res.t[-1]
    ref = t_end["TaylorT1"]
    for approximant, t in t_end.items():
        assert np.isclose(t, ref, rtol=5e-2), f"{approximant}: {t} vs {ref}"


def test_precessing_inspiral_keeps_unit_rotor():
    res = orbital_evolution(0.7, 0.3, (0.3, 0.1, 0.5), (-0.2, 0.2, 0.1), omega_of_v(0.25, 1.0),
                            Omega_e=omega_of_v(0.3, 1.0), pn_order=3.5, solver=LOOSE)
    assert res.stop_reason == "v_end"
    R = res.y[:, I_R]
    assert np.allclose(np.linalg.norm(R, axis=1), 1.0, rtol=1e-6)
    ell_start = frame_vectors(R[0])[2]
    ell_end = frame_vectors(R[-1])[2]
    assert np.linalg.norm(ell_end - ell_start) > 1e-3, "ell-hat should precess"
    chi1 = np.linalg.norm(res.y[:, 2:5], axis=1)
    assert np.allclose(chi1, chi1[0], rtol=1e-5), "|chi1| changes only through absorption"


def test_frequency_ordering_errors():
    M = 1.2
    Omega_i = omega_of_v(0.3, M)
    with pytest.raises(ConfigurationError):
        orbital_evolution(1.0, 0.2, ZERO, ZERO, Omega_i, Omega_1=1.1 * Omega_i)
    with pytest.raises(ConfigurationError):
        orbital_evolution(1.0, 0.2, ZERO, ZERO, Omega_i, Omega_e=0.9 * Omega_i)
    with pytest.raises(BeyondPNValidity):
        orbital_evolution(1.0, 0.2, ZERO, ZERO, omega_of_v(1.05, M))
    with pytest.raises(InvalidParameters):
        orbital_evolution(0.0, 0.2, ZERO, ZERO, Omega_i)
    with pytest.raises(InvalidParameters):
        orbital_evolution(1.0, 0.2, (0.0, 0.0, 1.5), ZERO, Omega_i)
    with pytest.raises(ConfigurationError):
        orbital_evolution(1.0, 0.2, ZERO, ZERO, Omega_i, approximant="TaylorF2")


def test_equal_frequencies_skip_the_backward_leg():
    M = 1.2
    Omega_i = omega_of_v(0.3, M)
    res = orbital_evolution(1.0, 0.2, ZERO, ZERO, Omega_i, Omega_1=Omega_i,
                            Omega_e=omega_of_v(0.31, M), pn_order=0)
    assert res.backward is None


def test_equal_initial_and_end_frequencies_stop_at_once():
    M = 1.2
    Omega_i = omega_of_v(0.3, M)
    res = orbital_evolution(1.0, 0.2, ZERO, ZERO, Omega_i, Omega_e=Omega_i, pn_order=0)
    assert res.stop_reason == "v_end" and res.forward.event.graceful
    assert np.array_equal(res.t, [0.0])
    assert res["v"][-1] == res["v"][0]
    assert res.interpolant is None
    with_backward = orbital_evolution(1.0, 0.2, ZERO, ZERO, Omega_i, Omega_e=Omega_i,
                                      Omega_1=omega_of_v(0.29, M), pn_order=0)
    assert [e.reason for e in with_backward.events] == ["v_1", "v_end"]
    assert with_backward.t[-1] == 0.0
    assert np.isclose(with_backward["v"][0], 0.29, atol=1e-9)
    assert np.isclose(with_backward(0.0)[I_V], 0.3, rtol=1e-12), "dense output still ends at the initial state"


def test_horizon_is_a_suspicious_stop(caplog):
    solver = SolverParams(horizon_factor=1e-3)
    with caplog.at_level(logging.WARNING, logger="pn_inspiral"):
        res = run_newtonian(0.3, solver=solver)
    assert res.stop_reason == "horizon"
    assert not res.forward.event.graceful
    assert any("horizon" in r.getMessage() for r in caplog.records)
    with pytest.raises(HorizonExhausted):
        run_newtonian(0.3, solver=SolverParams(horizon_factor=1e-3, raise_on_horizon=True))


def test_extra_criteria_stop_the_forward_leg():
    stop = ContinuousCriterion("Phi_max", lambda t, y: 10.0 - y[I_PHI], Severity.SUSPICIOUS,
                               "orbital phase reached 10")
    res = run_newtonian(0.3, extra_criteria=[stop])
    assert res.stop_reason == "Phi_max"
    assert np.isclose(res["Phi"][-1], 10.0, atol=1e-8)


def test_uniform_in_phase():
    res = run_newtonian(0.3, v_e=0.35, saves_per_orbit=8)
    dphi = np.diff(res["Phi"])
    assert np.allclose(dphi, 2 * np.pi / 8, rtol=1e-4), f"phase steps vary: {dphi.min()}..{dphi.max()}"
    assert np.all(np.diff(res.t) > 0)
    assert res.t[0] == 0.0
    with pytest.raises(ValueError):
        uniform_in_phase(res, 0)


def test_result_accessors():
    res = run_newtonian(0.3, v_e=0.35)
    df = res.to_frame()
    assert list(df.columns) == ["t", *variable_names(14)]
    assert len(df) == len(res)
    assert np.array_equal(res["t"], res.t)
    final = res.final_state()
    assert isinstance(final, BinaryState)
    assert np.isclose(final.v, 0.35, atol=1e-8)
    assert res.pn_order == 0


def test_evolve_from_state():
    state = BinaryState(1.0, 0.2, ZERO, ZERO, 0.3, pn_order=0)
    res = evolve(state, "TaylorT4", Omega_e=omega_of_v(0.32, 1.2))
    assert res.stop_reason == "v_end"
    assert np.isclose(res["v"][-1], 0.32, atol=1e-8)
    assert state.v == 0.3, "evolve works on a copy of the state"


def test_driver_runs_once():
    state = BinaryState(1.0, 0.2, ZERO, ZERO, 0.3, pn_order=0)
    driver = InspiralDriver(state, v_1=0.29, v_e=0.31)
    assert driver.phase is DriverPhase.IDLE
    res = driver.run()
    assert driver.phase is DriverPhase.STITCHED
    assert res.backward is not None
    with pytest.raises(RuntimeError):
        driver.run()
    with pytest.raises(ConfigurationError):
        InspiralDriver(state, v_1=0.31, v_e=0.4)


def test_up_down_warning_is_raised_before_integration():
    M1, M2 = 0.561844712025, 0.43822158103
    M = M1 + M2
    with pytest.warns(UpDownInstabilityWarning):
        res = orbital_evolution(M1, M2, (1e-3, 0.0, 0.7237), (0.0, 0.0, -0.7997), omega_of_v(0.1, M),
                                Omega_e=omega_of_v(0.1001, M), pn_order=0)
    assert res.stop_reason == "v_end"
    with warnings.catch_warnings():
        warnings.simplefilter("error", UpDownInstabilityWarning)
        orbital_evolution(M1, M2, (1e-3, 0.0, 0.7237), (0.0, 0.0, -0.7997), omega_of_v(0.1, M),
                          Omega_e=omega_of_v(0.1001, M), pn_order=0, check_up_down_instability=False)


def leg(t, direction):
    t = np.asarray(t, dtype=float)
    y = np.column_stack([t] * 14)
    event = TerminationEvent("v_end", Severity.GRACEFUL, t[-1], 0.0, direction)
    return LegResult(t=t, y=y, interpolants=[], event=event, direction=direction)


def test_stitch_drops_duplicate_initial_sample():
    t, y = stitch(leg([0.0, -1.0, -2.5], "backwards"), leg([0.0, 1.0, 2.0], "forwards"))
    assert np.array_equal(t, [-2.5, -1.0, 0.0, 1.0, 2.0])
    assert np.array_equal(y[:, 0], t)
    t, _ = stitch(None, leg([0.0, 1.0], "forwards"))
    assert np.array_equal(t, [0.0, 1.0])
