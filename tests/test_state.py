from fractions import Fraction

import numpy as np
import pytest

from pn_inspiral.errors import ConfigurationError, InvalidParameters
from pn_inspiral.frame import exp_z, frame_vectors, quaternion_multiply, rotate, rotation_matrix
from pn_inspiral.state import (
    I_CHI1, I_M1, I_V, N_VARS_BBH, N_VARS_MATTER,
    BinaryState, omega_of_v, prepare_pn_order, v_of_omega, variable_names,
)


def make_state(**kw):
    args = dict(M1=0.6, M2=0.4, chi1=(0.1, 0.0, 0.3), chi2=(0.0, -0.2, 0.1), v=0.2)
    args.update(kw)
    return BinaryState(**args)


def test_derived_mass_quantities():
    s = make_state()
    assert np.isclose(s.M, 1.0)
    assert np.isclose(s.nu, 0.24)
    assert np.isclose(s.delta, 0.2)
    assert np.isclose(s.q, 1.5)
    assert np.isclose(s.X1 + s.X2, 1.0)
    assert np.isclose(s.mu, 0.24)
    assert np.isclose(s.chirp_mass, 0.24**0.6)
    assert np.isclose(s.Omega, 0.2**3)


def test_spin_combinations():
    s = make_state()
    S = 0.36 * np.array([0.1, 0.0, 0.3]) + 0.16 * np.array([0.0, -0.2, 0.1])
    assert np.allclose(s.S, S)
    assert np.isclose(s.chi1_l, 0.3), "identity rotor puts ell-hat along z"
    assert np.isclose(s.chi2_l, 0.1)
    assert np.isclose(s.chi_perp, np.sqrt(0.1**2 + 0.2**2))
    assert np.allclose(s.chi_s + s.chi_a, s.chi1)


@pytest.mark.parametrize("kw", [
    dict(M1=0.0),
    dict(M2=-1.0),
    dict(M1=np.nan),
    dict(chi1=(0.0, 0.0, 1.01)),
    dict(chi2=(0.8, 0.8, 0.0)),
    dict(v=0.0),
    dict(v=-0.1),
])
def test_unphysical_states_are_rejected(kw):
    with pytest.raises(InvalidParameters):
        make_state(**kw)


def test_extremal_spin_allowed():
    s = make_state(chi1=(0.0, 0.0, 1.0))
    assert np.isclose(s.chi1_mag, 1.0)


def test_matter_state_layout():
    assert len(make_state()) == N_VARS_BBH
    s = make_state(Lambda2=400.0)
    assert len(s) == N_VARS_MATTER and s.has_matter
    assert s.Lambda1 == 0 and s.Lambda2 == 400.0
    assert variable_names(len(s))[-1] == "Lambda2"


def test_single_neutron_star_must_be_body_two():
    with pytest.raises(InvalidParameters):
        make_state(Lambda1=300.0)
    with pytest.raises(InvalidParameters):
        make_state(Lambda1=-1.0, Lambda2=10.0)


def test_vector_is_a_copy_and_assign_replaces_it():
    s = make_state()
    y = s.vector
    y[I_V] = 0.9
    assert s.v == 0.2, "editing the returned vector must not change the state"
    s.assign(y)
    assert s.v == 0.9
    with pytest.raises(ValueError):
        s.assign(np.zeros(3))


def test_from_vector_validates():
    s = make_state()
    t = BinaryState.from_vector(s.vector, pn_order=3)
    assert np.array_equal(t.vector, s.vector)
    assert t.pn_order == 3
    y = s.vector
    y[I_M1] = -1.0
    with pytest.raises(InvalidParameters):
        BinaryState.from_vector(y)


def test_copy_is_independent():
    s = make_state()
    c = s.copy()
    y = c.vector
    y[I_CHI1] = 0.0
    c.assign(y)
    assert np.allclose(s.chi1, [0.1, 0.0, 0.3])


def test_rotor_is_normalized():
    s = make_state(R=(2.0, 0.0, 0.0, 0.0))
    assert np.allclose(s.R, [1.0, 0.0, 0.0, 0.0])


def test_pn_order_rounding():
    assert prepare_pn_order(None) is None
    assert prepare_pn_order(float("inf")) is None
    assert prepare_pn_order(3.5) == Fraction(7, 2)
    assert prepare_pn_order(1.3) == Fraction(3, 2)
    assert prepare_pn_order(2) == 2
    with pytest.raises(ConfigurationError):
        prepare_pn_order(-1)
    assert make_state(pn_order=2.5).max_power == 5
    assert make_state().max_power == float("inf")


def test_v_omega_roundtrip():
    M = 1.3
    for v in (0.05, 0.2, 0.5):
        assert np.isclose(v_of_omega(omega_of_v(v, M), M), v, rtol=1e-14)


def test_frame_is_orthonormal_and_right_handed():
    rng = np.random.default_rng(7)
    R = rng.normal(size=4)
    R /= np.linalg.norm(R)
    n_hat, lambda_hat, ell_hat = frame_vectors(R)
    m = np.column_stack([n_hat, lambda_hat, ell_hat])
    assert np.allclose(m.T @ m, np.eye(3), atol=1e-14)
    assert np.allclose(np.cross(ell_hat, n_hat), lambda_hat, atol=1e-14)
    assert np.allclose(rotate(R, [1.0, 0.0, 0.0]), n_hat, atol=1e-14)


def test_exp_z_rotates_about_z():
    R = exp_z(np.pi / 2)
    assert np.allclose(rotate(R, [1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-15)
    assert np.allclose(rotation_matrix(quaternion_multiply(R, R)) @ [1.0, 0.0, 0.0], [-1.0, 0.0, 0.0],
                       atol=1e-15)
