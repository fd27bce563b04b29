import numpy as np
import pytest

from tag_tracking.tracker import TagFilter, control_matrix, propagate_state

DT = 0.01


def _seeded(p=(0.1, -0.2, 1.5), cov=1e-3):
    flt = TagFilter(7)
    flt.seed(p, np.eye(3) * cov)
    return flt


def test_control_matrix_is_relative_motion():
    p = np.array([0.3, -0.4, 2.0])
    v = np.array([0.5, 0.1, -0.2])
    w = np.array([0.05, -0.3, 0.2])
    B = control_matrix(p, DT)
    assert B.shape == (3, 6)
    np.testing.assert_allclose(B @ np.r_[v, w], -DT * (v + np.cross(w, p)))


def test_propagate_state_is_pure():
    state = np.array([[1.0], [2.0], [3.0]])
    control = np.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0])
    out = propagate_state(state, control, DT)
    np.testing.assert_allclose(out.ravel(), [1.0 - DT, 2.0, 3.0])
    np.testing.assert_allclose(state.ravel(), [1.0, 2.0, 3.0])


def test_new_filter_has_no_position():
    flt = TagFilter(3)
    assert not flt.initialized
    assert flt.position is None
    assert flt.covariance is None


def test_seed_takes_raw_translation():
    flt = _seeded((0.25, -0.5, 1.75))
    assert flt.initialized
    np.testing.assert_array_equal(flt.position.ravel(), [0.25, -0.5, 1.75])


def test_predict_and_correct_require_seed():
    flt = TagFilter(3)
    with pytest.raises(RuntimeError):
        flt.predict(np.zeros(6), np.zeros((3, 3)), DT)
    with pytest.raises(RuntimeError):
        flt.correct([0.0, 0.0, 1.0], np.eye(3))


def test_zero_control_zero_noise_keeps_state():
    flt = _seeded()
    before = flt.position
    P0 = flt.covariance
    for _ in range(50):
        flt.predict(np.zeros(6), np.zeros((3, 3)), DT)
    np.testing.assert_array_equal(flt.position, before)
    np.testing.assert_allclose(flt.covariance, P0)


def test_predict_matches_pure_propagation():
    flt = _seeded((0.3, -0.1, 2.0))
    u = np.array([0.4, -0.2, 0.1, 0.05, 0.1, -0.3])
    expected = propagate_state(flt.position, u, DT)
    B_before = control_matrix(flt.position, DT)
    flt.predict(u, np.eye(3) * 1e-4, DT)
    np.testing.assert_allclose(flt.position, expected)
    np.testing.assert_allclose(flt.kf.B, B_before)


def test_predict_inflates_covariance_by_process_noise():
    flt = _seeded(cov=1e-3)
    Q = np.diag([1e-4, 2e-4, 3e-4])
    flt.predict(np.zeros(6), Q, DT)
    np.testing.assert_allclose(flt.covariance, np.eye(3) * 1e-3 + Q)
    np.testing.assert_allclose(flt.kf.Q, Q)


def test_correct_moves_toward_measurement_and_shrinks_covariance():
    flt = _seeded((0.0, 0.0, 1.0), cov=1e-2)
    flt.predict(np.zeros(6), np.zeros((3, 3)), DT)
    flt.correct([0.0, 0.0, 1.2], np.eye(3) * 1e-2)
    z = flt.position[2, 0]
    assert 1.0 < z < 1.2
    assert z == pytest.approx(1.1)
    assert np.trace(flt.covariance) < 3e-2


def test_coasting_counter():
    flt = _seeded()
    for _ in range(3):
        flt.predict(np.zeros(6), np.zeros((3, 3)), DT)
    assert flt.coasting_cycles == 3
    flt.correct([0.1, -0.2, 1.5], np.eye(3) * 1e-3)
    assert flt.coasting_cycles == 0
    assert flt.age_cycles == 3
