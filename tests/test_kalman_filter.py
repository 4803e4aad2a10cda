"""
Unit tests for the per-node Extended Kalman Filter.

Tests cover:
- State normalization and read-only scale factors
- Stationary state model (F, Q in internal units)
- Observation model prediction and Jacobian (vs finite differences)
- Joseph-form update keeps the covariance symmetric PSD
- Non positive definite innovation covariance is reported, not propagated
"""

import numpy as np
import pytest

from proximum_core.errors import CovarianceNotPositiveSemiDefiniteError
from proximum_core.localization import (
    NonlinearObservationModel,
    StateAndCovariance,
    StationaryStateModel,
    ekf_update,
    kf_step,
)
from proximum_core.localization.observation_model import (
    MINIMUM_DISTANCE,
    LinearizedObservationModel,
    predict_round_trip_times,
)
from proximum_core.localization.state import (
    SPEED_OF_LIGHT,
    STATE_FACTOR,
    STATE_SIZE,
    apply_spring_correction,
    denormalize_state,
    normalize_state,
    normalize_variances,
)
from proximum_core.proto import MeasurementSet
from proximum_core.simulation import generate_measurements

from conftest import make_node


def assert_symmetric_psd(covariance: np.ndarray):
    """Covariance is symmetric and has no meaningfully negative eigenvalue."""
    assert np.allclose(covariance, covariance.T, rtol=1e-9, atol=1e-12)
    eigenvalues = np.linalg.eigvalsh(0.5 * (covariance + covariance.T))
    assert eigenvalues.min() >= -1e-9 * max(1.0, np.abs(eigenvalues).max())


class TestStateNormalization:
    """Tests for internal/real unit conversion."""

    def test_round_trip(self):
        """normalize -> denormalize returns the input state."""
        real = np.array([6.0e6, -1.2e6, 3.3e5, 0.4, 0.012])
        
        np.testing.assert_allclose(denormalize_state(normalize_state(real)), real, rtol=1e-15)

    def test_internal_units_are_order_one(self):
        """A typical surface state is of order 1 in every component."""
        node = make_node(0, 30.0, 60.0, beta=0.5, tau=0.015)
        
        internal = node.kf_state_and_covariance.state
        
        assert np.all(np.abs(internal) < 10.0)
        assert np.abs(internal[3:]).min() > 0.1

    def test_state_factor_is_read_only(self):
        """Scale factors cannot be altered at runtime."""
        with pytest.raises(ValueError):
            STATE_FACTOR[0] = 1.0

    def test_variances_scale_quadratically(self):
        """Variances are divided by STATE_FACTOR squared."""
        variances = np.array([1e12, 1e12, 1e12, 1.0, 1e-4])
        
        np.testing.assert_allclose(normalize_variances(variances), np.ones(STATE_SIZE))

    def test_position_covariance_in_meters(self):
        """Position covariance is reported in real units (m^2)."""
        state = StateAndCovariance(np.zeros(STATE_SIZE), np.eye(STATE_SIZE) * 4.0)
        
        np.testing.assert_allclose(state.position_covariance, np.eye(3) * 4.0e12)

    def test_shape_mismatch_rejected(self):
        """Covariance must match the state size."""
        with pytest.raises(ValueError):
            StateAndCovariance(np.zeros(STATE_SIZE), np.eye(3))

    def test_spring_correction_closes_one_five_hundredth(self):
        """Spring moves the estimate 1/500 of the way to the assertion."""
        estimate = np.array([1000.0, 0.0, 0.0])
        asserted = np.array([0.0, 500.0, 0.0])
        
        corrected = apply_spring_correction(estimate, asserted)
        
        np.testing.assert_allclose(corrected, [998.0, 1.0, 0.0])


class TestStationaryStateModel:
    """Tests for the identity transition model."""

    def test_identity_transition(self):
        """Mean is unchanged, covariance grows by Q."""
        model = StationaryStateModel(position_variance=1e8, beta_variance=1e-6, tau_variance=1e-10)
        prior = StateAndCovariance(np.arange(1.0, 6.0), np.eye(STATE_SIZE))
        
        predicted = model.predict(prior)
        
        np.testing.assert_array_equal(predicted.state, prior.state)
        np.testing.assert_allclose(predicted.covariance, np.eye(STATE_SIZE) + model.Q)

    def test_process_noise_in_internal_units(self):
        """Q = real variances / STATE_FACTOR^2 on the diagonal."""
        model = StationaryStateModel(position_variance=1e8, beta_variance=1e-6, tau_variance=1e-10)
        
        np.testing.assert_allclose(np.diag(model.Q), [1e-4, 1e-4, 1e-4, 1e-6, 1e-6])
        assert np.count_nonzero(model.Q - np.diag(np.diag(model.Q))) == 0

    def test_from_config(self, default_config):
        """Variances are taken from the kf_model_* config fields."""
        model = StationaryStateModel.from_config(default_config)
        
        expected = normalize_variances([
            default_config.kf_model_position_variance,
            default_config.kf_model_position_variance,
            default_config.kf_model_position_variance,
            default_config.kf_model_beta_variance,
            default_config.kf_model_tau_variance,
        ])
        np.testing.assert_allclose(np.diag(model.Q), expected)


class TestObservationModel:
    """Tests for ToF prediction and linearization."""

    def test_prediction_formula(self):
        """t = d/(c beta_a) + tau_a + d/(c beta_b) + tau_b."""
        mine = np.array([0.0, 0.0, 0.0, 0.5, 0.010])
        other = np.array([[3.0e6, 4.0e6, 0.0, 0.25, 0.020]])
        d = 5.0e6
        
        predicted = predict_round_trip_times(mine, other)
        
        expected = d / (SPEED_OF_LIGHT * 0.5) + 0.010 + d / (SPEED_OF_LIGHT * 0.25) + 0.020
        assert predicted[0] == pytest.approx(expected, rel=1e-12)

    def test_jacobian_matches_finite_differences(self, spread_nodes):
        """Analytic H (internal units) matches central differences of predict_fn."""
        mine = make_node(99, 3.0, 4.0, beta=0.45, tau=0.012)
        state = mine.kf_state_and_covariance.state
        counterpart_states = np.array([
            node.kf_state_and_covariance.state for node in spread_nodes
        ])
        
        model = NonlinearObservationModel().linearize_at(state, counterpart_states, 1e-6)
        
        steps = np.array([1e-6, 1e-6, 1e-6, 1e-6, 1e-6])
        numeric = np.zeros_like(model.H)
        for k in range(STATE_SIZE):
            offset = np.zeros(STATE_SIZE)
            offset[k] = steps[k]
            numeric[:, k] = (
                model.predict_observation(state + offset)
                - model.predict_observation(state - offset)
            ) / (2 * steps[k])
        
        np.testing.assert_allclose(model.H, numeric, rtol=1e-5, atol=1e-10)
        np.testing.assert_array_equal(model.HT, model.H.T)

    def test_tau_column_is_state_factor(self, spread_nodes):
        """d t / d tau_internal = STATE_FACTOR[tau] for every row."""
        mine = make_node(99, 3.0, 4.0)
        counterpart_states = np.array([n.kf_state_and_covariance.state for n in spread_nodes])
        
        model = NonlinearObservationModel().linearize_at(
            mine.kf_state_and_covariance.state, counterpart_states, 1e-6
        )
        
        np.testing.assert_allclose(model.H[:, 4], STATE_FACTOR[4])

    def test_close_counterpart_has_zero_position_columns(self):
        """Rows closer than the minimum distance keep zero position columns."""
        mine = make_node(0, 10.0, 10.0)
        near_real = mine.kf_state_and_covariance.real_state.copy()
        near_real[0] += MINIMUM_DISTANCE / 2
        far = make_node(1, 20.0, 10.0)
        counterpart_states = np.array([
            normalize_state(near_real),
            far.kf_state_and_covariance.state,
        ])
        
        model = NonlinearObservationModel().linearize_at(
            mine.kf_state_and_covariance.state, counterpart_states, 1e-6
        )
        
        np.testing.assert_array_equal(model.H[0, :3], np.zeros(3))
        assert model.H[0, 4] != 0.0
        assert np.all(model.H[1, :3] != 0.0)

    def test_observation_noise_is_diagonal(self, spread_nodes):
        """R = variance * I."""
        counterpart_states = np.array([n.kf_state_and_covariance.state for n in spread_nodes])
        
        model = NonlinearObservationModel().linearize_at(
            spread_nodes[0].kf_state_and_covariance.state, counterpart_states[1:], 2.5e-7
        )
        
        np.testing.assert_allclose(model.R, np.eye(len(spread_nodes) - 1) * 2.5e-7)


class TestEkfUpdate:
    """Tests for the measurement update."""

    def test_exact_measurements_leave_true_state_unchanged(self, spread_nodes, zero_noise_config, rng):
        """With noise-free measurements and a true prior, the mean does not move."""
        measurements = generate_measurements(
            0,
            spread_nodes[0].true_position,
            spread_nodes[0].true_beta,
            spread_nodes[0].true_tau,
            spread_nodes,
            zero_noise_config,
            rng,
        )
        state_model = StationaryStateModel.from_config(zero_noise_config)
        
        posterior = kf_step(
            0, measurements, spread_nodes, NonlinearObservationModel(), state_model, 1e-6
        )
        
        np.testing.assert_allclose(posterior.position, spread_nodes[0].true_position, atol=1e-3)
        assert posterior.beta == pytest.approx(0.5, abs=1e-9)
        assert posterior.tau == pytest.approx(0.015, abs=1e-12)

    def test_update_shrinks_uncertainty(self, spread_nodes, zero_noise_config, rng):
        """Posterior position variance is below the predicted variance."""
        node = spread_nodes[0]
        measurements = generate_measurements(
            0, node.true_position, node.true_beta, node.true_tau,
            spread_nodes, zero_noise_config, rng,
        )
        state_model = StationaryStateModel.from_config(zero_noise_config)
        predicted = state_model.predict(node.kf_state_and_covariance)
        
        posterior = kf_step(
            0, measurements, spread_nodes, NonlinearObservationModel(), state_model, 1e-6
        )
        
        assert np.trace(posterior.covariance) < np.trace(predicted.covariance)

    def test_covariance_stays_symmetric_psd(self, default_config):
        """Repeated noisy updates keep P symmetric positive semi-definite."""
        rng = np.random.default_rng(2024)
        nodes = [
            make_node(i, lat, lon, beta=0.3 + 0.05 * (i % 5), tau=0.005 + 0.002 * (i % 7))
            for i, (lat, lon) in enumerate(
                zip(rng.uniform(-40.0, 40.0, 12), rng.uniform(-40.0, 40.0, 12))
            )
        ]
        state_model = StationaryStateModel.from_config(default_config)
        generator = NonlinearObservationModel()
        
        accepted = 0
        for _ in range(5):
            for i, node in enumerate(nodes):
                measurements = generate_measurements(
                    i, node.true_position, node.true_beta, node.true_tau,
                    nodes, default_config, rng,
                )
                try:
                    posterior = kf_step(
                        i, measurements, nodes, generator, state_model,
                        default_config.kf_model_tof_observation_variance,
                    )
                except CovarianceNotPositiveSemiDefiniteError:
                    continue
                node.apply_kf_posterior(posterior)
                accepted += 1

                assert posterior.is_finite()
                assert posterior.beta > 0.0
                assert_symmetric_psd(posterior.covariance)

        assert accepted > 0

    def test_non_positive_definite_innovation_raises(self):
        """A negative observation variance makes S fail Cholesky."""
        H = np.zeros((2, STATE_SIZE))
        model = LinearizedObservationModel(
            predict_fn=lambda x: np.zeros(2),
            H=H,
            HT=H.T,
            R=-np.eye(2),
        )
        prior = StateAndCovariance(np.zeros(STATE_SIZE), np.eye(STATE_SIZE))
        
        with pytest.raises(CovarianceNotPositiveSemiDefiniteError):
            ekf_update(model, prior, np.zeros(2))

    def test_kf_step_propagates_failure(self, spread_nodes):
        """kf_step surfaces the error instead of returning a bad posterior."""
        measurements = MeasurementSet(indices=[1, 2], times=np.array([0.05, 0.06]))
        state_model = StationaryStateModel(1e8, 1e-6, 1e-10)
        
        with pytest.raises(CovarianceNotPositiveSemiDefiniteError):
            kf_step(0, measurements, spread_nodes, NonlinearObservationModel(), state_model, -1.0)


class _BetaOnlyObservations:
    """Linear observation of beta alone, so a measurement can drive it negative."""

    def linearize_at(self, state, counterpart_states, observation_variance):
        H = np.zeros((1, STATE_SIZE))
        H[0, 3] = 1.0
        return LinearizedObservationModel(
            predict_fn=lambda x: np.array([x[3]]),
            H=H,
            HT=H.T,
            R=np.eye(1) * observation_variance,
        )


class TestBetaGuard:
    """Tests for rejecting non-positive speed estimates."""

    def test_zero_counterpart_beta_raises(self, spread_nodes):
        """A counterpart with beta = 0 cannot be linearized against."""
        mine = spread_nodes[0]
        stalled = make_node(1, 10.0, 5.0, kf_beta=0.0)
        
        with pytest.raises(CovarianceNotPositiveSemiDefiniteError):
            NonlinearObservationModel().linearize_at(
                mine.kf_state_and_covariance.state,
                np.array([stalled.kf_state_and_covariance.state]),
                1e-6,
            )

    def test_negative_own_beta_raises(self, spread_nodes):
        mine = make_node(0, 0.0, 0.0, kf_beta=-0.2)
        counterpart_states = np.array([n.kf_state_and_covariance.state for n in spread_nodes[1:]])
        
        with pytest.raises(CovarianceNotPositiveSemiDefiniteError):
            NonlinearObservationModel().linearize_at(
                mine.kf_state_and_covariance.state, counterpart_states, 1e-6
            )

    def test_posterior_with_negative_beta_rejected(self, spread_nodes):
        """kf_step refuses a posterior whose beta is not positive."""
        measurements = MeasurementSet(indices=[1], times=np.array([-10.0]))
        state_model = StationaryStateModel(1e8, 1e-6, 1e-10)
        
        with pytest.raises(CovarianceNotPositiveSemiDefiniteError):
            kf_step(0, measurements, spread_nodes, _BetaOnlyObservations(), state_model, 1e-6)

    def test_positive_beta_posterior_accepted(self, spread_nodes):
        """The same linear model with a small pull keeps beta positive."""
        measurements = MeasurementSet(indices=[1], times=np.array([0.4]))
        state_model = StationaryStateModel(1e8, 1e-6, 1e-10)
        
        posterior = kf_step(0, measurements, spread_nodes, _BetaOnlyObservations(), state_model, 1e-6)
        
        assert posterior.beta == pytest.approx(0.4, abs=1e-3)
