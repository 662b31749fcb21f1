"""Tests for loss functions and gradient extraction."""

import numpy as np
import pytest

from dsp_gradfit.fitter.errors import ConfigurationError, FitError
from dsp_gradfit.fitter.loss import (
    LOSS_REGISTRY,
    L1Loss,
    L2Loss,
    LossFunction,
    make_loss_function,
)

DELTAS = [-3.5, -1.0, -1e-9, 0.0, 1e-9, 0.5, 2.0]


@pytest.mark.parametrize("delta", DELTAS)
def test_losses_are_non_negative(delta):
    assert L1Loss().loss(delta) == abs(delta)
    assert L2Loss().loss(delta) == delta**2
    assert L1Loss().loss(delta) >= 0.0
    assert L2Loss().loss(delta) >= 0.0


def test_residual_is_observed_minus_target():
    assert LossFunction.residual(1.0, 0.5) == pytest.approx(0.5)
    assert LossFunction.residual(0.5, 1.0) == pytest.approx(-0.5)


def test_call_evaluates_observed_against_target():
    assert L2Loss()(1.0, 0.5) == pytest.approx(0.25)
    assert L1Loss()(0.25, 1.0) == pytest.approx(0.75)


def test_l2_gradient_concrete_scenario():
    """observed 1.0, target 0.5, ds/dp 1.0 gives loss 0.25 and gradient 1.0."""
    lf = L2Loss()
    delta = lf.residual(1.0, 0.5)
    assert lf.loss(delta) == pytest.approx(0.25)
    grad = lf.gradient(np.array([1.0]), delta)
    np.testing.assert_allclose(grad, [1.0])


def test_l2_gradient_is_two_d_delta():
    derivs = np.array([1.0, -2.0, 0.5])
    grad = L2Loss().gradient(derivs, -0.25)
    np.testing.assert_allclose(grad, 2.0 * derivs * -0.25)


def test_l1_gradient_concrete_scenario():
    grad = L1Loss().gradient(np.array([1.0]), 0.5)
    np.testing.assert_allclose(grad, [1.0])


def test_l1_gradient_follows_sign_of_delta():
    derivs = np.array([2.0, -3.0])
    np.testing.assert_allclose(L1Loss().gradient(derivs, 4.0), [2.0, -3.0])
    np.testing.assert_allclose(L1Loss().gradient(derivs, -1e-6), [-2.0, 3.0])


@pytest.mark.parametrize("d", [0.0, 1.0, -7.5, 1e30])
def test_l1_gradient_is_exactly_zero_at_zero_delta(d):
    grad = L1Loss().gradient(np.array([d]), 0.0)
    assert grad[0] == 0.0
    assert np.all(np.isfinite(grad))


def test_registry_and_factory():
    assert set(LOSS_REGISTRY) == {"l1", "l2"}
    assert isinstance(make_loss_function("l1"), L1Loss)
    assert isinstance(make_loss_function("l2"), L2Loss)
    with pytest.raises(ConfigurationError, match="Unknown loss function"):
        make_loss_function("huber")


def test_unknown_loss_is_a_fit_error():
    with pytest.raises(FitError):
        make_loss_function("L1")
