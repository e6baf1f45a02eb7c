import math

import pytest
import torch

from slowfast import (
    EPS,
    AdaDelta,
    AdaMax,
    Adam,
    AMSGrad,
    ConfigurationError,
    Momentum,
    NAdam,
    Nesterov,
    RAdam,
    apply,
    get_state,
)


def _scalar(value):
    return torch.tensor([value], dtype=torch.float64)


def test_momentum_velocity_accumulates():
    rule = Momentum(lr=0.1, rho=0.9)
    param = _scalar(0.0)

    first = apply(rule, param, _scalar(1.0)).item()
    second = apply(rule, param, _scalar(1.0)).item()

    assert first == pytest.approx(0.1)
    assert second == pytest.approx(0.19)


def test_nesterov_looks_ahead():
    rule = Nesterov(lr=0.1, rho=0.9)
    param = _scalar(0.0)

    first = apply(rule, param, _scalar(1.0)).item()
    second = apply(rule, param, _scalar(1.0)).item()

    assert first == pytest.approx(1.9 * 0.1)
    assert second == pytest.approx(0.81 * 0.1 + 1.9 * 0.1)
    assert get_state(rule, param)["velocity"].item() == pytest.approx(0.19)


def test_adadelta_first_step():
    rule = AdaDelta(rho=0.9)
    param = _scalar(0.0)

    update = apply(rule, param, _scalar(1.0)).item()

    expected = math.sqrt(EPS) / math.sqrt(0.1 + EPS)
    assert update == pytest.approx(expected)
    state = get_state(rule, param)
    assert state["acc_delta"].item() == pytest.approx(0.1 * expected**2)


def test_amsgrad_starts_from_eps_floor():
    rule = AMSGrad(lr=0.01)
    param = _scalar(0.0)
    entry = get_state(rule, param)
    assert all(torch.equal(entry[key], _scalar(EPS)) for key in entry)

    apply(rule, param, _scalar(1.0))
    apply(rule, param, _scalar(0.0))

    assert entry["max_exp_avg_sq"].item() >= entry["exp_avg_sq"].item()


def test_adam_first_step_is_signed_lr():
    update = apply(Adam(lr=0.01), _scalar(0.0), _scalar(3.0)).item()
    assert update == pytest.approx(0.01, rel=1e-6)


def test_radam_falls_back_to_momentum_early():
    rule = RAdam(lr=0.01)
    param = _scalar(0.0)

    update = apply(rule, param, _scalar(2.0)).item()

    assert update == pytest.approx(0.02)
    assert get_state(rule, param)["step"] == 2


def test_radam_rectifies_later():
    rule = RAdam(lr=0.01, betas=(0.9, 0.9))
    param = _scalar(0.0)
    updates = [apply(rule, param, _scalar(1.0)).item() for _ in range(10)]
    assert all(math.isfinite(u) and u > 0 for u in updates)


def test_adamax_first_step():
    update = apply(AdaMax(lr=0.01), _scalar(0.0), _scalar(-4.0)).item()
    assert update == pytest.approx(-0.01, rel=1e-6)


def test_nadam_first_step():
    update = apply(NAdam(lr=0.01), _scalar(0.0), _scalar(1.0)).item()
    expected = (0.9 * 0.1 / (1 - 0.81) + 0.1 / 0.1) / (math.sqrt(0.999) + EPS) * 0.01
    assert update == pytest.approx(expected)


def test_apply_on_parameter_requiring_grad():
    param = torch.nn.Parameter(torch.ones(3))
    update = apply(Adam(lr=0.1), param, torch.ones(3))
    assert not update.requires_grad
    assert not get_state(Momentum(), param)["velocity"].requires_grad


@pytest.mark.parametrize(
    "factory",
    [
        lambda: Momentum(lr=0.0),
        lambda: Momentum(rho=1.0),
        lambda: Adam(betas=(1.0, 0.9)),
        lambda: Adam(betas=(0.9,)),
        lambda: Adam(eps=0.0),
        lambda: AdaDelta(rho=-0.1),
    ],
)
def test_invalid_hyperparameters_raise(factory):
    with pytest.raises(ConfigurationError):
        factory()


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError, match="lr must be positive"):
        Momentum(lr=-1.0)


def test_repr_lists_hyperparameters():
    assert repr(Momentum(lr=0.1, rho=0.5)) == "Momentum(lr=0.1, rho=0.5)"
