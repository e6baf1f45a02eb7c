"""Correctness tests against torch.optim.

Tests that verify:
1. Rules whose formulas coincide with torch.optim produce the same weights
2. AdamW expressed as a chain matches torch.optim.AdamW
3. Deterministic stepping with fixed seeds
4. Lookahead with k=1, alpha=1 is the inner rule
"""

import copy

import torch
import torch.nn.functional as F

from slowfast import (
    AdaGrad,
    Adam,
    AdamW,
    Descent,
    Lookahead,
    Momentum,
    RMSProp,
    RuleOptimizer,
)


def _train(model, optimizer, steps=10):
    torch.manual_seed(1000)
    x = torch.randn(8, 4)
    y = torch.randn(8, 2)
    for _ in range(steps):
        optimizer.zero_grad()
        loss = F.mse_loss(model(x), y)
        loss.backward()
        optimizer.step()
    return model.weight.detach().clone(), model.bias.detach().clone()


def _compare(rule, reference_factory, atol=1e-6):
    torch.manual_seed(0)
    model = torch.nn.Linear(4, 2)
    reference_model = copy.deepcopy(model)

    ours = _train(model, RuleOptimizer(model.parameters(), rule))
    theirs = _train(reference_model, reference_factory(reference_model.parameters()))

    for a, b in zip(ours, theirs, strict=True):
        diff = (a - b).abs().max().item()
        assert diff < atol, f"{rule!r} differs from torch.optim by {diff}"


class TestTorchEquivalence:
    def test_descent_matches_sgd(self):
        _compare(Descent(0.1), lambda params: torch.optim.SGD(params, lr=0.1))

    def test_momentum_matches_sgd_momentum(self):
        _compare(
            Momentum(lr=0.05, rho=0.9),
            lambda params: torch.optim.SGD(params, lr=0.05, momentum=0.9),
        )

    def test_rmsprop_matches(self):
        _compare(
            RMSProp(lr=0.01, rho=0.9),
            lambda params: torch.optim.RMSprop(params, lr=0.01, alpha=0.9, eps=1e-8),
        )

    def test_adagrad_matches(self):
        _compare(
            AdaGrad(lr=0.1),
            lambda params: torch.optim.Adagrad(
                params, lr=0.1, eps=1e-8, initial_accumulator_value=1e-8
            ),
        )

    def test_adam_matches(self):
        _compare(
            Adam(lr=0.01, betas=(0.9, 0.999)),
            lambda params: torch.optim.Adam(params, lr=0.01, betas=(0.9, 0.999), eps=1e-8),
        )

    def test_adamw_chain_matches(self):
        _compare(
            AdamW(lr=0.01, weight_decay=0.1),
            lambda params: torch.optim.AdamW(params, lr=0.01, weight_decay=0.1, eps=1e-8),
        )

    def test_trivial_lookahead_matches_inner(self):
        _compare(
            Lookahead(Momentum(lr=0.05, rho=0.9), alpha=1.0, k=1),
            lambda params: torch.optim.SGD(params, lr=0.05, momentum=0.9),
        )


class TestDeterminism:
    def test_deterministic_stepping(self):
        """Same seed + same batches -> same results."""

        def run(seed: int):
            torch.manual_seed(seed)
            model = torch.nn.Linear(4, 2)
            rule = Lookahead(Adam(lr=0.01), k=3, sync_policy="pullback")
            return _train(model, RuleOptimizer(model.parameters(), rule))

        w1, b1 = run(42)
        w2, b2 = run(42)

        assert torch.equal(w1, w2), "Weights differ across runs"
        assert torch.equal(b1, b2), "Biases differ across runs"

    def test_lookahead_changes_trajectory(self):
        torch.manual_seed(0)
        model = torch.nn.Linear(4, 2)
        reference_model = copy.deepcopy(model)

        plain = _train(reference_model, RuleOptimizer(reference_model.parameters(), Adam(lr=0.01)))
        wrapped = _train(
            model, RuleOptimizer(model.parameters(), Lookahead(Adam(lr=0.01), alpha=0.5, k=2))
        )

        assert not torch.allclose(plain[0], wrapped[0])
