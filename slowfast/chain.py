"""Sequential composition of update rules."""

from __future__ import annotations

from collections.abc import Iterator

import torch

from slowfast.rules import EPS, Adam, Descent, Rule, WeightDecay
from slowfast.style import GradientStyle, classify, is_stateful, promote


class Chain(Rule):
    """Apply several rules to the same gradient, in order.

    The chain keeps no state of its own. It is stateful when any member is,
    and its state for a parameter is the tuple of its stateful members'
    entries.

    Example:
        >>> rule = Chain(WeightDecay(1e-4), Momentum(lr=0.01))
    """

    # a chain without members; instances fold over their members
    gradient_style = GradientStyle.STATELESS

    def __init__(self, *rules: Rule) -> None:
        super().__init__()
        self.rules: tuple[Rule, ...] = tuple(rules)

    def classification(self) -> GradientStyle:
        return promote(classify(rule) for rule in self.rules)

    def stateful_members(self) -> list[Rule]:
        return [rule for rule in self.rules if is_stateful(rule)]

    def fetch_state(self, param: torch.Tensor) -> tuple[object, ...]:
        return tuple(rule.fetch_state(param) for rule in self.stateful_members())

    def reset_state(self, param: torch.Tensor) -> None:
        for rule in self.stateful_members():
            rule.reset_state(param)

    def momentum_buffers(self, param: torch.Tensor) -> tuple[torch.Tensor, ...]:
        buffers: tuple[torch.Tensor, ...] = ()
        for rule in self.stateful_members():
            buffers += tuple(rule.momentum_buffers(param))
        return buffers

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        for rule in self.rules:
            grad = rule.apply(param, grad)
        return grad

    def __len__(self) -> int:
        return len(self.rules)

    def __getitem__(self, index: int) -> Rule:
        return self.rules[index]

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __repr__(self) -> str:
        return f"Chain({', '.join(repr(rule) for rule in self.rules)})"


def AdamW(
    lr: float = 0.001,
    betas: tuple[float, float] = (0.9, 0.999),
    weight_decay: float = 0.0,
    eps: float = EPS,
) -> Chain:
    """Adam with decoupled weight decay.

    ``update = lr * (adam_direction + weight_decay * param)``
    """
    return Chain(Adam(1.0, betas, eps), WeightDecay(weight_decay), Descent(lr))
