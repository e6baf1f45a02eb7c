"""torch.optim front end for slowfast rules.

Rules work one parameter at a time. :class:`RuleOptimizer` adapts any rule to
the ``torch.optim.Optimizer`` protocol so it can drive a standard training
loop:

    optimizer = RuleOptimizer(model.parameters(), Lookahead(Adam(lr=1e-3)))
    loss.backward()
    optimizer.step()

For every parameter with a gradient the step computes
``update = apply(rule, param, grad)`` on a copy of ``param.grad`` and then
``param -= update``. Parameters without a gradient are skipped and their rule
state is left untouched.
"""

from __future__ import annotations

from collections.abc import Iterable

import torch
from torch.optim import Optimizer

from slowfast._logging import get_logger, log_event
from slowfast.errors import ConfigurationError
from slowfast.rules import Rule, apply


class RuleOptimizer(Optimizer):
    """Apply a slowfast rule to every parameter on each ``step``.

    Args:
        params: Iterable of parameters to optimize
        rule: The update rule, possibly a ``Chain`` or ``Lookahead``
        log_every: Log interval in steps (0 = disabled)

    Example:
        >>> optimizer = RuleOptimizer(model.parameters(), Momentum(lr=0.1))
        >>> optimizer = RuleOptimizer(model.parameters(), Lookahead(Adam(), k=5))
    """

    def __init__(
        self,
        params: Iterable[torch.Tensor],
        rule: Rule,
        log_every: int = 0,
    ) -> None:
        if not isinstance(rule, Rule):
            raise ConfigurationError(f"rule must be a slowfast Rule, got {type(rule).__name__}")
        if log_every < 0:
            raise ConfigurationError("log_every must be >= 0")

        super().__init__(params, {})

        self.rule = rule
        self._log_every = int(log_every)
        self._logger = get_logger("slowfast")
        self._step = 0

    def step(self, closure=None):
        loss = None
        if closure is not None:
            with torch.enable_grad():
                loss = closure()

        self._step += 1

        updated = 0
        with torch.no_grad():
            for group in self.param_groups:
                for param in group["params"]:
                    if param.grad is None:
                        continue
                    update = apply(self.rule, param, param.grad.clone())
                    param.sub_(update)
                    updated += 1

        if self._log_every and self._step % self._log_every == 0:
            log_event(
                self._logger,
                "optimizer_step",
                step=self._step,
                params=updated,
                rule=type(self.rule).__name__,
            )

        return loss
