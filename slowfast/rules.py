"""Gradient update rules.

A rule transforms a gradient, in place, into the update direction the caller
subtracts from the parameter:

    update = apply(rule, param, grad)
    param -= update

Stateless rules compute the update from the current gradient and parameter
only. Stateful rules keep one state entry per parameter (a dict of tensors
and scalar bookkeeping) in an identity-keyed ``StateStore``; the entry is
created on first use by ``init_state`` and mutated in place afterwards.

Variant summary:
- Descent, WeightDecay: stateless
- Momentum, Nesterov: velocity buffer
- RMSProp: squared-gradient moving average
- AdaGrad: squared-gradient sum, floored at ``eps`` to keep the division finite
- AdaDelta: squared-gradient and squared-update moving averages
- AMSGrad: first/second moments plus their running maximum, floored at ``eps``
- Adam, AdaMax, NAdam: first/second moments plus bias-correction powers
- RAdam: as Adam plus a step counter for the variance rectification
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import torch

from slowfast.errors import ConfigurationError, StatelessAccessError
from slowfast.state import StateStore, get_state
from slowfast.style import GradientStyle, classify, is_stateful

EPS = 1e-8

State = dict[str, Any]


class Rule(ABC):
    """Base class for every optimizer variant.

    Subclasses must declare ``gradient_style``. A subclass that leaves it unset
    is classified by ``infer_gradient_style``: stateful when it overrides
    ``init_state``.
    """

    gradient_style: ClassVar[GradientStyle | None] = None

    def __init__(self, **defaults: Any) -> None:
        self.defaults = defaults
        self.state: StateStore | None = StateStore() if is_stateful(type(self)) else None

    @classmethod
    def infer_gradient_style(cls) -> GradientStyle:
        if cls.init_state is not Rule.init_state:
            return GradientStyle.STATEFUL
        return GradientStyle.STATELESS

    def classification(self) -> GradientStyle:
        return classify(type(self))

    def init_state(self, param: torch.Tensor) -> State:
        raise StatelessAccessError(self)

    def fetch_state(self, param: torch.Tensor) -> State:
        if self.state is None:
            raise StatelessAccessError(self)
        return self.state.get_or_init(param, self.init_state)

    def reset_state(self, param: torch.Tensor) -> None:
        """Reinitialise the entry for ``param`` in place.

        Tensors are overwritten with their initial contents (zeros, or the
        ``eps`` floor for accumulator families) and scalar bookkeeping such as
        bias-correction powers and step counters is restored. Buffer identity is
        preserved.
        """
        entry = get_state(self, param)
        for key, value in self.init_state(param).items():
            current = entry.get(key)
            if isinstance(value, torch.Tensor) and isinstance(current, torch.Tensor):
                current.copy_(value)
            else:
                entry[key] = value

    def momentum_buffers(self, param: torch.Tensor) -> tuple[torch.Tensor, ...]:
        """Tensor buffers of the entry for ``param``, in declaration order."""
        entry = get_state(self, param)
        return tuple(value for value in entry.values() if isinstance(value, torch.Tensor))

    @abstractmethod
    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        """Transform ``grad`` in place into the update for ``param`` and return it."""
        raise NotImplementedError

    def __repr__(self) -> str:
        args = ", ".join(f"{key}={value!r}" for key, value in self.defaults.items())
        return f"{type(self).__name__}({args})"


def apply(rule: Rule, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
    """Compute the update direction of ``rule`` for one parameter.

    ``grad`` is mutated in place. The returned tensor is the one the caller must
    subtract from ``param``.
    """
    with torch.no_grad():
        return rule.apply(param, grad)


def _check_lr(lr: float) -> None:
    if lr <= 0:
        raise ConfigurationError("lr must be positive")


def _check_decay(name: str, value: float) -> None:
    if not 0.0 <= value < 1.0:
        raise ConfigurationError(f"{name} must be in [0, 1)")


def _check_betas(betas: tuple[float, float]) -> tuple[float, float]:
    if len(betas) != 2:
        raise ConfigurationError("betas must be a pair of floats")
    beta1, beta2 = float(betas[0]), float(betas[1])
    _check_decay("betas[0]", beta1)
    _check_decay("betas[1]", beta2)
    return beta1, beta2


def _check_eps(eps: float) -> None:
    if eps <= 0:
        raise ConfigurationError("eps must be positive")


class Descent(Rule):
    """Plain gradient descent: ``update = lr * grad``."""

    gradient_style = GradientStyle.STATELESS

    def __init__(self, lr: float = 0.1) -> None:
        _check_lr(lr)
        super().__init__(lr=lr)
        self.lr = float(lr)

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        return grad.mul_(self.lr)


class WeightDecay(Rule):
    """Adds ``weight_decay * param`` to the gradient."""

    gradient_style = GradientStyle.STATELESS

    def __init__(self, weight_decay: float = 0.0) -> None:
        if weight_decay < 0:
            raise ConfigurationError("weight_decay must be non-negative")
        super().__init__(weight_decay=weight_decay)
        self.weight_decay = float(weight_decay)

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        if self.weight_decay != 0:
            grad.add_(param.detach(), alpha=self.weight_decay)
        return grad


class Momentum(Rule):
    """Heavy-ball momentum: ``v = rho * v + lr * grad``, ``update = v``."""

    gradient_style = GradientStyle.STATEFUL

    def __init__(self, lr: float = 0.01, rho: float = 0.9) -> None:
        _check_lr(lr)
        _check_decay("rho", rho)
        super().__init__(lr=lr, rho=rho)
        self.lr = float(lr)
        self.rho = float(rho)

    def init_state(self, param: torch.Tensor) -> State:
        return {"velocity": torch.zeros_like(param, memory_format=torch.preserve_format)}

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        velocity = self.fetch_state(param)["velocity"]
        velocity.mul_(self.rho).add_(grad, alpha=self.lr)
        return grad.copy_(velocity)


class Nesterov(Rule):
    """Nesterov accelerated momentum."""

    gradient_style = GradientStyle.STATEFUL

    def __init__(self, lr: float = 0.001, rho: float = 0.9) -> None:
        _check_lr(lr)
        _check_decay("rho", rho)
        super().__init__(lr=lr, rho=rho)
        self.lr = float(lr)
        self.rho = float(rho)

    def init_state(self, param: torch.Tensor) -> State:
        return {"velocity": torch.zeros_like(param, memory_format=torch.preserve_format)}

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        velocity = self.fetch_state(param)["velocity"]
        rho, lr = self.rho, self.lr
        update = velocity.mul(rho * rho).add_(grad, alpha=(1.0 + rho) * lr)
        velocity.mul_(rho).add_(grad, alpha=lr)
        return grad.copy_(update)


class RMSProp(Rule):
    gradient_style = GradientStyle.STATEFUL

    def __init__(self, lr: float = 0.001, rho: float = 0.9, eps: float = EPS) -> None:
        _check_lr(lr)
        _check_decay("rho", rho)
        _check_eps(eps)
        super().__init__(lr=lr, rho=rho, eps=eps)
        self.lr = float(lr)
        self.rho = float(rho)
        self.eps = float(eps)

    def init_state(self, param: torch.Tensor) -> State:
        return {"square_avg": torch.zeros_like(param, memory_format=torch.preserve_format)}

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        square_avg = self.fetch_state(param)["square_avg"]
        square_avg.mul_(self.rho).addcmul_(grad, grad, value=1.0 - self.rho)
        return grad.mul_(self.lr).div_(square_avg.sqrt().add_(self.eps))


class AdaGrad(Rule):
    """AdaGrad. The accumulator starts at ``eps`` rather than zero."""

    gradient_style = GradientStyle.STATEFUL

    def __init__(self, lr: float = 0.1, eps: float = EPS) -> None:
        _check_lr(lr)
        _check_eps(eps)
        super().__init__(lr=lr, eps=eps)
        self.lr = float(lr)
        self.eps = float(eps)

    def init_state(self, param: torch.Tensor) -> State:
        return {"sum": torch.full_like(param, self.eps, memory_format=torch.preserve_format)}

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        acc = self.fetch_state(param)["sum"]
        acc.addcmul_(grad, grad)
        return grad.mul_(self.lr).div_(acc.sqrt().add_(self.eps))


class AdaDelta(Rule):
    gradient_style = GradientStyle.STATEFUL

    def __init__(self, rho: float = 0.9, eps: float = EPS) -> None:
        _check_decay("rho", rho)
        _check_eps(eps)
        super().__init__(rho=rho, eps=eps)
        self.rho = float(rho)
        self.eps = float(eps)

    def init_state(self, param: torch.Tensor) -> State:
        return {
            "square_avg": torch.zeros_like(param, memory_format=torch.preserve_format),
            "acc_delta": torch.zeros_like(param, memory_format=torch.preserve_format),
        }

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        state = self.fetch_state(param)
        square_avg, acc_delta = state["square_avg"], state["acc_delta"]
        rho, eps = self.rho, self.eps
        square_avg.mul_(rho).addcmul_(grad, grad, value=1.0 - rho)
        grad.mul_(acc_delta.add(eps).sqrt_()).div_(square_avg.add(eps).sqrt_())
        # the accumulated update uses the rescaled gradient
        acc_delta.mul_(rho).addcmul_(grad, grad, value=1.0 - rho)
        return grad


class AMSGrad(Rule):
    """AMSGrad. All three buffers start at ``eps``."""

    gradient_style = GradientStyle.STATEFUL

    def __init__(
        self,
        lr: float = 0.001,
        betas: tuple[float, float] = (0.9, 0.999),
        eps: float = EPS,
    ) -> None:
        _check_lr(lr)
        _check_eps(eps)
        self.betas = _check_betas(betas)
        super().__init__(lr=lr, betas=betas, eps=eps)
        self.lr = float(lr)
        self.eps = float(eps)

    def init_state(self, param: torch.Tensor) -> State:
        return {
            key: torch.full_like(param, self.eps, memory_format=torch.preserve_format)
            for key in ("exp_avg", "exp_avg_sq", "max_exp_avg_sq")
        }

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        state = self.fetch_state(param)
        exp_avg, exp_avg_sq, max_exp_avg_sq = (
            state["exp_avg"],
            state["exp_avg_sq"],
            state["max_exp_avg_sq"],
        )
        beta1, beta2 = self.betas
        exp_avg.mul_(beta1).add_(grad, alpha=1.0 - beta1)
        exp_avg_sq.mul_(beta2).addcmul_(grad, grad, value=1.0 - beta2)
        torch.maximum(max_exp_avg_sq, exp_avg_sq, out=max_exp_avg_sq)
        denom = max_exp_avg_sq.sqrt().add_(self.eps)
        return grad.copy_(exp_avg).mul_(self.lr).div_(denom)


class Adam(Rule):
    """Adam with bias correction.

    The entry holds ``exp_avg``, ``exp_avg_sq`` and ``beta_powers``, the running
    products ``(beta1**t, beta2**t)`` used for bias correction.
    """

    gradient_style = GradientStyle.STATEFUL

    def __init__(
        self,
        lr: float = 0.001,
        betas: tuple[float, float] = (0.9, 0.999),
        eps: float = EPS,
    ) -> None:
        _check_lr(lr)
        _check_eps(eps)
        self.betas = _check_betas(betas)
        super().__init__(lr=lr, betas=betas, eps=eps)
        self.lr = float(lr)
        self.eps = float(eps)

    def init_state(self, param: torch.Tensor) -> State:
        return {
            "exp_avg": torch.zeros_like(param, memory_format=torch.preserve_format),
            "exp_avg_sq": torch.zeros_like(param, memory_format=torch.preserve_format),
            "beta_powers": self.betas,
        }

    def _update_moments(self, state: State, grad: torch.Tensor) -> None:
        beta1, beta2 = self.betas
        state["exp_avg"].mul_(beta1).add_(grad, alpha=1.0 - beta1)
        state["exp_avg_sq"].mul_(beta2).addcmul_(grad, grad, value=1.0 - beta2)

    def _advance_powers(self, state: State) -> None:
        power1, power2 = state["beta_powers"]
        beta1, beta2 = self.betas
        state["beta_powers"] = (power1 * beta1, power2 * beta2)

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        state = self.fetch_state(param)
        self._update_moments(state, grad)
        power1, power2 = state["beta_powers"]
        denom = state["exp_avg_sq"].div(1.0 - power2).sqrt_().add_(self.eps)
        grad.copy_(state["exp_avg"]).div_(1.0 - power1).div_(denom).mul_(self.lr)
        self._advance_powers(state)
        return grad


class RAdam(Adam):
    """Rectified Adam; falls back to bias-corrected momentum while the variance is untractable."""

    def init_state(self, param: torch.Tensor) -> State:
        state = super().init_state(param)
        state["step"] = 1
        return state

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        state = self.fetch_state(param)
        beta2 = self.betas[1]
        power1, power2 = state["beta_powers"]
        step = state["step"]
        rho_inf = 2.0 / (1.0 - beta2) - 1.0
        rho = rho_inf - 2.0 * step * power2 / (1.0 - power2)

        self._update_moments(state, grad)
        grad.copy_(state["exp_avg"]).div_(1.0 - power1).mul_(self.lr)
        if rho > 4.0:
            rect = math.sqrt(
                (rho - 4.0) * (rho - 2.0) * rho_inf / ((rho_inf - 4.0) * (rho_inf - 2.0) * rho)
            )
            denom = state["exp_avg_sq"].div(1.0 - power2).sqrt_().add_(self.eps)
            grad.div_(denom).mul_(rect)
        self._advance_powers(state)
        state["step"] = step + 1
        return grad


class AdaMax(Adam):
    """Adam variant with an infinity-norm second moment."""

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        state = self.fetch_state(param)
        beta1, beta2 = self.betas
        # the second-moment slot holds the infinity norm
        exp_avg, exp_inf = state["exp_avg"], state["exp_avg_sq"]
        exp_avg.mul_(beta1).add_(grad, alpha=1.0 - beta1)
        torch.maximum(exp_inf.mul_(beta2), grad.abs(), out=exp_inf)
        power1, _ = state["beta_powers"]
        grad.copy_(exp_avg).div_(exp_inf.add(self.eps)).mul_(self.lr / (1.0 - power1))
        self._advance_powers(state)
        return grad


class NAdam(Adam):
    """Adam with Nesterov momentum."""

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        state = self.fetch_state(param)
        beta1, beta2 = self.betas
        power1, power2 = state["beta_powers"]
        self._update_moments(state, grad)
        update = state["exp_avg"].mul(beta1 / (1.0 - power1 * beta1))
        update.add_(grad, alpha=(1.0 - beta1) / (1.0 - power1))
        denom = state["exp_avg_sq"].mul(beta2 / (1.0 - power2)).sqrt_().add_(self.eps)
        grad.copy_(update.div_(denom).mul_(self.lr))
        self._advance_powers(state)
        return grad
