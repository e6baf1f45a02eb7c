"""Lookahead meta-optimizer.

Lookahead keeps a slow copy of every parameter next to the fast weights
produced by an inner rule. Every ``k`` steps the slow copy moves towards the
fast weights,

    slow = alpha * fast + (1 - alpha) * slow

and the returned update lands the parameter exactly on the new slow copy. A
sync policy then decides what happens to the inner rule's momentum:

- "none": keep it (default, works with any inner rule)
- "reset": reinitialise the inner state for the parameter
- "pullback": blend each momentum buffer with a slow copy of itself, the same
  way the weights are blended

Presets:
- "default": alpha=0.5, k=6, no momentum sync
- "pullback": alpha=0.5, k=5, momentum pullback
- "reset": alpha=0.8, k=5, momentum reset

Reference: Zhang et al., "Lookahead Optimizer: k steps forward, 1 step back"
(https://arxiv.org/abs/1907.08610).
"""

from __future__ import annotations

import numbers
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import ClassVar

import torch

from slowfast._logging import get_logger, log_event
from slowfast.errors import ConfigurationError
from slowfast.rules import Rule, State
from slowfast.state import StateStore, momentum_buffers, reset_state
from slowfast.style import GradientStyle, is_stateful

PRESETS: dict[str, dict[str, object]] = {
    "default": {"alpha": 0.5, "k": 6, "sync_policy": "none"},
    "pullback": {"alpha": 0.5, "k": 5, "sync_policy": "pullback"},
    "reset": {"alpha": 0.8, "k": 5, "sync_policy": "reset"},
}


class SyncPolicy(ABC):
    """Hook run by :class:`Lookahead` right after the slow weights are updated.

    Custom policies are assumed to touch the inner rule's state; set
    ``requires_state = False`` on policies that do not.
    """

    name: ClassVar[str] = "custom"
    requires_state: ClassVar[bool] = True

    @abstractmethod
    def __call__(self, lookahead: Lookahead, param: torch.Tensor) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class NoOpSync(SyncPolicy):
    name = "none"
    requires_state = False

    def __call__(self, lookahead: Lookahead, param: torch.Tensor) -> None:
        return None


class ResetSync(SyncPolicy):
    """Reinitialise the inner rule's state for the synced parameter."""

    name = "reset"

    def __call__(self, lookahead: Lookahead, param: torch.Tensor) -> None:
        reset_state(lookahead.inner, param)


class PullbackSync(SyncPolicy):
    """Blend the inner momentum buffers with their slow copies.

    Slow copies live in ``lookahead.momentum_state``, keyed by the identity of
    each momentum buffer. A slow copy starts as a snapshot of its buffer at the
    first sync, so the first blend leaves the buffer unchanged.

    The slow copies are shared by every parameter of the Lookahead; do not run
    syncs concurrently for parameters whose inner buffers alias.
    """

    name = "pullback"

    def __call__(self, lookahead: Lookahead, param: torch.Tensor) -> None:
        alpha = lookahead.alpha
        for buffer in momentum_buffers(lookahead.inner, param):
            slow = lookahead.momentum_state.get_or_init(buffer, _snapshot)
            slow.mul_(1.0 - alpha).add_(buffer, alpha=alpha)
            buffer.copy_(slow)


def _snapshot(tensor: torch.Tensor) -> torch.Tensor:
    return tensor.detach().clone()


SYNC_POLICIES: dict[str, type[SyncPolicy]] = {
    NoOpSync.name: NoOpSync,
    ResetSync.name: ResetSync,
    PullbackSync.name: PullbackSync,
}


def resolve_sync_policy(policy: SyncPolicy | str | None) -> SyncPolicy:
    if policy is None:
        return NoOpSync()
    if isinstance(policy, SyncPolicy):
        return policy
    if isinstance(policy, str):
        if policy not in SYNC_POLICIES:
            raise ConfigurationError(
                f"Unknown sync policy '{policy}'. Choose from: {list(SYNC_POLICIES.keys())}"
            )
        return SYNC_POLICIES[policy]()
    raise ConfigurationError(f"sync_policy must be a SyncPolicy or a name, got {policy!r}")


@dataclass(frozen=True)
class LookaheadConfig:
    alpha: float = 0.5
    k: int = 6
    sync_policy: str = "none"


class Lookahead(Rule):
    """Wrap an inner rule with slow weights synchronised every ``k`` steps.

    Lookahead is always stateful: its entry for a parameter is
    ``{"slow_param": tensor, "step": int}`` where ``step`` counts the calls
    since the last sync and stays in ``[1, k]``.

    Args:
        inner: The rule producing the fast weights.
        alpha: Slow-weight step size in (0, 1] (default: 0.5)
        k: Number of inner steps between syncs (default: 6)
        sync_policy: A :class:`SyncPolicy` or one of "none", "reset",
            "pullback" (default: "none")
        log_every: Emit a ``lookahead_sync`` event every this many syncs
            (0 = disabled)

    Example:
        >>> rule = Lookahead(Adam(lr=1e-3), alpha=0.5, k=5, sync_policy="pullback")
        >>> rule = Lookahead.from_config(Momentum(lr=0.01), "reset")
    """

    gradient_style = GradientStyle.STATEFUL

    def __init__(
        self,
        inner: Rule,
        alpha: float = 0.5,
        k: int = 6,
        sync_policy: SyncPolicy | str | None = None,
        log_every: int = 0,
    ) -> None:
        policy = resolve_sync_policy(sync_policy)
        if not 0.0 < alpha <= 1.0:
            raise ConfigurationError("alpha must be in (0, 1]")
        if isinstance(k, bool) or not isinstance(k, numbers.Integral) or k < 1:
            raise ConfigurationError("k must be a positive integer")
        if log_every < 0:
            raise ConfigurationError("log_every must be >= 0")
        if policy.requires_state and not is_stateful(inner):
            raise ConfigurationError(
                f"Inner optimizer {inner!r} has no momentum; "
                f"sync policy '{policy.name}' requires a stateful inner optimizer"
            )

        super().__init__(alpha=alpha, k=k, sync_policy=policy.name)
        self.inner = inner
        self.alpha = float(alpha)
        self.k = int(k)
        self.sync_policy = policy
        # keyed by momentum buffer identity, separate from the per-parameter store
        self.momentum_state = StateStore()

        self._log_every = int(log_every)
        self._logger = get_logger("slowfast")
        self._syncs = 0

    @classmethod
    def from_config(
        cls,
        inner: Rule,
        config: LookaheadConfig | str = "default",
        log_every: int = 0,
    ) -> Lookahead:
        if isinstance(config, str):
            if config not in PRESETS:
                raise ConfigurationError(
                    f"Unknown preset '{config}'. Choose from: {list(PRESETS.keys())}"
                )
            config = LookaheadConfig(**PRESETS[config])
        return cls(inner, log_every=log_every, **asdict(config))

    def init_state(self, param: torch.Tensor) -> State:
        return {"slow_param": param.detach().clone(), "step": 1}

    def reset_state(self, param: torch.Tensor) -> None:
        super().reset_state(param)
        if is_stateful(self.inner):
            self.inner.reset_state(param)

    def momentum_buffers(self, param: torch.Tensor) -> tuple[torch.Tensor, ...]:
        return momentum_buffers(self.inner, param)

    def apply(self, param: torch.Tensor, grad: torch.Tensor) -> torch.Tensor:
        state = self.fetch_state(param)
        slow_param, step = state["slow_param"], state["step"]

        grad = self.inner.apply(param, grad)

        if step >= self.k:
            step = 0
            alpha = self.alpha
            weights = param.detach()
            fast_param = weights - grad
            slow_param.mul_(1.0 - alpha).add_(fast_param, alpha=alpha)
            # caller's `param - grad` must land on the slow weights
            grad.copy_(weights).sub_(slow_param)
            self.sync_policy(self, param)
            self._syncs += 1
            if self._log_every and self._syncs % self._log_every == 0:
                log_event(
                    self._logger,
                    "lookahead_sync",
                    syncs=self._syncs,
                    k=self.k,
                    alpha=self.alpha,
                    policy=self.sync_policy.name,
                )

        state["step"] = step + 1
        return grad

    def __repr__(self) -> str:
        return (
            f"Lookahead({self.inner!r}, alpha={self.alpha}, k={self.k}, "
            f"sync_policy={self.sync_policy.name!r})"
        )
