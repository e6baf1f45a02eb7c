"""Stateful gradient rules, chains and the Lookahead meta-optimizer."""

from slowfast._version import __version__
from slowfast.chain import AdamW, Chain
from slowfast.errors import ConfigurationError, SlowFastError, StatelessAccessError
from slowfast.lookahead import (
    PRESETS,
    Lookahead,
    LookaheadConfig,
    NoOpSync,
    PullbackSync,
    ResetSync,
    SyncPolicy,
)
from slowfast.optim import RuleOptimizer
from slowfast.rules import (
    EPS,
    AdaDelta,
    AdaGrad,
    AdaMax,
    Adam,
    AMSGrad,
    Descent,
    Momentum,
    NAdam,
    Nesterov,
    RAdam,
    RMSProp,
    Rule,
    WeightDecay,
    apply,
)
from slowfast.state import StateStore, get_state, momentum_buffers, reset_state
from slowfast.style import GradientStyle, classify, is_stateful, promote

__all__ = [
    "EPS",
    "PRESETS",
    "AMSGrad",
    "AdaDelta",
    "AdaGrad",
    "AdaMax",
    "Adam",
    "AdamW",
    "Chain",
    "ConfigurationError",
    "Descent",
    "GradientStyle",
    "Lookahead",
    "LookaheadConfig",
    "Momentum",
    "NAdam",
    "Nesterov",
    "NoOpSync",
    "PullbackSync",
    "RAdam",
    "RMSProp",
    "ResetSync",
    "Rule",
    "RuleOptimizer",
    "SlowFastError",
    "StateStore",
    "StatelessAccessError",
    "SyncPolicy",
    "WeightDecay",
    "__version__",
    "apply",
    "classify",
    "get_state",
    "is_stateful",
    "momentum_buffers",
    "promote",
    "reset_state",
]
