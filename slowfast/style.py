"""Stateful/stateless classification of optimizer variants.

Every optimizer variant declares whether it keeps per-parameter state
(momentum, moving averages, accumulators) through a ``gradient_style`` class
attribute. Composite optimizers derive their classification by folding over
their members, with ``STATEFUL`` dominating.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable

from slowfast._logging import get_logger, log_event

_logger = get_logger("slowfast.style")
_inferred: set[type] = set()


class GradientStyle(enum.Enum):
    STATEFUL = "stateful"
    STATELESS = "stateless"

    def merge(self, other: GradientStyle) -> GradientStyle:
        if self is GradientStyle.STATEFUL or other is GradientStyle.STATEFUL:
            return GradientStyle.STATEFUL
        return GradientStyle.STATELESS


def promote(styles: Iterable[GradientStyle]) -> GradientStyle:
    """Fold styles together; an empty sequence is stateless."""
    result = GradientStyle.STATELESS
    for style in styles:
        result = result.merge(style)
    return result


def classify(optimizer: object) -> GradientStyle:
    """Return the gradient style of an optimizer instance or optimizer class.

    For a class the explicitly declared ``gradient_style`` is used. Classes that
    do not declare one fall back to ``infer_gradient_style()``, which is a
    heuristic and logged as such. Instances answer through ``classification()``
    so composite optimizers can fold over their members.
    """
    if isinstance(optimizer, GradientStyle):
        return optimizer
    if isinstance(optimizer, type):
        style = getattr(optimizer, "gradient_style", None)
        if style is not None:
            return style
        infer = getattr(optimizer, "infer_gradient_style", None)
        if infer is None:
            raise TypeError(f"{optimizer.__name__} is not an optimizer type")
        style = infer()
        if optimizer not in _inferred:
            _inferred.add(optimizer)
            log_event(
                _logger,
                "gradient_style_inferred",
                level=logging.WARNING,
                optimizer=optimizer.__qualname__,
                style=style.value,
            )
        return style
    classification = getattr(optimizer, "classification", None)
    if classification is None:
        raise TypeError(f"{type(optimizer).__name__} is not an optimizer")
    return classification()


def is_stateful(optimizer: object) -> bool:
    return classify(optimizer) is GradientStyle.STATEFUL
