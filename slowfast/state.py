"""Identity-keyed per-parameter optimizer state."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import torch

from slowfast.errors import StatelessAccessError
from slowfast.style import is_stateful


class StateStore:
    """Mapping from tensor identity to an optimizer's state entry.

    Two tensors with equal contents are different keys. The store holds a
    reference to every key tensor, so an ``id`` is never reused while its entry
    is alive. Entries are kept for the lifetime of the store: creating fresh
    parameter tensors every step makes the store grow without bound.
    """

    def __init__(self) -> None:
        self._entries: dict[int, tuple[torch.Tensor, Any]] = {}

    def get_or_init(self, key: torch.Tensor, init: Callable[[torch.Tensor], Any]) -> Any:
        slot = self._entries.get(id(key))
        if slot is None:
            slot = (key, init(key))
            self._entries[id(key)] = slot
        return slot[1]

    def __getitem__(self, key: torch.Tensor) -> Any:
        try:
            return self._entries[id(key)][1]
        except KeyError:
            raise KeyError(f"no state for tensor at {id(key):#x}") from None

    def __setitem__(self, key: torch.Tensor, entry: Any) -> None:
        self._entries[id(key)] = (key, entry)

    def __contains__(self, key: object) -> bool:
        return id(key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[torch.Tensor]:
        for key, _ in self._entries.values():
            yield key

    def items(self) -> Iterator[tuple[torch.Tensor, Any]]:
        yield from self._entries.values()

    def clear(self) -> None:
        self._entries.clear()


def get_state(optimizer: Any, param: torch.Tensor) -> Any:
    """Fetch, creating on first access, the state ``optimizer`` keeps for ``param``."""
    if not is_stateful(optimizer):
        raise StatelessAccessError(optimizer)
    return optimizer.fetch_state(param)


def reset_state(optimizer: Any, param: torch.Tensor) -> None:
    """Reinitialise the state ``optimizer`` keeps for ``param`` in place."""
    if not is_stateful(optimizer):
        raise StatelessAccessError(optimizer)
    optimizer.reset_state(param)


def momentum_buffers(optimizer: Any, param: torch.Tensor) -> tuple[torch.Tensor, ...]:
    """Return the momentum buffers ``optimizer`` keeps for ``param``."""
    if not is_stateful(optimizer):
        raise StatelessAccessError(optimizer)
    return tuple(optimizer.momentum_buffers(param))
