"""Priority insertion and batch extraction over a queue's message list."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import MutableSequence, Sequence

    from .domain import Message


def insert_by_priority(messages: MutableSequence[Message], message: Message) -> int:
    """Insert ``message`` before the first entry of strictly lower priority.

    Equal-priority messages keep arrival order, so a retried message lands
    behind everything of its tier that is already queued.

    Returns
    -------
    int
        Index the message was inserted at.
    """
    rank = message.priority.rank
    index = len(messages)
    for i, existing in enumerate(messages):
        if rank > existing.priority.rank:
            index = i
            break
    messages.insert(index, message)
    return index


def take_batch(messages: MutableSequence[Message], batch_size: int) -> list[Message]:
    """Remove and return up to ``batch_size`` messages from the front."""
    if batch_size <= 0:
        return []
    batch = list(messages[:batch_size])
    del messages[:batch_size]
    return batch


def requeue_front(messages: MutableSequence[Message], batch: Sequence[Message]) -> None:
    """Put ``batch`` back ahead of everything of its tier, keeping its order.

    Used for messages that were taken but not dispatched; they stay ahead of
    later arrivals of the same priority.
    """
    for message in reversed(batch):
        rank = message.priority.rank
        index = len(messages)
        for i, existing in enumerate(messages):
            if rank >= existing.priority.rank:
                index = i
                break
        messages.insert(index, message)
