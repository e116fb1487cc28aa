"""
Sink contract and adapters.

A sink receives one PollResult per successful cycle, including empty ones.
``deliver`` may be a plain function or a coroutine function; the engine
awaits coroutine results. The engine imposes no delivery timeout, so a slow
sink delays the next cycle of its own account (ticks are skipped meanwhile)
and nothing else.
"""

from __future__ import annotations
import inspect
from typing import Any, Awaitable, Callable, Protocol, Union, runtime_checkable

from mailwatch.models import Account, PollResult

DeliverCallback = Callable[[Account, PollResult], Union[None, Awaitable[None]]]


@runtime_checkable
class Sink(Protocol):
    """Receives batches of new messages for an account."""

    def deliver(self, account: Account, result: PollResult) -> Any: ...


class CallbackSink:
    """Adapts a ``(account, result)`` callable, sync or async, into a Sink."""

    def __init__(self, callback: DeliverCallback) -> None:
        if not callable(callback):
            raise TypeError(f"Sink callback must be callable, got {type(callback).__name__}")
        self.callback = callback

    def deliver(self, account: Account, result: PollResult) -> Any:
        return self.callback(account, result)

    def __repr__(self) -> str:
        name = getattr(self.callback, "__qualname__", repr(self.callback))
        return f"CallbackSink({name})"


def as_sink(target: Union[Sink, DeliverCallback, None]) -> Sink | None:
    """Normalize a Sink, a plain callable or None."""
    if target is None:
        return None
    if isinstance(target, Sink):
        return target
    return CallbackSink(target)


async def deliver_to(sink: Sink, account: Account, result: PollResult) -> None:
    """Call ``sink.deliver`` and await it if it returned an awaitable."""
    outcome = sink.deliver(account, result)
    if inspect.isawaitable(outcome):
        await outcome
