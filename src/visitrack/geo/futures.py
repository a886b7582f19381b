"""Callback-to-future bridge with a watchdog timeout.

The platform callbacks and the watchdog are racing completions of one
future: the first to arrive wins and later ones are dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

__all__ = ["WatchdogTimeout", "callback_future", "with_watchdog"]

T = TypeVar("T")


class WatchdogTimeout(Exception):
    """The underlying request never called back in time."""


def _settle(fut: asyncio.Future[Any], *, result: Any = None, error: BaseException | None = None) -> None:
    if fut.done():
        return
    if error is not None:
        fut.set_exception(error)
    else:
        fut.set_result(result)


def callback_future(
    start: Callable[[Callable[[T], None], Callable[[BaseException], None]], None],
) -> asyncio.Future[T]:
    """Run ``start(on_success, on_error)`` and expose its outcome as a future.

    Callbacks may be invoked from the loop thread or from another thread;
    either way the future is settled on the loop. An exception raised by
    ``start`` itself settles the future with that exception.
    """
    loop = asyncio.get_running_loop()
    fut: asyncio.Future[T] = loop.create_future()

    def _in_loop(**kwargs: Any) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            _settle(fut, **kwargs)
        else:
            loop.call_soon_threadsafe(lambda: _settle(fut, **kwargs))

    def on_success(value: T) -> None:
        _in_loop(result=value)

    def on_error(exc: BaseException) -> None:
        _in_loop(error=exc)

    try:
        start(on_success, on_error)
    except Exception as exc:  # noqa: BLE001
        _settle(fut, error=exc)
    return fut


async def with_watchdog(fut: asyncio.Future[T], seconds: float) -> T:
    """Await ``fut`` but fail it with WatchdogTimeout after ``seconds``.

    Unlike ``asyncio.wait_for`` the watchdog settles the same future instead
    of cancelling it, so a late platform callback finds it done and is ignored.
    """
    loop = asyncio.get_running_loop()
    handle = loop.call_later(
        seconds,
        lambda: _settle(fut, error=WatchdogTimeout(f"no callback within {seconds:g}s")),
    )
    try:
        return await fut
    finally:
        handle.cancel()
