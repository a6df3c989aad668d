"""Cooperative cancellation for in-flight transports."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, TypeVar

from .errors import AbortedError

__all__ = ["AbortSignal"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class AbortSignal:
    """One-shot abort flag shared between a caller and the active transport.

    The caller owns the signal and fires it with :meth:`abort`; transports
    wrap each suspension point in :meth:`race` so that firing the signal
    tears down exactly the read that is in flight.

    Example:
        signal = AbortSignal()
        task = asyncio.create_task(consume(runtime.send_message("hi", signal=signal)))
        signal.abort("user pressed stop")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str | None = None) -> None:
        """Fire the signal; later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason or "aborted"
        self._event.set()
        LOGGER.debug("Abort signal fired: %s", self._reason)

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise AbortedError(message=f"Aborted: {self._reason}")

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the signal fires first.

        Raises:
            AbortedError: If the signal is (or becomes) aborted before the
                awaitable completes. The awaitable is cancelled.
        """
        if self.aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_aborted()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task
        raise AbortedError(message=f"Aborted: {self._reason}")
