"""Debounce utility for coalescing bursts of change signals."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any


class CallDebouncer:
    """
    Debounces rapid calls to a function, only executing once after settling.

    Every `call()` restarts the timer. The callback runs on the event loop
    once `delay_ms` milliseconds pass without another call.

    Not thread-safe: call it from the loop that owns it (use
    ``loop.call_soon_threadsafe(debouncer.call)`` from other threads).
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        delay_ms: int = 100,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Initialize the call debouncer.

        Args:
            callback: Function to call when debounce fires.
            delay_ms: Milliseconds to wait after last call before firing.
            loop: Event loop to schedule on. Defaults to the running loop
                  at the time of the first call.
        """
        self._callback = callback
        self._delay_ms = delay_ms
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None

    def call(self) -> None:
        """Request a call to the callback (debounced)."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._cancel_timer()
        self._handle = self._loop.call_later(self._delay_ms / 1000.0, self._fire)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        """Fire the callback."""
        self._handle = None
        self._callback()

    def flush(self) -> None:
        """Immediately fire if pending."""
        if self._handle is not None:
            self._cancel_timer()
            self._callback()

    def cancel(self) -> None:
        """Cancel without firing."""
        self._cancel_timer()

    @property
    def is_pending(self) -> bool:
        """Check if a call is pending."""
        return self._handle is not None
