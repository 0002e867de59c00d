"""Queue wake signal abstraction.

Workers poll the database for pending exports; a wake signal only shortens
the wait between polls. Losing a notification delays pickup until the next
poll but never loses the job. The in-process implementation suits a single
API process running its own workers; a broker-backed implementation can be
swapped in without touching the worker.
"""

import asyncio
import contextlib
from typing import Protocol


class WakeSignal(Protocol):
    """Protocol for best-effort worker wake-up notifications."""

    def notify(self) -> None:
        """Signal that new work may be available."""
        ...

    async def wait(self, timeout: float) -> bool:
        """Wait for a notification.

        Args:
            timeout: Maximum seconds to wait.

        Returns:
            True if woken by a notification, False on timeout.
        """
        ...


class InProcessWakeSignal:
    """Wake signal backed by an ``asyncio.Event``.

    Notifications coalesce: several ``notify()`` calls before a ``wait()``
    wake the waiter once.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def notify(self) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        woken = False
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
            woken = True
        self._event.clear()
        return woken
