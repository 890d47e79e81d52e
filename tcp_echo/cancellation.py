"""
One-shot cancellation signal shared between the accept loop and every connection handler.

A Cancellation is created once at startup and cancelled exactly once (interrupt, fatal condition).
Handlers fork a child scope off it: cancelling the parent cancels every child, while cancelling a
child (e.g. when a handler returns) leaves the parent and its siblings untouched.
"""

import asyncio


class Cancellation:

    def __init__(self, parent: "Cancellation | None" = None):
        self._event = asyncio.Event()
        self._parent = parent
        self._children: set[Cancellation] = set()
        if parent is not None:
            if parent.cancelled:
                self._event.set()
            else:
                parent._children.add(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        # idempotent
        if self._event.is_set():
            return
        self._event.set()
        for child in list(self._children):
            child.cancel()
        self._children.clear()
        if self._parent is not None:
            self._parent._children.discard(self)

    async def wait(self) -> None:
        await self._event.wait()

    def child(self) -> "Cancellation":
        return Cancellation(parent=self)
