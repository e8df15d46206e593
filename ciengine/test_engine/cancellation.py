"""Cooperative cancellation token passed into every test operation."""

import asyncio


class CancellationToken:
    """Cooperative cancellation flag.

    A token only signals intent. Operations must await ``wait()`` or poll
    ``cancelled`` / ``raise_if_cancelled()`` to stop early; code that never
    yields to the event loop or checks the token cannot be interrupted. Use
    ``command_operation`` for code that has to be hard-killed.
    """

    def __init__(self, parent: "CancellationToken | None" = None) -> None:
        """Create a token, optionally linked to a parent token."""
        self._event = asyncio.Event()
        self._children: list[CancellationToken] = []
        self.reason: str | None = None
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation of this token and all of its children."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for child in self._children:
            child.cancel(reason)

    def child(self) -> "CancellationToken":
        """Create a token cancelled together with this one."""
        return CancellationToken(parent=self)

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        """Raise ``asyncio.CancelledError`` if cancellation was requested."""
        if self._event.is_set():
            raise asyncio.CancelledError(self.reason or "cancelled")
