"""Outbound messaging interface."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class MessagingChannel(Protocol):
    async def send(self, destination: str, message: str) -> bool:
        """Deliver *message* to *destination*; ``True`` on confirmed success."""
        ...
