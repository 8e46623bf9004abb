"""Notifier protocol — operator notification channel."""
from typing import Protocol


class Notifier(Protocol):
    """Delivers operator alerts and per-cycle logs. Returns False when not delivered."""

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
