"""
In-Memory Notification Adapter (Development Mode)

Records every delivery instead of sending it. Used by tests and local runs.
"""
import asyncio
from typing import List, Set, Tuple

from .adapter import NotificationAdapter


class InMemoryNotificationAdapter(NotificationAdapter):

    def __init__(self, failing_addresses: Set[str] = None):
        self.sent: List[Tuple[str, str]] = []
        self.failing_addresses = set(failing_addresses or ())
        self._lock = asyncio.Lock()

    async def send(self, address: str, message: str) -> None:
        if address in self.failing_addresses:
            raise ConnectionError(f"Delivery to {address} failed")
        async with self._lock:
            self.sent.append((address, message))

    def messages_for(self, address: str) -> List[str]:
        return [message for to, message in self.sent if to == address]

    def clear(self):
        self.sent.clear()
