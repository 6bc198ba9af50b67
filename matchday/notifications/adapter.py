"""
Notification Adapter Interface

Abstract base class for delivering a text message to a participant
identified by an opaque address. Delivery is fire-and-forget from the
engine's point of view; NotificationService isolates failures.
"""
import abc
import json
from typing import Dict, Any


class NotificationAdapter(abc.ABC):

    @abc.abstractmethod
    async def send(self, address: str, message: str) -> None:
        """
        Deliver message to address.

        Args:
            address: Opaque recipient address (participant id, chat id)
            message: Plain-text body
        Raises:
            Any exception on delivery failure; callers log and continue
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release adapter resources."""
        return None

    def _serialize_payload(self, payload: Dict[str, Any]) -> str:
        return json.dumps(payload, sort_keys=True, separators=(',', ':'))
