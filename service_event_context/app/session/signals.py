"""
Process-wide logout signal.
"""

from typing import Awaitable, Callable, List

from shared.logging import get_logger

Receiver = Callable[[], Awaitable[None]]


class LogoutSignal:
    """Payload-free notification that the user logged out."""

    def __init__(self):
        self._receivers: List[Receiver] = []
        self.logger = get_logger("event_context.session.signal")

    def connect(self, receiver: Receiver):
        if receiver not in self._receivers:
            self._receivers.append(receiver)

    def disconnect(self, receiver: Receiver):
        if receiver in self._receivers:
            self._receivers.remove(receiver)

    @property
    def receiver_count(self) -> int:
        return len(self._receivers)

    async def emit(self):
        """Notify every receiver; one failing receiver does not stop the others."""
        self.logger.info("Logout signalled", receivers=len(self._receivers))
        for receiver in list(self._receivers):
            try:
                await receiver()
            except Exception as e:
                self.logger.error("Logout receiver failed", error=str(e))


# Global logout signal
logout_signal = LogoutSignal()
