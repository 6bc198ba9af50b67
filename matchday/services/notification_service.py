"""
Notification Service

Formats tournament events into messages and hands them to a
NotificationAdapter.

Rules:
- Engine services queue notifications while they hold a tournament lock
- The queue is flushed only after the owning transaction commits
- Each recipient is delivered independently; a failure is logged and
  never reaches the caller
"""
import logging
from typing import List, Optional, Tuple

from matchday.config.feature_flags import Settings
from matchday.notifications.adapter import NotificationAdapter
from matchday.notifications.logging_adapter import LoggingNotificationAdapter
from matchday.notifications.webhook_adapter import WebhookNotificationAdapter

logger = logging.getLogger(__name__)

_adapter: Optional[NotificationAdapter] = None


def get_notification_adapter() -> NotificationAdapter:
    """Process-wide adapter chosen from settings."""
    global _adapter
    if _adapter is None:
        if Settings.NOTIFY_WEBHOOK_URL:
            _adapter = WebhookNotificationAdapter(
                Settings.NOTIFY_WEBHOOK_URL, timeout=Settings.NOTIFY_WEBHOOK_TIMEOUT
            )
        else:
            _adapter = LoggingNotificationAdapter()
    return _adapter


async def close_notification_adapter():
    global _adapter
    if _adapter is not None:
        await _adapter.close()
        _adapter = None


class NotificationService:

    def __init__(self, adapter: NotificationAdapter = None):
        self.adapter = adapter or get_notification_adapter()
        self._pending: List[Tuple[str, str]] = []

    async def notify(self, address: Optional[str], message: str) -> bool:
        """Deliver one message now. Returns False on failure."""
        if not address:
            return False
        try:
            await self.adapter.send(address, message)
            return True
        except Exception as e:
            logger.error(f"Notification to {address} failed: {type(e).__name__}: {e}")
            return False

    def enqueue(self, address: Optional[str], message: str):
        """Queue a message until flush() is called after commit."""
        if address:
            self._pending.append((address, message))

    def discard(self):
        self._pending.clear()

    @property
    def pending(self) -> List[Tuple[str, str]]:
        return list(self._pending)

    async def flush(self) -> int:
        """Send everything queued; returns the number delivered."""
        pending, self._pending = self._pending, []
        delivered = 0
        for address, message in pending:
            if await self.notify(address, message):
                delivered += 1
        return delivered

    # =========================================================================
    # Message builders
    # =========================================================================

    @staticmethod
    def result_submitted(tournament_name: str, home: str, away: str, home_score: int, away_score: int) -> str:
        return (
            f"New result awaiting approval in {tournament_name}: "
            f"{home} {home_score}:{away_score} {away}"
        )

    @staticmethod
    def result_approved(home: str, away: str, home_score: int, away_score: int) -> str:
        return f"Your result {home} {home_score}:{away_score} {away} was approved"

    @staticmethod
    def result_rejected(home: str, away: str, reason: Optional[str]) -> str:
        message = f"Your result for {home} vs {away} was rejected"
        if reason:
            message += f": {reason}"
        return message + ". Please submit it again."

    @staticmethod
    def penalties_required(home: str, away: str) -> str:
        return (
            f"{home} vs {away} ended in a draw. A knockout match needs a winner: "
            f"submit the penalty shootout score."
        )

    @staticmethod
    def penalties_recorded(home: str, away: str, home_pen: int, away_pen: int, won: bool) -> str:
        outcome = "You advance" if won else "You are eliminated"
        return f"Penalties {home} {home_pen}:{away_pen} {away}. {outcome}."

    @staticmethod
    def disqualified(team: str) -> str:
        return f"{team} was disqualified; the match is awarded 3:0 to the opponent"

    @staticmethod
    def advanced(team: str, stage_name: str) -> str:
        return f"{team} advances to the {stage_name}"

    @staticmethod
    def eliminated(team: str, stage_name: str) -> str:
        return f"{team} was eliminated in the {stage_name}"

    @staticmethod
    def third_place_match(team: str, opponent: str) -> str:
        return f"{team} plays {opponent} for third place"

    @staticmethod
    def third_place_won(team: str) -> str:
        return f"{team} won the match for third place"

    @staticmethod
    def automatic_third_place(team: str) -> str:
        return f"{team} takes third place automatically"

    @staticmethod
    def tournament_started(tournament_name: str, match_count: int) -> str:
        return f"{tournament_name} has started: {match_count} matches scheduled"

    @staticmethod
    def tournament_cancelled(tournament_name: str) -> str:
        return f"{tournament_name} was cancelled by the organizer"

    @staticmethod
    def tournament_finished(tournament_name: str, team: str, position: int) -> str:
        if position == 1:
            return f"Congratulations! {team} won {tournament_name}"
        if position == 2:
            return f"{team} finished {tournament_name} as runner-up"
        if position == 3:
            return f"{team} finished {tournament_name} in third place"
        return f"{tournament_name} is over. {team} finished in position {position}"
