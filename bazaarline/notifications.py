from __future__ import annotations

from typing import Any, Dict, List, Protocol, Set

from pydantic import BaseModel, Field

from .logging import ServiceLogger


class Notification(BaseModel):
    user_id: str
    title: str
    message: str
    type: str = "info"
    action_url: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    send_email: bool = False
    send_socket: bool = True


class Notifier(Protocol):
    def send_notification_to_user(
        self,
        user_id: str,
        payload: Dict[str, Any],
        send_email: bool = False,
        send_socket: bool = True,
    ) -> None: ...

    def is_user_online(self, user_id: str) -> bool: ...


class InMemoryNotifier(Notifier):
    """Keeps notifications in process; delivery channels live outside this service."""

    def __init__(self) -> None:
        self.sent: List[Notification] = []
        self._online: Set[str] = set()
        self._log = ServiceLogger("notifications")

    def send_notification_to_user(
        self,
        user_id: str,
        payload: Dict[str, Any],
        send_email: bool = False,
        send_socket: bool = True,
    ) -> None:
        notification = Notification(
            user_id=user_id,
            send_email=send_email,
            send_socket=send_socket and self.is_user_online(user_id),
            **payload,
        )
        self.sent.append(notification)
        self._log.debug("Notification queued", user_id=user_id, title=notification.title)

    def is_user_online(self, user_id: str) -> bool:
        return user_id in self._online

    def mark_online(self, user_id: str) -> None:
        self._online.add(user_id)


def notify_safely(notifier: Notifier, log: ServiceLogger, user_id: str, payload: Dict[str, Any]) -> bool:
    """Fire-and-forget delivery: failures are logged and never raised."""
    try:
        notifier.send_notification_to_user(user_id, payload, send_email=False, send_socket=True)
    except Exception as exc:
        log.warning("Notification failed", user_id=user_id, title=payload.get("title"), error=exc)
        return False
    return True
