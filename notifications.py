from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Iterator, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import Settings
from models import EntryKind, Notification, NotificationType, User

logger = logging.getLogger(__name__)


class PushClient(Protocol):
    def send(
        self, token: str, title: str, body: str, data: dict[str, str]
    ) -> bool:  # pragma: no cover - interface
        ...


class LogPushClient:
    """Push client that only records deliveries in the log."""

    def send(self, token: str, title: str, body: str, data: dict[str, str]) -> bool:
        logger.info(f"push_send: token={token[:8]}... title={title!r}")
        return True


def build_push_client(settings: Settings) -> PushClient:
    return LogPushClient()


def chunked(items: Sequence[int], size: int) -> Iterator[list[int]]:
    size = max(size, 1)
    for offset in range(0, len(items), size):
        yield list(items[offset : offset + size])


def _stringify(data: Optional[dict[str, object]]) -> dict[str, str]:
    return {key: str(value) for key, value in (data or {}).items()}


class NotificationDispatcher:
    """Persists notifications and forwards them to the push client.

    Push failures are logged and never raised; the stored notification is the
    record of delivery intent.
    """

    def __init__(self, push_client: PushClient, batch_size: int = 500) -> None:
        self.push_client = push_client
        self.batch_size = batch_size

    def _push(self, token: str, title: str, body: str, data: dict[str, str]) -> bool:
        try:
            return bool(self.push_client.send(token, title, body, data))
        except Exception:
            logger.exception(f"push_failed: title={title!r}")
            return False

    def notify(
        self,
        session: Session,
        user_id: int,
        title: str,
        body: str,
        data: Optional[dict[str, object]] = None,
        *,
        type: NotificationType = NotificationType.normal,
        kind: Optional[str] = None,
        period_key: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            title=title,
            body=body,
            type=type,
            kind=kind,
            period_key=period_key,
            data_json=json.dumps(data) if data else None,
        )
        session.add(notification)
        session.flush()

        token = session.scalar(select(User.fcm_token).where(User.id == user_id))
        if token:
            payload = {
                "notificationId": str(notification.id),
                "type": type.value,
                **_stringify(data),
            }
            self._push(token, title, body, payload)
        return notification

    def notify_bulk(
        self,
        session: Session,
        user_ids: Iterable[int],
        title: str,
        body: str,
        data: Optional[dict[str, object]] = None,
        *,
        type: NotificationType = NotificationType.normal,
        kind: Optional[str] = None,
        period_key: Optional[str] = None,
    ) -> dict[str, int]:
        ids = list(user_ids)
        result = {"saved": 0, "push_sent": 0, "push_failed": 0}
        if not ids:
            return result

        data_json = json.dumps(data) if data else None
        payload = {"type": type.value, **_stringify(data)}
        for batch in chunked(ids, self.batch_size):
            session.add_all(
                [
                    Notification(
                        user_id=user_id,
                        title=title,
                        body=body,
                        type=type,
                        kind=kind,
                        period_key=period_key,
                        data_json=data_json,
                    )
                    for user_id in batch
                ]
            )
            session.flush()
            result["saved"] += len(batch)

            tokens = session.scalars(
                select(User.fcm_token).where(
                    User.id.in_(batch), User.fcm_token.is_not(None)
                )
            ).all()
            for token in tokens:
                if self._push(token, title, body, payload):
                    result["push_sent"] += 1
                else:
                    result["push_failed"] += 1
        return result


@dataclass(frozen=True)
class PostedEntry:
    user_id: int
    entry_id: int
    kind: EntryKind
    category: str
    amount_cents: int
    currency: str
    occurred_at: datetime


PostingHandler = Callable[[PostedEntry], None]


def detached(
    runner: Callable[..., object], handler: PostingHandler
) -> PostingHandler:
    """Wrap `handler` so posting events are queued on `runner` instead of run.

    `runner` is anything shaped like `BackgroundTasks.add_task`.
    """

    def enqueue(event: PostedEntry) -> None:
        runner(handler, event)

    return enqueue
