"""
Outbox уведомлений: сервисы ядра возвращают список Notification вместо прямой отправки.
Вызывающий (роут / Celery task) коммитит транзакцию и затем вызывает dispatch().
"""
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    user_id: str
    text: str


@dataclass
class Outbox:
    items: list[Notification] = field(default_factory=list)

    def add(self, user_id: str | None, text: str) -> None:
        if user_id:
            self.items.append(Notification(user_id=user_id, text=text))

    def extend(self, other: "Outbox") -> None:
        self.items.extend(other.items)

    def __len__(self) -> int:
        return len(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    def dispatch(self) -> None:
        """Поставить доставку в очередь Celery. Вызывать только после commit."""
        if not self.items:
            return
        from app.workers.tasks.notifications import send_notifications

        payload = [{"user_id": n.user_id, "text": n.text} for n in self.items]
        send_notifications.delay(payload)
        logger.info("notifications_enqueued", extra={"count": len(payload)})
        self.items = []
