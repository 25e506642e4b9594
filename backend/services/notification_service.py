"""
Notification Service - persists customer and admin notifications.

Callers treat every method here as a best-effort side effect: failures are
raised to the caller, which decides whether to log, retry, or alert.
"""
import logging
from typing import Optional

from sqlalchemy import select

from db_models import Notification, Order, User
from domain.enums import ComputedStatus, NotificationPriority, UserRole
from services.status_service import status_message

logger = logging.getLogger(__name__)


class NotificationService:
    """Notification sink backed by the notifications table."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def notify(
        self,
        user_id: int,
        *,
        title: str,
        message: str,
        related_entity: Optional[tuple[str, str]] = None,
        priority: str = NotificationPriority.MEDIUM.value,
        notification_type: str = "order",
    ) -> Notification:
        entity_type, entity_id = related_entity or (None, None)
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            notification_type=notification_type,
            related_entity_type=entity_type,
            related_entity_id=entity_id,
            priority=priority,
        )
        async with self._session_factory() as db:
            db.add(notification)
            await db.commit()
        logger.info(f"📢 Notification to user {user_id}: {title}")
        return notification

    async def notify_admins(
        self,
        *,
        title: str,
        message: str,
        related_entity: Optional[tuple[str, str]] = None,
        priority: str = NotificationPriority.MEDIUM.value,
        notification_type: str = "order_alert",
    ) -> int:
        """Fan a notification out to every admin. Returns the number created."""
        async with self._session_factory() as db:
            result = await db.execute(select(User.id).where(User.role == UserRole.ADMIN.value))
            admin_ids = list(result.scalars().all())

            entity_type, entity_id = related_entity or (None, None)
            for admin_id in admin_ids:
                db.add(Notification(
                    user_id=admin_id,
                    title=title,
                    message=message,
                    notification_type=notification_type,
                    related_entity_type=entity_type,
                    related_entity_id=entity_id,
                    priority=priority,
                ))
            await db.commit()

        if not admin_ids:
            logger.warning(f"No admin users to notify: {title}")
        return len(admin_ids)

    # ── Order Notifications ─────────────────────────────────────────

    async def send_new_order_notification(self, order: Order) -> int:
        info = order.shipping_info or {}
        customer = f"{info.get('first_name', '')} {info.get('last_name', '')}".strip() or "a customer"
        return await self.notify_admins(
            title="New Order Received",
            message=f"New order #{order.order_number} from {customer}",
            related_entity=("order", order.id),
            priority=NotificationPriority.HIGH.value,
        )

    async def send_order_status_update(self, order: Order, status: ComputedStatus) -> Notification:
        priority = (
            NotificationPriority.HIGH.value
            if status == ComputedStatus.CANCELED
            else NotificationPriority.MEDIUM.value
        )
        return await self.notify(
            order.owner_id,
            title="Order Status Update",
            message=f"Order #{order.order_number}: {status_message(status)}",
            related_entity=("order", order.id),
            priority=priority,
        )

    async def send_settlement_followup(self, order: Order, failures: list[str]) -> int:
        """Alert admins that post-payment work needs manual follow-up."""
        return await self.notify_admins(
            title="Settlement Follow-up Required",
            message=f"Order #{order.order_number} was paid but needs attention: {'; '.join(failures)}",
            related_entity=("order", order.id),
            priority=NotificationPriority.HIGH.value,
            notification_type="system_alert",
        )
