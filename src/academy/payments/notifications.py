"""Classify webhook notifications by topic and run the matching handler.

Handlers run after the provider has already been answered, so the entry point
``process_notification_safely`` never lets an exception escape.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from academy.database import get_session_factory
from academy.db.models import PaymentStatus
from academy.entitlements.service import deactivate_for_transaction
from academy.payments.gateway import MercadoPagoClient
from academy.payments.granting import InvalidPaymentMetadata, grant_entitlements
from academy.payments.idempotency import NotificationCache, notification_key
from academy.payments.schemas import PaymentRecord, WebhookNotification

logger = structlog.get_logger()

APPROVED = "approved"
# Provider payment status -> status recorded on the revoked entitlements.
REVERSED_STATUSES = {
    "refunded": PaymentStatus.REFUNDED.value,
    "charged_back": PaymentStatus.CHARGED_BACK.value,
}
# Statuses after which a payment only changes through a refund or chargeback.
FINAL_STATUSES = {APPROVED, "rejected", "cancelled", *REVERSED_STATUSES}


def resolve_topic(notification: WebhookNotification) -> str | None:
    """Explicit ``type`` wins; otherwise the prefix of ``action`` (``payment.updated`` -> ``payment``)."""
    if notification.type:
        return notification.type
    if notification.action:
        return notification.action.split(".")[0]
    return None


class PaymentNotificationService:
    """Handlers for each notification topic."""

    def __init__(
        self,
        gateway: MercadoPagoClient,
        cache: NotificationCache,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.gateway = gateway
        self.cache = cache
        self._session_factory = session_factory

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def process_payment(self, notification: WebhookNotification) -> None:
        """Re-fetch the payment and grant or revoke access accordingly.

        The same payment id is notified once per status change (``pending`` then
        ``approved``, later perhaps ``refunded``), so the dedupe key carries the
        re-fetched status.
        """
        resource_id = notification.resource_id
        if not resource_id:
            logger.warning("payment_notification_without_id", notification_id=notification.id)
            return

        payment = await self.gateway.fetch_payment(resource_id)
        logger.info(
            "payment_notification",
            payment_id=payment.transaction_id,
            status=payment.status,
            amount=str(payment.transaction_amount),
            currency=payment.currency_id,
            payer_email=payment.payer.email,
        )

        key = notification_key("payment", resource_id, payment.status)
        if await self.cache.seen(key):
            logger.info("notification_already_processed", key=key)
            return

        if payment.status == APPROVED:
            async with self._sessions()() as db:
                try:
                    await grant_entitlements(db, payment)
                except InvalidPaymentMetadata as exc:
                    logger.error("payment_metadata_invalid", payment_id=payment.transaction_id, error=exc.message)
        elif payment.status in REVERSED_STATUSES:
            await self._revoke(payment)
        else:
            logger.info("payment_not_actionable", payment_id=payment.transaction_id, status=payment.status)

        if payment.status in FINAL_STATUSES:
            await self.cache.mark(key)

    async def process_merchant_order(self, notification: WebhookNotification) -> None:
        logger.info("merchant_order_notification", order_id=notification.resource_id)

    async def process_chargeback(self, notification: WebhookNotification) -> None:
        await self._process_reversal("chargebacks", notification)

    async def process_refund(self, notification: WebhookNotification) -> None:
        await self._process_reversal("refunds", notification)

    async def _process_reversal(self, topic: str, notification: WebhookNotification) -> None:
        resource_id = notification.resource_id
        logger.warning("payment_reversal_notification", topic=topic, resource_id=resource_id)
        if not resource_id:
            return

        key = notification_key(topic, resource_id)
        if await self.cache.seen(key):
            logger.info("notification_already_processed", key=key)
            return

        payment = await self.gateway.fetch_payment(resource_id)
        if payment.status not in REVERSED_STATUSES:
            logger.info("payment_reversal_pending", payment_id=payment.transaction_id, status=payment.status)
            return
        await self._revoke(payment)
        await self.cache.mark(key)

    async def _revoke(self, payment: PaymentRecord) -> None:
        async with self._sessions()() as db:
            count = await deactivate_for_transaction(
                db, payment.transaction_id, REVERSED_STATUSES[payment.status]
            )
        logger.warning("entitlements_revoked", payment_id=payment.transaction_id, status=payment.status, count=count)


Handler = Callable[[WebhookNotification], Awaitable[None]]


class NotificationRouter:
    """Dispatch a notification to the handler for its topic."""

    def __init__(self, service: PaymentNotificationService) -> None:
        self.service = service
        self._handlers: dict[str, Handler] = {
            "payment": service.process_payment,
            "merchant_order": service.process_merchant_order,
            "chargebacks": service.process_chargeback,
            "chargeback": service.process_chargeback,
            "refunds": service.process_refund,
            "refund": service.process_refund,
        }

    async def dispatch(self, notification: WebhookNotification) -> bool:
        """Run the handler for the notification's topic. Returns False for unknown topics."""
        topic = resolve_topic(notification)
        handler = self._handlers.get(topic) if topic else None
        if handler is None:
            logger.info("notification_topic_unhandled", topic=topic)
            return False
        await handler(notification)
        return True


async def process_notification_safely(router: NotificationRouter, notification: WebhookNotification) -> None:
    """Background entry point: errors are logged, never raised."""
    try:
        await router.dispatch(notification)
    except Exception:
        logger.exception(
            "notification_processing_failed",
            notification_id=notification.id,
            topic=resolve_topic(notification),
            resource_id=notification.resource_id,
        )
