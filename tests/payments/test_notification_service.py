"""Topic routing and per-topic handling of webhook notifications."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.database import get_session_factory
from academy.db.models import CategoryPurchase
from academy.exceptions import UpstreamError
from academy.payments import notifications
from academy.payments.granting import grant_entitlements
from academy.payments.idempotency import InMemoryNotificationCache
from academy.payments.notifications import (
    NotificationRouter,
    PaymentNotificationService,
    process_notification_safely,
    resolve_topic,
)
from academy.payments.schemas import PaymentRecord, WebhookNotification
from tests.factories import make_category, make_user


def payment(payment_id: int, status: str, user_id: str = "u", category_ids: list[str] | None = None) -> PaymentRecord:
    return PaymentRecord.model_validate(
        {
            "id": payment_id,
            "status": status,
            "transaction_amount": "100.00",
            "currency_id": "ARS",
            "metadata": {"user_id": user_id, "category_ids": json.dumps(category_ids or ["c"])},
        }
    )


def notification(**fields) -> WebhookNotification:
    return WebhookNotification.model_validate(fields)


async def _purchases() -> list[CategoryPurchase]:
    async with get_session_factory()() as db:
        return list((await db.execute(select(CategoryPurchase))).scalars().all())


@pytest.fixture
def service(database: None, gateway: AsyncMock) -> PaymentNotificationService:
    return PaymentNotificationService(gateway=gateway, cache=InMemoryNotificationCache())


class TestResolveTopic:
    def test_type_wins(self):
        assert resolve_topic(notification(type="payment", action="merchant_order.created")) == "payment"

    def test_action_prefix_fallback(self):
        assert resolve_topic(notification(action="payment.updated")) == "payment"

    def test_nothing_to_go_on(self):
        assert resolve_topic(notification()) is None


class TestPaymentTopic:
    @pytest.mark.asyncio
    async def test_approved_payment_grants(
        self, service: PaymentNotificationService, gateway: AsyncMock, db_session: AsyncSession
    ) -> None:
        user = await make_user(db_session, "buyer@example.com")
        course = await make_category(db_session, "course-a")
        gateway.fetch_payment.return_value = payment(10, "approved", user.id, [course.id])

        await service.process_payment(notification(type="payment", data={"id": 10}))

        gateway.fetch_payment.assert_awaited_once_with("10")
        [purchase] = await _purchases()
        assert purchase.transaction_id == "10"
        assert purchase.user_id == user.id

    @pytest.mark.asyncio
    async def test_pending_payment_grants_nothing(
        self, service: PaymentNotificationService, gateway: AsyncMock
    ) -> None:
        gateway.fetch_payment.return_value = payment(11, "pending")

        await service.process_payment(notification(type="payment", data={"id": "11"}))

        assert await _purchases() == []

    @pytest.mark.asyncio
    async def test_repeat_approved_notification_grants_once(
        self, service: PaymentNotificationService, gateway: AsyncMock, db_session: AsyncSession
    ) -> None:
        user = await make_user(db_session, "buyer@example.com")
        course = await make_category(db_session, "course-a")
        gateway.fetch_payment.return_value = payment(12, "approved", user.id, [course.id])
        note = notification(type="payment", data={"id": "12"})

        with patch.object(notifications, "grant_entitlements", wraps=grant_entitlements) as grant:
            await service.process_payment(note)
            await service.process_payment(note)

        assert grant.await_count == 1
        assert len(await _purchases()) == 1

    @pytest.mark.asyncio
    async def test_pending_then_approved_grants(
        self, service: PaymentNotificationService, gateway: AsyncMock, db_session: AsyncSession
    ) -> None:
        user = await make_user(db_session, "buyer@example.com")
        course = await make_category(db_session, "course-a")
        note = notification(action="payment.updated", data={"id": "9001"})

        gateway.fetch_payment.return_value = payment(9001, "pending", user.id, [course.id])
        await service.process_payment(note)
        assert await _purchases() == []

        gateway.fetch_payment.return_value = payment(9001, "approved", user.id, [course.id])
        await service.process_payment(note)

        assert gateway.fetch_payment.await_count == 2
        [purchase] = await _purchases()
        assert purchase.transaction_id == "9001"
        assert not await service.cache.seen("payment-9001-pending")
        assert await service.cache.seen("payment-9001-approved")

    @pytest.mark.asyncio
    async def test_refund_after_approval_on_payment_topic(
        self, service: PaymentNotificationService, gateway: AsyncMock, db_session: AsyncSession
    ) -> None:
        user = await make_user(db_session, "buyer@example.com")
        course = await make_category(db_session, "course-a")
        note = notification(type="payment", data={"id": "9002"})

        gateway.fetch_payment.return_value = payment(9002, "approved", user.id, [course.id])
        await service.process_payment(note)
        gateway.fetch_payment.return_value = payment(9002, "refunded", user.id, [course.id])
        await service.process_payment(note)

        [purchase] = await _purchases()
        assert not purchase.is_active

    @pytest.mark.asyncio
    async def test_gateway_failure_is_not_cached(
        self, service: PaymentNotificationService, gateway: AsyncMock
    ) -> None:
        gateway.fetch_payment.side_effect = UpstreamError("down", provider="mercadopago")
        note = notification(type="payment", data={"id": "13"})

        with pytest.raises(UpstreamError):
            await service.process_payment(note)
        assert not await service.cache.seen("payment-13")

    @pytest.mark.asyncio
    async def test_bad_metadata_is_logged_not_raised(
        self, service: PaymentNotificationService, gateway: AsyncMock
    ) -> None:
        record = payment(14, "approved")
        record.metadata = {}
        gateway.fetch_payment.return_value = record

        await service.process_payment(notification(type="payment", data={"id": "14"}))

        assert await _purchases() == []

    @pytest.mark.asyncio
    async def test_refunded_payment_revokes(
        self, service: PaymentNotificationService, gateway: AsyncMock, db_session: AsyncSession
    ) -> None:
        user = await make_user(db_session, "buyer@example.com")
        course = await make_category(db_session, "course-a")
        gateway.fetch_payment.return_value = payment(15, "approved", user.id, [course.id])
        await service.process_payment(notification(type="payment", data={"id": "15"}))

        gateway.fetch_payment.return_value = payment(15, "refunded", user.id, [course.id])
        await service.process_refund(notification(type="refund", data={"id": "15"}))

        [purchase] = await _purchases()
        assert not purchase.is_active
        assert purchase.payment_status == "refunded"

    @pytest.mark.asyncio
    async def test_early_chargeback_notice_is_retried(
        self, service: PaymentNotificationService, gateway: AsyncMock, db_session: AsyncSession
    ) -> None:
        user = await make_user(db_session, "buyer@example.com")
        course = await make_category(db_session, "course-a")
        gateway.fetch_payment.return_value = payment(16, "approved", user.id, [course.id])
        await service.process_payment(notification(type="payment", data={"id": "16"}))
        note = notification(type="chargebacks", data={"id": "16"})

        await service.process_chargeback(note)
        assert not await service.cache.seen("chargebacks-16")
        [purchase] = await _purchases()
        assert purchase.is_active

        gateway.fetch_payment.return_value = payment(16, "charged_back", user.id, [course.id])
        await service.process_chargeback(note)

        [purchase] = await _purchases()
        assert not purchase.is_active
        assert purchase.payment_status == "charged_back"
        assert await service.cache.seen("chargebacks-16")


class TestRouter:
    @pytest.mark.asyncio
    async def test_unknown_topic_is_ignored(self, service: PaymentNotificationService, gateway: AsyncMock) -> None:
        router = NotificationRouter(service)

        handled = await router.dispatch(notification(type="unknown_topic", data={"id": "1"}))

        assert handled is False
        gateway.fetch_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_action_routes_to_payment(self, service: PaymentNotificationService, gateway: AsyncMock) -> None:
        gateway.fetch_payment.return_value = payment(20, "in_process")
        router = NotificationRouter(service)

        assert await router.dispatch(notification(action="payment.created", data={"id": "20"}))
        gateway.fetch_payment.assert_awaited_once_with("20")

    @pytest.mark.asyncio
    async def test_merchant_order_only_logged(self, service: PaymentNotificationService, gateway: AsyncMock) -> None:
        router = NotificationRouter(service)

        assert await router.dispatch(notification(type="merchant_order", data={"id": "30"}))
        gateway.fetch_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_safe_wrapper_swallows_errors(self, service: PaymentNotificationService, gateway: AsyncMock) -> None:
        gateway.fetch_payment.side_effect = UpstreamError("down", provider="mercadopago")
        router = NotificationRouter(service)

        await process_notification_safely(router, notification(type="payment", data={"id": "40"}))
