"""Mercado Pago webhook endpoints.

The provider gets its answer before any processing happens: 401 on a bad
signature, 400 on a body that is not JSON, otherwise 200. Processing continues in
a background task.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pydantic
import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse
from starlette.datastructures import QueryParams

from academy.config import get_settings
from academy.payments.gateway import MercadoPagoClient
from academy.payments.idempotency import build_notification_cache
from academy.payments.notifications import (
    NotificationRouter,
    PaymentNotificationService,
    process_notification_safely,
)
from academy.payments.schemas import NotificationData, WebhookHealthResponse, WebhookNotification
from academy.payments.signature import verify_signature
from academy.redis_client import get_redis

logger = structlog.get_logger()

router = APIRouter(tags=["Webhooks"])


def get_notification_router(request: Request) -> NotificationRouter:
    """Process-wide router, built on first use so the dedupe cache persists across requests."""
    notification_router: NotificationRouter | None = getattr(request.app.state, "notification_router", None)
    if notification_router is None:
        settings = get_settings()
        redis = get_redis() if settings.notification_cache_backend.lower() == "redis" else None
        service = PaymentNotificationService(
            gateway=MercadoPagoClient.from_settings(settings),
            cache=build_notification_cache(settings, redis),
        )
        notification_router = NotificationRouter(service)
        request.app.state.notification_router = notification_router
    return notification_router


def _notification_from_query(params: QueryParams) -> WebhookNotification | None:
    """Some integrations send ``id``/``data.id``/``topic``/``type``/``action`` as query parameters."""
    if not any(params.get(name) for name in ("id", "data.id", "topic", "type")):
        return None
    return WebhookNotification(
        id=params.get("id"),
        type=params.get("type") or params.get("topic"),
        action=params.get("action"),
        live_mode=False,
        date_created=datetime.now(timezone.utc).isoformat(),
        data=NotificationData(id=params.get("data.id") or params.get("id")),
    )


async def _handle_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    notification_router: NotificationRouter,
    *,
    accept_query_params: bool,
) -> PlainTextResponse:
    settings = get_settings()
    raw_body = await request.body()
    signature = request.headers.get("x-signature") or request.headers.get("x-hook-signature") or ""

    logger.info(
        "webhook_received",
        path=request.url.path,
        provider_request_id=request.headers.get("x-request-id"),
        has_signature=bool(signature),
        body_bytes=len(raw_body),
    )

    allow_unsigned = settings.mp_allow_unsigned_webhooks or not settings.is_production
    if not verify_signature(raw_body, signature, settings.mp_webhook_secret, allow_unsigned=allow_unsigned):
        logger.error("webhook_signature_invalid")
        return PlainTextResponse("Invalid signature", status_code=401)

    notification = _notification_from_query(request.query_params) if accept_query_params else None
    if notification is None:
        try:
            payload = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("webhook_payload_invalid", body=raw_body[:200].decode("utf-8", "replace"))
            return PlainTextResponse("Invalid JSON", status_code=400)
        try:
            notification = WebhookNotification.model_validate(payload)
        except pydantic.ValidationError as exc:
            logger.warning("webhook_payload_unrecognized", errors=exc.error_count(), body=str(payload)[:200])
            return PlainTextResponse("OK", status_code=200)

    logger.info(
        "webhook_accepted",
        notification_id=notification.id,
        type=notification.type,
        action=notification.action,
        resource_id=notification.resource_id,
    )
    background_tasks.add_task(process_notification_safely, notification_router, notification)
    return PlainTextResponse("OK", status_code=200)


@router.post("/webhooks/mercadopago", include_in_schema=False)
async def mercadopago_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    notification_router: NotificationRouter = Depends(get_notification_router),
) -> PlainTextResponse:
    """Payment, merchant order, chargeback and refund notifications."""
    return await _handle_webhook(request, background_tasks, notification_router, accept_query_params=False)


@router.post("/webhook", include_in_schema=False)
async def webhook_alias(
    request: Request,
    background_tasks: BackgroundTasks,
    notification_router: NotificationRouter = Depends(get_notification_router),
) -> PlainTextResponse:
    """Alias used by the storefront integration; also accepts query-parameter deliveries."""
    return await _handle_webhook(request, background_tasks, notification_router, accept_query_params=True)


@router.post("/webhooks/mercadopago/health", include_in_schema=False)
async def webhook_health() -> WebhookHealthResponse:
    return WebhookHealthResponse(status="ok", timestamp=datetime.now(timezone.utc).isoformat())
