"""Turn an approved payment into entitlements.

One payment may cover several courses. Either every missing entitlement for
the payment is written, or none is. Re-running the same payment is a no-op:
the presence of any row with its transaction id proves it was processed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.cart.service import clear_cart
from academy.db.models import Category, CategoryPurchase, PaymentStatus, User
from academy.entitlements.service import (
    default_expiry,
    get_entitlement,
    transaction_already_processed,
    utcnow,
)
from academy.exceptions import NotFoundError, ValidationError
from academy.payments.schemas import PaymentRecord

logger = structlog.get_logger()

_CENT = Decimal("0.01")


class InvalidPaymentMetadata(ValidationError):
    """The payment cannot be attributed to a user or to courses. Retrying will not help."""


@dataclass(frozen=True)
class PurchaseMetadata:
    user_id: str
    category_ids: list[str]


def extract_purchase_metadata(payment: PaymentRecord) -> PurchaseMetadata:
    """
    Read the buyer and the purchased course ids off a payment.

    ``metadata.user_id`` wins; otherwise the user id is the part of
    ``external_reference`` before the first underscore. ``metadata.category_ids``
    is a JSON-encoded array (a real list is accepted too).

    Raises:
        InvalidPaymentMetadata: If either piece is missing or unparseable.
    """
    metadata = payment.metadata or {}

    user_id = metadata.get("user_id")
    if not user_id and payment.external_reference:
        user_id = payment.external_reference.split("_")[0]
    if not user_id:
        raise InvalidPaymentMetadata(f"Payment {payment.id} has no user_id in metadata or external_reference")

    raw_ids: Any = metadata.get("category_ids")
    if not raw_ids:
        raise InvalidPaymentMetadata(f"Payment {payment.id} has no category_ids in metadata")
    if isinstance(raw_ids, str):
        try:
            raw_ids = json.loads(raw_ids)
        except json.JSONDecodeError as exc:
            raise InvalidPaymentMetadata(f"Payment {payment.id} has unparseable category_ids: {raw_ids!r}") from exc
    if not isinstance(raw_ids, list) or not raw_ids:
        raise InvalidPaymentMetadata(f"Payment {payment.id} has invalid or empty category_ids")

    category_ids = list(dict.fromkeys(str(cid) for cid in raw_ids))
    return PurchaseMetadata(user_id=str(user_id), category_ids=category_ids)


def split_amount(total: Decimal, count: int) -> Decimal:
    """Equal share of ``total`` per course, rounded to cents."""
    return (Decimal(total) / count).quantize(_CENT, rounding=ROUND_HALF_UP)


async def _insert_purchase(db: AsyncSession, **fields: Any) -> CategoryPurchase:  # noqa: ANN401
    purchase = CategoryPurchase(**fields)
    db.add(purchase)
    await db.flush()
    return purchase


async def grant_entitlements(db: AsyncSession, payment: PaymentRecord) -> list[CategoryPurchase]:
    """
    Create one entitlement per purchased course for an approved payment.

    Args:
        db: A session with no pending work; this function commits or rolls back.
        payment: Re-fetched payment with status ``approved``.

    Returns:
        The entitlement rows covering the payment (new and pre-existing), or an
        empty list when nothing was done (already processed, unknown user, no
        valid course).

    Raises:
        InvalidPaymentMetadata: Missing user or course metadata.
        Exception: Any insert failure, after rolling back the whole batch.
    """
    meta = extract_purchase_metadata(payment)
    transaction_id = payment.transaction_id
    log = logger.bind(payment_id=transaction_id, user_id=meta.user_id)

    if await transaction_already_processed(db, transaction_id):
        log.info("payment_already_processed")
        await db.rollback()
        return []

    # Row lock on the buyer serialises concurrent deliveries of the same payment.
    result = await db.execute(select(User).where(User.id == meta.user_id).with_for_update())
    user = result.scalar_one_or_none()
    if user is None:
        log.error("payment_user_not_found")
        await db.rollback()
        return []

    result = await db.execute(
        select(Category).where(Category.id.in_(meta.category_ids), Category.deleted_at.is_(None))
    )
    found = {category.id: category for category in result.scalars().all()}
    missing = [cid for cid in meta.category_ids if cid not in found]
    if missing:
        log.warning("payment_categories_missing", missing=missing)
    if not found:
        log.error("payment_has_no_valid_categories", requested=meta.category_ids)
        await db.rollback()
        return []
    categories = [found[cid] for cid in meta.category_ids if cid in found]

    # Re-check under the lock: a concurrent delivery may have committed meanwhile.
    if await transaction_already_processed(db, transaction_id):
        log.info("payment_already_processed", stage="locked")
        await db.rollback()
        return []

    individual_amount = split_amount(payment.transaction_amount, len(categories))
    now = utcnow()
    expires_at = default_expiry(now)
    purchases: list[CategoryPurchase] = []

    user_id = user.id
    try:
        for category in categories:
            existing = await get_entitlement(db, user_id, category.id)
            if existing is not None:
                log.info("entitlement_already_held", category=category.name)
                purchases.append(existing)
                continue
            try:
                purchase = await _insert_purchase(
                    db,
                    user_id=user_id,
                    category_id=category.id,
                    amount=individual_amount,
                    currency=payment.currency_id,
                    payment_method=payment.payment_method_id,
                    transaction_id=transaction_id,
                    payment_status=PaymentStatus.COMPLETED.value,
                    is_active=True,
                    expires_at=expires_at,
                )
            except Exception:
                log.error("entitlement_insert_failed", category=category.name, category_id=category.id)
                raise
            log.info("entitlement_granted", category=category.name, amount=str(individual_amount))
            purchases.append(purchase)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if await transaction_already_processed(db, transaction_id):
            # Lost the race to a concurrent delivery of the same payment.
            log.info("payment_already_processed", stage="constraint")
            await db.rollback()
            return []
        raise
    except Exception:
        await db.rollback()
        raise

    log.info("payment_processed", entitlements=len(purchases))

    try:
        await clear_cart(db, meta.user_id)
        log.info("cart_cleared")
    except NotFoundError:
        log.info("cart_clear_skipped", reason="no cart")
    except Exception as exc:  # noqa: BLE001
        await db.rollback()
        log.warning("cart_clear_failed", error=str(exc))

    return purchases
