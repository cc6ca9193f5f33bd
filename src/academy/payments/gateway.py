"""Mercado Pago API client.

Webhooks are only pointers; payment state is always re-fetched from here.
"""

from __future__ import annotations

import httpx
import pydantic
import structlog

from academy.config import Settings, get_settings
from academy.exceptions import UpstreamError
from academy.payments.schemas import PaymentRecord

logger = structlog.get_logger()

PROVIDER = "mercadopago"


class MercadoPagoClient:
    """Authenticated read access to the payments API."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.mercadopago.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not access_token:
            logger.warning("mercadopago_access_token_missing")
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> MercadoPagoClient:
        settings = settings or get_settings()
        return cls(
            access_token=settings.mp_access_token,
            base_url=settings.mp_base_url,
            timeout=settings.mp_request_timeout_seconds,
        )

    async def fetch_payment(self, payment_id: str) -> PaymentRecord:
        """
        Fetch a payment by id.

        Raises:
            UpstreamError: On network failure, non-2xx response, or a body that
                does not look like a payment.
        """
        url = f"{self.base_url}/v1/payments/{payment_id}"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.get(url, headers={"Authorization": f"Bearer {self.access_token}"})
                response.raise_for_status()
                payment = PaymentRecord.model_validate(response.json())
        except httpx.HTTPStatusError as exc:
            logger.error(
                "payment_fetch_failed",
                payment_id=payment_id,
                status=exc.response.status_code,
                body=exc.response.text[:500],
            )
            raise UpstreamError(
                f"Mercado Pago returned {exc.response.status_code} for payment {payment_id}",
                provider=PROVIDER,
                upstream_status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("payment_fetch_failed", payment_id=payment_id, error=str(exc))
            raise UpstreamError(f"Mercado Pago unreachable: {exc}", provider=PROVIDER) from exc
        except (ValueError, pydantic.ValidationError) as exc:
            logger.error("payment_fetch_invalid_body", payment_id=payment_id, error=str(exc))
            raise UpstreamError(f"Unexpected payment body for {payment_id}", provider=PROVIDER) from exc

        logger.info("payment_fetched", payment_id=payment_id, status=payment.status)
        return payment
