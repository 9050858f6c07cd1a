"""
Cryptomus Payment Gateway Implementation.

Implements the PaymentGateway protocol over the Cryptomus merchant API.
"""

from typing import Any

import httpx
from structlog import get_logger

from studycards.exceptions import GatewayConfigurationError, PaymentGatewayError
from studycards.services.payment_gateway import (
    GatewayPaymentInfo,
    GatewayPaymentRequest,
    GatewayPaymentSession,
)
from studycards.services.signature import canonical_bytes, sign_payload

logger = get_logger(__name__)


class CryptomusProvider:
    """
    Cryptomus gateway client.

    Every request body is signed with the same scheme the gateway uses for
    webhooks and sent byte-for-byte as signed.
    """

    def __init__(
        self,
        merchant_id: str,
        api_key: str,
        api_url: str = "https://api.cryptomus.com/v1",
        timeout_seconds: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize Cryptomus provider.

        Args:
            merchant_id: Merchant uuid from the Cryptomus dashboard
            api_key: Payment API key (also the webhook signing key)
            api_url: API base URL
            timeout_seconds: Per-request timeout
            http_client: Optional shared client (tests inject a mock transport)
        """
        if not merchant_id or not api_key:
            raise GatewayConfigurationError()
        self.merchant_id = merchant_id
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def create_payment(self, request: GatewayPaymentRequest) -> GatewayPaymentSession:
        """
        Create a hosted Cryptomus invoice.

        Raises:
            PaymentGatewayError: If the gateway call fails or returns state != 0
        """
        body = {
            "amount": format(request.amount, "f"),
            "currency": request.currency,
            "order_id": request.order_id,
            "url_return": request.url_return,
            "url_callback": request.url_callback,
            "is_payment_multiple": request.is_payment_multiple,
            "lifetime": request.lifetime_seconds,
        }

        logger.info(
            "creating_cryptomus_payment",
            order_id=request.order_id,
            amount=body["amount"],
            currency=request.currency,
        )

        result = await self._post("/payment", body)

        payment_id = result.get("uuid")
        payment_url = result.get("url")
        if not payment_id or not payment_url:
            logger.error("cryptomus_payment_incomplete_response", order_id=request.order_id)
            raise PaymentGatewayError("Gateway response missing payment url or uuid")

        logger.info(
            "cryptomus_payment_created",
            order_id=request.order_id,
            payment_id=payment_id,
            status=result.get("payment_status"),
        )

        return GatewayPaymentSession(
            payment_id=str(payment_id),
            payment_url=str(payment_url),
            order_id=str(result.get("order_id") or request.order_id),
            status=result.get("payment_status"),
            raw=result,
        )

    async def get_payment_info(self, payment_id: str) -> GatewayPaymentInfo:
        """
        Fetch payment status from Cryptomus.

        Raises:
            PaymentGatewayError: If the gateway call fails or returns state != 0
        """
        logger.info("getting_cryptomus_payment_info", payment_id=payment_id)

        result = await self._post("/payment/info", {"uuid": payment_id})

        status = result.get("payment_status") or result.get("status")
        if not status:
            raise PaymentGatewayError("Gateway response missing payment status")

        return GatewayPaymentInfo(
            payment_id=str(result.get("uuid") or payment_id),
            order_id=result.get("order_id"),
            status=str(status),
            is_final=bool(result.get("is_final", False)),
            raw=result,
        )

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """Send a signed request and unwrap the ``result`` object."""
        content = canonical_bytes(body)
        headers = {
            "merchant": self.merchant_id,
            "sign": sign_payload(body, self.api_key),
            "Content-Type": "application/json",
        }

        try:
            response = await self.http_client.post(
                f"{self.api_url}{path}", content=content, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.error(
                "cryptomus_request_failed",
                path=path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentGatewayError(f"Gateway request failed: {type(exc).__name__}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error(
                "cryptomus_invalid_response",
                path=path,
                status_code=response.status_code,
            )
            raise PaymentGatewayError(
                "Gateway returned a non-JSON response", status_code=response.status_code
            ) from exc

        if response.is_error or not isinstance(payload, dict) or payload.get("state") != 0:
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.error(
                "cryptomus_request_rejected",
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise PaymentGatewayError(
                message or "Gateway rejected the request", status_code=response.status_code
            )

        result = payload.get("result")
        if not isinstance(result, dict):
            raise PaymentGatewayError("Gateway response missing result")
        return result

    async def aclose(self) -> None:
        """Close the owned HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
