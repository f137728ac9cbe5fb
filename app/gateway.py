import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.codec import PayloadCodec
from app.config import Settings
from app.errors import GatewayError, ValidationError

logger = logging.getLogger(__name__)

SUCCESS_STATUS = "SUCCESS"


class GatewayResponse(BaseModel):
    success: bool
    reference_number: Optional[str] = None
    poll_url: Optional[str] = None
    redirect_url: Optional[str] = None
    status: Optional[str] = None
    paid: bool = False
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_transaction(cls, data: Dict[str, Any]) -> "GatewayResponse":
        status = data.get("transactionStatus")
        return cls(
            success=True,
            reference_number=data.get("referenceNumber"),
            poll_url=data.get("pollUrl"),
            redirect_url=data.get("redirectUrl"),
            status=status,
            paid=status == SUCCESS_STATUS,
            message=data.get("transactionStatusDescription"),
            data=data,
        )

    @classmethod
    def failure(cls, message: str, data: Optional[Dict[str, Any]] = None) -> "GatewayResponse":
        return cls(success=False, message=message, data=data or {})

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": self.success,
            "referenceNumber": self.reference_number,
            "pollUrl": self.poll_url,
            "redirectUrl": self.redirect_url,
            "transactionStatus": self.status,
            "paid": self.paid,
            "message": self.message,
        }
        return {key: value for key, value in body.items() if value is not None}


class PesepayClient:
    """
    Thin client for the Pesepay payments engine.

    Initiation calls are sent once; read-only calls retry transport errors.
    A reply the gateway marks as an error is returned as an unsuccessful
    GatewayResponse, while a transport failure raises GatewayError.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None,
                 retry_wait=None):
        self.settings = settings
        self.codec = PayloadCodec(settings.encryption_key)
        self.http = http_client or httpx.AsyncClient(timeout=settings.gateway_timeout)
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)

    def _url(self, path: str) -> str:
        return f"{self.settings.api_url}{path}"

    def _headers(self) -> Dict[str, str]:
        return {
            "authorization": self.settings.integration_key,
            "content-type": "application/json",
        }

    async def aclose(self):
        await self.http.aclose()

    async def _send(self, method: str, url: str, retry: bool, **kwargs) -> httpx.Response:
        attempts = 3 if retry else 1
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=self.retry_wait,
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    return await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.exception("Gateway request %s %s failed", method, url)
            raise GatewayError(f"Gateway request failed: {e}")

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"API call failed with status: {response.status_code}"

    async def _encrypted_call(self, method: str, url: str, body: Optional[Dict[str, Any]] = None,
                              params: Optional[Dict[str, Any]] = None,
                              retry: bool = False) -> GatewayResponse:
        kwargs: Dict[str, Any] = {"headers": self._headers()}
        if body is not None:
            kwargs["json"] = {"payload": self.codec.encrypt(body)}
        if params:
            kwargs["params"] = params

        response = await self._send(method, url, retry, **kwargs)
        if not response.is_success:
            message = self._error_message(response)
            logger.warning("Gateway rejected %s %s: %s", method, url, message)
            return GatewayResponse.failure(message)

        try:
            payload = response.json()["payload"]
            data = self.codec.decrypt(payload)
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayError(f"Unreadable gateway response: {e}")
        return GatewayResponse.from_transaction(data)

    async def _plain_get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._send("GET", self._url(path), True, params=params,
                                    headers={"content-type": "application/json"})
        if not response.is_success:
            raise GatewayError(f"API call failed with status: {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(f"Unreadable gateway response: {e}")

    def _transaction_body(self, amount: float, currency_code: str, reason: str) -> Dict[str, Any]:
        return {
            "amountDetails": {"amount": amount, "currencyCode": currency_code},
            "reasonForPayment": reason,
            "resultUrl": self.settings.result_url,
            "returnUrl": self.settings.return_url,
        }

    async def create_and_initiate(self, amount: float, currency_code: str, reason: str) -> GatewayResponse:
        body = self._transaction_body(amount, currency_code, reason)
        return await self._encrypted_call("POST", self._url("/v1/payments/initiate"), body=body)

    async def create_and_initiate_seamless(self, currency_code: str, payment_method_code: str,
                                           customer_email: Optional[str], customer_phone: Optional[str],
                                           customer_name: Optional[str], reason: str, amount: float,
                                           required_fields: Optional[Dict[str, Any]] = None) -> GatewayResponse:
        body = self._transaction_body(amount, currency_code, reason)
        body.update({
            "currencyCode": currency_code,
            "paymentMethodCode": payment_method_code,
            "customer": {
                "email": customer_email,
                "phoneNumber": customer_phone,
                "name": customer_name,
            },
            "paymentMethodRequiredFields": required_fields or {},
        })
        return await self._encrypted_call("POST", self._url("/v2/payments/make-payment"), body=body)

    async def check_status(self, reference_number: str) -> GatewayResponse:
        return await self._encrypted_call(
            "GET", self._url("/v1/payments/check-payment"),
            params={"referenceNumber": reference_number}, retry=True,
        )

    def _check_gateway_url(self, url: str):
        # The authorization header may only go to the configured gateway.
        try:
            target = httpx.URL(url)
        except httpx.InvalidURL:
            raise ValidationError(f"Invalid pollUrl: {url}")
        gateway = httpx.URL(self.settings.api_url)
        if (target.scheme, target.host, target.port) != (gateway.scheme, gateway.host, gateway.port):
            raise ValidationError("pollUrl must point at the payment gateway")

    async def poll_status(self, poll_url: str) -> GatewayResponse:
        self._check_gateway_url(poll_url)
        return await self._encrypted_call("GET", poll_url, retry=True)

    async def list_active_currencies(self) -> Any:
        return await self._plain_get("/v1/currencies/active")

    async def list_payment_methods(self, currency_code: str) -> Any:
        return await self._plain_get("/v1/payment-methods/for-currency",
                                     params={"currencyCode": currency_code})
