from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, TypedDict
import hashlib
import hmac
import json

import httpx

from .errors import (
    ConfigurationError, GatewayError, InvalidInput, NetworkError,
    ProtocolError, SignatureMismatch,
)
from .infra.timings import timeit
from .logging_config import get_logger

log = get_logger(__name__)

LIVE_BASE = "https://api.nowpayments.io/v1"
SANDBOX_BASE = "https://api-sandbox.nowpayments.io/v1"
SIG_HEADER = "x-nowpayments-sig"
# the shop prices cards in Saudi riyal
FIAT = "sar"


# ----------------------------
# IPN signature
# ----------------------------
def sorted_payload(payload: Mapping[str, Any]) -> str:
    # must match the sender byte for byte: keys sorted at every level
    # (the IPN `fee` object too), no whitespace
    return json.dumps(payload, sort_keys=True, separators=(",", ":"),
                      ensure_ascii=False)


def sign_ipn(payload: Mapping[str, Any], secret: str) -> str:
    return hmac.new(
        secret.encode(), sorted_payload(payload).encode(), hashlib.sha512
    ).hexdigest()


def verify_ipn_signature(
    payload: Mapping[str, Any], signature: Optional[str], secret: Optional[str]
) -> bool:
    """HMAC-SHA512 over the sorted-key JSON, hex encoded.

    With no secret configured every payload is accepted. That mode is
    meant for sandbox setups; the server warns about it at startup.
    """
    if not secret:
        return True
    if not signature:
        return False
    expected = sign_ipn(payload, secret)
    return hmac.compare_digest(expected.encode(), signature.encode())


# ----------------------------
# Payment Gateway Interface
# ----------------------------
class PaymentResult(TypedDict, total=False):
    payment_id: Any
    payment_status: str
    pay_address: str
    pay_amount: float
    pay_currency: str
    actually_paid: float
    expiration_estimate_date: str


class InvoiceResult(TypedDict, total=False):
    id: Any
    invoice_url: str


class PaymentGateway(ABC):
    ipn_secret: Optional[str] = None

    @abstractmethod
    async def call(
        self, endpoint: str, method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any: ...

    async def status(self) -> Any:
        return await self.call("/status")

    async def currencies(self) -> Any:
        return await self.call("/currencies")

    async def min_amount(self, currency: str) -> Any:
        return await self.call("/min-amount", params={
            "currency_from": currency, "currency_to": FIAT,
        })

    async def estimate(self, amount: Any, currency: str) -> Any:
        return await self.call("/estimate", params={
            "amount": amount, "currency_from": FIAT, "currency_to": currency,
        })

    async def create_payment(self, body: Dict[str, Any]) -> PaymentResult:
        return await self.call("/payment", "POST", body)

    async def create_invoice(self, body: Dict[str, Any]) -> InvoiceResult:
        return await self.call("/invoice", "POST", body)

    async def payment_status(self, payment_id: str) -> PaymentResult:
        return await self.call(f"/payment/{payment_id}")

    def verify_ipn(self, raw: bytes, headers: Mapping[str, str]) -> dict:
        try:
            payload = json.loads(raw.decode() or "null")
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise InvalidInput("Invalid JSON")
        if not isinstance(payload, dict):
            raise InvalidInput("IPN payload must be a JSON object")
        if not verify_ipn_signature(payload, headers.get(SIG_HEADER),
                                    self.ipn_secret):
            log.error("ipn_invalid_signature",
                      order_id=payload.get("order_id"))
            raise SignatureMismatch("Invalid signature")
        return payload


# ----------------------------
# NOWPayments implementation
# ----------------------------
class NowPayments(PaymentGateway):
    """Thin client for the NOWPayments REST API.

    One attempt per call, bounded by the client timeout. Failures come out
    as one of four errors so callers can tell them apart:
    ConfigurationError (no API key), NetworkError (transport), ProtocolError
    (body is not JSON) and GatewayError (non-2xx answer).
    """

    def __init__(
        self, api_key: Optional[str], *,
        ipn_secret: Optional[str] = None,
        production: bool = False,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.ipn_secret = ipn_secret
        self.base_url = LIVE_BASE if production else SANDBOX_BASE
        self.timeout = timeout
        self._own_http = http is None
        self.http = http or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._own_http:
            await self.http.aclose()

    async def call(
        self, endpoint: str, method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not self.api_key:
            raise ConfigurationError(
                "NOWPAYMENTS_API_KEY is not configured on the server."
            )

        url = f"{self.base_url}{endpoint}"
        kind = endpoint.strip("/").split("/")[0] or "root"
        log.debug("gateway_request", method=method, url=url)

        try:
            async with timeit(f"gateway.{kind}"):
                resp = await self.http.request(
                    method, url,
                    headers={"x-api-key": self.api_key},
                    json=body,
                    params=params,
                    timeout=self.timeout,
                )
        except httpx.TransportError as e:
            log.error("gateway_network_error", url=url, error=str(e))
            raise NetworkError(
                f"Network error calling NOWPayments: {e}"
            ) from e

        try:
            data = resp.json()
        except ValueError:
            log.error("gateway_invalid_json", url=url,
                      status=resp.status_code, body=resp.text[:200])
            raise ProtocolError(
                f"NOWPayments returned invalid JSON "
                f"(status {resp.status_code})"
            )

        if not resp.is_success:
            message = data.get("message") if isinstance(data, dict) else None
            log.error("gateway_api_error", url=url,
                      status=resp.status_code, message=message)
            raise GatewayError(
                resp.status_code,
                message or f"NOWPayments API error: {resp.status_code}",
            )
        return data
