"""
Payment gateway client (PhonePe standard checkout, v2 REST API).

Only two calls are needed: start a checkout for an order and read back the
state of that checkout. Every transport or gateway failure surfaces as
`UpstreamError` so callers never mistake an outage for a declined payment.
"""
import hashlib
import hmac
import logging
import time
from typing import NamedTuple, Optional

import requests

import config
from errors import UpstreamError

logger = logging.getLogger(__name__)

ENVIRONMENTS = {
    "SANDBOX": {
        "auth": "https://api-preprod.phonepe.com/apis/pg-sandbox",
        "pg": "https://api-preprod.phonepe.com/apis/pg-sandbox",
    },
    "PRODUCTION": {
        "auth": "https://api.phonepe.com/apis/identity-manager",
        "pg": "https://api.phonepe.com/apis/pg",
    },
}

STATE_TO_PAYMENT_STATUS = {
    "COMPLETED": "paid",
    "PENDING": "pending",
}


def map_gateway_state(state: Optional[str]) -> str:
    return STATE_TO_PAYMENT_STATUS.get((state or "").upper(), "failed")


def to_paise(amount: float) -> int:
    return int(round(float(amount) * 100))


class GatewayStatus(NamedTuple):
    state: str
    transaction_id: Optional[str] = None


class PaymentGateway:
    def __init__(self, client_id: str, client_secret: str, client_version: int = 1,
                 env: str = "SANDBOX", timeout: float = 10, session: Optional[requests.Session] = None):
        if env not in ENVIRONMENTS:
            raise ValueError(f"Unknown payment environment {env!r}")
        self.client_id = client_id
        self.client_secret = client_secret
        self.client_version = client_version
        self.urls = ENVIRONMENTS[env]
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token = None
        self._token_expires_at = 0

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("payment gateway unreachable: %s", exc)
            raise UpstreamError("Payment gateway unreachable")
        if resp.status_code >= 400:
            logger.error("payment gateway %s %s failed: %s %s", method, url, resp.status_code, resp.text[:200])
            raise UpstreamError(f"Payment gateway error ({resp.status_code})")
        try:
            return resp.json()
        except ValueError:
            raise UpstreamError("Payment gateway returned an invalid response")

    def access_token(self) -> str:
        # refresh a minute before expiry
        if self._token and time.time() < self._token_expires_at - 60:
            return self._token
        data = self._request(
            "POST",
            f"{self.urls['auth']}/v1/oauth/token",
            data={
                "client_id": self.client_id,
                "client_version": self.client_version,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            },
        )
        self._token = data.get("access_token")
        self._token_expires_at = float(data.get("expires_at") or 0)
        if not self._token:
            raise UpstreamError("Payment gateway did not issue a token")
        return self._token

    def _headers(self) -> dict:
        return {"Authorization": f"O-Bearer {self.access_token()}", "Content-Type": "application/json"}

    def pay(self, merchant_order_id: str, amount: float, redirect_url: str) -> str:
        data = self._request(
            "POST",
            f"{self.urls['pg']}/checkout/v2/pay",
            headers=self._headers(),
            json={
                "merchantOrderId": merchant_order_id,
                "amount": to_paise(amount),
                "paymentFlow": {
                    "type": "PG_CHECKOUT",
                    "merchantUrls": {"redirectUrl": redirect_url},
                },
            },
        )
        if not data.get("redirectUrl"):
            raise UpstreamError("Payment gateway did not return a redirect URL")
        return data["redirectUrl"]

    def order_status(self, merchant_order_id: str) -> GatewayStatus:
        data = self._request(
            "GET",
            f"{self.urls['pg']}/checkout/v2/order/{merchant_order_id}/status",
            headers=self._headers(),
        )
        details = data.get("paymentDetails") or [{}]
        return GatewayStatus(state=data.get("state", ""), transaction_id=details[-1].get("transactionId"))


def verify_webhook(authorization: Optional[str]) -> bool:
    """The gateway signs callbacks with sha256("<username>:<password>")."""
    if not authorization or not config.PAYMENT_WEBHOOK_USERNAME:
        return False
    expected = hashlib.sha256(
        f"{config.PAYMENT_WEBHOOK_USERNAME}:{config.PAYMENT_WEBHOOK_PASSWORD}".encode()
    ).hexdigest()
    return hmac.compare_digest(expected, authorization.strip().lower())


_gateway = None


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway(
            config.PAYMENT_CLIENT_ID,
            config.PAYMENT_CLIENT_SECRET,
            config.PAYMENT_CLIENT_VERSION,
            env=config.PAYMENT_ENV,
            timeout=config.PAYMENT_TIMEOUT,
        )
    return _gateway
