"""
Client side of the payment status check.

After the customer returns from the gateway the client keeps asking
`GET /payment/status` until the payment settles. Only a definitive "failed"
from the server deletes the order; request errors are retried with backoff
and, if they persist, the poller gives up without touching the order.
"""
import logging
import time
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)

POLL_INTERVAL = 3.0
MAX_BACKOFF = 30.0

PAID = "paid"
FAILED = "failed"
UNKNOWN = "unknown"


class TransientError(Exception):
    pass


class PaymentStatusPoller:
    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 interval: float = POLL_INTERVAL, max_errors: int = 5, max_attempts: Optional[int] = None,
                 timeout: float = 10, sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.interval = interval
        self.max_errors = max_errors
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.sleep = sleep

    def fetch_status(self, order_id: str) -> str:
        try:
            resp = self.session.get(
                f"{self.base_url}/payment/status",
                params={"order_id": order_id},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransientError(str(exc))
        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransientError(f"status endpoint answered {resp.status_code}")
        resp.raise_for_status()
        return resp.json()["payment_status"]

    def delete_order(self, order_id: str):
        resp = self.session.delete(f"{self.base_url}/order/{order_id}", timeout=self.timeout)
        if resp.status_code not in (200, 404):
            logger.warning("could not delete failed order %s: %s", order_id, resp.status_code)

    def poll(self, order_id: str) -> str:
        """Poll until the payment settles. Returns "paid", "failed" or "unknown"."""
        attempts = 0
        errors = 0
        while self.max_attempts is None or attempts < self.max_attempts:
            attempts += 1
            try:
                status = self.fetch_status(order_id)
            except TransientError as exc:
                errors += 1
                if errors >= self.max_errors:
                    logger.warning("giving up on order %s after %d errors: %s", order_id, errors, exc)
                    return UNKNOWN
                self.sleep(min(self.interval * 2 ** errors, MAX_BACKOFF))
                continue
            errors = 0
            if status == PAID:
                return PAID
            if status == FAILED:
                self.delete_order(order_id)
                return FAILED
            self.sleep(self.interval)
        return UNKNOWN
