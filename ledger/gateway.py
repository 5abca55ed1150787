import logging
from typing import Optional

import requests

from .errors import GatewayError
from .models import GatewayInitialization, GatewayTransaction, PaymentStatus

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"

# "abandoned" means the checkout page was left unfinished; it can still be paid.
_FAILED_STATUSES = {"failed", "reversed"}


class PaymentGateway:
    def initialize(
        self, email: str, amount: int, reference: str, currency: str, metadata: Optional[dict] = None,
    ) -> GatewayInitialization:
        raise NotImplementedError

    def verify(self, reference: str) -> GatewayTransaction:
        raise NotImplementedError


class PaystackGateway(PaymentGateway):
    """Paystack transaction API.

    Each call carries a timeout and is retried at most ``retries`` times on
    connection errors and timeouts. Any other failure, including a body with
    ``status: false``, surfaces as ``GatewayError``.
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = PAYSTACK_BASE_URL,
        timeout: float = 10.0,
        retries: int = 1,
        callback_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(0, retries)
        self.callback_url = callback_url
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def initialize(
        self, email: str, amount: int, reference: str, currency: str, metadata: Optional[dict] = None,
    ) -> GatewayInitialization:
        payload = {
            "email": email,
            "amount": amount,
            "currency": currency,
            "reference": reference,
            "metadata": metadata or {},
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url

        data = self._request("POST", "/transaction/initialize", json=payload)
        try:
            return GatewayInitialization(
                reference=data.get("reference") or reference,
                authorization_url=data["authorization_url"],
                access_code=data.get("access_code"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"Malformed Paystack initialize response: {e}") from e

    def verify(self, reference: str) -> GatewayTransaction:
        data = self._request("GET", f"/transaction/verify/{reference}")
        try:
            remote_status = str(data.get("status", "")).lower()
            metadata = data.get("metadata")
            return GatewayTransaction(
                reference=data.get("reference") or reference,
                status=self._map_status(remote_status),
                amount=int(data["amount"]),
                currency=data.get("currency"),
                metadata=metadata if isinstance(metadata, dict) else {},
                gateway_response=data.get("gateway_response"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"Malformed Paystack verify response: {e}") from e

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.is_configured:
            raise GatewayError("Paystack secret key is not configured")

        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        for attempt in range(self.retries + 1):
            try:
                response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
                break
            except (requests.ConnectionError, requests.Timeout) as e:
                logger.warning("Paystack %s %s failed (attempt %d): %s", method, path, attempt + 1, e)
                if attempt == self.retries:
                    raise GatewayError(f"Paystack unreachable: {e}") from e
            except requests.RequestException as e:
                raise GatewayError(f"Paystack request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError("Paystack returned a non-JSON response", response.status_code) from e

        if not isinstance(body, dict):
            raise GatewayError("Paystack returned an unexpected body", response.status_code)
        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message", "unknown error")
            raise GatewayError(f"Paystack error: {message}", response.status_code)

        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayError("Paystack response has no data", response.status_code)
        return data

    @staticmethod
    def _map_status(remote_status: str) -> PaymentStatus:
        if remote_status == "success":
            return PaymentStatus.SUCCESS
        if remote_status in _FAILED_STATUSES:
            return PaymentStatus.FAILED
        return PaymentStatus.PENDING
