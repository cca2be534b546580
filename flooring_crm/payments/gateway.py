"""
Square card-payment gateway

Client for Square's Payments API used to charge client cards for invoices.
Handles authentication, rate limiting, retries and error mapping.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import PaymentGatewayError, PaymentGatewayRateLimitError, PaymentGatewayAuthError

logger = logging.getLogger(__name__)


class GatewayEnvironment(Enum):
    """Square API environment options"""
    SANDBOX = "sandbox"
    PRODUCTION = "production"


@dataclass
class GatewayConfig:
    """Configuration settings for the Square Payments API"""

    access_token: str
    environment: GatewayEnvironment = GatewayEnvironment.SANDBOX
    location_id: Optional[str] = None

    SANDBOX_BASE_URL = "https://connect.squareupsandbox.com"
    PRODUCTION_BASE_URL = "https://connect.squareup.com"

    @property
    def base_url(self) -> str:
        if self.environment == GatewayEnvironment.SANDBOX:
            return self.SANDBOX_BASE_URL
        return self.PRODUCTION_BASE_URL

    @property
    def headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
            "Square-Version": "2024-12-18",
        }

    @classmethod
    def from_settings(cls, settings) -> 'GatewayConfig':
        environment = (GatewayEnvironment.PRODUCTION
                       if settings.SQUARE_ENVIRONMENT.lower() == 'production'
                       else GatewayEnvironment.SANDBOX)
        return cls(
            access_token=settings.SQUARE_ACCESS_TOKEN,
            environment=environment,
            location_id=settings.SQUARE_LOCATION_ID or None,
        )

    def validate(self) -> bool:
        if not self.access_token:
            raise ValueError("Access token is required")
        return True


class PaymentGateway:
    """Square Payments API client with error handling and retry logic"""

    def __init__(self, config: GatewayConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.config.validate()

        if session is None:
            session = requests.Session()
            retry_strategy = Retry(
                total=3,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["GET"],
                backoff_factor=1,
                respect_retry_after_header=True
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

        self.last_request_time = 0.0
        self.min_request_interval = 0.1  # 100ms between requests

    def _wait_for_rate_limit(self):
        elapsed = time.time() - self.last_request_time
        if elapsed < self.min_request_interval:
            time.sleep(self.min_request_interval - elapsed)
        self.last_request_time = time.time()

    def _make_request(self, method: str, endpoint: str, data: Optional[Dict[str, Any]] = None,
                      params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Make HTTP request to the Square API

        Raises:
            PaymentGatewayError: For API-related errors
            PaymentGatewayRateLimitError: For rate limit errors
            PaymentGatewayAuthError: For authentication errors
        """
        self._wait_for_rate_limit()
        url = urljoin(self.config.base_url, endpoint)

        try:
            logger.debug(f"Making {method} request to {endpoint}")
            response = self.session.request(
                method=method,
                url=url,
                headers=self.config.headers.copy(),
                json=data,
                params=params,
                timeout=30
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Gateway request failed: {e}")
            raise PaymentGatewayError(f"Request failed: {e}") from e

        if response.status_code == 429:
            retry_after = int(response.headers.get('Retry-After', 60))
            raise PaymentGatewayRateLimitError(f"Rate limit exceeded. Retry after {retry_after} seconds",
                                               status_code=429)

        if response.status_code == 401:
            raise PaymentGatewayAuthError("Authentication failed. Check access token", status_code=401)

        if response.status_code >= 400:
            try:
                error_msg = response.json().get('errors', [{}])[0].get('detail', 'Unknown error')
            except ValueError:
                error_msg = response.text or f"HTTP {response.status_code} error"
            raise PaymentGatewayError(f"API request failed: {error_msg}",
                                      status_code=response.status_code,
                                      response=response.text)

        return response.json() if response.content else {}

    def charge_card(self, source_id: str, amount: float, client_id: str,
                    reference: Optional[str] = None, note: Optional[str] = None,
                    idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        """Charge a tokenized card; amount is in dollars"""
        if amount <= 0:
            raise PaymentGatewayError("Charge amount must be positive")

        body: Dict[str, Any] = {
            "source_id": source_id,
            "idempotency_key": idempotency_key or str(uuid.uuid4()),
            "amount_money": {"amount": int(round(amount * 100)), "currency": "USD"},
            "customer_id": client_id,
        }
        if self.config.location_id:
            body["location_id"] = self.config.location_id
        if reference:
            body["reference_id"] = reference
        if note:
            body["note"] = note

        response = self._make_request("POST", "/v2/payments", data=body)
        payment = response.get("payment")
        if not payment:
            raise PaymentGatewayError("Payment failed - no payment data returned")

        logger.info(f"💳 Card charged for client {client_id}: {payment.get('id')} ({payment.get('status')})")
        return payment

    def refund_payment(self, payment_id: str, amount: float, reason: str = "") -> Dict[str, Any]:
        body = {
            "idempotency_key": str(uuid.uuid4()),
            "payment_id": payment_id,
            "amount_money": {"amount": int(round(amount * 100)), "currency": "USD"},
        }
        if reason:
            body["reason"] = reason
        refund = self._make_request("POST", "/v2/refunds", data=body).get("refund", {})
        logger.info(f"↩️ Refund {refund.get('id')} issued for payment {payment_id} ({refund.get('status')})")
        return refund
