"""
QuickBooks Online connector

OAuth2 authorization against Intuit and one-way sync of CRM customers and
invoices into QuickBooks.
"""

import asyncio
import logging
import secrets
from typing import Any, Dict, List, Optional

import requests
from requests_oauthlib import OAuth2Session

from .exceptions import IntegrationAuthError, IntegrationError, IntegrationNotConnectedError, IntegrationRateLimitError

logger = logging.getLogger(__name__)

AUTHORIZATION_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
ACCOUNTING_SCOPE = "com.intuit.quickbooks.accounting"
SETTINGS_KEY = "quickbooks"

SANDBOX_BASE_URL = "https://sandbox-quickbooks.api.intuit.com"
PRODUCTION_BASE_URL = "https://quickbooks.api.intuit.com"


class QuickBooksAdapter:
    def __init__(self, client_id: str, client_secret: str, redirect_uri: str,
                 environment: str = "sandbox", token: Optional[Dict[str, Any]] = None,
                 realm_id: Optional[str] = None, store=None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.environment = environment
        self.token = token
        self.realm_id = realm_id
        self.store = store
        self.initialized = False
        self.enabled = bool(client_id and client_secret and redirect_uri)

        if not self.enabled:
            logger.warning("QuickBooks not configured - missing client credentials")

    @property
    def base_url(self) -> str:
        if self.environment == "production":
            return PRODUCTION_BASE_URL
        return SANDBOX_BASE_URL

    def is_connected(self) -> bool:
        return bool(self.token and self.realm_id)

    async def initialize(self) -> None:
        """Load the saved token once"""
        if self.initialized:
            return
        try:
            if self.store is not None and not self.is_connected():
                settings = await self.store.get_integration_settings(SETTINGS_KEY)
                if settings:
                    self.realm_id = settings.get('realm_id')
                    self.token = settings.get('token')
        except Exception as e:
            logger.error(f"Error initializing QuickBooks connection: {e}")
        finally:
            self.initialized = True

    async def save_connection(self) -> bool:
        if self.store is None or not self.is_connected():
            return False
        return await self.store.save_integration_settings(
            SETTINGS_KEY, {'realm_id': self.realm_id, 'token': self.token}
        )

    def _oauth_session(self, state: Optional[str] = None) -> OAuth2Session:
        return OAuth2Session(
            self.client_id,
            redirect_uri=self.redirect_uri,
            scope=[ACCOUNTING_SCOPE],
            state=state,
            token=self.token,
        )

    def get_authorization_url(self, state: Optional[str] = None) -> Dict[str, str]:
        """Build the Intuit consent URL; callers keep the state to verify the callback"""
        if not self.enabled:
            raise IntegrationError("QuickBooks is not configured")

        url, state = self._oauth_session(state or secrets.token_urlsafe(16)).authorization_url(AUTHORIZATION_URL)
        return {"url": url, "state": state}

    def handle_callback(self, authorization_response: str, realm_id: str,
                        state: Optional[str] = None) -> Dict[str, Any]:
        """Exchange the callback URL for tokens"""
        if not self.enabled:
            raise IntegrationError("QuickBooks is not configured")

        try:
            token = self._oauth_session(state).fetch_token(
                TOKEN_URL,
                authorization_response=authorization_response,
                client_secret=self.client_secret,
            )
        except Exception as e:
            logger.error(f"QuickBooks token exchange failed: {e}")
            raise IntegrationAuthError(f"QuickBooks authorization failed: {e}") from e

        self.token = dict(token)
        self.realm_id = realm_id
        self.initialized = True
        logger.info(f"✅ QuickBooks connected for realm {realm_id}")
        return self.token

    def disconnect(self) -> None:
        self.token = None
        self.realm_id = None
        logger.info("QuickBooks disconnected")

    def _request(self, method: str, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.is_connected():
            raise IntegrationNotConnectedError("QuickBooks not initialized")

        url = f"{self.base_url}/v3/company/{self.realm_id}/{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.token['access_token']}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        try:
            response = requests.request(method, url, headers=headers, json=data, timeout=30)
        except requests.exceptions.RequestException as e:
            logger.error(f"QuickBooks request failed: {e}")
            raise IntegrationError(f"Request failed: {e}") from e

        if response.status_code == 401:
            raise IntegrationAuthError("QuickBooks authentication failed. Reconnect the integration",
                                       status_code=401, response=response.text)
        if response.status_code == 429:
            raise IntegrationRateLimitError("QuickBooks rate limit exceeded", status_code=429,
                                            response=response.text)
        if response.status_code >= 400:
            try:
                fault = response.json().get("Fault", {}).get("Error", [{}])[0]
                error_msg = fault.get("Detail") or fault.get("Message") or "Unknown error"
            except ValueError:
                error_msg = response.text or f"HTTP {response.status_code} error"
            raise IntegrationError(f"QuickBooks request failed: {error_msg}",
                                   status_code=response.status_code, response=response.text)

        return response.json() if response.content else {}

    # ===== PAYLOAD MAPPING =====

    @staticmethod
    def invoice_payload(invoice: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "Line": [
                {
                    "Amount": item["total"],
                    "Description": item.get("description", ""),
                    "DetailType": "SalesItemLineDetail",
                    "SalesItemLineDetail": {
                        "ItemRef": {
                            "value": "1",
                            "name": "Materials" if item.get("type") == "material" else "Labor",
                        },
                        "UnitPrice": item.get("unitPrice"),
                        "Qty": item.get("quantity"),
                    },
                }
                for item in invoice.get("items", [])
            ],
            "CustomerRef": {"value": invoice["clientId"]},
        }

    @staticmethod
    def customer_payload(customer: Dict[str, Any]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"DisplayName": customer["name"]}
        if customer.get("company"):
            payload["CompanyName"] = customer["company"]
        if customer.get("email"):
            payload["PrimaryEmailAddr"] = {"Address": customer["email"]}
        if customer.get("phone"):
            payload["PrimaryPhone"] = {"FreeFormNumber": customer["phone"]}
        if customer.get("address"):
            payload["BillAddr"] = {"Line1": customer["address"]}
        return payload

    # ===== SYNC =====

    def create_invoice(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        response = self._request("POST", "invoice", self.invoice_payload(invoice))
        return response.get("Invoice", response)

    def create_customer(self, customer: Dict[str, Any]) -> Dict[str, Any]:
        response = self._request("POST", "customer", self.customer_payload(customer))
        return response.get("Customer", response)

    def sync_invoices(self, invoices: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Push invoices to QuickBooks; stops at the first failure"""
        if not self.is_connected():
            raise IntegrationNotConnectedError("QuickBooks not initialized")

        results = []
        for invoice in invoices:
            try:
                results.append(self.create_invoice(invoice))
            except IntegrationError as e:
                logger.error(f"Error syncing invoice {invoice.get('id')}: {e}")
                raise
        logger.info(f"✅ Synced {len(results)} invoices to QuickBooks")
        return results

    def sync_customers(self, customers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Push clients to QuickBooks as customers; stops at the first failure"""
        if not self.is_connected():
            raise IntegrationNotConnectedError("QuickBooks not initialized")

        results = []
        for customer in customers:
            try:
                results.append(self.create_customer(customer))
            except IntegrationError as e:
                logger.error(f"Error syncing customer {customer.get('id')}: {e}")
                raise
        logger.info(f"✅ Synced {len(results)} customers to QuickBooks")
        return results

    async def sync_records(self, customers: List[Dict[str, Any]],
                           invoices: List[Dict[str, Any]]) -> Dict[str, int]:
        """Push clients, then invoices; the blocking HTTP calls run off the event loop"""
        await self.initialize()
        if not self.is_connected():
            raise IntegrationNotConnectedError("QuickBooks not connected. Connect it from the integrations page.")

        synced_customers = await asyncio.to_thread(self.sync_customers, customers)
        synced_invoices = await asyncio.to_thread(self.sync_invoices, invoices)
        return {'customers': len(synced_customers), 'invoices': len(synced_invoices)}
