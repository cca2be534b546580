import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from flooring_crm.models import Conversation, ConversationMessage

from .exceptions import IntegrationError, IntegrationNotConnectedError

logger = logging.getLogger(__name__)

SETTINGS_KEY = "ghl"
CONVERSATIONS_API_VERSION = "2021-04-15"
MESSAGE_TYPES = ("SMS", "Email", "WhatsApp", "GMB", "IG", "FB", "Custom", "Live_Chat")


class CRMContact(BaseModel):
    id: str = ""
    firstName: str = ""
    lastName: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    companyName: str = ""

    @classmethod
    def from_api(cls, contact: Dict[str, Any]) -> "CRMContact":
        return cls(
            id=str(contact.get('id') or ''),
            firstName=str(contact.get('firstName') or ''),
            lastName=str(contact.get('lastName') or ''),
            email=str(contact.get('email') or ''),
            phone=str(contact.get('phone') or ''),
            address=str(contact.get('address1') or ''),
            companyName=str(contact.get('companyName') or ''),
        )

    def to_client(self) -> Dict[str, Any]:
        """Map to a CRM client record"""
        return {
            'name': f"{self.firstName} {self.lastName}".strip(),
            'company': self.companyName,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'type': 'Residential',
            'status': 'Active',
            'totalProjects': 0,
            'totalRevenue': 0,
            'external_id': self.id,
        }


class CRMAdapter:
    """LeadConnector (GHL) contacts and conversations; credentials are kept in the CRM store"""

    def __init__(self, store=None, api_base: str = "https://services.leadconnectorhq.com",
                 api_version: str = "2021-07-28", http_client: Optional[httpx.AsyncClient] = None):
        self.store = store
        self.api_version = api_version
        self.http_client = http_client or httpx.AsyncClient(
            base_url=api_base,
            timeout=10.0,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )
        self.location_id: Optional[str] = None
        self.access_token: Optional[str] = None
        self.initialized = False

    async def initialize(self) -> None:
        """Load saved credentials once"""
        if self.initialized:
            return
        try:
            if self.store is not None:
                settings = await self.store.get_integration_settings(SETTINGS_KEY)
                if settings:
                    self.location_id = settings.get('location_id')
                    self.access_token = settings.get('access_token')
        except Exception as e:
            logger.error(f"Error initializing CRM connection: {e}")
        finally:
            self.initialized = True

    def is_connected(self) -> bool:
        return bool(self.location_id and self.access_token)

    def _auth_headers(self, version: Optional[str] = None) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}", "Version": version or self.api_version}

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None,
                   version: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("GET", path, params=params, version=version)

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                       json: Optional[Dict[str, Any]] = None, version: Optional[str] = None) -> Dict[str, Any]:
        try:
            response = await self.http_client.request(method, path, headers=self._auth_headers(version),
                                                      params=params, json=json)
        except httpx.TimeoutException as e:
            raise IntegrationError("Request timed out. Please try again.") from e
        except httpx.RequestError as e:
            raise IntegrationError("Network error. Please check your connection.") from e

        if response.status_code >= 400:
            try:
                body = response.json()
                message = body.get('message') or body.get('details')
            except ValueError:
                message = None
            raise IntegrationError(message or f"HTTP {response.status_code} error",
                                   status_code=response.status_code, response=response.text)
        return response.json()

    async def _require_connection(self) -> None:
        await self.initialize()
        if not self.is_connected():
            raise IntegrationNotConnectedError("CRM not connected. Please check your settings.")

    async def search_contacts(self, query: str) -> List[CRMContact]:
        if not query or not query.strip():
            return []

        await self._require_connection()
        data = await self._get("/contacts/search", params={"query": query.strip(), "locationId": self.location_id})

        contacts = data.get('contacts') or []
        logger.info(f"🔎 CRM search '{query.strip()}' returned {len(contacts)} contacts")
        return [CRMContact.from_api(c) for c in contacts]

    async def sync_contact(self, contact_id: str) -> CRMContact:
        if not contact_id:
            raise ValueError("Contact ID is required")

        await self._require_connection()
        data = await self._get(f"/contacts/{contact_id}", params={"locationId": self.location_id})

        if not data.get('contact'):
            raise IntegrationError("Contact not found in CRM")
        return CRMContact.from_api(data['contact'])

    # ===== CONVERSATIONS =====

    @staticmethod
    def _conversation(conv: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=str(conv.get('id') or ''),
            contactId=str(conv.get('contactId') or ''),
            locationId=str(conv.get('locationId') or ''),
            lastMessageBody=str(conv.get('lastMessageBody') or ''),
            lastMessageType=conv.get('lastMessageType') or 'TYPE_SMS',
            lastMessageDate=str(conv.get('lastMessageDate') or ''),
            type=conv.get('type') or 'TYPE_SMS',
            unreadCount=int(conv.get('unreadCount') or 0),
            inbox=bool(conv.get('inbox')),
            starred=bool(conv.get('starred')),
            deleted=bool(conv.get('deleted')),
            assignedTo=str(conv.get('assignedTo') or ''),
            userId=str(conv.get('userId') or ''),
        )

    async def search_conversations(self, query: Optional[str] = None, limit: int = 20,
                                   status: Optional[str] = None, sort: Optional[str] = None,
                                   sort_by: Optional[str] = None, assigned_to: Optional[str] = None,
                                   contact_id: Optional[str] = None) -> List[Conversation]:
        await self._require_connection()
        params = {
            'locationId': self.location_id,
            'limit': limit,
            'query': query,
            'status': status,
            'sort': sort,
            'sortBy': sort_by,
            'assignedTo': assigned_to,
            'contactId': contact_id,
        }
        data = await self._get("/conversations/search",
                               params={k: v for k, v in params.items() if v},
                               version=CONVERSATIONS_API_VERSION)

        if data.get('conversations') is None:
            raise IntegrationError("Invalid response format from CRM")
        return [self._conversation(c) for c in data['conversations']]

    async def update_conversation(self, conversation_id: str, unread_count: Optional[int] = None,
                                  starred: Optional[bool] = None) -> Conversation:
        if not conversation_id:
            raise ValueError("Conversation ID is required")

        await self._require_connection()
        body: Dict[str, Any] = {'locationId': self.location_id}
        if unread_count is not None:
            body['unreadCount'] = unread_count
        if starred is not None:
            body['starred'] = starred

        data = await self._request("PUT", f"/conversations/{conversation_id}", json=body,
                                   version=CONVERSATIONS_API_VERSION)
        if not data.get('conversation'):
            raise IntegrationError("Invalid response format from CRM")
        return self._conversation(data['conversation'])

    async def get_messages(self, conversation_id: str, last_message_id: Optional[str] = None,
                           limit: Optional[int] = None, message_type: Optional[str] = None) -> List[ConversationMessage]:
        if not conversation_id:
            raise ValueError("Conversation ID is required")

        await self._require_connection()
        params = {'lastMessageId': last_message_id, 'limit': limit, 'type': message_type}
        data = await self._get(f"/conversations/{conversation_id}/messages",
                               params={k: v for k, v in params.items() if v},
                               version=CONVERSATIONS_API_VERSION)

        messages = data.get('messages') or []
        # Paged responses nest the list one level down
        if isinstance(messages, dict):
            messages = messages.get('messages') or []
        return [
            ConversationMessage(
                id=str(m.get('id') or ''),
                conversationId=str(m.get('conversationId') or conversation_id),
                contactId=str(m.get('contactId') or ''),
                body=str(m.get('body') or ''),
                direction=str(m.get('direction') or ''),
                status=str(m.get('status') or ''),
                messageType=str(m.get('messageType') or m.get('type') or ''),
                dateAdded=str(m.get('dateAdded') or ''),
            )
            for m in messages
        ]

    async def send_message(self, contact_id: str, message: str, message_type: str = "SMS",
                           **extra: Any) -> Dict[str, Any]:
        if not contact_id or not (message or '').strip():
            raise ValueError("Contact ID and message are required")
        if message_type not in MESSAGE_TYPES:
            raise ValueError(f"Unsupported message type: {message_type}")

        await self._require_connection()
        body = {'type': message_type, 'contactId': contact_id, 'message': message.strip(), **extra}
        data = await self._request("POST", "/conversations/messages", json=body,
                                   version=CONVERSATIONS_API_VERSION)

        if not data.get('messageId'):
            raise IntegrationError("Failed to send message")
        logger.info(f"📨 CRM {message_type} sent to contact {contact_id}: {data['messageId']}")
        return {
            'conversationId': data.get('conversationId'),
            'messageId': data['messageId'],
            'emailMessageId': data.get('emailMessageId'),
        }

    async def test_connection(self) -> None:
        if not self.location_id or not self.access_token:
            raise IntegrationError("Missing CRM credentials")

        data = await self._get(f"/locations/{self.location_id}")
        if not data.get('location'):
            raise IntegrationError("Invalid CRM response")

    async def connect(self, access_token: str, location_id: str) -> None:
        if not (access_token or '').strip() or not (location_id or '').strip():
            raise ValueError("Access token and location ID are required")

        self.access_token = access_token.strip()
        self.location_id = location_id.strip()
        try:
            # Verify before saving
            await self.test_connection()
            if self.store is not None:
                saved = await self.store.save_integration_settings(
                    SETTINGS_KEY, {'location_id': self.location_id, 'access_token': self.access_token}
                )
                if not saved:
                    raise IntegrationError("Failed to save CRM settings")
        except Exception:
            self.access_token = None
            self.location_id = None
            raise

        self.initialized = True
        logger.info(f"✅ CRM connected for location {self.location_id}")

    async def disconnect(self) -> None:
        if self.store is not None:
            removed = await self.store.delete_integration_settings(SETTINGS_KEY)
            if not removed:
                raise IntegrationError("Failed to disconnect from CRM")

        self.location_id = None
        self.access_token = None
        self.initialized = False
        logger.info("CRM disconnected")

    async def close(self):
        await self.http_client.aclose()
