import json
import pytest
import httpx
import requests
from datetime import datetime
from unittest.mock import Mock, AsyncMock, patch

from twilio.base.exceptions import TwilioRestException

from flooring_crm.adapters.integrations import (
    IntegrationAuthError,
    IntegrationError,
    IntegrationNotConnectedError,
    IntegrationRateLimitError,
)
from flooring_crm.adapters.integrations.calendar import CalendarAdapter
from flooring_crm.adapters.integrations.crm import CRMAdapter, CRMContact
from flooring_crm.adapters.integrations.quickbooks import (
    ACCOUNTING_SCOPE,
    PRODUCTION_BASE_URL,
    SANDBOX_BASE_URL,
    QuickBooksAdapter,
)
from flooring_crm.adapters.integrations.registry import IntegrationRegistry
from flooring_crm.adapters.integrations.sms import SMSAdapter, normalize_phone


def _http_response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = body or {}
    response.content = b"{}" if body is not None else b""
    response.text = ""
    return response


class TestQuickBooksAdapter:
    """Unit tests for the QuickBooks connector"""

    @pytest.fixture
    def adapter(self):
        return QuickBooksAdapter("client-id", "client-secret", "https://crm.example.com/qb/callback")

    @pytest.fixture
    def connected(self):
        return QuickBooksAdapter("client-id", "client-secret", "https://crm.example.com/qb/callback",
                                 token={"access_token": "qb-token"}, realm_id="realm-1")

    def test_enabled_and_base_url(self, adapter):
        assert adapter.enabled is True
        assert adapter.is_connected() is False
        assert adapter.base_url == SANDBOX_BASE_URL

        prod = QuickBooksAdapter("id", "secret", "https://x", environment="production")
        assert prod.base_url == PRODUCTION_BASE_URL

        assert QuickBooksAdapter("", "", "").enabled is False

    def test_authorization_url(self, adapter):
        result = adapter.get_authorization_url(state="state-123")

        assert result["state"] == "state-123"
        assert result["url"].startswith("https://appcenter.intuit.com/connect/oauth2")
        assert "client_id=client-id" in result["url"]
        assert ACCOUNTING_SCOPE in result["url"]

    def test_authorization_url_not_configured(self):
        with pytest.raises(IntegrationError):
            QuickBooksAdapter("", "", "").get_authorization_url()

    def test_handle_callback(self, adapter):
        with patch("flooring_crm.adapters.integrations.quickbooks.OAuth2Session") as session_cls:
            session_cls.return_value.fetch_token.return_value = {"access_token": "qb-token", "refresh_token": "r"}

            token = adapter.handle_callback("https://crm.example.com/qb/callback?code=abc&state=s", "realm-1", "s")

        assert token["access_token"] == "qb-token"
        assert adapter.is_connected() is True
        assert adapter.realm_id == "realm-1"

    def test_handle_callback_failure(self, adapter):
        with patch("flooring_crm.adapters.integrations.quickbooks.OAuth2Session") as session_cls:
            session_cls.return_value.fetch_token.side_effect = Exception("invalid_grant")

            with pytest.raises(IntegrationAuthError):
                adapter.handle_callback("https://crm.example.com/qb/callback?code=bad", "realm-1")

        assert adapter.is_connected() is False

    def test_disconnect(self, connected):
        connected.disconnect()
        assert connected.is_connected() is False

    @pytest.mark.asyncio
    async def test_initialize_loads_saved_token(self):
        store = Mock()
        store.get_integration_settings = AsyncMock(
            return_value={"realm_id": "realm-1", "token": {"access_token": "qb-token"}}
        )
        adapter = QuickBooksAdapter("client-id", "client-secret", "https://x", store=store)

        await adapter.initialize()
        await adapter.initialize()

        assert adapter.is_connected() is True
        assert adapter.token == {"access_token": "qb-token"}
        store.get_integration_settings.assert_awaited_once_with("quickbooks")

    @pytest.mark.asyncio
    async def test_initialize_store_error(self):
        store = Mock()
        store.get_integration_settings = AsyncMock(side_effect=Exception("connection reset"))
        adapter = QuickBooksAdapter("client-id", "client-secret", "https://x", store=store)

        await adapter.initialize()

        assert adapter.is_connected() is False
        assert adapter.initialized is True

    @pytest.mark.asyncio
    async def test_save_connection(self, connected):
        assert await connected.save_connection() is False

        connected.store = Mock()
        connected.store.save_integration_settings = AsyncMock(return_value=True)
        assert await connected.save_connection() is True
        connected.store.save_integration_settings.assert_awaited_once_with(
            "quickbooks", {"realm_id": "realm-1", "token": {"access_token": "qb-token"}}
        )

    @pytest.mark.asyncio
    async def test_sync_records_after_restart(self):
        store = Mock()
        store.get_integration_settings = AsyncMock(
            return_value={"realm_id": "realm-1", "token": {"access_token": "qb-token"}}
        )
        adapter = QuickBooksAdapter("client-id", "client-secret", "https://x", store=store)

        with patch("flooring_crm.adapters.integrations.quickbooks.requests.request") as request:
            request.side_effect = [
                _http_response(body={"Customer": {"Id": "58"}}),
                _http_response(body={"Invoice": {"Id": "130"}}),
            ]

            counts = await adapter.sync_records(
                [{"name": "John Smith"}],
                [{"clientId": "58", "items": [{"description": "Oak", "quantity": 1, "unitPrice": 5,
                                               "total": 5, "type": "material"}]}],
            )

        assert counts == {"customers": 1, "invoices": 1}
        assert request.call_args_list[1].args[1] == f"{SANDBOX_BASE_URL}/v3/company/realm-1/invoice"

    @pytest.mark.asyncio
    async def test_sync_records_not_connected(self, adapter):
        with pytest.raises(IntegrationNotConnectedError):
            await adapter.sync_records([], [])

    def test_payloads(self):
        invoice = {
            "clientId": "qb-cust-1",
            "items": [
                {"description": "Oak", "quantity": 100, "unitPrice": 8, "total": 800, "type": "material"},
                {"description": "Install", "quantity": 100, "unitPrice": 3.5, "total": 350, "type": "labor"},
            ],
        }
        payload = QuickBooksAdapter.invoice_payload(invoice)

        assert payload["CustomerRef"] == {"value": "qb-cust-1"}
        assert [line["Amount"] for line in payload["Line"]] == [800, 350]
        assert payload["Line"][1]["SalesItemLineDetail"]["ItemRef"]["name"] == "Labor"

        customer = QuickBooksAdapter.customer_payload({"name": "John Smith", "email": "john@abc.com"})
        assert customer == {"DisplayName": "John Smith", "PrimaryEmailAddr": {"Address": "john@abc.com"}}

    def test_sync_requires_connection(self, adapter):
        with pytest.raises(IntegrationNotConnectedError):
            adapter.sync_customers([{"name": "John"}])
        with pytest.raises(IntegrationNotConnectedError):
            adapter.sync_invoices([])

    def test_sync_customers(self, connected):
        with patch("flooring_crm.adapters.integrations.quickbooks.requests.request") as request:
            request.return_value = _http_response(body={"Customer": {"Id": "58"}})

            results = connected.sync_customers([{"name": "John"}, {"name": "Jane"}])

        assert results == [{"Id": "58"}, {"Id": "58"}]
        args, kwargs = request.call_args
        assert args[0] == "POST"
        assert args[1] == f"{SANDBOX_BASE_URL}/v3/company/realm-1/customer"
        assert kwargs["headers"]["Authorization"] == "Bearer qb-token"

    def test_sync_stops_at_first_failure(self, connected):
        with patch("flooring_crm.adapters.integrations.quickbooks.requests.request") as request:
            request.return_value = _http_response(
                400, body={"Fault": {"Error": [{"Message": "Duplicate Name Exists Error"}]}}
            )

            with pytest.raises(IntegrationError) as exc_info:
                connected.sync_customers([{"name": "John"}, {"name": "Jane"}])

        assert "Duplicate Name" in str(exc_info.value)
        assert request.call_count == 1

    def test_request_error_mapping(self, connected):
        with patch("flooring_crm.adapters.integrations.quickbooks.requests.request") as request:
            request.return_value = _http_response(401)
            with pytest.raises(IntegrationAuthError):
                connected.create_customer({"name": "John"})

            request.return_value = _http_response(429)
            with pytest.raises(IntegrationRateLimitError):
                connected.create_customer({"name": "John"})

            request.side_effect = requests.exceptions.Timeout("slow")
            with pytest.raises(IntegrationError):
                connected.create_customer({"name": "John"})


class TestCRMAdapter:
    """Unit tests for the LeadConnector contact connector"""

    @pytest.fixture
    def store(self):
        mock = Mock()
        mock.get_integration_settings = AsyncMock(return_value={"location_id": "loc-1", "access_token": "tok"})
        mock.save_integration_settings = AsyncMock(return_value=True)
        mock.delete_integration_settings = AsyncMock(return_value=True)
        return mock

    @pytest.fixture
    def requests_seen(self):
        return []

    @staticmethod
    def make_adapter(store, handler, requests_seen=None):
        def recording(request):
            if requests_seen is not None:
                requests_seen.append(request)
            return handler(request)

        client = httpx.AsyncClient(base_url="https://services.leadconnectorhq.com",
                                   transport=httpx.MockTransport(recording))
        return CRMAdapter(store=store, http_client=client)

    def test_contact_mapping(self):
        contact = CRMContact.from_api({
            "id": "ct1", "firstName": "John", "lastName": "Smith", "address1": "12 Oak St", "phone": None,
        })

        assert contact.address == "12 Oak St"
        assert contact.phone == ""
        client = contact.to_client()
        assert client["name"] == "John Smith"
        assert client["external_id"] == "ct1"

    @pytest.mark.asyncio
    async def test_search_contacts(self, store, requests_seen):
        adapter = self.make_adapter(
            store, lambda r: httpx.Response(200, json={"contacts": [{"id": "ct1", "firstName": "John"}]}),
            requests_seen,
        )

        contacts = await adapter.search_contacts("  john ")

        assert [c.id for c in contacts] == ["ct1"]
        request = requests_seen[0]
        assert request.url.path == "/contacts/search"
        assert request.url.params["query"] == "john"
        assert request.url.params["locationId"] == "loc-1"
        assert request.headers["Version"] == "2021-07-28"
        assert request.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_blank_search_skips_api(self, store, requests_seen):
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={}), requests_seen)

        assert await adapter.search_contacts("   ") == []
        assert requests_seen == []

    @pytest.mark.asyncio
    async def test_not_connected(self, store):
        store.get_integration_settings.return_value = None
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={}))

        with pytest.raises(IntegrationNotConnectedError):
            await adapter.search_contacts("john")

    @pytest.mark.asyncio
    async def test_sync_contact(self, store):
        adapter = self.make_adapter(
            store, lambda r: httpx.Response(200, json={"contact": {"id": "ct1", "firstName": "Jane"}}),
        )

        contact = await adapter.sync_contact("ct1")
        assert contact.firstName == "Jane"

        with pytest.raises(ValueError):
            await adapter.sync_contact("")

    @pytest.mark.asyncio
    async def test_sync_contact_missing(self, store):
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={}))

        with pytest.raises(IntegrationError):
            await adapter.sync_contact("ct1")

    @pytest.mark.asyncio
    async def test_api_error_message(self, store):
        adapter = self.make_adapter(store, lambda r: httpx.Response(401, json={"message": "Invalid JWT"}))

        with pytest.raises(IntegrationError) as exc_info:
            await adapter.search_contacts("john")

        assert str(exc_info.value) == "Invalid JWT"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_timeout_message(self, store):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        adapter = self.make_adapter(store, handler)

        with pytest.raises(IntegrationError) as exc_info:
            await adapter.search_contacts("john")

        assert str(exc_info.value) == "Request timed out. Please try again."

    @pytest.mark.asyncio
    async def test_network_error_message(self, store):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        adapter = self.make_adapter(store, handler)

        with pytest.raises(IntegrationError) as exc_info:
            await adapter.search_contacts("john")

        assert str(exc_info.value) == "Network error. Please check your connection."

    @pytest.mark.asyncio
    async def test_connect_verifies_then_saves(self, store, requests_seen):
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={"location": {"id": "loc-2"}}),
                                    requests_seen)

        await adapter.connect(" new-token ", "loc-2")

        assert requests_seen[0].url.path == "/locations/loc-2"
        store.save_integration_settings.assert_awaited_once_with(
            "ghl", {"location_id": "loc-2", "access_token": "new-token"}
        )
        assert adapter.is_connected() is True

    @pytest.mark.asyncio
    async def test_connect_failure_resets_credentials(self, store):
        adapter = self.make_adapter(store, lambda r: httpx.Response(403, json={"message": "Forbidden"}))

        with pytest.raises(IntegrationError):
            await adapter.connect("bad-token", "loc-2")

        assert adapter.is_connected() is False
        store.save_integration_settings.assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_requires_credentials(self, store):
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={}))

        with pytest.raises(ValueError):
            await adapter.connect("", "loc-2")

    @pytest.mark.asyncio
    async def test_disconnect(self, store):
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={}))
        await adapter.initialize()

        await adapter.disconnect()

        store.delete_integration_settings.assert_awaited_once_with("ghl")
        assert adapter.is_connected() is False

    @pytest.mark.asyncio
    async def test_disconnect_failure(self, store):
        store.delete_integration_settings.return_value = False
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={}))

        with pytest.raises(IntegrationError):
            await adapter.disconnect()

    @pytest.mark.asyncio
    async def test_search_conversations(self, store, requests_seen):
        adapter = self.make_adapter(
            store,
            lambda r: httpx.Response(200, json={"conversations": [
                {"id": "cv1", "contactId": "ct1", "lastMessageBody": "When can you start?", "unreadCount": 2},
            ]}),
            requests_seen,
        )

        conversations = await adapter.search_conversations(query="smith", limit=10)

        assert conversations[0].id == "cv1"
        assert conversations[0].unreadCount == 2
        assert conversations[0].lastMessageType == "TYPE_SMS"
        request = requests_seen[0]
        assert request.url.path == "/conversations/search"
        assert request.headers["Version"] == "2021-04-15"
        assert dict(request.url.params) == {"locationId": "loc-1", "limit": "10", "query": "smith"}

    @pytest.mark.asyncio
    async def test_search_conversations_bad_response(self, store):
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={}))

        with pytest.raises(IntegrationError):
            await adapter.search_conversations()

    @pytest.mark.asyncio
    async def test_update_conversation(self, store, requests_seen):
        adapter = self.make_adapter(
            store, lambda r: httpx.Response(200, json={"conversation": {"id": "cv1", "starred": True}}),
            requests_seen,
        )

        conversation = await adapter.update_conversation("cv1", unread_count=0, starred=True)

        assert conversation.starred is True
        request = requests_seen[0]
        assert request.method == "PUT"
        assert request.url.path == "/conversations/cv1"
        assert json.loads(request.content) == {"locationId": "loc-1", "unreadCount": 0, "starred": True}

    @pytest.mark.asyncio
    async def test_get_messages(self, store, requests_seen):
        adapter = self.make_adapter(
            store,
            lambda r: httpx.Response(200, json={"messages": {"lastMessageId": "m2", "messages": [
                {"id": "m1", "body": "Hi", "direction": "inbound", "messageType": "TYPE_SMS"},
                {"id": "m2", "body": "Hello", "direction": "outbound", "messageType": "TYPE_SMS"},
            ]}}),
            requests_seen,
        )

        messages = await adapter.get_messages("cv1", limit=2)

        assert [m.id for m in messages] == ["m1", "m2"]
        assert messages[0].conversationId == "cv1"
        assert requests_seen[0].url.path == "/conversations/cv1/messages"
        assert requests_seen[0].url.params["limit"] == "2"

    @pytest.mark.asyncio
    async def test_send_message(self, store, requests_seen):
        adapter = self.make_adapter(
            store, lambda r: httpx.Response(200, json={"conversationId": "cv1", "messageId": "m9"}),
            requests_seen,
        )

        result = await adapter.send_message("ct1", " Your install is booked ")

        assert result == {"conversationId": "cv1", "messageId": "m9", "emailMessageId": None}
        request = requests_seen[0]
        assert request.method == "POST"
        assert request.url.path == "/conversations/messages"
        assert json.loads(request.content) == {"type": "SMS", "contactId": "ct1", "message": "Your install is booked"}

    @pytest.mark.asyncio
    async def test_send_message_without_id(self, store):
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={"conversationId": "cv1"}))

        with pytest.raises(IntegrationError) as exc_info:
            await adapter.send_message("ct1", "hello")
        assert str(exc_info.value) == "Failed to send message"

    @pytest.mark.asyncio
    async def test_send_message_validation(self, store, requests_seen):
        adapter = self.make_adapter(store, lambda r: httpx.Response(200, json={}), requests_seen)

        with pytest.raises(ValueError):
            await adapter.send_message("ct1", "   ")
        with pytest.raises(ValueError):
            await adapter.send_message("ct1", "hello", message_type="Pager")
        assert requests_seen == []


class TestCalendarAdapter:
    """Unit tests for the Google Calendar connector"""

    @pytest.fixture
    def service(self):
        mock = Mock()
        mock.events.return_value.insert.return_value.execute.return_value = {"id": "evt_1", "htmlLink": "link"}
        return mock

    @pytest.fixture
    def calendar(self, service):
        return CalendarAdapter(calendar_id="installs", service=service)

    @pytest.mark.parametrize("time_str,expected", [
        (None, (9, 0)),
        ("14:30", (14, 30)),
        ("9:00 AM", (9, 0)),
        ("2 pm", (14, 0)),
        ("2:15pm", (14, 15)),
        ("3 p.m.", (15, 0)),
    ])
    def test_parse_start(self, time_str, expected):
        start = CalendarAdapter.parse_start("2024-06-03", time_str)
        assert (start.hour, start.minute) == expected
        assert start.date() == datetime(2024, 6, 3).date()

    def test_parse_start_invalid(self):
        with pytest.raises(ValueError):
            CalendarAdapter.parse_start("2024-06-03", "noonish")
        with pytest.raises(ValueError):
            CalendarAdapter.parse_start("June 3rd", "9:00")

    def test_schedule_installation(self, calendar, service):
        event = calendar.schedule_installation("2024-06-03", "8:00 am", "12 Oak St", "Bring trim",
                                               client_name="John Smith")

        assert event["id"] == "evt_1"
        kwargs = service.events.return_value.insert.call_args.kwargs
        assert kwargs["calendarId"] == "installs"
        body = kwargs["body"]
        assert body["summary"] == "Flooring installation - John Smith"
        assert body["start"]["dateTime"] == "2024-06-03T08:00:00"
        assert body["end"]["dateTime"] == "2024-06-03T16:00:00"
        assert body["location"] == "12 Oak St"

    def test_disabled_without_token(self, tmp_path):
        calendar = CalendarAdapter(token_path=str(tmp_path / "missing.json"))

        assert calendar.enabled is False
        assert calendar.create_event("x", datetime.now(), datetime.now()) == {}

    def test_authorize_saves_token(self, tmp_path):
        secrets_file = tmp_path / "credentials.json"
        secrets_file.write_text("{}")
        token_file = tmp_path / "token.json"
        calendar = CalendarAdapter(token_path=str(token_file))

        with patch("flooring_crm.adapters.integrations.calendar.InstalledAppFlow") as flow_cls, \
                patch("flooring_crm.adapters.integrations.calendar.build") as build:
            flow_cls.from_client_secrets_file.return_value.run_local_server.return_value.to_json.return_value = '{"t": 1}'

            calendar.authorize(str(secrets_file))

        assert token_file.read_text() == '{"t": 1}'
        assert calendar.enabled is True
        assert calendar.service is build.return_value

    def test_authorize_missing_credentials(self, tmp_path):
        calendar = CalendarAdapter(token_path=str(tmp_path / "token.json"))

        with pytest.raises(FileNotFoundError):
            calendar.authorize(str(tmp_path / "missing.json"))


class TestSMSAdapter:
    """Unit tests for the Twilio SMS connector"""

    @pytest.fixture
    def client(self):
        mock = Mock()
        mock.messages.create.return_value = Mock(sid="SM123")
        return mock

    @pytest.fixture
    def sms(self, client):
        return SMSAdapter(from_number="(555) 010-0000", client=client)

    def test_normalize_phone(self):
        assert normalize_phone("(555) 123-4567") == "+15551234567"
        assert normalize_phone("1-555-123-4567") == "+15551234567"
        assert normalize_phone("+44 20 7946 0958") == "+442079460958"
        assert normalize_phone("") == ""

    def test_send_sms(self, sms, client):
        result = sms.send_sms("555-123-4567", "Your installation is confirmed for Monday.")

        assert result == {"success": True, "sid": "SM123", "to": "+15551234567"}
        client.messages.create.assert_called_once_with(
            to="+15551234567", from_="+15550100000", body="Your installation is confirmed for Monday.",
        )

    def test_send_sms_validation(self, sms, client):
        assert sms.send_sms("", "hi")["success"] is False
        assert sms.send_sms("555-123-4567", "  ")["success"] is False
        client.messages.create.assert_not_called()

    def test_send_sms_twilio_error(self, sms, client):
        client.messages.create.side_effect = TwilioRestException(400, "https://api.twilio.com", "Invalid number")

        result = sms.send_sms("555-123-4567", "hi")

        assert result["success"] is False

    def test_not_configured(self):
        sms = SMSAdapter()

        assert sms.enabled is False
        assert sms.send_sms("555-123-4567", "hi") == {"success": False, "error": "SMS not configured"}


class TestIntegrationRegistry:
    """Unit tests for the connector registry"""

    @pytest.fixture
    def store(self):
        mock = Mock()
        mock.get_integration_settings = AsyncMock(return_value={"realm_id": "realm-1", "token": {"access_token": "qb"}})
        mock.delete_integration_settings = AsyncMock(return_value=True)
        return mock

    @pytest.fixture
    def crm(self):
        mock = Mock()
        mock.initialize = AsyncMock()
        mock.is_connected.return_value = True
        mock.disconnect = AsyncMock()
        return mock

    @pytest.fixture
    def registry(self, store, crm):
        quickbooks = QuickBooksAdapter("id", "secret", "https://x", store=store)
        calendar = Mock(enabled=False)
        sms = Mock(enabled=True)
        return IntegrationRegistry(store=store, quickbooks=quickbooks, crm=crm, calendar=calendar, sms=sms)

    @pytest.mark.asyncio
    async def test_list_integrations(self, registry):
        listing = {i['name']: i for i in await registry.list_integrations()}

        assert set(listing) == {'quickbooks', 'ghl', 'google_calendar', 'twilio', 'square'}
        assert listing['quickbooks']['connected'] is True
        assert listing['ghl']['connected'] is True
        assert listing['google_calendar']['enabled'] is False
        assert listing['twilio']['connected'] is True
        assert listing['square']['enabled'] is False

    @pytest.mark.asyncio
    async def test_disconnect(self, registry, store, crm):
        assert await registry.disconnect('ghl') is True
        crm.disconnect.assert_awaited_once()

        assert await registry.disconnect('quickbooks') is True
        store.delete_integration_settings.assert_awaited_once_with('quickbooks')

        assert await registry.disconnect('twilio') is False
