import pytest
from unittest.mock import Mock, AsyncMock

from flooring_crm.services.estimate_sharing import (
    EstimateSharingError,
    EstimateSharingService,
    SharedEstimateNotFoundError,
    estimate_from_row,
)


class TestEstimateSharingService:
    """Unit tests for client-facing estimate links"""

    @pytest.fixture
    def store(self):
        mock = Mock()
        mock.call_rpc = AsyncMock(return_value={"token": "tok123", "expires_at": "2026-11-16T00:00:00+00:00"})
        mock.get_estimate_by_token = AsyncMock(return_value=None)
        return mock

    @pytest.fixture
    def sharing(self, store):
        return EstimateSharingService(store, "https://crm.example.com/")

    @pytest.mark.asyncio
    async def test_generate_share(self, sharing, store):
        share = await sharing.generate_share("e1")

        assert share.token == "tok123"
        assert share.url == "https://crm.example.com/estimates/share/tok123"
        assert share.expiresAt == "2026-11-16T00:00:00+00:00"
        store.call_rpc.assert_awaited_once_with(
            "generate_estimate_share", {"estimate_id": "e1", "expires_in_days": 30}
        )

    @pytest.mark.asyncio
    async def test_generate_share_row_list(self, sharing, store):
        store.call_rpc.return_value = [{"token": "tok456", "expires_at": None}]

        share = await sharing.generate_share("e1")

        assert share.token == "tok456"

    @pytest.mark.asyncio
    async def test_generate_share_without_token(self, sharing, store):
        store.call_rpc.return_value = None

        with pytest.raises(EstimateSharingError) as exc_info:
            await sharing.generate_share("e1")
        assert str(exc_info.value) == "No share data returned"

    @pytest.mark.asyncio
    async def test_generate_share_rpc_error(self, sharing, store):
        store.call_rpc.side_effect = Exception("permission denied for estimate")

        with pytest.raises(EstimateSharingError) as exc_info:
            await sharing.generate_share("e1")
        assert "permission denied" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_generate_share_requires_id(self, sharing, store):
        with pytest.raises(ValueError):
            await sharing.generate_share("")
        store.call_rpc.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_estimate_by_token(self, sharing, store):
        store.get_estimate_by_token.return_value = {
            "id": "e1",
            "client_id": "c1",
            "client_name": "John Smith",
            "status": "pending",
            "items": None,
            "subtotal": 1380.0,
            "tax": 110.4,
            "total": 1490.4,
            "notes": None,
            "room_dimensions": {"Kitchen": {"length": 12, "width": 10}},
            "share_token": "tok123",
            "client_viewed_at": None,
            "created_by": "user-1",
        }

        estimate = await sharing.get_estimate_by_token("tok123")

        assert estimate.clientId == "c1"
        assert estimate.clientName == "John Smith"
        assert estimate.items == []
        assert estimate.notes == ""
        assert estimate.roomDimensions == {"Kitchen": {"length": 12.0, "width": 10.0}}
        assert estimate.shareToken == "tok123"
        store.get_estimate_by_token.assert_awaited_once_with("tok123")

    @pytest.mark.asyncio
    async def test_get_estimate_by_token_missing(self, sharing, store):
        with pytest.raises(SharedEstimateNotFoundError):
            await sharing.get_estimate_by_token("expired")

        with pytest.raises(SharedEstimateNotFoundError):
            await sharing.get_estimate_by_token("")

    @pytest.mark.asyncio
    async def test_record_view(self, sharing, store):
        store.call_rpc.return_value = None

        await sharing.record_view("tok123")

        store.call_rpc.assert_awaited_once_with("record_estimate_view", {"share_token": "tok123"})

    @pytest.mark.asyncio
    async def test_submit_response(self, sharing, store):
        await sharing.submit_response("tok123", "rejected", "Too expensive")

        store.call_rpc.assert_awaited_once_with("submit_estimate_response", {
            "share_token": "tok123", "response_status": "rejected", "response_feedback": "Too expensive",
        })

    @pytest.mark.asyncio
    async def test_submit_response_invalid(self, sharing, store):
        with pytest.raises(ValueError):
            await sharing.submit_response("tok123", "maybe")
        store.call_rpc.assert_not_called()

    def test_estimate_from_row_accepts_camel_case(self):
        estimate = estimate_from_row({"id": "e2", "clientId": "c2", "shareUrl": "https://x/estimates/share/t"})

        assert estimate.clientId == "c2"
        assert estimate.shareUrl == "https://x/estimates/share/t"
