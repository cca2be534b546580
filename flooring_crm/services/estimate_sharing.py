"""
Client-facing estimate links

Estimates are shared with clients through an expiring token. The token is
issued by a database function; viewing and approving go through database
functions too so the hosted backend owns the audit fields.
"""

import logging
from typing import Any, Dict, Literal, Optional

from flooring_crm.models import Estimate, EstimateShare

logger = logging.getLogger(__name__)

SHARE_EXPIRY_DAYS = 30

EstimateResponse = Literal['approved', 'rejected']

# Shared rows are written by database functions in snake_case
ROW_FIELDS = {
    'client_id': 'clientId',
    'client_name': 'clientName',
    'room_dimensions': 'roomDimensions',
    'share_url': 'shareUrl',
    'share_token': 'shareToken',
    'client_feedback': 'clientFeedback',
    'client_viewed_at': 'clientViewedAt',
    'client_responded_at': 'clientRespondedAt',
    'expires_at': 'expiresAt',
}


class EstimateSharingError(Exception):
    pass


class SharedEstimateNotFoundError(EstimateSharingError, LookupError):
    pass


def estimate_from_row(row: Dict[str, Any]) -> Estimate:
    data = {ROW_FIELDS.get(key, key): value for key, value in row.items()}
    data['items'] = data.get('items') or []
    data['rooms'] = data.get('rooms') or []
    data['roomDimensions'] = data.get('roomDimensions') or {}
    data['notes'] = data.get('notes') or ''
    return Estimate.model_validate({k: v for k, v in data.items() if k in Estimate.model_fields and v is not None})


class EstimateSharingService:
    def __init__(self, store, base_url: str = ""):
        self.store = store
        self.base_url = base_url.rstrip('/')

    def share_url(self, token: str) -> str:
        return f"{self.base_url}/estimates/share/{token}"

    async def _rpc(self, function_name: str, params: Dict[str, Any], failure: str) -> Any:
        try:
            return await self.store.call_rpc(function_name, params)
        except Exception as e:
            logger.error(f"{failure}: {e}")
            raise EstimateSharingError(str(e) or failure) from e

    async def generate_share(self, estimate_id: str, expires_in_days: int = SHARE_EXPIRY_DAYS) -> EstimateShare:
        if not estimate_id:
            raise ValueError("Estimate ID is required")

        data = await self._rpc('generate_estimate_share',
                               {'estimate_id': estimate_id, 'expires_in_days': expires_in_days},
                               'Failed to generate share URL')
        if isinstance(data, list):
            data = data[0] if data else None
        if not data or not data.get('token'):
            raise EstimateSharingError('No share data returned')

        share = EstimateShare(
            estimateId=estimate_id,
            token=data['token'],
            url=self.share_url(data['token']),
            expiresAt=data.get('expires_at'),
        )
        logger.info(f"🔗 Share link created for estimate {estimate_id} (expires {share.expiresAt})")
        return share

    async def get_estimate_by_token(self, token: str) -> Estimate:
        row = await self.store.get_estimate_by_token(token) if token else None
        if not row:
            raise SharedEstimateNotFoundError("Estimate not found or link has expired")
        return estimate_from_row(row)

    async def record_view(self, token: str) -> None:
        await self._rpc('record_estimate_view', {'share_token': token}, 'Failed to record view')
        logger.info("👀 Shared estimate viewed")

    async def submit_response(self, token: str, response: EstimateResponse,
                              feedback: Optional[str] = None) -> None:
        if response not in ('approved', 'rejected'):
            raise ValueError("Response must be 'approved' or 'rejected'")

        await self._rpc('submit_estimate_response',
                        {'share_token': token, 'response_status': response, 'response_feedback': feedback},
                        'Failed to submit response')
        logger.info(f"✅ Client {response} shared estimate")
