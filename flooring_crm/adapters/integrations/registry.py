import logging
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class IntegrationRegistry:
    """Connector catalogue: what is configured, what is linked, and how to unlink it"""

    def __init__(self, store=None, quickbooks=None, crm=None, calendar=None, sms=None, payments=None):
        self.store = store
        self.quickbooks = quickbooks
        self.crm = crm
        self.calendar = calendar
        self.sms = sms
        self.payments = payments

    async def list_integrations(self) -> List[Dict[str, Any]]:
        quickbooks_connected = False
        if self.quickbooks is not None:
            await self.quickbooks.initialize()
            quickbooks_connected = self.quickbooks.is_connected()

        crm_connected = False
        if self.crm is not None:
            await self.crm.initialize()
            crm_connected = self.crm.is_connected()

        return [
            {
                'name': 'quickbooks',
                'category': 'accounting',
                'enabled': bool(self.quickbooks and self.quickbooks.enabled),
                'connected': quickbooks_connected,
            },
            {
                'name': 'ghl',
                'category': 'crm',
                'enabled': self.crm is not None,
                'connected': crm_connected,
            },
            {
                'name': 'google_calendar',
                'category': 'calendar',
                'enabled': bool(self.calendar and self.calendar.enabled),
                'connected': bool(self.calendar and self.calendar.enabled),
            },
            {
                'name': 'twilio',
                'category': 'messaging',
                'enabled': bool(self.sms and self.sms.enabled),
                'connected': bool(self.sms and self.sms.enabled),
            },
            {
                'name': 'square',
                'category': 'payments',
                'enabled': self.payments is not None,
                'connected': self.payments is not None,
            },
        ]

    async def disconnect(self, name: str) -> bool:
        if name == 'ghl':
            if self.crm is None:
                return False
            await self.crm.disconnect()
            return True

        if name == 'quickbooks':
            if self.quickbooks is not None:
                self.quickbooks.disconnect()
            if self.store is not None:
                return await self.store.delete_integration_settings('quickbooks')
            return True

        logger.warning(f"Integration {name} cannot be disconnected at runtime")
        return False
