"""
Integration adapters for third-party business systems.

This module contains connectors for:
- QuickBooks Online accounting
- LeadConnector (GHL) CRM contacts and conversations
- Google Calendar installation scheduling
- Twilio messaging
"""

from .exceptions import (
    IntegrationError,
    IntegrationAuthError,
    IntegrationRateLimitError,
    IntegrationNotConnectedError,
)

__all__ = [
    'IntegrationError',
    'IntegrationAuthError',
    'IntegrationRateLimitError',
    'IntegrationNotConnectedError',
]
