"""
Integration Exceptions

Exception classes shared by the third-party connectors.
"""

from typing import Optional


class IntegrationError(Exception):
    """Base exception for connector errors"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


class IntegrationAuthError(IntegrationError):
    """Exception for authentication-related errors"""
    pass


class IntegrationRateLimitError(IntegrationError):
    """Exception for rate limiting errors"""
    pass


class IntegrationNotConnectedError(IntegrationError):
    """Exception raised when a connector is used before it is connected"""
    pass
