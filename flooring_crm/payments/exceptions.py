"""
Payment Exceptions

Exception classes for payment validation, recording and the card gateway.
"""

from typing import List, Optional


class PaymentError(Exception):
    """Base exception for payment errors"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


class PaymentProcessingError(PaymentError):
    """Exception raised when a payment cannot be recorded"""
    pass


class PaymentValidationError(PaymentProcessingError):
    """Exception for invalid payment form data"""

    def __init__(self, errors: List[str]):
        super().__init__(", ".join(errors))
        self.errors = errors


class PaymentSyncError(PaymentError):
    """Exception raised when a payment cannot be applied to the client"""
    pass


class PaymentGatewayError(PaymentError):
    """Exception for card gateway API errors"""
    pass


class PaymentGatewayAuthError(PaymentGatewayError):
    """Exception for gateway authentication errors"""
    pass


class PaymentGatewayRateLimitError(PaymentGatewayError):
    """Exception for gateway rate limiting errors"""
    pass
