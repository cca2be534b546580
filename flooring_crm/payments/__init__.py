"""
Client payments: validation, recording in the hosted backend, and card charges.
"""

from .exceptions import (
    PaymentError,
    PaymentValidationError,
    PaymentProcessingError,
    PaymentSyncError,
    PaymentGatewayError,
)
from .validation import validate_payment, ValidationResult
from .processor import PaymentProcessor

__all__ = [
    'PaymentError',
    'PaymentValidationError',
    'PaymentProcessingError',
    'PaymentSyncError',
    'PaymentGatewayError',
    'validate_payment',
    'ValidationResult',
    'PaymentProcessor',
]
