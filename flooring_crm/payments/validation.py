import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from flooring_crm.models import PaymentFormData

PAYMENT_LIMITS = {
    'MIN_AMOUNT': 0.01,
    'MAX_AMOUNT': 1000000,  # $1M limit
    'MIN_CHECK_NUMBER_LENGTH': 3,
    'MAX_CHECK_NUMBER_LENGTH': 20,
    'MIN_REFERENCE_LENGTH': 3,
    'MAX_REFERENCE_LENGTH': 50,
}

IDENTIFIER_RE = re.compile(r'^[A-Za-z0-9-]+$')
CARD_LAST4_RE = re.compile(r'^\d{4}$')


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def parse_amount(amount: Any) -> Optional[float]:
    if isinstance(amount, bool):
        return None
    try:
        value = float(str(amount).strip()) if isinstance(amount, str) else float(amount)
    except (TypeError, ValueError):
        return None
    if value != value:  # NaN
        return None
    return value


def validate_payment(payment: Union[PaymentFormData, Dict[str, Any]]) -> ValidationResult:
    if isinstance(payment, dict):
        payment = PaymentFormData(**payment)

    errors: List[str] = []

    amount = parse_amount(payment.amount)
    if amount is None:
        errors.append('Invalid payment amount')
    elif amount < PAYMENT_LIMITS['MIN_AMOUNT']:
        errors.append(f"Payment amount must be at least ${PAYMENT_LIMITS['MIN_AMOUNT']}")
    elif amount > PAYMENT_LIMITS['MAX_AMOUNT']:
        errors.append(f"Payment amount cannot exceed ${PAYMENT_LIMITS['MAX_AMOUNT']:,}")

    # Method specific fields
    if payment.method == 'credit_card':
        if not payment.cardLast4:
            errors.append('Card last 4 digits are required')
        elif not CARD_LAST4_RE.match(payment.cardLast4):
            errors.append('Card last 4 digits must be numeric')

    elif payment.method == 'check':
        check_number = payment.checkNumber
        if not check_number:
            errors.append('Check number is required')
        elif len(check_number) < PAYMENT_LIMITS['MIN_CHECK_NUMBER_LENGTH']:
            errors.append(f"Check number must be at least {PAYMENT_LIMITS['MIN_CHECK_NUMBER_LENGTH']} characters")
        elif len(check_number) > PAYMENT_LIMITS['MAX_CHECK_NUMBER_LENGTH']:
            errors.append(f"Check number cannot exceed {PAYMENT_LIMITS['MAX_CHECK_NUMBER_LENGTH']} characters")
        elif not IDENTIFIER_RE.match(check_number):
            errors.append('Check number can only contain letters, numbers, and hyphens')

    elif payment.method == 'bank_transfer':
        if not payment.reference:
            errors.append('Reference number is required for bank transfers')

    # Reference format applies to every method
    if payment.reference:
        reference = payment.reference
        if len(reference) < PAYMENT_LIMITS['MIN_REFERENCE_LENGTH']:
            errors.append(f"Reference number must be at least {PAYMENT_LIMITS['MIN_REFERENCE_LENGTH']} characters")
        elif len(reference) > PAYMENT_LIMITS['MAX_REFERENCE_LENGTH']:
            errors.append(f"Reference number cannot exceed {PAYMENT_LIMITS['MAX_REFERENCE_LENGTH']} characters")
        elif not IDENTIFIER_RE.match(reference):
            errors.append('Reference number can only contain letters, numbers, and hyphens')

    return ValidationResult(is_valid=not errors, errors=errors)
