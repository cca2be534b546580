import logging
import uuid
from typing import Any, Dict, Union

from flooring_crm.models import Payment, PaymentFormData, utc_now_iso
from .exceptions import PaymentProcessingError, PaymentSyncError, PaymentValidationError
from .validation import parse_amount, validate_payment

logger = logging.getLogger(__name__)


class PaymentProcessor:
    """Records client payments in the hosted backend and applies them to the client balance"""

    def __init__(self, store):
        self.store = store

    async def sync_payment_to_client(self, payment: Payment) -> None:
        try:
            await self.store.call_rpc('sync_payment_to_client', {'payment_data': payment.model_dump()})
        except Exception as e:
            logger.error(f"Payment sync error for {payment.id}: {e}")
            raise PaymentSyncError(str(e) or 'Failed to sync payment') from e

    async def process_payment(self, payment_data: Union[PaymentFormData, Dict[str, Any]],
                              client_id: str) -> Payment:
        if isinstance(payment_data, dict):
            payment_data = PaymentFormData(**payment_data)

        try:
            validation = validate_payment(payment_data)
            if not validation.is_valid:
                raise PaymentValidationError(validation.errors)

            now = utc_now_iso()
            payment = Payment(
                id=str(uuid.uuid4()),
                clientId=client_id,
                amount=parse_amount(payment_data.amount),
                method=payment_data.method,
                status='pending',
                date=now,
                reference=payment_data.reference,
                checkNumber=payment_data.checkNumber,
                cardLast4=payment_data.cardLast4,
                notes=payment_data.notes,
                createdAt=now,
                updatedAt=now,
            )

            await self.store.call_rpc('process_payment', {'payment_data': payment.model_dump()})
            await self.sync_payment_to_client(payment)

        except PaymentProcessingError:
            raise
        except Exception as e:
            logger.error(f"Payment processing error for client {client_id}: {e}")
            raise PaymentProcessingError(str(e) or 'Failed to process payment') from e

        logger.info(f"💳 Recorded {payment.method} payment {payment.id} for client {client_id}: ${payment.amount:.2f}")
        return payment.model_copy(update={'status': 'completed'})
