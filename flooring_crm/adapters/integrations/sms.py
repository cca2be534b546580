import logging
import re
from typing import Dict, Any, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client as TwilioClient

logger = logging.getLogger(__name__)


def normalize_phone(number: str) -> str:
    """Format a US number as E.164"""
    digits = re.sub(r'\D', '', number or '')
    if len(digits) == 10:
        return '+1' + digits
    if len(digits) == 11 and digits.startswith('1'):
        return '+' + digits
    return ('+' + digits) if digits else ''


class SMSAdapter:
    """Twilio text messaging to clients"""

    def __init__(self, account_sid: str = "", auth_token: str = "", from_number: str = "",
                 client: Optional[TwilioClient] = None):
        self.from_number = normalize_phone(from_number) if from_number else ""

        if client is not None:
            self.client = client
        elif account_sid and auth_token:
            self.client = TwilioClient(account_sid, auth_token)
        else:
            self.client = None

        self.enabled = self.client is not None and bool(self.from_number)
        if not self.enabled:
            logger.warning("Twilio SMS not configured - missing credentials or sender number")

    def send_sms(self, to_number: str, message: str) -> Dict[str, Any]:
        if not self.enabled:
            return {"success": False, "error": "SMS not configured"}

        to = normalize_phone(to_number)
        if not to:
            return {"success": False, "error": "Invalid phone number"}
        if not message or not message.strip():
            return {"success": False, "error": "Message is empty"}

        try:
            sent = self.client.messages.create(to=to, from_=self.from_number, body=message)
            logger.info(f"✅ SMS sent to {to} (sid={sent.sid})")
            return {"success": True, "sid": sent.sid, "to": to}
        except TwilioRestException as e:
            logger.error(f"❌ Twilio API error: {e}")
            return {"success": False, "error": str(e)}
