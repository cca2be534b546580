import os
import logging
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/calendar']


class CalendarAdapter:
    """Google Calendar connector for installation appointments"""

    def __init__(self, calendar_id: str = 'primary', token_path: str = 'token.json',
                 service=None, timezone: str = 'America/New_York'):
        self.calendar_id = calendar_id
        self.token_path = token_path
        self.timezone = timezone
        self.service = service
        self.enabled = service is not None
        if self.service is None:
            self._authenticate_safe()

    def _authenticate_safe(self):
        """Authenticate from a stored user token; disable gracefully when missing"""
        try:
            if not os.path.exists(self.token_path):
                logger.warning(f"Google Calendar disabled: missing token at {self.token_path}")
                self.enabled = False
                return

            creds = Credentials.from_authorized_user_file(self.token_path, SCOPES)
            if not creds.valid:
                if creds.expired and creds.refresh_token:
                    creds.refresh(Request())
                    with open(self.token_path, 'w') as token:
                        token.write(creds.to_json())
                else:
                    logger.warning("Google Calendar disabled: token is invalid and cannot be refreshed")
                    self.enabled = False
                    return

            self.service = build('calendar', 'v3', credentials=creds)
            self.enabled = True
            logger.info("Google Calendar service initialized")
        except Exception as e:
            logger.error(f"Google Calendar auth failed: {e}")
            self.service = None
            self.enabled = False

    def authorize(self, credentials_path: str) -> None:
        """Run the one-time browser consent and store the user token"""
        if not os.path.exists(credentials_path):
            raise FileNotFoundError(f"Credentials file not found at {credentials_path}")

        flow = InstalledAppFlow.from_client_secrets_file(credentials_path, SCOPES)
        creds = flow.run_local_server(port=0)
        with open(self.token_path, 'w') as token:
            token.write(creds.to_json())

        self.service = build('calendar', 'v3', credentials=creds)
        self.enabled = True
        logger.info(f"Google Calendar authorized, token saved to {self.token_path}")

    def _ensure_available(self) -> bool:
        if self.service is None:
            # Try once more in case the token appeared later
            self._authenticate_safe()
        return self.service is not None

    @staticmethod
    def parse_start(date: str, time: Optional[str] = None) -> datetime:
        """Parse 'YYYY-MM-DD' plus optional 'HH:MM' (24h) or 'H:MM am/pm'"""
        time_str = (time or '09:00').strip().lower().replace('.', '')
        for fmt in ('%H:%M', '%I:%M %p', '%I %p', '%I:%M%p', '%I%p'):
            try:
                parsed_time = datetime.strptime(time_str, fmt).time()
                break
            except ValueError:
                continue
        else:
            raise ValueError(f"Unrecognized time: {time}")
        return datetime.combine(datetime.strptime(date.strip(), '%Y-%m-%d').date(), parsed_time)

    def create_event(self, summary: str, start_time: datetime, end_time: datetime,
                     description: str = "", location: str = "", attendees: List[str] = None) -> Dict[str, Any]:
        """Create a new calendar event. Returns {} when disabled/unavailable."""
        if not self._ensure_available():
            logger.info("Calendar create_event skipped: service unavailable")
            return {}
        event = {
            'summary': summary,
            'description': description,
            'location': location,
            'start': {'dateTime': start_time.isoformat(), 'timeZone': self.timezone},
            'end': {'dateTime': end_time.isoformat(), 'timeZone': self.timezone},
        }
        if attendees:
            event['attendees'] = [{'email': email} for email in attendees]
        try:
            event = self.service.events().insert(calendarId=self.calendar_id, body=event).execute()
            logger.info(f"Event created: {event.get('htmlLink')}")
            return event
        except HttpError as error:
            logger.error(f"Error creating event: {error}")
            return {}

    def schedule_installation(self, date: str, time: Optional[str] = None, location: str = "",
                              notes: str = "", client_name: str = "", duration_hours: float = 8) -> Dict[str, Any]:
        start = self.parse_start(date, time)
        end = start + timedelta(hours=duration_hours)
        summary = f"Flooring installation - {client_name}" if client_name else "Flooring installation"
        return self.create_event(summary, start, end, description=notes, location=location)


if __name__ == "__main__":
    from flooring_crm.config import get_settings

    settings = get_settings()
    CalendarAdapter(settings.GOOGLE_CALENDAR_ID, settings.GOOGLE_TOKEN_PATH).authorize(settings.GOOGLE_CREDENTIALS_PATH)
