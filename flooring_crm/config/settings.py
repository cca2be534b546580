"""
Service configuration

All settings come from environment variables (optionally via a local .env file).
Connectors check their own credentials and disable themselves when missing.
"""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    # OpenAI for command parsing, transcription, damage photos and fallback TTS
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-3.5-turbo"
    OPENAI_TRANSCRIBE_MODEL: str = "whisper-1"
    OPENAI_VISION_MODEL: str = "gpt-4o"

    # ElevenLabs voice playback (Rachel)
    ELEVENLABS_API_KEY: str = ""
    ELEVENLABS_VOICE_ID: str = "21m00Tcm4TlvDq8ikWAM"
    ELEVENLABS_MODEL_ID: str = "eleven_monolingual_v1"

    # Hosted backend
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""

    # QuickBooks Online
    QUICKBOOKS_CLIENT_ID: str = ""
    QUICKBOOKS_CLIENT_SECRET: str = ""
    QUICKBOOKS_REDIRECT_URI: str = ""
    QUICKBOOKS_ENVIRONMENT: str = "sandbox"

    # LeadConnector (GHL) CRM
    GHL_API_BASE: str = "https://services.leadconnectorhq.com"
    GHL_API_VERSION: str = "2021-07-28"

    # Square payments
    SQUARE_ACCESS_TOKEN: str = ""
    SQUARE_ENVIRONMENT: str = "sandbox"
    SQUARE_LOCATION_ID: str = ""

    # Twilio messaging
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_FROM_NUMBER: str = ""

    # Google Calendar
    GOOGLE_CALENDAR_ID: str = "primary"
    GOOGLE_CREDENTIALS_PATH: str = "credentials.json"
    GOOGLE_TOKEN_PATH: str = "token.json"

    # Voice learning persistence
    VOICE_LEARNING_PATH: str = "data/voice_learning_patterns.json"

    # Estimates
    DEFAULT_TAX_RATE: float = 0.08
    # Origin used in client-facing estimate links
    PUBLIC_BASE_URL: str = "http://localhost:5173"

    # Other
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
