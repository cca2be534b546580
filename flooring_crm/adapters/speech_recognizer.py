import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

from openai import OpenAI

logger = logging.getLogger(__name__)


class RecognitionBusyError(Exception):
    """Raised when a recognition session is already active"""

    def __init__(self, session_id: str):
        super().__init__(f"Speech recognition already active for {session_id}")
        self.session_id = session_id


class RecognitionSessions:
    """Tracks active recognition sessions so two never overlap for one user"""

    def __init__(self, max_session_sec: float = 60.0):
        self.active: Dict[str, float] = {}
        # Sessions older than this are treated as abandoned
        self.max_session_sec = max_session_sec

    def start(self, session_id: str) -> bool:
        """Start listening; returns False if a session is already running"""
        started_at = self.active.get(session_id)
        if started_at is not None:
            if time.time() - started_at < self.max_session_sec:
                logger.info(f"🎙️ Recognition already active for {session_id}, ignoring start")
                return False
            logger.warning(f"Recognition session for {session_id} expired, restarting")

        self.active[session_id] = time.time()
        logger.info(f"🎙️ Recognition started for {session_id}")
        return True

    def stop(self, session_id: str) -> None:
        if self.active.pop(session_id, None) is not None:
            logger.info(f"🛑 Recognition stopped for {session_id}")

    def is_listening(self, session_id: str) -> bool:
        started_at = self.active.get(session_id)
        return started_at is not None and time.time() - started_at < self.max_session_sec

    @asynccontextmanager
    async def listening(self, session_id: str):
        if not self.start(session_id):
            raise RecognitionBusyError(session_id)
        try:
            yield
        finally:
            self.stop(session_id)


class SpeechRecognizer:
    """Handles speech-to-text transcription of spoken CRM commands"""

    def __init__(self, openai_api_key: str, model: str = "whisper-1", language: str = "en"):
        self.openai_client = OpenAI(api_key=openai_api_key)
        self.model = model
        self.language = language
        self.sessions = RecognitionSessions()

        # Transcripts shorter than this are treated as noise
        self.min_transcript_chars = 2

    async def transcribe_audio(self, audio_data: bytes, filename: str = "command.webm",
                               session_id: Optional[str] = None) -> Tuple[Optional[str], float]:
        """Transcribe recorded audio to text using OpenAI Whisper"""
        if not audio_data:
            logger.warning(f"No audio received for {session_id}")
            return None, 0.0

        try:
            start_time = time.monotonic()

            response = await asyncio.to_thread(
                self.openai_client.audio.transcriptions.create,
                model=self.model,
                file=(filename, audio_data),
                language=self.language,
            )

            text = (response.text or "").strip()
            transcription_time = time.monotonic() - start_time
            logger.info(f"Whisper transcription completed for {session_id} in {transcription_time:.2f}s")

            return text, transcription_time

        except Exception as e:
            logger.error(f"Transcription failed for {session_id}: {e}")
            return None, 0.0

    async def recognize(self, session_id: str, audio_data: bytes,
                        filename: str = "command.webm") -> Optional[str]:
        """Run one recognition session; overlapping sessions are rejected"""
        async with self.sessions.listening(session_id):
            text, _ = await self.transcribe_audio(audio_data, filename, session_id)

        if text is None or self.should_suppress_transcript(text):
            return None
        return text

    def should_suppress_transcript(self, text: str) -> bool:
        """Determine if transcript is too short to be a command"""
        if not text or not text.strip():
            return True

        if len(text.strip()) < self.min_transcript_chars:
            return True

        return False
