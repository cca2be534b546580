import asyncio
import logging
import time
from typing import Optional, Dict, Any
from collections import OrderedDict

import httpx
from openai import OpenAI

from flooring_crm.models import VoiceResponse

logger = logging.getLogger(__name__)

ELEVENLABS_API_BASE = "https://api.elevenlabs.io"

DEFAULT_VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.75,
    "style": 0.35,
    "use_speaker_boost": True,
}


class TTSManager:
    """Handles speech synthesis for assistant feedback and the per-session playback gate"""

    def __init__(self, elevenlabs_api_key: str = "", voice_id: str = "21m00Tcm4TlvDq8ikWAM",
                 model_id: str = "eleven_monolingual_v1", openai_api_key: str = "",
                 http_client: Optional[httpx.AsyncClient] = None):
        self.elevenlabs_api_key = elevenlabs_api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.voice_settings = dict(DEFAULT_VOICE_SETTINGS)
        self.http_client = http_client or httpx.AsyncClient(base_url=ELEVENLABS_API_BASE, timeout=30.0)

        # OpenAI TTS is only used when ElevenLabs is not configured
        self.openai_client = OpenAI(api_key=openai_api_key) if openai_api_key else None
        self.openai_tts_model = "tts-1"
        self.openai_tts_voice = "nova"

        # Playback gate state per session
        self.playback: Dict[str, Dict[str, Any]] = {}

        # TTS cache
        self.tts_cache: "OrderedDict[str, bytes]" = OrderedDict()

        # Configuration
        self.playback_buffer_sec = 1.0
        self.max_cache_size = 100

    @property
    def provider(self) -> Optional[str]:
        if self.elevenlabs_api_key:
            return "elevenlabs"
        if self.openai_client is not None:
            return "openai"
        return None

    async def synthesize(self, text: str, session_id: str) -> Optional[VoiceResponse]:
        """Generate speech for text and open the playback gate for the session"""
        if not text or not text.strip():
            return None

        # Only one utterance plays at a time per session
        self.cancel(session_id)

        try:
            audio_data = self.tts_cache.get(text)
            if audio_data is not None:
                logger.info(f"🎵 Using cached TTS for {session_id}")
            else:
                audio_data = await self._generate(text)
                self._add_to_cache(text, audio_data)
                logger.info(f"🎵 Generated TTS for {session_id}: {len(audio_data)} bytes")

        except Exception as e:
            logger.error(f"Speech synthesis failed for {session_id}: {e}")
            return VoiceResponse(transcript=text, success=False, error=str(e) or "Speech synthesis failed")

        self.start_playback(session_id, text)
        return VoiceResponse(transcript=text, success=True, audio=audio_data)

    async def _generate(self, text: str) -> bytes:
        provider = self.provider
        if provider == "elevenlabs":
            return await self._synthesize_elevenlabs(text)
        if provider == "openai":
            return await self._synthesize_openai(text)
        raise RuntimeError("No speech synthesis provider configured")

    async def _synthesize_elevenlabs(self, text: str) -> bytes:
        response = await self.http_client.post(
            f"/v1/text-to-speech/{self.voice_id}",
            headers={
                "Accept": "audio/mpeg",
                "Content-Type": "application/json",
                "xi-api-key": self.elevenlabs_api_key,
            },
            json={
                "text": text,
                "model_id": self.model_id,
                "voice_settings": self.voice_settings,
            },
        )

        if response.status_code != 200:
            raise RuntimeError(f"ElevenLabs API error: {response.status_code} {response.reason_phrase}")

        return response.content

    async def _synthesize_openai(self, text: str) -> bytes:
        response = await asyncio.to_thread(
            self.openai_client.audio.speech.create,
            model=self.openai_tts_model,
            voice=self.openai_tts_voice,
            input=text,
        )
        return response.content

    def _add_to_cache(self, key: str, audio_data: bytes) -> None:
        """Add TTS audio to cache"""
        if key in self.tts_cache:
            self.tts_cache.move_to_end(key)
        elif len(self.tts_cache) >= self.max_cache_size:
            # Remove oldest entry
            self.tts_cache.popitem(last=False)

        self.tts_cache[key] = audio_data

    def estimate_duration(self, text: str) -> float:
        """Rough estimation: ~60ms per character"""
        return len(text) * 0.06

    def start_playback(self, session_id: str, text: str) -> None:
        duration = self.estimate_duration(text) + self.playback_buffer_sec
        self.playback[session_id] = {
            'active': True,
            'start_time': time.time(),
            'duration': duration,
            'text': text,
        }
        logger.info(f"🔇 Playback gate opened for {session_id}: {duration:.2f}s (text: {len(text)} chars)")

    def is_speaking(self, session_id: str) -> bool:
        state = self.playback.get(session_id)
        if not state or not state.get('active'):
            return False
        if time.time() - state['start_time'] >= state['duration']:
            state['active'] = False
            return False
        return True

    def cancel(self, session_id: str) -> bool:
        """Stop the current utterance for a session; returns True if one was playing"""
        if not self.is_speaking(session_id):
            return False
        state = self.playback[session_id]
        state['active'] = False
        elapsed = time.time() - state['start_time']
        logger.info(f"🔊 Playback cancelled for {session_id} after {elapsed:.2f}s")
        return True

    def get_playback_state(self, session_id: str) -> Dict[str, Any]:
        return dict(self.playback.get(session_id, {}))

    def cleanup_session(self, session_id: str) -> None:
        self.playback.pop(session_id, None)
        logger.info(f"🧹 Cleaned up TTS state for {session_id}")

    def clear_cache(self) -> None:
        self.tts_cache.clear()
        logger.info("🗑️ TTS cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            'cache_size': len(self.tts_cache),
            'max_cache_size': self.max_cache_size,
            'cache_usage_percent': (len(self.tts_cache) / self.max_cache_size) * 100
        }

    async def close(self):
        """Close HTTP client"""
        await self.http_client.aclose()
