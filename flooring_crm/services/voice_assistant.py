"""
Voice command pipeline

Transcript (or uploaded audio) -> language model parse -> CRM action ->
learning record -> spoken feedback. Only one command is processed per
session at a time; extra turns are dropped, not queued.
"""

import logging
from typing import Optional, Set

from flooring_crm.adapters.speech_recognizer import RecognitionBusyError
from flooring_crm.models import VoiceTurn

logger = logging.getLogger(__name__)


class VoiceAssistant:
    """Orchestrates the voice pipeline for each session"""

    def __init__(self, processor, dispatcher, conversation, learning,
                 tts=None, recognizer=None, suggestion_limit: int = 5):
        self.processor = processor
        self.dispatcher = dispatcher
        self.conversation = conversation
        self.learning = learning
        self.tts = tts
        self.recognizer = recognizer
        self.suggestion_limit = suggestion_limit

        self.processing: Set[str] = set()

    def is_processing(self, session_id: str) -> bool:
        return session_id in self.processing

    async def handle_audio(self, session_id: str, audio_data: bytes,
                           filename: str = "command.webm", location: Optional[str] = None) -> VoiceTurn:
        if self.recognizer is None:
            return VoiceTurn(session_id=session_id, transcript="", handled=False,
                             reason="Speech recognition is not configured")

        try:
            transcript = await self.recognizer.recognize(session_id, audio_data, filename)
        except RecognitionBusyError:
            return VoiceTurn(session_id=session_id, transcript="", handled=False, reason="already_listening")

        if not transcript:
            return VoiceTurn(session_id=session_id, transcript="", handled=False, reason="no_speech")

        return await self.handle_transcript(session_id, transcript, location=location)

    async def handle_transcript(self, session_id: str, transcript: str,
                                location: Optional[str] = None) -> VoiceTurn:
        if location:
            self.conversation.set_location(session_id, location.strip().lower())

        transcript = (transcript or "").strip()
        if not transcript:
            return VoiceTurn(session_id=session_id, transcript="", handled=False, reason="no_speech")

        if session_id in self.processing:
            logger.info(f"⏳ Command already processing for {session_id}, dropping '{transcript}'")
            return VoiceTurn(session_id=session_id, transcript=transcript, handled=False, reason="busy")

        if self.conversation.should_suppress_duplicate(session_id, transcript):
            return VoiceTurn(session_id=session_id, transcript=transcript, handled=False, reason="duplicate")

        self.processing.add(session_id)
        try:
            return await self._run(session_id, transcript)
        finally:
            self.processing.discard(session_id)

    async def _run(self, session_id: str, transcript: str) -> VoiceTurn:
        logger.info(f"🗣️ Voice command for {session_id}: '{transcript}'")

        # Features must see the context as it was before this command
        user_context = self.conversation.build_user_context(session_id)

        result = await self.processor.process_command(
            transcript, session_id, context=self.conversation.get_context(session_id),
        )
        self.conversation.record_result(session_id, transcript, result)

        outcome = None
        if result.success:
            outcome = await self.dispatcher.dispatch(result)
            self.learning.learn_from_interaction(
                transcript, result.action, result.parameters, outcome.success, user_context,
            )

        speech = await self._speak(session_id, self._feedback_text(result, outcome))

        return VoiceTurn(
            session_id=session_id,
            transcript=transcript,
            result=result,
            outcome=outcome,
            speech=speech,
            suggestions=self.learning.get_relevant_suggestions(self.suggestion_limit),
        )

    @staticmethod
    def _feedback_text(result, outcome) -> str:
        if outcome is not None and not outcome.success and outcome.message:
            return outcome.message
        if result.feedback:
            return result.feedback
        return outcome.message if outcome is not None else ""

    async def _speak(self, session_id: str, text: str):
        if self.tts is None or not text:
            return None
        return await self.tts.synthesize(text, session_id)

    def cancel(self, session_id: str) -> bool:
        """Stop any speech playing for the session"""
        cancelled = False
        if self.tts is not None:
            cancelled = self.tts.cancel(session_id)
        if self.recognizer is not None and self.recognizer.sessions.is_listening(session_id):
            self.recognizer.sessions.stop(session_id)
            cancelled = True
        return cancelled

    def suggestions(self, limit: Optional[int] = None):
        return self.learning.get_relevant_suggestions(limit or self.suggestion_limit)
