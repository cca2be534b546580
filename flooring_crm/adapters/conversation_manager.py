import logging
import time
from datetime import datetime
from typing import Dict, Any, List, Optional
from collections import defaultdict

from flooring_crm.models import CommandResult, UserContext

logger = logging.getLogger(__name__)


class ConversationManager:
    """Manages per-session voice command context"""

    def __init__(self):
        # Command context per session
        self.contexts: Dict[str, Dict[str, Any]] = defaultdict(dict)

        # Recent commands per session (most recent last)
        self.command_history: Dict[str, List[str]] = defaultdict(list)

        # How often each action was requested per session
        self.action_counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

        # Duplicate suppression tracking
        self.duplicate_tracking: Dict[str, Dict[str, Any]] = defaultdict(dict)

        # Where the user is working from (office, site, warehouse, showroom)
        self.locations: Dict[str, str] = {}

        # Configuration
        self.duplicate_window_seconds = 30
        self.max_history = 10

    def get_context(self, session_id: str) -> Dict[str, Any]:
        return dict(self.contexts.get(session_id, {}))

    def update_context(self, session_id: str, updates: Dict[str, Any]) -> None:
        current = self.contexts[session_id]
        current.update(updates)
        logger.info(f"📝 Context updated for {session_id}: {list(updates.keys())}")

    def clear_context(self, session_id: str) -> None:
        self.contexts.pop(session_id, None)
        self.command_history.pop(session_id, None)
        self.action_counts.pop(session_id, None)
        self.duplicate_tracking.pop(session_id, None)
        logger.info(f"🗑️ Context cleared for {session_id}")

    def set_location(self, session_id: str, location: str) -> None:
        self.locations[session_id] = location

    def record_result(self, session_id: str, command: str, result: CommandResult) -> None:
        """Fold a parsed command into the session context"""
        history = self.command_history[session_id]
        history.append(command)
        if len(history) > self.max_history:
            del history[:-self.max_history]

        if not result.success:
            return

        self.action_counts[session_id][result.action] += 1

        context = self.contexts[session_id]
        context['currentProcess'] = result.action
        if result.action == 'create_client':
            collected = dict(context.get('collectedInfo', {}))
            collected.update({k: v for k, v in result.parameters.items() if v})
            context['collectedInfo'] = collected

    def should_suppress_duplicate(self, session_id: str, text: str) -> bool:
        """Check if a transcript repeats the previous one within the window"""
        normalized_text = self._normalize(text)
        tracking = self.duplicate_tracking[session_id]
        prev_text = tracking.get('last_text')
        prev_ts = tracking.get('last_ts', 0)
        now_ts = time.time()

        if prev_text and prev_text == normalized_text and (now_ts - prev_ts) < self.duplicate_window_seconds:
            logger.info(f"Suppressing duplicate transcript for {session_id}: '{text}'")
            return True

        tracking['last_text'] = normalized_text
        tracking['last_ts'] = now_ts
        return False

    @staticmethod
    def _normalize(text: str) -> str:
        # "Create a client." and "create a client" are the same command
        lowered = " ".join(text.lower().split())
        return ''.join(c for c in lowered if c.isalnum() or c.isspace())

    def build_user_context(self, session_id: str, now: Optional[datetime] = None) -> UserContext:
        now = now or datetime.now()
        return UserContext(
            timeOfDay=now.strftime("%H:%M"),
            location=self.locations.get(session_id, ""),
            previousCommands=list(self.command_history.get(session_id, [])),
            frequentActions=dict(self.action_counts.get(session_id, {})),
        )

    def get_session_stats(self, session_id: str) -> Dict[str, Any]:
        return {
            'commands': len(self.command_history.get(session_id, [])),
            'actions': dict(self.action_counts.get(session_id, {})),
            'current_process': self.contexts.get(session_id, {}).get('currentProcess'),
        }
