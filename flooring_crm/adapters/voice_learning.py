"""
On-device learning of frequently used voice commands.

Every handled command is stored as a pattern with its action, parameters and a
running success rate. A small softmax classifier over a 10-element feature
vector predicts which known pattern a new command most likely maps to.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from flooring_crm.models import UserContext

logger = logging.getLogger(__name__)

FEATURE_COUNT = 10
RELEVANT_LOCATIONS = ('office', 'site', 'warehouse', 'showroom')


@dataclass
class CommandPattern:
    pattern: str
    action: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    frequency: int = 1
    last_used: float = 0.0  # ms since epoch
    success_rate: float = 0.0
    contextual_hints: List[str] = field(default_factory=list)


def _now_ms() -> float:
    return time.time() * 1000


def _context_hints(context: UserContext) -> List[str]:
    hints = [context.timeOfDay, context.location]
    hints.extend(context.previousCommands)
    hints.extend(context.frequentActions.keys())
    return [h for h in hints if h]


class SoftmaxModel:
    """Single-layer softmax classifier whose output grows with the pattern list"""

    def __init__(self, n_features: int = FEATURE_COUNT, learning_rate: float = 0.1):
        self.n_features = n_features
        self.learning_rate = learning_rate
        self.weights = np.zeros((n_features, 0))
        self.bias = np.zeros(0)

    @property
    def n_classes(self) -> int:
        return self.bias.shape[0]

    def ensure_classes(self, n_classes: int) -> None:
        missing = n_classes - self.n_classes
        if missing > 0:
            self.weights = np.hstack([self.weights, np.zeros((self.n_features, missing))])
            self.bias = np.concatenate([self.bias, np.zeros(missing)])

    def predict_proba(self, features: np.ndarray) -> np.ndarray:
        if self.n_classes == 0:
            return np.zeros(0)
        logits = features @ self.weights + self.bias
        logits = logits - logits.max()
        exp = np.exp(logits)
        return exp / exp.sum()

    def fit_one(self, features: np.ndarray, label: int) -> float:
        """One gradient step of categorical cross-entropy; returns the loss"""
        self.ensure_classes(label + 1)
        probs = self.predict_proba(features)
        target = np.zeros(self.n_classes)
        target[label] = 1.0
        grad = probs - target
        self.weights -= self.learning_rate * np.outer(features, grad)
        self.bias -= self.learning_rate * grad
        return float(-np.log(max(probs[label], 1e-12)))

    def to_dict(self) -> Dict[str, Any]:
        return {'weights': self.weights.tolist(), 'bias': self.bias.tolist()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], n_features: int = FEATURE_COUNT) -> "SoftmaxModel":
        model = cls(n_features=n_features)
        weights = np.asarray(data.get('weights', []), dtype=float)
        bias = np.asarray(data.get('bias', []), dtype=float)
        if weights.size and weights.shape == (n_features, bias.shape[0]):
            model.weights = weights
            model.bias = bias
        return model


class VoiceLearningService:
    """Learns command patterns and suggests or predicts likely actions"""

    def __init__(self, storage_path: Optional[str] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        self.patterns: List[CommandPattern] = []
        self.model = SoftmaxModel()
        self.load()

    # ===== PERSISTENCE =====

    def load(self) -> None:
        if not self.storage_path or not self.storage_path.exists():
            return
        try:
            data = json.loads(self.storage_path.read_text())
            self.patterns = [CommandPattern(**p) for p in data.get('patterns', [])]
            self.model = SoftmaxModel.from_dict(data.get('model', {}))
            self.model.ensure_classes(len(self.patterns))
            logger.info(f"📚 Loaded {len(self.patterns)} voice patterns from {self.storage_path}")
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Error loading voice patterns: {e}")

    def save(self) -> None:
        if not self.storage_path:
            return
        try:
            os.makedirs(self.storage_path.parent, exist_ok=True)
            payload = {
                'patterns': [asdict(p) for p in self.patterns],
                'model': self.model.to_dict(),
            }
            tmp_path = self.storage_path.with_suffix('.tmp')
            tmp_path.write_text(json.dumps(payload, default=str))
            os.replace(tmp_path, self.storage_path)
        except OSError as e:
            logger.error(f"Error saving voice patterns: {e}")

    # ===== FEATURES =====

    def extract_features(self, command: str, context: UserContext) -> np.ndarray:
        words = command.split()
        features = [
            self.get_time_feature(context.timeOfDay),
            len(command) / 100,
            len(words) / 10,
            self.calculate_similarity(command, context.previousCommands),
            self.get_action_frequency(context.frequentActions),
            self.get_location_relevance(context.location),
            self.get_command_complexity(command),
            self.get_pattern_matching_score(command),
            self.get_context_relevance(command, context),
            self.get_historical_success_rate(command),
        ]
        return np.asarray(features, dtype=float)

    @staticmethod
    def get_time_feature(time_of_day: str) -> float:
        return int(time_of_day.split(':')[0]) / 24

    @staticmethod
    def calculate_similarity(command: str, previous_commands: List[str]) -> float:
        if not previous_commands:
            return 0.0
        words = command.lower().split()
        if not words:
            return 0.0
        previous_words = set(' '.join(previous_commands).lower().split())
        common = [w for w in words if w in previous_words]
        return len(common) / len(words)

    @staticmethod
    def get_action_frequency(frequent_actions: Dict[str, int]) -> float:
        if not frequent_actions:
            return 0.0
        return max(frequent_actions.values()) / 100

    @staticmethod
    def get_location_relevance(location: str) -> float:
        return 1.0 if location.lower() in RELEVANT_LOCATIONS else 0.0

    @staticmethod
    def get_command_complexity(command: str) -> float:
        words = command.split()
        if not words:
            return 0.0
        return len(set(words)) / len(words)

    def _matching_patterns(self, command: str) -> List[CommandPattern]:
        lowered = command.lower()
        return [p for p in self.patterns if p.pattern.lower() in lowered]

    def get_pattern_matching_score(self, command: str) -> float:
        matches = self._matching_patterns(command)
        return max(m.success_rate for m in matches) if matches else 0.0

    @staticmethod
    def get_context_relevance(command: str, context: UserContext) -> float:
        words = command.lower().split()
        if not words:
            return 0.0
        context_keywords = set(
            ' '.join([*context.previousCommands, context.location, context.timeOfDay]).lower().split()
        )
        relevant = [w for w in words if w in context_keywords]
        return len(relevant) / len(words)

    def get_historical_success_rate(self, command: str) -> float:
        matches = self._matching_patterns(command)
        if not matches:
            return 0.5
        return sum(m.success_rate for m in matches) / len(matches)

    # ===== LEARNING =====

    def find_pattern(self, command: str) -> Optional[CommandPattern]:
        for pattern in self.patterns:
            if pattern.pattern == command:
                return pattern
        return None

    def learn_from_interaction(self, command: str, action: str, parameters: Dict[str, Any],
                               success: bool, context: UserContext) -> CommandPattern:
        # Features are taken before this interaction updates the pattern stats
        features = self.extract_features(command, context)

        pattern = self.find_pattern(command)
        if pattern:
            pattern.frequency += 1
            pattern.last_used = _now_ms()
            pattern.success_rate = (
                pattern.success_rate * (pattern.frequency - 1) + (1 if success else 0)
            ) / pattern.frequency
            merged = list(dict.fromkeys([*pattern.contextual_hints, *_context_hints(context)]))
            pattern.contextual_hints = merged
        else:
            pattern = CommandPattern(
                pattern=command,
                action=action,
                parameters=dict(parameters),
                frequency=1,
                last_used=_now_ms(),
                success_rate=1.0 if success else 0.0,
                contextual_hints=_context_hints(context),
            )
            self.patterns.append(pattern)

        label = self.patterns.index(pattern)
        self.model.ensure_classes(len(self.patterns))
        loss = self.model.fit_one(features, label)
        logger.debug(f"Voice model updated for pattern #{label} (loss={loss:.4f})")

        self.save()
        return pattern

    def predict_next_action(self, command: str, context: UserContext) -> Dict[str, Any]:
        empty = {'action': '', 'parameters': {}, 'confidence': 0.0}
        if not self.patterns or self.model.n_classes == 0:
            return empty

        features = self.extract_features(command, context)
        probabilities = self.model.predict_proba(features)[:len(self.patterns)]
        if probabilities.size == 0:
            return empty

        best = int(np.argmax(probabilities))
        predicted = self.patterns[best]
        return {
            'action': predicted.action,
            'parameters': dict(predicted.parameters),
            'confidence': float(probabilities[best]),
        }

    def get_relevant_suggestions(self, limit: int = 5) -> List[str]:
        now = _now_ms()

        def score(p: CommandPattern) -> float:
            age = max(now - p.last_used, 1.0)
            return p.frequency * 0.4 + (1 / age) * 0.3 + p.success_rate * 0.3

        ranked = sorted(self.patterns, key=score, reverse=True)
        return [p.pattern for p in ranked[:limit]]
