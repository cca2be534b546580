"""
CRM services: storage, projects, estimates, sharing, damage assessment and the voice pipeline.
"""

from .crm_store import CRMStore
from .projects import ProjectService, ProjectNotFoundError
from .actions import ActionDispatcher
from .voice_assistant import VoiceAssistant
from .estimate_sharing import EstimateSharingService, EstimateSharingError, SharedEstimateNotFoundError
from .damage_analysis import DamageAnalyzer, DamageAnalysisError

__all__ = [
    'CRMStore',
    'ProjectService',
    'ProjectNotFoundError',
    'ActionDispatcher',
    'VoiceAssistant',
    'EstimateSharingService',
    'EstimateSharingError',
    'SharedEstimateNotFoundError',
    'DamageAnalyzer',
    'DamageAnalysisError',
]
