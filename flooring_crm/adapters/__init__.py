"""
Adapter modules for the voice pipeline and external services.

This module contains adapters for:
- Speech recognition and recognition session tracking
- Language-model command parsing
- Text-to-speech playback
- Command context and pattern learning
- Third-party integrations (see adapters.integrations)
"""
