"""
Configuration for the flooring CRM services.

Settings are read from the environment (and .env) through pydantic-settings.
"""

from .settings import Settings, get_settings

__all__ = [
    'Settings',
    'get_settings'
]
