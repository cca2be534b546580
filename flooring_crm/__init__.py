"""
Flooring CRM Ops Package

Back-end services for a flooring contractor CRM including:
- Voice command pipeline (speech recognition, command parsing, speech synthesis)
- Project and task management
- Estimates and payments
- Third-party connectors (QuickBooks, LeadConnector CRM, Google Calendar, Twilio, Square)
"""

__version__ = "1.0.0"
__author__ = "Flooring CRM Team"

# Submodules are imported on-demand to keep FastAPI and vendor SDKs optional at import time
