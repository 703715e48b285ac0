"""Core configuration, error taxonomy and orchestration.

The factory and orchestrator import the strategy packages, which in turn
import ``docsynth.core.errors``; import them from their modules directly.
"""

from docsynth.core.config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
