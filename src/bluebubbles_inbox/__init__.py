"""Unified conversation list engine for BlueBubbles."""

__version__ = "0.1.0"
__app_id__ = "bluebubbles-inbox"
