"""BlueBubbles API client module."""

from .client import AuthenticationError, BlueBubblesClient, BlueBubblesError, ConnectionError
from .models import Attachment, Chat, Handle, Message
from .websocket import BlueBubblesSocket

__all__ = [
    "AuthenticationError",
    "BlueBubblesClient",
    "BlueBubblesError",
    "ConnectionError",
    "Chat",
    "Message",
    "Handle",
    "Attachment",
    "BlueBubblesSocket",
]
