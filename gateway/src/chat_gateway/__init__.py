"""1:1 chat gateway: presence, delivery and dual-backend message storage."""

from .delivery import DeliveryRouter, TypingNotifier
from .hub import ConnectionHub, Event
from .messages import InMemoryMessageStore, Message
from .presence import PresenceRegistry
from .server import main, simulate

__all__ = [
    "ConnectionHub",
    "DeliveryRouter",
    "Event",
    "InMemoryMessageStore",
    "Message",
    "PresenceRegistry",
    "TypingNotifier",
    "main",
    "simulate",
]
