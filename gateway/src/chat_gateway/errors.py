from __future__ import annotations


class ChatError(Exception):
    """Base class for errors raised by the chat gateway core."""


class ConfigurationError(ChatError):
    """The durable backend is unset or unreachable."""


class ValidationError(ChatError):
    pass


class ConflictError(ValidationError):
    pass


class AuthenticationError(ChatError):
    pass


class NotFoundError(ChatError):
    pass


class StorageError(ChatError):
    """A persistence or blob-store call failed."""
