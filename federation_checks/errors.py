from __future__ import annotations


class ConfigError(ValueError):
    """Missing or malformed configuration. Fatal at startup."""


class CollaboratorError(RuntimeError):
    """A call against the homeserver failed (room list, members, metadata)."""


class LoginError(CollaboratorError):
    """The homeserver rejected the configured credentials."""


class SendError(CollaboratorError):
    """A report message could not be delivered to the log room."""


class DelegationError(RuntimeError):
    """Server name resolution could not even reach the default fallback."""
