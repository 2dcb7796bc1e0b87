"""Exceptions raised by planning poker sessions."""

from typing import Any


class PokerError(Exception):
    """Base exception for all planning poker errors.

    The message is shown verbatim to the chat room, so it should read as a
    reply to the person who issued the command.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UserCommandError(PokerError):
    """Raised for bad or missing arguments, unknown commands and unauthorized actors."""

    pass


class StateError(PokerError):
    """Raised when a command is not valid in the current session or round state."""

    pass


class CollaboratorError(PokerError):
    """Raised when an external collaborator (task source, chat) fails."""

    def __init__(
        self,
        message: str,
        service: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.service = service
