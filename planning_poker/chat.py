"""Interfaces of the chat transport the bot runs on.

The transport (room membership, delivery, mention detection) lives outside
this package. Sessions only rely on the members declared here.
"""

from typing import Any, Protocol


class Person(Protocol):
    """A chat user."""

    id: str
    handle: str
    first_name: str

    async def send_message(self, text: str) -> Any:
        """Send a direct message to this person."""
        ...


class Room(Protocol):
    """A chat room a session is bound to."""

    id: str

    @property
    def people(self) -> list[Person]:
        """Current members, including the bot."""
        ...

    async def send_message(self, text: str) -> Any:
        """Post a message to the room."""
        ...

    async def update_title(self, text: str) -> Any:
        """Change the room title."""
        ...

    async def add_person(self, handle: str) -> Person:
        """Add a user to the room by handle."""
        ...


class ChatClient(Protocol):
    """The bot's account on the chat service."""

    @property
    def me(self) -> Person:
        """The bot's own identity."""
        ...

    async def get_person_by_handle(self, handle: str) -> Person:
        """Look up a user, raising if the handle does not exist."""
        ...

    async def create_room_with_handles(self, handles: list[str], message: str) -> Room:
        """Create a room with the given members and an opening message."""
        ...
