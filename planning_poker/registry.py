"""Registry of active planning sessions and routing of chat events."""

import asyncio
import logging

from .chat import ChatClient, Person, Room
from .commands import parse_activation
from .errors import PokerError, UserCommandError
from .formatting import ICON_ERROR
from .logging_config import set_actor, set_room_id
from .models import SessionSummary
from .session import Session, TaskSource

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = ":wave: Welcome to Sprint Planning Poker. Use this room for discussion on tasks."


class SessionRegistry:
    """
    Holds one Session per room and routes chat events to it.

    A session is released once its planning task finishes, whether planning
    completed or was stopped.
    """

    def __init__(
        self,
        client: ChatClient,
        task_source: TaskSource,
        welcome_delay: float | None = None,
    ):
        self.client = client
        self.task_source = task_source
        self.welcome_delay = welcome_delay
        self.sessions: dict[str, Session] = {}
        self.summaries: list[SessionSummary] = []

    @property
    def bot(self) -> Person:
        return self.client.me

    def get(self, room_id: str) -> Session | None:
        return self.sessions.get(room_id)

    async def open_session(self, room: Room, moderator: Person) -> Session:
        """Create and initialise a session bound to ``room``."""
        if room.id in self.sessions:
            raise UserCommandError("There is already a planning session in this room.")

        session = Session(
            room,
            self.bot,
            moderator,
            self.task_source,
            welcome_delay=self.welcome_delay,
        )
        self.sessions[room.id] = session
        await session.init()
        return session

    async def handle_mention(self, room: Room, author: Person, text: str) -> None:
        """Route a mention to the room's session, or treat it as an activation request."""
        session = self.sessions.get(room.id)
        if session is None:
            await self.handle_activation(room, author, text)
            return

        task = await session.handle_mention(author, text)
        if task is not None:
            task.add_done_callback(lambda t: self._on_planning_done(session, t))

    async def handle_activation(self, room: Room, author: Person, text: str) -> Session | None:
        """
        Open a new planning room for ``@bot poker @alice @bob``.

        The author becomes the moderator.
        """
        handles = parse_activation(text, self.bot.handle)
        if handles is None:
            logger.debug("Ignoring mention outside a session. Room: %s", room.id)
            return None

        set_room_id(room.id)
        set_actor(author.handle)
        logger.info("New poker session requested. Handles: %s", handles)

        try:
            handles = [h for h in handles if h not in (author.handle, self.bot.handle)]
            if not handles:
                raise UserCommandError(
                    f"Sorry @{author.handle}, please supply at least one other person to plan the sprint."
                )

            try:
                await asyncio.gather(*(self.client.get_person_by_handle(h) for h in handles))
            except PokerError:
                raise
            except Exception as e:
                raise UserCommandError(f"I couldn't find everyone you mentioned: {e}") from e

            session_room = await self.client.create_room_with_handles(
                [self.bot.handle, author.handle, *handles],
                WELCOME_MESSAGE,
            )
            logger.info("Room created for poker session. Room: %s", session_room.id)

            return await self.open_session(session_room, author)
        except PokerError as e:
            logger.warning("Activation rejected. Error: %s", e.message)
            await room.send_message(f"{ICON_ERROR} {e.message}")
        except Exception:
            logger.exception("Activation failed. Room: %s", room.id)
            await room.send_message(f"{ICON_ERROR} Sorry, I couldn't start a planning session.")
        return None

    async def handle_direct_message(self, person: Person, text: str) -> None:
        """Route a direct message to the session waiting on this person, if any."""
        sessions = [s for s in self.sessions.values() if s.prompter.has_pending(person)]
        if not sessions:
            sessions = [
                s for s in self.sessions.values()
                if any(p.id == person.id for p in s.participants)
            ]

        if not sessions:
            await person.send_message(
                f"You're not part of a planning session. Start one with "
                f"`@{self.bot.handle} poker @someone` in any room."
            )
            return

        await sessions[0].handle_direct_message(person, text)

    async def handle_person_added(self, room: Room, person: Person) -> None:
        session = self.sessions.get(room.id)
        if session is not None:
            await session.handle_person_added(person)

    async def handle_person_removed(self, room: Room, person: Person) -> None:
        session = self.sessions.get(room.id)
        if session is not None:
            await session.handle_person_removed(person)

    def _on_planning_done(self, session: Session, task: "asyncio.Task[SessionSummary]") -> None:
        if self.sessions.get(session.room.id) is session:
            del self.sessions[session.room.id]

        if task.cancelled():
            logger.warning("Planning task cancelled. Room: %s", session.room.id)
            return

        error = task.exception()
        if error is not None:
            logger.error("Planning task failed. Room: %s", session.room.id, exc_info=error)
            return

        summary = task.result()
        self.summaries.append(summary)
        logger.info(
            "Session released. Room: %s, State: %s, Estimated: %d/%d",
            summary.room_id, summary.state.value, len(summary.estimated), len(summary.rounds),
        )

    async def shutdown(self) -> None:
        """Stop every running session and wait for the planning loops to exit."""
        tasks = []
        for session in list(self.sessions.values()):
            if session.planning:
                await session.stop(session.moderator, reason="The planning bot is shutting down.")
            if session.planning_task is not None:
                tasks.append(session.planning_task)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Registry shut down. Sessions: %d", len(self.sessions))
        self.sessions.clear()
