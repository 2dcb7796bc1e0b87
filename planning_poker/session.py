"""Planning session: command routing and round orchestration for one room."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

from . import config
from .chat import Person, Room
from .commands import (
    DIRECT_COMMANDS,
    Command,
    ParsedCommand,
    parse_command,
    parse_estimate,
    split_hours,
)
from .errors import CollaboratorError, PokerError, StateError, UserCommandError
from .formatting import (
    ICON_ANNOUNCEMENT,
    ICON_CELEBRATE,
    ICON_COMPLETE,
    ICON_ERROR,
    ICON_PASS,
    ICON_QUESTION,
    ICON_SKIP,
    ICON_STOP,
    ICON_WAITING,
    ICON_WAVE,
    format_average,
    format_duration,
    format_first_names,
    format_help,
    format_hours,
    format_result_table,
    format_round_results,
    format_status,
)
from .logging_config import set_actor, set_room_id, set_task_id
from .models import RoundOutcome, RoundStatus, SessionState, SessionSummary, Tasklist, WorkItem
from .prompts import DirectMessagePrompter, EstimateRequest
from .round import Round

logger = logging.getLogger(__name__)

Handler = Callable[[Person, str], Awaitable["asyncio.Task[SessionSummary] | None"]]


@dataclass(frozen=True)
class Interruption:
    """A command that took the current round out of the normal voting flow."""

    command: Command
    value: float | None = None


class TaskSource(Protocol):
    """Interface of the work-item source a session plans from."""

    async def fetch_tasklist(self, reference: str) -> Tasklist:
        """Resolve an external list reference into its ordered work items."""
        ...

    async def update_estimate(self, item: WorkItem, hours: int, minutes: int) -> None:
        """Write a confirmed estimate back to the work item."""
        ...


class Session:
    """
    One planning workflow bound to one chat room.

    The session owns every Round. A round is always in exactly one of
    ``pending_queue``, ``current_round``, ``completed_queue`` or
    ``skipped_queue``; only the planning loop moves rounds between them.
    Command handlers that interrupt a round record an Interruption and cancel
    outstanding requests, and the loop settles the round once the barrier
    releases.
    """

    def __init__(
        self,
        room: Room,
        bot: Person,
        moderator: Person,
        task_source: TaskSource,
        prompter: DirectMessagePrompter | None = None,
        welcome_delay: float | None = None,
    ):
        self.room = room
        self.bot = bot
        self.moderator = moderator
        self.task_source = task_source
        self.prompter = prompter or DirectMessagePrompter()
        self.welcome_delay = config.POKER_WELCOME_DELAY if welcome_delay is None else welcome_delay

        self.state = SessionState.UNPLANNED
        self.tasklist_name: str | None = None
        self.rounds: list[Round] = []
        self.pending_queue: deque[Round] = deque()
        self.completed_queue: list[Round] = []
        self.skipped_queue: list[Round] = []
        self.current_round: Round | None = None
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.planning_task: asyncio.Task[SessionSummary] | None = None

        self._interruption: Interruption | None = None
        self._final_request: EstimateRequest | None = None
        self._loading = False

        self._handlers: dict[Command, Handler] = {
            Command.HELP: self._on_help,
            Command.START: self._on_start,
            Command.SKIP: self._on_skip,
            Command.PASS: self._on_pass,
            Command.VOTE: self._on_vote,
            Command.ESTIMATE: self._on_estimate,
            Command.STATUS: self._on_status,
            Command.PLAN: self._on_plan,
            Command.ADD: self._on_add,
            Command.STOP: self._on_stop,
        }

        logger.info(
            "Session created. Room: %s, Moderator: %s",
            room.id, moderator.handle,
        )

    @property
    def bot_handle(self) -> str:
        return self.bot.handle

    @property
    def planning(self) -> bool:
        return self.state is SessionState.PLANNING

    @property
    def participants(self) -> list[Person]:
        """Everyone in the room except the bot."""
        return [person for person in self.room.people if person.id != self.bot.id]

    # ------------------------------------------------------------------
    # Event entry points
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Welcome the room and greet every participant."""
        await self.broadcast(
            f"{ICON_WAVE} Welcome to Sprint Planning Poker. Use this room for discussion on tasks."
        )
        await self.broadcast(format_help(self.bot_handle, self.moderator.handle))
        await self.broadcast(
            f"To begin, @{self.moderator.handle} (the moderator) must select a tasklist to plan. "
            f"*Example:* `@{self.bot_handle} plan {config.TASKLIST_EXAMPLE}`"
        )

        await asyncio.sleep(self.welcome_delay)

        await self.broadcast_direct(
            lambda person: (
                f"Hi @{person.handle}, you've been included in Sprint Planning Poker with "
                f"{format_first_names(self._others(person))}. I'll be asking you for "
                f"estimates soon when the planning starts."
            )
        )

    async def handle_mention(
        self, author: Person, text: str
    ) -> "asyncio.Task[SessionSummary] | None":
        """
        Handle a room message that mentions the bot.

        Returns:
            The planning task if this command started planning, else None
        """
        set_room_id(self.room.id)
        set_actor(author.handle)
        logger.info("Mention received. Author: %s, Content: %s", author.handle, text)

        try:
            parsed = parse_command(text, self.bot_handle)
            if parsed is None:
                raise UserCommandError(
                    f"I don't understand your input. Try `@{self.bot_handle} help`."
                )
            return await self._dispatch(author, parsed)
        except PokerError as e:
            logger.warning("Command rejected. Content: %s, Error: %s", text, e.message)
            await self.broadcast_error(e)
        except Exception:
            logger.exception("Command failed. Content: %s", text)
            await self.broadcast_error(
                PokerError("Sorry, something went wrong while handling that command.")
            )
        return None

    async def handle_direct_message(self, person: Person, text: str) -> None:
        """Handle a private message: a direct command or an estimate reply."""
        set_room_id(self.room.id)
        set_actor(person.handle)
        logger.info("Direct message received. Person: %s, Content: %s", person.handle, text)

        try:
            parsed = parse_command(text, self.bot_handle, require_mention=False)
            if parsed is not None and parsed.command in DIRECT_COMMANDS:
                if parsed.command is Command.HELP:
                    await person.send_message(format_help(self.bot_handle, self.moderator.handle))
                elif parsed.command is Command.STATUS:
                    await person.send_message(self.format_status())
                else:
                    await self._on_stop(person, parsed.args)
            elif not await self.prompter.deliver(person, text):
                await person.send_message(
                    f"I'm not waiting on an estimate from you right now. "
                    f"Mention me in the planning room, e.g. `@{self.bot_handle} help`."
                )
        except PokerError as e:
            logger.warning("Direct command rejected. Content: %s, Error: %s", text, e.message)
            await person.send_message(f"{ICON_ERROR} {e.message}")
        except Exception:
            logger.exception("Direct message failed. Content: %s", text)
            await person.send_message(
                f"{ICON_ERROR} Sorry, something went wrong while handling that message."
            )

    async def handle_person_added(self, person: Person) -> None:
        """Welcome someone who joined the room."""
        if person.id == self.bot.id:
            return

        set_room_id(self.room.id)
        logger.info("Person joined. Person: %s", person.handle)

        try:
            await self.broadcast(f"{ICON_WAVE} @{person.handle} has joined the planning.")
            message = (
                f"Hi @{person.handle}, you've been added to Sprint Planning Poker with "
                f"{format_first_names(self._others(person))}."
            )
            if self.planning:
                message += " I'll ask you for estimates from the next task."
            await person.send_message(message)
        except Exception:
            logger.exception("Failed to welcome person. Person: %s", person.handle)

    async def handle_person_removed(self, person: Person) -> None:
        """Tell the room and the person that they left the planning.

        Their outstanding request, if any, stays pending.
        """
        set_room_id(self.room.id)
        logger.info("Person left. Person: %s", person.handle)

        try:
            await self.broadcast(f"{ICON_ANNOUNCEMENT} {person.first_name} has left the planning.")
            if self.state is not SessionState.STOPPED:
                await person.send_message(
                    "You've been removed from Sprint Planning Poker. "
                    "You won't be asked for any more estimates."
                )
        except Exception:
            logger.exception("Failed to notify departure. Person: %s", person.handle)

    async def _dispatch(self, author: Person, parsed: ParsedCommand):
        logger.info("Mention command. Command: %s, Args: %s", parsed.command.value, parsed.args)
        handler = self._handlers[parsed.command]
        return await handler(author, parsed.args)

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    async def _on_help(self, author: Person, args: str) -> None:
        await self.broadcast(format_help(self.bot_handle, self.moderator.handle))

    async def _on_status(self, author: Person, args: str) -> None:
        await self.broadcast(self.format_status())

    async def _on_plan(self, author: Person, args: str) -> None:
        await self.plan(author, args)

    async def _on_start(self, author: Person, args: str) -> "asyncio.Task[SessionSummary]":
        self._require_moderator(author, "start the planning")
        return self.start()

    async def _on_estimate(self, author: Person, args: str) -> None:
        self._require_moderator(author, "set the estimate")
        self._require_interruptible_round(
            "Sorry, you can't estimate nothing. Please select a tasklist to plan and get started."
        )
        value = parse_estimate(args)
        self._interrupt(Interruption(Command.ESTIMATE, value))

    async def _on_skip(self, author: Person, args: str) -> None:
        self._require_moderator(author, "skip a task")
        self._require_interruptible_round("There is no task to skip.")
        self._interrupt(Interruption(Command.SKIP))

    async def _on_pass(self, author: Person, args: str) -> None:
        self._require_moderator(author, "pass on a task")
        self._require_interruptible_round("There is no task to pass on.")
        self._interrupt(Interruption(Command.PASS))

    async def _on_vote(self, author: Person, args: str) -> None:
        await self.vote(author, args)

    async def _on_add(self, author: Person, args: str) -> None:
        self._require_moderator(author, "add people")
        if self.state in (SessionState.COMPLETE, SessionState.STOPPED):
            raise StateError("This planning session is over.")

        handle = args.strip().lstrip("@")
        if not handle:
            raise UserCommandError(
                f"Please provide someone to add. Example: `@{self.bot_handle} add @jane`"
            )
        if any(person.handle == handle for person in self.room.people):
            raise UserCommandError(f"@{handle} is already in the planning.")

        try:
            await self.room.add_person(handle)
        except PokerError:
            raise
        except Exception as e:
            raise CollaboratorError(f"I couldn't add @{handle}: {e}", service="chat") from e

        logger.info("Person added by moderator. Handle: %s", handle)

    async def _on_stop(self, author: Person, args: str) -> None:
        await self.stop(author)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def plan(self, author: Person, reference: str) -> None:
        """Load a tasklist and queue one round per task."""
        if self.pending_queue or self.state is not SessionState.UNPLANNED or self._loading:
            raise StateError(
                "A tasklist has already been selected. Only one tasklist can be planned per session."
            )
        self._require_moderator(author, "select the tasklist")

        reference = reference.strip()
        if not reference:
            raise UserCommandError("Please provide a tasklist to plan.")

        self._loading = True
        try:
            tasklist = await self.task_source.fetch_tasklist(reference)
        finally:
            self._loading = False

        if not tasklist.items:
            raise CollaboratorError("Your tasklist doesn't seem to have any tasks!", service="tasks")

        self.tasklist_name = tasklist.name
        self.rounds = [Round(item) for item in tasklist.items]
        self.pending_queue = deque(self.rounds)
        self.state = SessionState.PLANNED

        logger.info("Tasklist planned. Name: %s, Tasks: %d", tasklist.name, len(self.rounds))

        await self.broadcast(
            f"{ICON_ANNOUNCEMENT} Okay, we're going to plan the **{tasklist.name}** tasklist. "
            f"{ICON_WAITING} There are {len(self.rounds)} tasks to plan. To start, "
            f"@{self.moderator.handle} ping me to start (`@{self.bot_handle} start`)."
        )
        await self._update_title(f"Planning: {tasklist.name}")

    def start(self) -> "asyncio.Task[SessionSummary]":
        """
        Begin planning in a background task.

        Returns:
            The task running the planning loop; it resolves to the SessionSummary
        """
        if not self.pending_queue:
            raise StateError(
                "Can't start sprint planning without tasks. Please provide a tasklist "
                f"like `@{self.bot_handle} plan <tasklist>`."
            )
        if self.state is not SessionState.PLANNED:
            raise StateError("Planning has already started.")

        self.state = SessionState.PLANNING
        self.start_time = datetime.now(timezone.utc)
        self.planning_task = asyncio.create_task(self.run(), name=f"planning-{self.room.id}")
        return self.planning_task

    async def run(self) -> SessionSummary:
        """Estimate every queued round, then announce the results."""
        set_room_id(self.room.id)
        set_actor(None)
        logger.info("Planning started. Tasks: %d", len(self.pending_queue))

        try:
            while self.pending_queue and self.state is SessionState.PLANNING:
                round_ = self.pending_queue.popleft()
                self.current_round = round_
                set_task_id(round_.item.id)

                outcome = await round_.execute(self.participants, self.prompter, self.broadcast)

                final = None
                if not outcome.cancelled:
                    final = await self._collect_final(round_, outcome)

                await self._conclude_round(round_, final)
                set_task_id(None)

                if self.pending_queue and self.state is SessionState.PLANNING:
                    await self._announce_next_round()
        except Exception:
            logger.exception("Planning failed. Room: %s", self.room.id)
            self.state = SessionState.STOPPED
            self._interruption = None
            if self.current_round is not None:
                self._requeue_stopped_round(self.current_round)

            try:
                await self.room.send_message(
                    f"{ICON_ERROR} Planning stopped because of an internal error."
                )
            except Exception as e:
                logger.warning("Failed to report planning failure. Error: %s", e)
        finally:
            set_task_id(None)

        return await self._finish()

    async def _collect_final(self, round_: Round, outcome: RoundOutcome) -> float | None:
        """Report the votes and ask the moderator for the final value."""
        await self.broadcast_all(
            f"{ICON_COMPLETE} Voting complete. Average estimate: **{format_average(outcome.average)}**"
        )
        if outcome.estimates:
            await self.broadcast(format_result_table(outcome.estimates))
        await self.broadcast_all(f"{ICON_WAITING} Awaiting moderator to select final estimate.")

        if self._interrupted():
            return None

        request = await self.prompter.ask(
            self.moderator,
            f"{ICON_QUESTION} Please select final estimate for task #{round_.item.id}. "
            f"Average was {format_average(outcome.average)}.",
        )
        self._final_request = request
        if self._interrupted():
            request.cancel()

        try:
            final = await request.wait()
        finally:
            self._final_request = None

        if final is None or self._interrupted():
            return None

        await self.broadcast_all(
            f"{ICON_COMPLETE} Moderator has picked final estimate of {format_hours(final)} hours."
        )
        return final

    async def _conclude_round(self, round_: Round, final: float | None) -> None:
        """Move the current round to its queue and announce what happened."""
        interruption, self._interruption = self._interruption, None
        item = round_.item

        if self.state is SessionState.STOPPED:
            self._requeue_stopped_round(round_)
            return

        if interruption is None and final is None:
            # The moderator's prompt was cancelled outside of any command
            logger.warning("Final estimate missing. Task: %s", item.id)
            interruption = Interruption(Command.SKIP)

        if interruption is None or interruption.command is Command.ESTIMATE:
            value = final if interruption is None else interruption.value
            await self.estimate(value)
            self.completed_queue.append(round_)
            self.current_round = None
        elif interruption.command is Command.SKIP:
            if round_.status is not RoundStatus.CANCELLED:
                round_.withdraw()
            self.skipped_queue.append(round_)
            self.current_round = None
            await self.broadcast_all(
                f"{ICON_SKIP} Skipped task #{item.id}. It has been removed from the planning."
            )
        else:
            if round_.status is not RoundStatus.CANCELLED:
                round_.withdraw()
            round_.reset()
            self.pending_queue.append(round_)
            self.current_round = None
            await self.broadcast_all(
                f"{ICON_PASS} Passed on task #{item.id}. It has been moved to the end of the queue."
            )

    def _requeue_stopped_round(self, round_: Round) -> None:
        """Put the current round back at the head of the queue, unless it was finalized."""
        if self._final_request is not None:
            self._final_request.cancel()

        if round_.status in (RoundStatus.RUNNING, RoundStatus.AWAITING_FINAL):
            round_.withdraw()

        if round_.status is RoundStatus.COMPLETED:
            self.completed_queue.append(round_)
        else:
            if round_.status is RoundStatus.CANCELLED:
                round_.reset()
            self.pending_queue.appendleft(round_)
        self.current_round = None

    async def _announce_next_round(self) -> None:
        done = len(self.completed_queue) + len(self.skipped_queue)
        total = len(self.rounds)
        await self.broadcast(
            f"{ICON_ANNOUNCEMENT} Moving to next task "
            f"(#{done + 1} of {total}, {len(self.pending_queue)} to go)."
        )

    async def _finish(self) -> SessionSummary:
        self.end_time = datetime.now(timezone.utc)
        self.current_round = None

        if self.state is SessionState.STOPPED:
            logger.info("Planning stopped. Estimated: %d", len(self.completed_queue))
            return self.summary()

        self.state = SessionState.COMPLETE
        duration = self.end_time - self.start_time if self.start_time else None
        logger.info(
            "Planning complete. Estimated: %d, Skipped: %d, Duration: %s",
            len(self.completed_queue), len(self.skipped_queue), duration,
        )

        took = f" in {format_duration(duration)}" if duration is not None else ""
        try:
            await self.broadcast_all(
                f"{ICON_CELEBRATE} Sprint planning complete. "
                f"{len(self.completed_queue)} of {len(self.rounds)} tasks estimated{took}."
            )
            await self.broadcast(format_round_results(self.rounds, self.skipped_queue))
        except Exception as e:
            logger.warning("Failed to announce completion. Error: %s", e)
        await self._update_title(f"Planned: {self.tasklist_name}")

        return self.summary()

    async def estimate(self, value: float) -> None:
        """Set the final value of the current round and write it back to the task."""
        round_ = self.current_round
        if round_ is None:
            raise StateError("There is no current task to set the estimate for, sorry!")

        round_.finalize(value)
        hours, minutes = split_hours(value)
        item = round_.item

        await self.broadcast(
            f"{ICON_COMPLETE} Updating task #{item.id} with an estimate of {format_hours(value)} hr(s)."
        )

        try:
            await self.task_source.update_estimate(item, hours, minutes)
        except CollaboratorError as e:
            logger.warning("Estimate write-back failed. Task: %s, Error: %s", item.id, e.message)
            await self.broadcast_error(
                CollaboratorError(f"I couldn't update task #{item.id}: {e.message}")
            )

    async def vote(self, person: Person, value: str) -> None:
        """Answer ``person``'s outstanding request in the current round."""
        round_ = self.current_round
        if round_ is None:
            raise StateError("There is no task being estimated right now.")

        request = round_.get_request(person)
        if request is None:
            raise UserCommandError(f"@{person.handle} has already voted.")

        request.resolve(parse_estimate(value))

    async def stop(self, author: Person, reason: str | None = None) -> None:
        """End planning early. Nothing is broadcast after the stop notice."""
        self._require_moderator(author, "stop the planning")
        if self.state is not SessionState.PLANNING:
            raise StateError("Planning isn't running, so there is nothing to stop.")

        self.state = SessionState.STOPPED
        round_ = self.current_round
        if round_ is not None and round_.status is RoundStatus.RUNNING:
            round_.cancel_all_estimates()
        if self._final_request is not None:
            self._final_request.cancel()

        logger.info("Planning stopped. Completed: %d, Reason: %s", len(self.completed_queue), reason)

        message = (
            f"{ICON_STOP} {reason or 'Sprint planning has been stopped by the moderator.'} "
            f"{len(self.completed_queue)} of {len(self.rounds)} tasks were estimated."
        )
        await asyncio.gather(
            self.room.send_message(message),
            *(person.send_message(message) for person in self.participants),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_moderator(self, person: Person, action: str) -> None:
        if person.id != self.moderator.id:
            raise UserCommandError(
                f"Sorry @{person.handle}, only the moderator (@{self.moderator.handle}) can {action}."
            )

    def _require_interruptible_round(self, message: str) -> Round:
        round_ = self.current_round
        if round_ is None:
            raise StateError(message)
        if self._interruption is not None or round_.status not in (
            RoundStatus.RUNNING, RoundStatus.AWAITING_FINAL,
        ):
            raise StateError(f"Task #{round_.item.id} is already being wrapped up.")
        return round_

    def _interrupt(self, interruption: Interruption) -> None:
        round_ = self.current_round
        self._interruption = interruption
        logger.info(
            "Round interrupted. Task: %s, Command: %s, Value: %s",
            round_.item.id, interruption.command.value, interruption.value,
        )

        if round_.status is RoundStatus.RUNNING:
            round_.cancel_all_estimates()
        elif self._final_request is not None:
            self._final_request.cancel()

    def _interrupted(self) -> bool:
        return self._interruption is not None or self.state is not SessionState.PLANNING

    def _others(self, person: Person) -> list[Person]:
        return [p for p in self.participants if p.id != person.id]

    async def _update_title(self, title: str) -> None:
        try:
            await self.room.update_title(title)
        except Exception as e:
            logger.warning("Failed to update room title. Title: %s, Error: %s", title, e)

    def format_status(self) -> str:
        round_ = self.current_round
        completed = len(self.completed_queue)
        total = len(self.completed_queue) + len(self.pending_queue) + (1 if round_ is not None else 0)
        return format_status(
            self.moderator,
            completed,
            total,
            round_.item if round_ is not None else None,
            round_.get_estimating_users() if round_ is not None else [],
        )

    def summary(self) -> SessionSummary:
        return SessionSummary(
            room_id=self.room.id,
            state=self.state,
            start_time=self.start_time,
            end_time=self.end_time,
            rounds=[round_.summary() for round_ in self.rounds],
        )

    def snapshot(self) -> dict[str, Any]:
        """Current progress, for the status API."""
        round_ = self.current_round
        return {
            "room_id": self.room.id,
            "state": self.state.value,
            "moderator": self.moderator.handle,
            "tasklist": self.tasklist_name,
            "participants": [person.handle for person in self.participants],
            "total": len(self.rounds),
            "completed": len(self.completed_queue),
            "skipped": len(self.skipped_queue),
            "pending": len(self.pending_queue),
            "current_task": round_.item.to_dict() if round_ is not None else None,
            "estimating": [p.handle for p in round_.get_estimating_users()] if round_ else [],
        }

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def broadcast(self, message: str) -> None:
        if self.state is SessionState.STOPPED:
            logger.debug("Broadcast dropped, session stopped. Message: %s", message)
            return
        logger.info("Broadcasting. Message: %s", message)
        await self.room.send_message(message)

    async def broadcast_direct(self, message: str | Callable[[Person], str]) -> None:
        if self.state is SessionState.STOPPED:
            return
        await asyncio.gather(*(
            person.send_message(message(person) if callable(message) else message)
            for person in self.participants
        ))

    async def broadcast_all(self, message: str) -> None:
        await asyncio.gather(self.broadcast(message), self.broadcast_direct(message))

    async def broadcast_error(self, error: PokerError) -> None:
        await self.broadcast(f"{ICON_ERROR} {error.message}")
