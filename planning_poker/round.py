"""Estimation round for a single work item."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from .chat import Person
from .config import ESTIMATE_QUESTION
from .errors import StateError
from .formatting import ICON_COMPLETE, ICON_VOTED, format_hours, format_task
from .models import RoundOutcome, RoundStatus, RoundSummary, Vote, WorkItem
from .prompts import CancellationToken, EstimateRequest
from .telemetry import trace_span

logger = logging.getLogger(__name__)

Announce = Callable[[str], Awaitable[Any]]


def mean_estimate(votes: list[Vote]) -> float | None:
    """Arithmetic mean of the submitted values, or None without votes."""
    if not votes:
        return None
    return sum(vote.value for vote in votes) / len(votes)


class Round:
    """
    Voting lifecycle for one work item.

    ``execute()`` asks every participant for an estimate at once and returns
    when all of them have answered, or as soon as ``cancel_all_estimates()``
    is called. The final value is set separately with ``finalize()``.
    """

    def __init__(self, item: WorkItem):
        self.item = item
        self.status = RoundStatus.PENDING
        self.pending_requests: dict[str, EstimateRequest] = {}
        self.results: list[Vote] = []
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.final_value: float | None = None
        self._token: CancellationToken | None = None

    def __repr__(self) -> str:
        return f"<Round #{self.item.id} {self.status.value}>"

    async def execute(
        self,
        participants: list[Person],
        prompter: Any,
        announce: Announce,
    ) -> RoundOutcome:
        """
        Collect one estimate from each participant.

        Args:
            participants: People to ask, snapshotted for the whole round
            prompter: Collaborator whose ``ask(person, question)`` returns an
                EstimateRequest
            announce: Coroutine function posting a message to the room

        Returns:
            RoundOutcome; ``cancelled`` is set if the round was interrupted
        """
        if self.status is not RoundStatus.PENDING:
            raise StateError(f"Task #{self.item.id} is not waiting to be estimated.")

        token = CancellationToken()
        self._token = token
        self.status = RoundStatus.RUNNING
        self.start_time = datetime.now(timezone.utc)
        self.end_time = None

        logger.info(
            "Round started. Task: %s, Participants: %d",
            self.item.id, len(participants),
        )

        span_attributes = {
            "round.task_id": self.item.id,
            "round.participant_count": len(participants),
        }

        with trace_span("round.execute", attributes=span_attributes) as span:
            await announce(format_task(self.item))

            if not token.cancelled:
                question = f"{format_task(self.item)}\n{ESTIMATE_QUESTION}"
                requests = await asyncio.gather(
                    *(prompter.ask(person, question) for person in participants)
                )

                for request in requests:
                    token.register(request.cancel)
                    if request.is_pending():
                        self.pending_requests[request.person.id] = request

                await asyncio.gather(
                    *(self._collect(request, token, announce) for request in requests)
                )

            span.set_attribute("round.cancelled", token.cancelled)
            span.set_attribute("round.vote_count", len(self.results))

        self.end()
        if not token.cancelled:
            self.status = RoundStatus.AWAITING_FINAL

        average = mean_estimate(self.results)
        logger.info(
            "Round over. Task: %s, Votes: %d, Average: %s, Cancelled: %s",
            self.item.id, len(self.results), average, token.cancelled,
        )

        return RoundOutcome(
            start_time=self.start_time,
            end_time=self.end_time,
            estimates=list(self.results),
            average=average,
            cancelled=token.cancelled,
        )

    async def _collect(
        self,
        request: EstimateRequest,
        token: CancellationToken,
        announce: Announce,
    ) -> float | None:
        value = await request.wait()
        self.pending_requests.pop(request.person.id, None)

        if value is None:
            return None

        self.results.append(Vote(person=request.person, value=value))
        if token.cancelled:
            return value

        try:
            await request.person.send_message(
                f"{ICON_COMPLETE} Thank you. Your estimate of "
                f"{format_hours(value)} hr(s) has been submitted."
            )
            await announce(f"{ICON_VOTED} {request.person.first_name} has voted.")
        except Exception as e:
            logger.warning(
                "Failed to acknowledge vote. Task: %s, Person: %s, Error: %s",
                self.item.id, request.person.handle, e,
            )

        return value

    def cancel_all_estimates(self) -> int:
        """
        Cancel every unanswered request and interrupt ``execute()``.

        Returns:
            Number of requests that were still pending
        """
        if self.status is not RoundStatus.RUNNING or self._token is None:
            raise StateError(f"Task #{self.item.id} is not collecting estimates.")

        pending = [r for r in self.pending_requests.values() if r.is_pending()]
        self._token.cancel()
        self.pending_requests.clear()
        self.status = RoundStatus.CANCELLED

        logger.info("Round cancelled. Task: %s, PendingRequests: %d", self.item.id, len(pending))
        return len(pending)

    def withdraw(self) -> None:
        """Take the round out of play without a final value."""
        if self.status is RoundStatus.RUNNING:
            self.cancel_all_estimates()
        elif self.status is RoundStatus.AWAITING_FINAL:
            self.status = RoundStatus.CANCELLED
        else:
            raise StateError(f"Task #{self.item.id} is not being estimated.")
        self.end()

    def reset(self) -> None:
        """Return a cancelled round to the queue-ready state."""
        if self.status is not RoundStatus.CANCELLED:
            raise StateError(f"Task #{self.item.id} cannot be estimated again.")
        self.status = RoundStatus.PENDING
        self.pending_requests = {}
        self.results = []
        self.start_time = None
        self.end_time = None
        self._token = None

    def finalize(self, value: float) -> None:
        """Record the final estimate and complete the round."""
        if self.final_value is not None:
            raise StateError(
                f"Task #{self.item.id} already has a final estimate of "
                f"{format_hours(self.final_value)} hr(s)."
            )
        if self.status not in (RoundStatus.AWAITING_FINAL, RoundStatus.CANCELLED):
            raise StateError(f"Task #{self.item.id} is not ready for a final estimate.")

        self.final_value = value
        self.status = RoundStatus.COMPLETED
        self.end()
        logger.info("Round finalized. Task: %s, Value: %s", self.item.id, value)

    def end(self) -> None:
        if self.end_time is None:
            self.end_time = datetime.now(timezone.utc)

    def get_estimating_users(self) -> list[Person]:
        """People whose request is still unanswered."""
        return [r.person for r in self.pending_requests.values() if r.is_pending()]

    def get_request(self, person: Person) -> EstimateRequest | None:
        """The person's unanswered request, if any."""
        request = self.pending_requests.get(person.id)
        if request is None or not request.is_pending():
            return None
        return request

    def summary(self) -> RoundSummary:
        return RoundSummary(item=self.item, status=self.status, final_value=self.final_value)
