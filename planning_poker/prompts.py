"""Per-person estimate prompts and their cancellation."""

import asyncio
import logging
from collections import defaultdict, deque
from typing import Callable

from .chat import Person
from .commands import parse_estimate
from .errors import StateError, UserCommandError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Signals cancellation to every request registered with it.

    Callbacks registered after cancellation run immediately.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], object]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def register(self, callback: Callable[[], object]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()


class EstimateRequest:
    """A numeric question put to one person, pending until answered or cancelled.

    ``wait()`` returns the submitted value, or None once the request was
    cancelled. A request settles exactly once.
    """

    def __init__(
        self,
        person: Person,
        question: str,
        on_settled: Callable[["EstimateRequest"], None] | None = None,
    ):
        self.person = person
        self.question = question
        self._future: asyncio.Future[float | None] = asyncio.get_running_loop().create_future()
        self._cancelled = False
        self._on_settled = on_settled

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def value(self) -> float | None:
        return self._future.result() if self._future.done() else None

    def is_pending(self) -> bool:
        return not self._future.done()

    def resolve(self, value: float) -> None:
        """Answer the question with ``value``."""
        if self.done:
            raise StateError(f"@{self.person.handle} has already voted.")
        self._future.set_result(value)
        self._settled()

    def cancel(self) -> bool:
        """Cancel the question. Returns False if it had already settled."""
        if self.done:
            return False
        self._cancelled = True
        self._future.set_result(None)
        self._settled()
        return True

    async def wait(self) -> float | None:
        return await asyncio.shield(self._future)

    def _settled(self) -> None:
        if self._on_settled:
            self._on_settled(self)


class DirectMessagePrompter:
    """Asks people for estimates over direct message.

    Replies are fed in through ``deliver()``. Each person's requests are
    answered oldest first.
    """

    def __init__(self) -> None:
        self._pending: dict[str, deque[EstimateRequest]] = defaultdict(deque)

    async def ask(self, person: Person, question: str) -> EstimateRequest:
        """Send ``question`` to ``person`` and return the pending request."""
        request = EstimateRequest(person, question, on_settled=self._forget)
        self._pending[person.id].append(request)

        try:
            await person.send_message(question)
        except Exception as e:
            # The person can still answer with a public vote
            logger.warning("Failed to send estimate prompt. Person: %s, Error: %s", person.handle, e)

        return request

    def has_pending(self, person: Person) -> bool:
        return bool(self._pending.get(person.id))

    async def deliver(self, person: Person, text: str) -> bool:
        """
        Offer a direct message as the answer to the person's oldest request.

        Returns:
            True if the message was consumed by a pending request
        """
        queue = self._pending.get(person.id)
        if not queue:
            return False

        request = queue[0]
        try:
            value = parse_estimate(text)
        except UserCommandError as e:
            await person.send_message(f":x: {e.message}\n{request.question}")
            return True

        request.resolve(value)
        return True

    def _forget(self, request: EstimateRequest) -> None:
        queue = self._pending.get(request.person.id)
        if queue is None:
            return
        try:
            queue.remove(request)
        except ValueError:
            pass
        if not queue:
            del self._pending[request.person.id]
