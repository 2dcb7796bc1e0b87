"""Tests for estimate requests, cancellation tokens and the DM prompter."""

import asyncio

import pytest

from fakes import FakePerson

from planning_poker.errors import StateError
from planning_poker.prompts import CancellationToken, DirectMessagePrompter, EstimateRequest


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_callbacks_run_once_on_cancel(self):
        """Registered callbacks run once, even if cancel() is repeated."""
        calls = []
        token = CancellationToken()
        token.register(lambda: calls.append("a"))

        token.cancel()
        token.cancel()

        assert token.cancelled is True
        assert calls == ["a"]

    def test_late_registration_runs_immediately(self):
        """A callback registered after cancellation runs right away."""
        calls = []
        token = CancellationToken()
        token.cancel()

        token.register(lambda: calls.append("late"))

        assert calls == ["late"]


class TestEstimateRequest:
    """Tests for EstimateRequest."""

    @pytest.mark.asyncio
    async def test_resolve_settles_wait(self):
        """wait() returns the resolved value."""
        request = EstimateRequest(FakePerson("a", "alice"), "How long?")
        assert request.is_pending()

        request.resolve(2.5)

        assert await request.wait() == 2.5
        assert request.value == 2.5
        assert not request.is_pending()

    @pytest.mark.asyncio
    async def test_cancel_settles_with_none(self):
        """A cancelled request settles with None."""
        request = EstimateRequest(FakePerson("a", "alice"), "How long?")

        assert request.cancel() is True

        assert await request.wait() is None
        assert request.cancelled is True

    @pytest.mark.asyncio
    async def test_request_settles_exactly_once(self):
        """Resolving a settled request fails and cancelling it is a no-op."""
        request = EstimateRequest(FakePerson("a", "alice"), "How long?")
        request.resolve(1)

        with pytest.raises(StateError, match="already voted"):
            request.resolve(3)
        assert request.cancel() is False
        assert request.value == 1

    @pytest.mark.asyncio
    async def test_cancelling_waiter_leaves_request_pending(self):
        """Cancelling the task that waits does not settle the request."""
        request = EstimateRequest(FakePerson("a", "alice"), "How long?")
        waiter = asyncio.create_task(request.wait())
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert request.is_pending()


class TestDirectMessagePrompter:
    """Tests for DirectMessagePrompter."""

    @pytest.mark.asyncio
    async def test_ask_sends_question(self):
        """ask() DMs the question and tracks the request."""
        prompter = DirectMessagePrompter()
        alice = FakePerson("a", "alice")

        request = await prompter.ask(alice, "How long?")

        assert alice.messages == ["How long?"]
        assert prompter.has_pending(alice)
        assert request.is_pending()

    @pytest.mark.asyncio
    async def test_deliver_resolves_oldest_request(self):
        """Replies answer requests oldest first."""
        prompter = DirectMessagePrompter()
        alice = FakePerson("a", "alice")
        first = await prompter.ask(alice, "First?")
        second = await prompter.ask(alice, "Second?")

        assert await prompter.deliver(alice, "3") is True

        assert first.value == 3
        assert second.is_pending()
        assert prompter.has_pending(alice)

    @pytest.mark.asyncio
    async def test_invalid_reply_repeats_question(self):
        """An invalid reply is rejected and the question asked again."""
        prompter = DirectMessagePrompter()
        alice = FakePerson("a", "alice")
        request = await prompter.ask(alice, "How long?")

        assert await prompter.deliver(alice, "soon") is True

        assert request.is_pending()
        assert alice.messages[-1] == ":x: Invalid estimate soon.\nHow long?"

    @pytest.mark.asyncio
    async def test_deliver_without_request(self):
        """A reply with nothing outstanding is not consumed."""
        prompter = DirectMessagePrompter()

        assert await prompter.deliver(FakePerson("a", "alice"), "3") is False

    @pytest.mark.asyncio
    async def test_settled_requests_are_forgotten(self):
        """Cancelled requests no longer count as pending."""
        prompter = DirectMessagePrompter()
        alice = FakePerson("a", "alice")
        request = await prompter.ask(alice, "How long?")

        request.cancel()

        assert not prompter.has_pending(alice)
        assert await prompter.deliver(alice, "3") is False

    @pytest.mark.asyncio
    async def test_failed_send_still_returns_request(self):
        """A DM failure is logged and the request can still be answered."""
        prompter = DirectMessagePrompter()
        alice = FakePerson("a", "alice")

        async def broken(text):
            raise ConnectionError("chat down")

        alice.send_message = broken

        request = await prompter.ask(alice, "How long?")

        assert request.is_pending()
        request.resolve(1)
        assert await request.wait() == 1
