"""Tests for the estimation round lifecycle."""

import asyncio

import pytest

from fakes import FakePerson, wait_for

from planning_poker.errors import StateError
from planning_poker.models import RoundStatus, Vote, WorkItem
from planning_poker.prompts import DirectMessagePrompter
from planning_poker.round import Round, mean_estimate

ITEM = WorkItem(id="7", title="Login page", link="https://acme.teamwork.com/index.cfm#tasks/7")


@pytest.fixture
def people():
    return [FakePerson("a", "alice"), FakePerson("b", "bob"), FakePerson("c", "carol")]


@pytest.fixture
def announcements():
    return []


@pytest.fixture
def announce(announcements):
    async def _announce(text):
        announcements.append(text)
    return _announce


# ---------------------------------------------------------------------------
# mean_estimate
# ---------------------------------------------------------------------------


class TestMeanEstimate:
    """Tests for mean_estimate."""

    def test_mean_of_votes(self):
        """The average is the arithmetic mean of the values."""
        votes = [Vote(FakePerson(str(i), f"p{i}"), value) for i, value in enumerate([3, 5, 4])]
        assert mean_estimate(votes) == 4

    def test_no_votes(self):
        """Without votes there is no average."""
        assert mean_estimate([]) is None


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


class TestExecute:
    """Tests for Round.execute."""

    @pytest.mark.asyncio
    async def test_waits_for_every_participant(self, people, announce, announcements):
        """execute() returns only once everyone has answered."""
        prompter = DirectMessagePrompter()
        round_ = Round(ITEM)
        task = asyncio.create_task(round_.execute(people, prompter, announce))

        await wait_for(lambda: len(round_.get_estimating_users()) == 3)
        assert round_.status is RoundStatus.RUNNING

        await prompter.deliver(people[0], "3")
        await prompter.deliver(people[1], "5")
        await asyncio.sleep(0.01)
        assert not task.done()

        await prompter.deliver(people[2], "4")
        outcome = await asyncio.wait_for(task, 1)

        assert outcome.cancelled is False
        assert outcome.average == 4
        assert sorted(v.value for v in outcome.estimates) == [3, 4, 5]
        assert outcome.end_time >= outcome.start_time
        assert round_.status is RoundStatus.AWAITING_FINAL
        assert round_.pending_requests == {}

    @pytest.mark.asyncio
    async def test_announces_task_and_votes(self, people, announce, announcements):
        """The task is announced first, then each vote, without values."""
        prompter = DirectMessagePrompter()
        round_ = Round(ITEM)
        task = asyncio.create_task(round_.execute(people[:1], prompter, announce))

        await wait_for(lambda: prompter.has_pending(people[0]))
        await prompter.deliver(people[0], "2")
        await asyncio.wait_for(task, 1)

        assert "Task #7" in announcements[0]
        assert announcements[-1].endswith("Alice has voted.")
        assert all("2 hr" not in text for text in announcements)
        assert "estimate of 2 hr(s) has been submitted" in people[0].messages[-1]

    @pytest.mark.asyncio
    async def test_question_includes_task(self, people, announce):
        """Each participant is asked about the task by DM."""
        prompter = DirectMessagePrompter()
        round_ = Round(ITEM)
        task = asyncio.create_task(round_.execute(people, prompter, announce))

        await wait_for(lambda: len(round_.get_estimating_users()) == 3)
        for person in people:
            assert "Task #7" in person.messages[0]
            assert "time estimate" in person.messages[0]

        round_.cancel_all_estimates()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_cannot_execute_twice(self, people, announce):
        """A round that already ran cannot be executed again."""
        prompter = DirectMessagePrompter()
        round_ = Round(ITEM)
        round_.status = RoundStatus.COMPLETED

        with pytest.raises(StateError):
            await round_.execute(people, prompter, announce)


# ---------------------------------------------------------------------------
# Cancellation and finalisation
# ---------------------------------------------------------------------------


class TestCancellation:
    """Tests for cancel_all_estimates, withdraw and reset."""

    @pytest.mark.asyncio
    async def test_cancel_releases_barrier(self, people, announce):
        """Cancelling settles outstanding requests and returns early."""
        prompter = DirectMessagePrompter()
        round_ = Round(ITEM)
        task = asyncio.create_task(round_.execute(people, prompter, announce))

        await wait_for(lambda: len(round_.get_estimating_users()) == 3)
        await prompter.deliver(people[0], "3")
        await wait_for(lambda: len(round_.results) == 1)
        requests = [round_.get_request(person) for person in people[1:]]

        assert round_.cancel_all_estimates() == 2
        outcome = await asyncio.wait_for(task, 1)

        assert outcome.cancelled is True
        assert [v.value for v in outcome.estimates] == [3]
        assert all(request.cancelled for request in requests)
        assert round_.status is RoundStatus.CANCELLED
        assert round_.pending_requests == {}
        assert not prompter.has_pending(people[1])

    @pytest.mark.asyncio
    async def test_answer_just_before_cancel_is_kept(self, people, announce):
        """A request answered in the same tick as the cancellation still counts."""
        prompter = DirectMessagePrompter()
        round_ = Round(ITEM)
        task = asyncio.create_task(round_.execute(people, prompter, announce))
        await wait_for(lambda: len(round_.get_estimating_users()) == 3)

        round_.get_request(people[0]).resolve(3.0)
        round_.cancel_all_estimates()
        outcome = await asyncio.wait_for(task, 1)

        assert outcome.cancelled is True
        assert [(v.person, v.value) for v in outcome.estimates] == [(people[0], 3.0)]
        assert not any("has been submitted" in m for m in people[0].messages)

    def test_cancel_requires_running_round(self):
        """cancel_all_estimates() fails unless votes are being collected."""
        with pytest.raises(StateError):
            Round(ITEM).cancel_all_estimates()

    @pytest.mark.asyncio
    async def test_withdraw_and_reset(self, people, announce):
        """A withdrawn round can be reset and executed again."""
        prompter = DirectMessagePrompter()
        round_ = Round(ITEM)
        task = asyncio.create_task(round_.execute(people[:1], prompter, announce))
        await wait_for(lambda: prompter.has_pending(people[0]))
        await prompter.deliver(people[0], "2")
        await asyncio.wait_for(task, 1)

        round_.withdraw()
        assert round_.status is RoundStatus.CANCELLED

        round_.reset()
        assert round_.status is RoundStatus.PENDING
        assert round_.results == []
        assert round_.start_time is None

        task = asyncio.create_task(round_.execute(people[:1], prompter, announce))
        await wait_for(lambda: prompter.has_pending(people[0]))
        await prompter.deliver(people[0], "6")
        outcome = await asyncio.wait_for(task, 1)
        assert outcome.average == 6

    def test_withdraw_pending_round_fails(self):
        """Only a live round can be withdrawn."""
        with pytest.raises(StateError):
            Round(ITEM).withdraw()

    def test_reset_requires_cancelled_round(self):
        """reset() fails for a round that was not cancelled."""
        with pytest.raises(StateError):
            Round(ITEM).reset()


class TestFinalize:
    """Tests for Round.finalize."""

    def test_finalize_after_votes(self):
        """A round awaiting its final value completes."""
        round_ = Round(ITEM)
        round_.status = RoundStatus.AWAITING_FINAL

        round_.finalize(4)

        assert round_.status is RoundStatus.COMPLETED
        assert round_.final_value == 4
        assert round_.end_time is not None

    def test_finalize_twice_fails(self):
        """A final value can only be set once."""
        round_ = Round(ITEM)
        round_.status = RoundStatus.CANCELLED
        round_.finalize(4)

        with pytest.raises(StateError, match="already has a final estimate of 4 hr"):
            round_.finalize(5)
        assert round_.final_value == 4

    def test_finalize_while_pending_fails(self):
        """A round that never ran cannot be finalised."""
        with pytest.raises(StateError):
            Round(ITEM).finalize(4)

    def test_summary(self):
        """summary() reports the item, status and final value."""
        round_ = Round(ITEM)
        round_.status = RoundStatus.AWAITING_FINAL
        round_.finalize(1.5)

        summary = round_.summary()

        assert summary.item == ITEM
        assert summary.status is RoundStatus.COMPLETED
        assert summary.final_value == 1.5
