"""In-memory chat and task-source collaborators for tests."""

import asyncio
from typing import Callable

from planning_poker.models import Tasklist, WorkItem

TASKLIST_URL = "https://acme.teamwork.com/index.cfm#tasklists/42"


class FakePerson:
    """Chat user that records the direct messages it receives."""

    def __init__(self, id: str, handle: str, first_name: str | None = None):
        self.id = id
        self.handle = handle
        self.first_name = first_name or handle.title()
        self.messages: list[str] = []

    def __repr__(self) -> str:
        return f"<FakePerson @{self.handle}>"

    async def send_message(self, text: str) -> None:
        self.messages.append(text)


class FakeRoom:
    """Chat room that records messages and title changes."""

    def __init__(self, id: str, people: list[FakePerson], directory: dict[str, FakePerson] | None = None):
        self.id = id
        self._people = list(people)
        self.directory = directory or {}
        self.messages: list[str] = []
        self.titles: list[str] = []
        # Messages for which this returns True fail to send
        self.fail_on: Callable[[str], bool] | None = None

    @property
    def people(self) -> list[FakePerson]:
        return list(self._people)

    async def send_message(self, text: str) -> None:
        if self.fail_on is not None and self.fail_on(text):
            raise ConnectionError("chat service unavailable")
        self.messages.append(text)

    async def update_title(self, text: str) -> None:
        self.titles.append(text)

    async def add_person(self, handle: str) -> FakePerson:
        if handle not in self.directory:
            raise LookupError(f"no user @{handle}")
        person = self.directory[handle]
        self._people.append(person)
        return person

    def remove(self, person: FakePerson) -> None:
        self._people.remove(person)

    def text(self) -> str:
        return "\n".join(self.messages)


class FakeTaskSource:
    """Work-item source returning a fixed tasklist and recording write-backs."""

    def __init__(self, tasklist: Tasklist | None = None, error: Exception | None = None):
        self.tasklist = tasklist or Tasklist(name="Empty")
        self.error = error
        self.update_error: Exception | None = None
        self.references: list[str] = []
        self.updates: list[tuple[str, int, int]] = []

    async def fetch_tasklist(self, reference: str) -> Tasklist:
        self.references.append(reference)
        if self.error is not None:
            raise self.error
        return self.tasklist

    async def update_estimate(self, item: WorkItem, hours: int, minutes: int) -> None:
        if self.update_error is not None:
            raise self.update_error
        self.updates.append((item.id, hours, minutes))


class FakeChatClient:
    """The bot's chat account with a fixed user directory."""

    def __init__(self, me: FakePerson, people: list[FakePerson]):
        self.me = me
        self.directory = {person.handle: person for person in [me, *people]}
        self.rooms: list[FakeRoom] = []

    async def get_person_by_handle(self, handle: str) -> FakePerson:
        if handle not in self.directory:
            raise LookupError(f"no user @{handle}")
        return self.directory[handle]

    async def create_room_with_handles(self, handles: list[str], message: str) -> FakeRoom:
        room = FakeRoom(
            f"room-{len(self.rooms) + 1}",
            [self.directory[handle] for handle in handles],
            directory=self.directory,
        )
        room.messages.append(message)
        self.rooms.append(room)
        return room


def make_tasklist(count: int = 2, name: str = "Sprint 12") -> Tasklist:
    return Tasklist(
        name=name,
        items=tuple(
            WorkItem(
                id=str(100 + i),
                title=f"Task {i + 1}",
                link=f"https://acme.teamwork.com/index.cfm#tasks/{100 + i}",
            )
            for i in range(count)
        ),
    )


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Timed out waiting for condition")
        await asyncio.sleep(0.001)
