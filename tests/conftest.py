"""Shared test fixtures and configuration.

Sets environment variables before any planning_poker modules are imported.
"""

import os

import pytest

# pytest loads conftest.py before test modules, so this runs first.
os.environ.setdefault("TEAMWORK_API_KEY", "test-key-not-real")
os.environ.setdefault("POKER_WELCOME_DELAY", "0")

from fakes import FakeChatClient, FakePerson, FakeRoom, FakeTaskSource, make_tasklist  # noqa: E402


@pytest.fixture
def bot():
    return FakePerson("bot", "pokerbot", "Poker")


@pytest.fixture
def moderator():
    return FakePerson("mod", "mia", "Mia")


@pytest.fixture
def alice():
    return FakePerson("alice", "alice", "Alice")


@pytest.fixture
def bob():
    return FakePerson("bob", "bob", "Bob")


@pytest.fixture
def room(bot, moderator, alice, bob):
    return FakeRoom("room-1", [bot, moderator, alice, bob])


@pytest.fixture
def task_source():
    return FakeTaskSource(make_tasklist(2))


@pytest.fixture
def chat_client(bot, moderator, alice, bob):
    return FakeChatClient(bot, [moderator, alice, bob])
